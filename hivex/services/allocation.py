# hivex/services/allocation.py
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hivex.core.config import settings
from hivex.core.timeutil import as_utc, utc_now
from hivex.models.coupon import Coupon
from hivex.models.member import Member
from hivex.services.coupons import log_event
from hivex.services.deals import get_deal, is_member_eligible
from hivex.services.exceptions import (
    AlreadyClaimedError,
    CapExceededError,
    ConcurrencyConflictError,
    DealInactiveError,
    ExpiredError,
    ForbiddenError,
    HivexError,
    NotFoundError,
    PoolExhaustedError,
    StorageError,
)

logger = logging.getLogger(__name__)


async def _lock_member(db: AsyncSession, member_id: int) -> Member:
    # Serializes one member's concurrent claims on the cap check (no-op on SQLite).
    res = await db.execute(select(Member).where(Member.id == int(member_id)).with_for_update())
    member = res.scalar_one_or_none()
    if member is None:
        raise NotFoundError("Member not found")
    return member


async def count_member_coupons(db: AsyncSession, *, member_id: int) -> int:
    """Every coupon the member holds, redeemed or not, across all deals."""
    res = await db.execute(select(func.count(Coupon.id)).where(Coupon.member_id == int(member_id)))
    return int(res.scalar_one() or 0)


async def _held_for_deal(db: AsyncSession, *, deal_id: int, member_id: int) -> Coupon | None:
    res = await db.execute(
        select(Coupon).where(Coupon.deal_id == int(deal_id), Coupon.member_id == int(member_id)).limit(1)
    )
    return res.scalar_one_or_none()


async def _next_unclaimed_id(db: AsyncSession, *, deal_id: int, skip: set[int]) -> int | None:
    stmt = (
        select(Coupon.id)
        .where(Coupon.deal_id == int(deal_id), Coupon.member_id.is_(None))
        .order_by(Coupon.id.asc())
        .limit(1)
        .with_for_update(skip_locked=True)
    )
    if skip:
        stmt = stmt.where(Coupon.id.not_in(skip))
    res = await db.execute(stmt)
    return res.scalar_one_or_none()


async def _assign(db: AsyncSession, *, coupon_id: int, member_id: int, now: datetime) -> bool:
    """Compare-and-set on ``member_id IS NULL``. False means someone else got it first."""
    res = await db.execute(
        update(Coupon)
        .where(Coupon.id == int(coupon_id), Coupon.member_id.is_(None))
        .values(member_id=int(member_id), claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def claim_coupon(
    db: AsyncSession,
    *,
    deal_id: int,
    member_id: int,
    now: datetime | None = None,
) -> Coupon:
    """
    Give the member one unclaimed coupon of the deal.

    Checks, in order: deal exists, is active, not expired, member eligible,
    no coupon of this deal held yet, member below MEMBER_COUPON_CAP. Then the
    first unclaimed coupon in insertion order is taken with a conditional
    update; a lost race moves on to the next candidate.
    """
    now = now or utc_now()
    deal = await get_deal(db, deal_id=deal_id)
    if not deal.is_active:
        raise DealInactiveError()
    if as_utc(deal.expiry) < now:
        raise ExpiredError("Deal expired")
    if not is_member_eligible(deal, member_id):
        raise ForbiddenError("Member is not eligible for this deal")

    try:
        await _lock_member(db, member_id)

        if await _held_for_deal(db, deal_id=deal.id, member_id=member_id):
            raise AlreadyClaimedError()

        held = await count_member_coupons(db, member_id=member_id)
        if held >= settings.MEMBER_COUPON_CAP:
            logger.info("claim rejected: cap reached", extra={"member_id": int(member_id), "held": held})
            raise CapExceededError(f"No more than {settings.MEMBER_COUPON_CAP} coupons per member allowed")

        lost: set[int] = set()
        claimed_id: int | None = None
        for _ in range(max(1, settings.CLAIM_MAX_ATTEMPTS)):
            candidate = await _next_unclaimed_id(db, deal_id=deal.id, skip=lost)
            if candidate is None:
                raise PoolExhaustedError()
            if await _assign(db, coupon_id=candidate, member_id=member_id, now=now):
                claimed_id = int(candidate)
                break
            lost.add(int(candidate))
            logger.info("claim lost race", extra={"deal_id": int(deal_id), "coupon_id": int(candidate)})

        if claimed_id is None:
            raise ConcurrencyConflictError()

        res = await db.execute(
            select(Coupon).where(Coupon.id == claimed_id).execution_options(populate_existing=True)
        )
        coupon = res.scalar_one()
        log_event(
            db,
            coupon_code=coupon.code,
            actor_id=int(member_id),
            event_type="claimed",
            meta={"deal_id": int(deal_id)},
            created_at=now,
        )
        await db.commit()

    except HivexError:
        await db.rollback()
        raise
    except IntegrityError as exc:
        # coupons_deal_member_uq: a parallel claim by the same member won
        await db.rollback()
        raise AlreadyClaimedError() from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("claim failed", extra={"deal_id": int(deal_id), "member_id": int(member_id)})
        raise StorageError() from exc
    except Exception:
        await db.rollback()
        raise

    await db.refresh(coupon)
    logger.info(
        "coupon claimed",
        extra={"deal_id": int(deal_id), "member_id": int(member_id), "coupon_code": coupon.code},
    )
    return coupon


async def list_member_coupons(db: AsyncSession, *, member_id: int) -> list[Coupon]:
    res = await db.execute(
        select(Coupon).where(Coupon.member_id == int(member_id)).order_by(Coupon.claimed_at.desc(), Coupon.id.desc())
    )
    return list(res.scalars().all())
