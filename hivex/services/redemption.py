# hivex/services/redemption.py
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hivex.core.timeutil import as_utc, utc_now
from hivex.models.coupon import AssignedTo, Coupon
from hivex.services.coupons import get_coupon_by_code, log_event
from hivex.services.exceptions import (
    AlreadyRedeemedError,
    ExpiredError,
    NotFoundError,
    NotOwnedError,
    StorageError,
)

logger = logging.getLogger(__name__)


def check_redeemable(coupon: Coupon, *, member_id: int, now: datetime) -> None:
    """
    Claimed -> Redeemed preconditions, in order: ownership, expiry, not yet
    redeemed. An unclaimed coupon is never owned. Expiry wins over the
    redeemed flag, so an expired coupon always reports ExpiredError.
    """
    if coupon.assignment != AssignedTo(member_id=int(member_id)):
        raise NotOwnedError()
    if now > as_utc(coupon.expiry):
        raise ExpiredError()
    if coupon.redeemed:
        raise AlreadyRedeemedError()


async def _mark_redeemed(db: AsyncSession, *, coupon_id: int, member_id: int, now: datetime) -> bool:
    """Compare-and-set on ``redeemed = false``. False means another request redeemed it first."""
    res = await db.execute(
        update(Coupon)
        .where(
            Coupon.id == int(coupon_id),
            Coupon.member_id == int(member_id),
            Coupon.redeemed.is_(False),
        )
        .values(redeemed=True, redeemed_at=now)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def redeem_coupon(
    db: AsyncSession,
    *,
    code: str,
    member_id: int,
    now: datetime | None = None,
) -> Coupon:
    """
    Redeem a claimed coupon exactly once.

    The final write is conditioned on ``redeemed = false``; when two requests
    race, the loser re-reads the row and gets AlreadyRedeemedError. A failed
    redemption is never retried here.
    """
    now = now or utc_now()
    coupon = await get_coupon_by_code(db, code)
    check_redeemable(coupon, member_id=member_id, now=now)
    coupon_id, deal_id = int(coupon.id), int(coupon.deal_id)

    try:
        if not await _mark_redeemed(db, coupon_id=coupon_id, member_id=member_id, now=now):
            await db.rollback()
            res = await db.execute(
                select(Coupon).where(Coupon.id == coupon_id).execution_options(populate_existing=True)
            )
            current = res.scalar_one_or_none()
            if current is None:
                raise NotFoundError("Coupon not found")
            logger.info("redeem lost race", extra={"coupon_code": code, "member_id": int(member_id)})
            check_redeemable(current, member_id=member_id, now=now)
            # still looks redeemable: the row changed under us in some other way
            raise AlreadyRedeemedError()

        log_event(
            db,
            coupon_code=code,
            actor_id=int(member_id),
            event_type="redeemed",
            meta={"deal_id": deal_id},
            created_at=now,
        )
        await db.commit()

    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("redeem failed", extra={"coupon_code": code, "member_id": int(member_id)})
        raise StorageError() from exc
    except Exception:
        await db.rollback()
        raise

    await db.refresh(coupon)
    logger.info("coupon redeemed", extra={"coupon_code": code, "member_id": int(member_id)})
    return coupon


async def lookup_coupon(
    db: AsyncSession,
    *,
    code: str,
    venue_id: int,
    now: datetime | None = None,
) -> Coupon:
    """Venue-side check of a presented code: must be theirs and not expired."""
    now = now or utc_now()
    coupon = await get_coupon_by_code(db, code)
    if int(coupon.venue_id) != int(venue_id):
        raise NotFoundError("Coupon not found")
    if now > as_utc(coupon.expiry):
        raise ExpiredError()
    return coupon
