# hivex/services/deals.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hivex.core.config import settings
from hivex.core.timeutil import as_utc, utc_now
from hivex.models.deal import Deal
from hivex.models.member import Member
from hivex.models.venue import Venue
from hivex.services.exceptions import (
    DealFrozenError,
    DealInactiveError,
    DuplicateTitleError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Fields copied into coupons at mint time; locked once the deal is issued.
EDITABLE_FIELDS = ("title", "value", "description", "expiry", "total_created")


def _clean_title(title: str | None) -> str:
    clean = (title or "").strip()
    if not clean:
        raise ValidationError("title is required")
    return clean


def _check_total(total_created: int) -> int:
    total = int(total_created)
    if total < 1:
        raise ValidationError("total_created must be >= 1")
    if total > settings.MAX_COUPONS_PER_DEAL:
        raise ValidationError(f"total_created too large (max {settings.MAX_COUPONS_PER_DEAL})")
    return total


def _check_expiry(expiry: datetime, now: datetime) -> datetime:
    expiry = as_utc(expiry)
    if expiry <= now:
        raise ValidationError("expiry must be in the future")
    return expiry


async def _title_taken(db: AsyncSession, *, venue_id: int, title: str, exclude_deal_id: int | None = None) -> bool:
    stmt = select(Deal.id).where(Deal.venue_id == int(venue_id), Deal.title == title)
    if exclude_deal_id is not None:
        stmt = stmt.where(Deal.id != int(exclude_deal_id))
    res = await db.execute(stmt.limit(1))
    return res.first() is not None


async def create_deal(
    db: AsyncSession,
    *,
    venue_id: int,
    title: str,
    value: str | None,
    description: str | None,
    expiry: datetime | None,
    total_created: int,
    now: datetime | None = None,
) -> Deal:
    now = now or utc_now()
    clean_title = _clean_title(title)
    total = _check_total(total_created)
    deal_expiry = (
        _check_expiry(expiry, now) if expiry is not None else now + timedelta(days=settings.DEFAULT_DEAL_DAYS)
    )

    venue = await db.get(Venue, int(venue_id))
    if not venue:
        raise NotFoundError("Venue not found")

    if await _title_taken(db, venue_id=venue.id, title=clean_title):
        raise DuplicateTitleError()

    deal = Deal(
        venue_id=venue.id,
        title=clean_title,
        value=value,
        description=description,
        expiry=deal_expiry,
        total_created=total,
        is_active=False,
    )
    db.add(deal)
    try:
        await db.commit()
    except IntegrityError:
        # concurrent create with the same title
        await db.rollback()
        raise DuplicateTitleError()

    await db.refresh(deal)
    logger.info("deal created", extra={"deal_id": deal.id, "venue_id": venue.id, "total_created": total})
    return deal


async def get_deal(db: AsyncSession, *, deal_id: int, venue_id: int | None = None) -> Deal:
    """Load a deal; when ``venue_id`` is given, deals of other venues look absent."""
    deal = await db.get(Deal, int(deal_id))
    if not deal:
        raise NotFoundError("Deal not found")
    if venue_id is not None and int(deal.venue_id) != int(venue_id):
        raise NotFoundError("Deal not found")
    return deal


async def list_venue_deals(db: AsyncSession, *, venue_id: int) -> list[Deal]:
    res = await db.execute(
        select(Deal).where(Deal.venue_id == int(venue_id)).order_by(Deal.created_at.desc(), Deal.id.desc())
    )
    return list(res.scalars().all())


async def update_deal(
    db: AsyncSession,
    *,
    deal_id: int,
    venue_id: int,
    changes: dict,
    now: datetime | None = None,
) -> Deal:
    """
    Edit a deal that has not been issued yet.

    The write is conditioned on ``issued_at IS NULL`` so an edit racing with
    issuance cannot slip in after coupons copied the old values.
    """
    now = now or utc_now()
    deal = await get_deal(db, deal_id=deal_id, venue_id=venue_id)
    if deal.is_issued:
        raise DealFrozenError()

    values: dict = {}
    for field in EDITABLE_FIELDS:
        if field not in changes:
            continue
        val = changes[field]
        if field == "title":
            val = _clean_title(val)
            if await _title_taken(db, venue_id=venue_id, title=val, exclude_deal_id=deal.id):
                raise DuplicateTitleError()
        elif field == "total_created":
            if val is None:
                raise ValidationError("total_created must be >= 1")
            val = _check_total(val)
        elif field == "expiry":
            if val is None:
                raise ValidationError("expiry is required")
            val = _check_expiry(val, now)
        values[field] = val

    if not values:
        return deal

    values["updated_at"] = now
    try:
        res = await db.execute(
            update(Deal)
            .where(Deal.id == deal.id, Deal.issued_at.is_(None))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            await db.rollback()
            raise DealFrozenError()
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateTitleError()

    await db.refresh(deal)
    return deal


async def activate_deal(db: AsyncSession, *, deal_id: int, venue_id: int) -> Deal:
    """Venue approval. Only flips ``is_active``; issuance is separate."""
    deal = await get_deal(db, deal_id=deal_id, venue_id=venue_id)
    if deal.is_active:
        return deal

    deal.is_active = True
    await db.commit()
    await db.refresh(deal)
    logger.info("deal activated", extra={"deal_id": deal.id})
    return deal


async def set_eligible_members(
    db: AsyncSession,
    *,
    deal_id: int,
    venue_id: int,
    member_ids: list[int],
) -> Deal:
    deal = await get_deal(db, deal_id=deal_id, venue_id=venue_id)

    wanted = sorted({int(x) for x in member_ids})
    members: list[Member] = []
    if wanted:
        res = await db.execute(select(Member).where(Member.id.in_(wanted)))
        members = list(res.scalars().all())
        missing = sorted(set(wanted) - {int(m.id) for m in members})
        if missing:
            raise NotFoundError(f"Members not found: {missing}")

    deal.members = members
    await db.commit()
    await db.refresh(deal)
    return deal


def is_member_eligible(deal: Deal, member_id: int) -> bool:
    if not deal.members:
        return True
    return int(member_id) in deal.member_ids


async def list_member_deals(db: AsyncSession, *, member_id: int, now: datetime | None = None) -> list[Deal]:
    """Active, unexpired, issued deals the member may claim from."""
    now = now or utc_now()
    res = await db.execute(
        select(Deal)
        .where(Deal.is_active.is_(True), Deal.issued_at.is_not(None))
        .order_by(Deal.expiry.asc(), Deal.id.asc())
    )
    return [
        d
        for d in res.scalars().all()
        if as_utc(d.expiry) >= now and is_member_eligible(d, member_id)
    ]


async def deal_notification_targets(db: AsyncSession, *, deal_id: int, venue_id: int) -> tuple[Deal, list[str]]:
    """Deal plus the emails of its eligible members, for the announcement mail."""
    deal = await get_deal(db, deal_id=deal_id, venue_id=venue_id)
    if not deal.is_active:
        raise DealInactiveError()
    emails = [m.email for m in deal.members if m.is_active and m.email]
    return deal, emails
