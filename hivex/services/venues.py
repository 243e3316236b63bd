# hivex/services/venues.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hivex.models.deal import Deal
from hivex.models.member import Member
from hivex.models.venue import Venue
from hivex.services import deals as deal_service
from hivex.services.accounts import register_venue
from hivex.services.exceptions import ForbiddenError


def _require_broker(member: Member, action: str) -> None:
    if not member.is_broker:
        raise ForbiddenError(f"Only brokers can {action}")


async def list_venues(db: AsyncSession, *, broker: Member) -> list[Venue]:
    _require_broker(broker, "view venues")
    res = await db.execute(select(Venue).order_by(Venue.name.asc(), Venue.id.asc()))
    return list(res.scalars().all())


async def add_venue(
    db: AsyncSession,
    *,
    broker: Member,
    name: str,
    address: str | None,
    email: str,
    password: str,
) -> Venue:
    _require_broker(broker, "add venues")
    return await register_venue(
        db,
        name=name,
        address=address,
        email=email,
        password=password,
        added_by_member_id=int(broker.id),
    )


async def broker_create_deal(
    db: AsyncSession,
    *,
    broker: Member,
    venue_id: int,
    title: str,
    value: str | None,
    description: str | None,
    expiry: datetime | None,
    total_created: int,
) -> Deal:
    """A broker drafts an offer for a venue; the venue still issues and approves it."""
    _require_broker(broker, "create offers")
    return await deal_service.create_deal(
        db,
        venue_id=venue_id,
        title=title,
        value=value,
        description=description,
        expiry=expiry,
        total_created=total_created,
    )
