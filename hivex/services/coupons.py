# hivex/services/coupons.py
from __future__ import annotations

import anyio
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hivex.models.coupon import Coupon
from hivex.models.coupon_event import CouponEvent
from hivex.models.qr_image import QrImage
from hivex.services.exceptions import NotFoundError, ValidationError
from hivex.services.qr_storage import QrStorage

COUPON_STATES = ("unclaimed", "claimed", "redeemed")


def log_event(
    db: AsyncSession,
    *,
    coupon_code: str,
    actor_id: int | None,
    event_type: str,
    meta: dict | None = None,
    created_at=None,
) -> None:
    e = CouponEvent(
        coupon_code=coupon_code,
        actor_id=actor_id,
        event_type=event_type,
        meta=meta or {},
    )
    if created_at is not None:
        e.created_at = created_at
    db.add(e)


def _apply_state(stmt, state: str | None):
    if not state:
        return stmt
    if state not in COUPON_STATES:
        raise ValidationError(f"state must be one of {', '.join(COUPON_STATES)}")
    if state == "unclaimed":
        return stmt.where(Coupon.member_id.is_(None))
    if state == "claimed":
        return stmt.where(Coupon.member_id.is_not(None), Coupon.redeemed.is_(False))
    return stmt.where(Coupon.redeemed.is_(True))


async def list_venue_coupons(
    db: AsyncSession,
    *,
    venue_id: int,
    deal_id: int | None = None,
    state: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Coupon]:
    stmt = select(Coupon).where(Coupon.venue_id == int(venue_id)).order_by(Coupon.id.asc())
    if deal_id:
        stmt = stmt.where(Coupon.deal_id == int(deal_id))
    stmt = _apply_state(stmt, state)

    res = await db.execute(stmt.limit(int(limit)).offset(int(offset)))
    return list(res.scalars().all())


async def get_coupon_by_code(db: AsyncSession, code: str) -> Coupon:
    res = await db.execute(select(Coupon).where(Coupon.code == code))
    coupon = res.scalar_one_or_none()
    if not coupon:
        raise NotFoundError("Coupon not found")
    return coupon


async def pool_summary(db: AsyncSession, *, deal_id: int) -> dict:
    """Counts of the deal's pool by state."""
    stmt = select(
        func.count(Coupon.id),
        func.sum(case((Coupon.member_id.is_(None), 1), else_=0)),
        func.sum(case((Coupon.redeemed.is_(True), 1), else_=0)),
    ).where(Coupon.deal_id == int(deal_id))
    row = (await db.execute(stmt)).one()

    total = int(row[0] or 0)
    unclaimed = int(row[1] or 0)
    redeemed = int(row[2] or 0)
    return {
        "deal_id": int(deal_id),
        "total": total,
        "unclaimed": unclaimed,
        "claimed": total - unclaimed - redeemed,
        "redeemed": redeemed,
    }


async def coupon_events(db: AsyncSession, *, code: str, venue_id: int) -> list[CouponEvent]:
    coupon = await get_coupon_by_code(db, code)
    if int(coupon.venue_id) != int(venue_id):
        raise NotFoundError("Coupon not found")

    res = await db.execute(
        select(CouponEvent)
        .where(CouponEvent.coupon_code == code)
        .order_by(CouponEvent.created_at.asc(), CouponEvent.id.asc())
    )
    return list(res.scalars().all())


async def fetch_qr(
    db: AsyncSession,
    *,
    code: str,
    storage: QrStorage,
    venue_id: int | None = None,
    member_id: int | None = None,
) -> bytes:
    """QR PNG for a coupon, visible to its venue or to the member holding it."""
    coupon = await get_coupon_by_code(db, code)
    allowed = (venue_id is not None and int(coupon.venue_id) == int(venue_id)) or (
        member_id is not None and coupon.member_id is not None and int(coupon.member_id) == int(member_id)
    )
    if not allowed or coupon.qr_image_id is None:
        raise NotFoundError("QR image not found")

    qr = await db.get(QrImage, coupon.qr_image_id)
    if not qr:
        raise NotFoundError("QR image not found")
    return await anyio.to_thread.run_sync(storage.fetch, qr.filename)
