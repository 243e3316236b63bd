# hivex/services/analytics.py
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hivex.core.timeutil import as_utc
from hivex.models.coupon import Coupon
from hivex.models.member import Member
from hivex.services.exceptions import ForbiddenError

_DAY_SECONDS = 24 * 60 * 60


async def redemption_analytics(db: AsyncSession, *, broker: Member) -> list[dict]:
    """
    Per coupon title: how many were minted, how many redeemed, and how long
    (in days) redeemed coupons took from minting to redemption.
    """
    if not broker.is_broker:
        raise ForbiddenError("Only brokers can view analytics")

    res = await db.execute(
        select(Coupon.title, Coupon.redeemed, Coupon.created_at, Coupon.redeemed_at).order_by(Coupon.title.asc())
    )

    buckets: dict[str, dict] = {}
    for title, redeemed, created_at, redeemed_at in res.all():
        b = buckets.setdefault(title, {"title": title, "count": 0, "total_usage": 0, "total_span_days": 0.0})
        b["count"] += 1
        if redeemed and redeemed_at is not None and created_at is not None:
            b["total_usage"] += 1
            span = (as_utc(redeemed_at) - as_utc(created_at)).total_seconds() / _DAY_SECONDS
            b["total_span_days"] += span

    items: list[dict] = []
    for b in buckets.values():
        usage = b["total_usage"]
        b["total_span_days"] = round(b["total_span_days"], 4)
        b["average_span_days"] = round(b["total_span_days"] / usage, 4) if usage else None
        b["redemption_rate"] = round(usage / b["count"], 4) if b["count"] else 0.0
        items.append(b)
    return items
