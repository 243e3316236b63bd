# hivex/schemas/coupons.py
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class CouponOut(BaseModel):
    id: int
    code: str
    deal_id: int
    venue_id: int

    title: str
    value: str | None
    expiry: datetime

    member_id: int | None
    claimed_at: datetime | None
    points: int

    redeemed: bool
    redeemed_at: datetime | None

    state: str
    has_qr: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CouponRedeemIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)


class CouponEventOut(BaseModel):
    id: int
    coupon_code: str
    actor_id: int | None
    event_type: str
    meta: dict
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
