from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class MemberOut(BaseModel):
    id: int
    email: str
    first_name: str | None = None
    last_name: str | None = None
    is_broker: bool
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MemberProfileOut(BaseModel):
    member: MemberOut
    coupons_held: int
    coupon_cap: int
