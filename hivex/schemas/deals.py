# hivex/schemas/deals.py
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class DealCreateIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    value: str | None = None
    description: str | None = None
    # defaults to one week from now
    expiry: datetime | None = None
    total_created: int = Field(1, ge=1)


class BrokerDealCreateIn(DealCreateIn):
    venue_id: int


class DealUpdateIn(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    value: str | None = None
    description: str | None = None
    expiry: datetime | None = None
    total_created: int | None = Field(default=None, ge=1)


class DealIssueIn(BaseModel):
    with_qr: bool = False


class DealMembersIn(BaseModel):
    member_ids: list[int] = Field(default_factory=list)


class DealOut(BaseModel):
    id: int
    venue_id: int
    title: str
    value: str | None
    description: str | None
    expiry: datetime
    total_created: int
    is_active: bool
    issued_at: datetime | None
    member_ids: list[int]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PoolSummaryOut(BaseModel):
    deal_id: int
    total: int
    unclaimed: int
    claimed: int
    redeemed: int


class DealSendOut(BaseModel):
    message: str
    recipients: int
