# hivex/models/coupon_event.py
from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, Text, func

from hivex.core.db import Base, BigId, JsonDoc


class CouponEvent(Base):
    __tablename__ = "coupon_events"

    id = Column(BigId, primary_key=True)
    coupon_code = Column(Text, ForeignKey("coupons.code", ondelete="CASCADE"), nullable=False, index=True)

    # member id for claim/redeem, venue id for issuance
    actor_id = Column(BigId, nullable=True)

    event_type = Column(Text, nullable=False)  # issued, claimed, redeemed
    meta = Column(JsonDoc, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
