# hivex/models/coupon.py
from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
    false,
    func,
)
from sqlalchemy.orm import relationship

from hivex.core.db import Base, BigId


@dataclass(frozen=True)
class Unassigned:
    pass


@dataclass(frozen=True)
class AssignedTo:
    member_id: int


Assignment = Unassigned | AssignedTo


class Coupon(Base):
    __tablename__ = "coupons"
    __table_args__ = (
        UniqueConstraint("code", name="coupons_code_uq"),
        # NULL member ids never collide, so unclaimed coupons are unaffected.
        UniqueConstraint("deal_id", "member_id", name="coupons_deal_member_uq"),
        CheckConstraint(
            "(redeemed AND redeemed_at IS NOT NULL) OR (NOT redeemed AND redeemed_at IS NULL)",
            name="coupons_redeemed_at_chk",
        ),
        CheckConstraint("member_id IS NOT NULL OR NOT redeemed", name="coupons_redeem_requires_member_chk"),
    )

    id = Column(BigId, primary_key=True)
    code = Column(Text, nullable=False)

    deal_id = Column(BigId, ForeignKey("deals.id", ondelete="CASCADE"), nullable=False, index=True)
    venue_id = Column(BigId, ForeignKey("venues.id"), nullable=False, index=True)

    # Snapshot of the deal at mint time.
    title = Column(Text, nullable=False)
    value = Column(Text, nullable=True)
    expiry = Column(DateTime(timezone=True), nullable=False)

    member_id = Column(BigId, ForeignKey("members.id"), nullable=True, index=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)

    points = Column(Integer, nullable=False, default=10)

    redeemed = Column(Boolean, nullable=False, default=False, server_default=false())
    redeemed_at = Column(DateTime(timezone=True), nullable=True)

    qr_image_id = Column(BigId, ForeignKey("qr_images.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    deal = relationship("Deal", lazy="raise")
    qr_image = relationship("QrImage", lazy="selectin")

    @property
    def assignment(self) -> Assignment:
        if self.member_id is None:
            return Unassigned()
        return AssignedTo(member_id=int(self.member_id))

    @property
    def has_qr(self) -> bool:
        return self.qr_image_id is not None

    @property
    def state(self) -> str:
        if self.redeemed:
            return "redeemed"
        if self.member_id is not None:
            return "claimed"
        return "unclaimed"
