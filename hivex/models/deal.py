# hivex/models/deal.py
from __future__ import annotations

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Table,
    Text,
    UniqueConstraint,
    false,
    func,
)
from sqlalchemy.orm import relationship

from hivex.core.db import Base, BigId

# Members a deal is offered to. An empty list means the deal is open.
deal_members = Table(
    "deal_members",
    Base.metadata,
    Column("deal_id", BigId, ForeignKey("deals.id", ondelete="CASCADE"), primary_key=True),
    Column("member_id", BigId, ForeignKey("members.id", ondelete="CASCADE"), primary_key=True),
)


class Deal(Base):
    __tablename__ = "deals"
    __table_args__ = (
        UniqueConstraint("venue_id", "title", name="deals_venue_title_uq"),
        CheckConstraint("total_created >= 1", name="deals_total_created_chk"),
    )

    id = Column(BigId, primary_key=True)
    venue_id = Column(BigId, ForeignKey("venues.id"), nullable=False, index=True)

    title = Column(Text, nullable=False)
    value = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    expiry = Column(DateTime(timezone=True), nullable=False)

    total_created = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=False, server_default=false())

    # Set once by the issuance engine; the deal is frozen from then on.
    issued_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    venue = relationship("Venue", lazy="selectin")
    members = relationship("Member", secondary=deal_members, lazy="selectin")

    @property
    def is_issued(self) -> bool:
        return self.issued_at is not None

    @property
    def member_ids(self) -> list[int]:
        return [int(m.id) for m in self.members]
