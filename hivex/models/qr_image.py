# hivex/models/qr_image.py
from __future__ import annotations

from sqlalchemy import Column, DateTime, Text, func

from hivex.core.db import Base, BigId


class QrImage(Base):
    __tablename__ = "qr_images"

    id = Column(BigId, primary_key=True)

    # Artifact reference handed back by the QR storage backend.
    filename = Column(Text, nullable=False, unique=True)
    content_type = Column(Text, nullable=False, default="image/png")

    uploaded_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
