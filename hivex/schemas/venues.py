from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class VenueOut(BaseModel):
    id: int
    name: str
    address: str | None = None
    email: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
