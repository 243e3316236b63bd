from __future__ import annotations

from pydantic import BaseModel


class TitleAnalyticsOut(BaseModel):
    title: str
    count: int
    total_usage: int
    total_span_days: float
    average_span_days: float | None = None
    redemption_rate: float
