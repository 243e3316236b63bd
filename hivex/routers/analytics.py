from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from hivex.core.db import get_db
from hivex.core.deps import require_broker
from hivex.models.member import Member
from hivex.schemas.analytics import TitleAnalyticsOut
from hivex.services.analytics import redemption_analytics

router = APIRouter(prefix="/analytics", tags=["Broker - Analytics"])


@router.get("", response_model=list[TitleAnalyticsOut])
async def analytics(
    db: AsyncSession = Depends(get_db),
    broker: Member = Depends(require_broker),
):
    return await redemption_analytics(db, broker=broker)
