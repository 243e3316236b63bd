# hivex/routers/coupons.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from hivex.core.db import get_db
from hivex.core.deps import get_current_venue
from hivex.models.venue import Venue
from hivex.schemas.coupons import CouponEventOut, CouponOut
from hivex.services import coupons as coupon_service
from hivex.services.qr_storage import QrStorage, get_qr_storage
from hivex.services.redemption import lookup_coupon

router = APIRouter(prefix="/coupons", tags=["Venue - Coupons"])


@router.get("", response_model=list[CouponOut])
async def list_coupons(
    deal_id: int | None = Query(default=None),
    state: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    venue: Venue = Depends(get_current_venue),
):
    return await coupon_service.list_venue_coupons(
        db,
        venue_id=int(venue.id),
        deal_id=deal_id,
        state=state,
        limit=int(limit),
        offset=int(offset),
    )


@router.get("/{code}", response_model=CouponOut)
async def get_coupon(
    code: str,
    db: AsyncSession = Depends(get_db),
    venue: Venue = Depends(get_current_venue),
):
    return await lookup_coupon(db, code=code, venue_id=int(venue.id))


@router.get("/{code}/events", response_model=list[CouponEventOut])
async def get_coupon_events(
    code: str,
    db: AsyncSession = Depends(get_db),
    venue: Venue = Depends(get_current_venue),
):
    return await coupon_service.coupon_events(db, code=code, venue_id=int(venue.id))


@router.get("/{code}/qr", response_class=Response)
async def get_coupon_qr(
    code: str,
    db: AsyncSession = Depends(get_db),
    venue: Venue = Depends(get_current_venue),
    storage: QrStorage = Depends(get_qr_storage),
):
    payload = await coupon_service.fetch_qr(db, code=code, storage=storage, venue_id=int(venue.id))
    return Response(content=payload, media_type="image/png")
