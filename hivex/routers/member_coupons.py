from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from hivex.core.db import get_db
from hivex.core.deps import get_current_member
from hivex.models.member import Member
from hivex.schemas.coupons import CouponOut, CouponRedeemIn
from hivex.services.allocation import claim_coupon, list_member_coupons
from hivex.services.coupons import fetch_qr
from hivex.services.qr_storage import QrStorage, get_qr_storage
from hivex.services.redemption import redeem_coupon

router = APIRouter(tags=["Member - Coupons"])


@router.post("/deals/{deal_id}/claim", response_model=CouponOut, status_code=status.HTTP_201_CREATED)
async def claim(
    deal_id: int,
    db: AsyncSession = Depends(get_db),
    member: Member = Depends(get_current_member),
):
    return await claim_coupon(db, deal_id=deal_id, member_id=int(member.id))


@router.get("/member/coupons", response_model=list[CouponOut])
async def my_coupons(
    db: AsyncSession = Depends(get_db),
    member: Member = Depends(get_current_member),
):
    return await list_member_coupons(db, member_id=int(member.id))


@router.post("/member/coupons/redeem", response_model=CouponOut)
async def redeem(
    body: CouponRedeemIn,
    db: AsyncSession = Depends(get_db),
    member: Member = Depends(get_current_member),
):
    return await redeem_coupon(db, code=body.code, member_id=int(member.id))


@router.get("/member/coupons/{code}/qr", response_class=Response)
async def my_coupon_qr(
    code: str,
    db: AsyncSession = Depends(get_db),
    member: Member = Depends(get_current_member),
    storage: QrStorage = Depends(get_qr_storage),
):
    payload = await fetch_qr(db, code=code, storage=storage, member_id=int(member.id))
    return Response(content=payload, media_type="image/png")
