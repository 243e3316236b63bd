# hivex/routers/deals.py
from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from hivex.core.db import get_db
from hivex.core.deps import get_current_member, get_current_venue, require_broker
from hivex.models.member import Member
from hivex.models.venue import Venue
from hivex.schemas.coupons import CouponOut
from hivex.schemas.deals import (
    BrokerDealCreateIn,
    DealCreateIn,
    DealIssueIn,
    DealMembersIn,
    DealOut,
    DealSendOut,
    DealUpdateIn,
    PoolSummaryOut,
)
from hivex.services import deals as deal_service
from hivex.services.coupons import pool_summary
from hivex.services.issuance import issue_deal
from hivex.services.mail import send_deal_to_members
from hivex.services.qr_storage import QrStorage, get_qr_storage
from hivex.services.venues import broker_create_deal

router = APIRouter(tags=["Deals"])


@router.post("/deals", response_model=DealOut, status_code=status.HTTP_201_CREATED)
async def create_deal(
    body: DealCreateIn,
    db: AsyncSession = Depends(get_db),
    venue: Venue = Depends(get_current_venue),
):
    return await deal_service.create_deal(
        db,
        venue_id=int(venue.id),
        title=body.title,
        value=body.value,
        description=body.description,
        expiry=body.expiry,
        total_created=body.total_created,
    )


@router.get("/deals", response_model=list[DealOut])
async def list_venue_deals(
    db: AsyncSession = Depends(get_db),
    venue: Venue = Depends(get_current_venue),
):
    return await deal_service.list_venue_deals(db, venue_id=int(venue.id))


# declared before /deals/{deal_id}
@router.get("/deals/member", response_model=list[DealOut])
async def list_member_deals(
    db: AsyncSession = Depends(get_db),
    member: Member = Depends(get_current_member),
):
    return await deal_service.list_member_deals(db, member_id=int(member.id))


@router.get("/deals/{deal_id}", response_model=DealOut)
async def get_deal(
    deal_id: int,
    db: AsyncSession = Depends(get_db),
    venue: Venue = Depends(get_current_venue),
):
    return await deal_service.get_deal(db, deal_id=deal_id, venue_id=int(venue.id))


@router.patch("/deals/{deal_id}", response_model=DealOut)
async def update_deal(
    deal_id: int,
    body: DealUpdateIn,
    db: AsyncSession = Depends(get_db),
    venue: Venue = Depends(get_current_venue),
):
    return await deal_service.update_deal(
        db,
        deal_id=deal_id,
        venue_id=int(venue.id),
        changes=body.model_dump(exclude_unset=True),
    )


@router.post("/deals/{deal_id}/issue", response_model=list[CouponOut], status_code=status.HTTP_201_CREATED)
async def issue_coupons(
    deal_id: int,
    body: DealIssueIn | None = None,
    db: AsyncSession = Depends(get_db),
    venue: Venue = Depends(get_current_venue),
    qr_storage: QrStorage = Depends(get_qr_storage),
):
    with_qr = bool(body and body.with_qr)
    return await issue_deal(
        db,
        deal_id=deal_id,
        venue_id=int(venue.id),
        with_qr=with_qr,
        qr_storage=qr_storage if with_qr else None,
    )


@router.post("/deals/{deal_id}/activate", response_model=DealOut)
async def activate_deal(
    deal_id: int,
    db: AsyncSession = Depends(get_db),
    venue: Venue = Depends(get_current_venue),
):
    return await deal_service.activate_deal(db, deal_id=deal_id, venue_id=int(venue.id))


@router.put("/deals/{deal_id}/members", response_model=DealOut)
async def set_deal_members(
    deal_id: int,
    body: DealMembersIn,
    db: AsyncSession = Depends(get_db),
    venue: Venue = Depends(get_current_venue),
):
    return await deal_service.set_eligible_members(
        db,
        deal_id=deal_id,
        venue_id=int(venue.id),
        member_ids=body.member_ids,
    )


@router.post("/deals/{deal_id}/send", response_model=DealSendOut)
async def send_deal(
    deal_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    venue: Venue = Depends(get_current_venue),
):
    deal, emails = await deal_service.deal_notification_targets(db, deal_id=deal_id, venue_id=int(venue.id))
    if emails:
        background_tasks.add_task(
            send_deal_to_members,
            emails,
            title=deal.title,
            value=deal.value,
            expiry=deal.expiry,
        )
    return DealSendOut(message="Deal queued for eligible members", recipients=len(emails))


@router.get("/deals/{deal_id}/pool", response_model=PoolSummaryOut)
async def deal_pool(
    deal_id: int,
    db: AsyncSession = Depends(get_db),
    venue: Venue = Depends(get_current_venue),
):
    deal = await deal_service.get_deal(db, deal_id=deal_id, venue_id=int(venue.id))
    return await pool_summary(db, deal_id=int(deal.id))


@router.post("/brokers/deals", response_model=DealOut, status_code=status.HTTP_201_CREATED)
async def broker_create_offer(
    body: BrokerDealCreateIn,
    db: AsyncSession = Depends(get_db),
    broker: Member = Depends(require_broker),
):
    return await broker_create_deal(
        db,
        broker=broker,
        venue_id=body.venue_id,
        title=body.title,
        value=body.value,
        description=body.description,
        expiry=body.expiry,
        total_created=body.total_created,
    )
