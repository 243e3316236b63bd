from __future__ import annotations

from fastapi import APIRouter, Depends, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from hivex.core.db import get_db
from hivex.core.deps import get_current_venue, require_broker
from hivex.models.member import Member
from hivex.models.venue import Venue
from hivex.schemas.auth import TokenPair, VenueSignupIn
from hivex.schemas.venues import VenueOut
from hivex.services import accounts, venues

router = APIRouter(prefix="/venues", tags=["Venues"])


@router.post("/signup", response_model=VenueOut, status_code=status.HTTP_201_CREATED)
async def venue_signup(body: VenueSignupIn, db: AsyncSession = Depends(get_db)):
    return await accounts.register_venue(
        db,
        name=body.name,
        address=body.address,
        email=body.email,
        password=body.password,
    )


@router.post("/signin", response_model=TokenPair)
async def venue_signin(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
):
    return await accounts.sign_in_venue(db, email=form_data.username, password=form_data.password)


@router.get("/profile", response_model=VenueOut)
async def venue_profile(current_venue: Venue = Depends(get_current_venue)):
    return current_venue


@router.get("", response_model=list[VenueOut])
async def list_venues(
    db: AsyncSession = Depends(get_db),
    broker: Member = Depends(require_broker),
):
    return await venues.list_venues(db, broker=broker)


@router.post("", response_model=VenueOut, status_code=status.HTTP_201_CREATED)
async def add_venue(
    body: VenueSignupIn,
    db: AsyncSession = Depends(get_db),
    broker: Member = Depends(require_broker),
):
    return await venues.add_venue(
        db,
        broker=broker,
        name=body.name,
        address=body.address,
        email=body.email,
        password=body.password,
    )
