from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from hivex.core.config import settings
from hivex.core.db import get_db
from hivex.core.deps import get_current_member
from hivex.models.member import Member
from hivex.schemas.auth import (
    MemberSignupIn,
    MessageOut,
    PasswordResetConfirmIn,
    PasswordResetRequestIn,
    TokenPair,
)
from hivex.schemas.members import MemberOut, MemberProfileOut
from hivex.services import accounts
from hivex.services.allocation import count_member_coupons
from hivex.services.exceptions import NotFoundError
from hivex.services.mail import send_password_reset

router = APIRouter(tags=["Members"])


@router.post("/members/signup", response_model=MemberOut, status_code=status.HTTP_201_CREATED)
async def member_signup(body: MemberSignupIn, db: AsyncSession = Depends(get_db)):
    return await accounts.register_member(
        db,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
    )


@router.post("/brokers/signup", response_model=MemberOut, status_code=status.HTTP_201_CREATED)
async def broker_signup(body: MemberSignupIn, db: AsyncSession = Depends(get_db)):
    return await accounts.register_member(
        db,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        is_broker=True,
    )


@router.post("/members/signin", response_model=TokenPair)
async def member_signin(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
):
    # username field carries the email
    return await accounts.sign_in_member(db, email=form_data.username, password=form_data.password)


@router.post("/members/reset", response_model=MessageOut)
async def member_reset_request(
    body: PasswordResetRequestIn,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    try:
        member, token = await accounts.request_password_reset(db, email=body.email)
    except NotFoundError:
        # same answer either way; don't reveal which emails exist
        return MessageOut(message="If the email is registered, a reset token was sent")

    background_tasks.add_task(send_password_reset, member.email, token)
    return MessageOut(message="If the email is registered, a reset token was sent")


@router.post("/members/reset/confirm", response_model=MessageOut)
async def member_reset_confirm(body: PasswordResetConfirmIn, db: AsyncSession = Depends(get_db)):
    await accounts.confirm_password_reset(db, token=body.token, new_password=body.new_password)
    return MessageOut(message="Password reset successfully")


@router.get("/members/profile", response_model=MemberProfileOut)
async def member_profile(
    db: AsyncSession = Depends(get_db),
    current_member: Member = Depends(get_current_member),
) -> MemberProfileOut:
    held = await count_member_coupons(db, member_id=int(current_member.id))
    return MemberProfileOut(
        member=MemberOut.model_validate(current_member),
        coupons_held=held,
        coupon_cap=settings.MEMBER_COUPON_CAP,
    )
