# hivex/services/accounts.py
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hivex.core.config import settings
from hivex.core.security import MEMBER, VENUE, hash_password, issue_token_pair, verify_password
from hivex.core.timeutil import as_utc, utc_now
from hivex.models.member import Member
from hivex.models.venue import Venue
from hivex.services.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def _norm_email(email: str) -> str:
    return (email or "").strip().lower()


async def _email_in_use(db: AsyncSession, model, email: str) -> bool:
    res = await db.execute(select(model.id).where(model.email == email).limit(1))
    return res.first() is not None


async def register_member(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    first_name: str | None,
    last_name: str | None,
    is_broker: bool = False,
) -> Member:
    clean_email = _norm_email(email)
    if await _email_in_use(db, Member, clean_email):
        raise ValidationError("Email in use")

    member = Member(
        email=clean_email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        is_broker=bool(is_broker),
        is_active=True,
    )
    db.add(member)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ValidationError("Email in use")
    await db.refresh(member)
    logger.info("member registered", extra={"member_id": member.id, "is_broker": member.is_broker})
    return member


async def register_venue(
    db: AsyncSession,
    *,
    name: str,
    address: str | None,
    email: str,
    password: str,
    added_by_member_id: int | None = None,
) -> Venue:
    clean_email = _norm_email(email)
    clean_name = (name or "").strip()
    if not clean_name:
        raise ValidationError("name is required")
    if await _email_in_use(db, Venue, clean_email):
        raise ValidationError("Email in use")

    venue = Venue(
        name=clean_name,
        address=address,
        email=clean_email,
        password_hash=hash_password(password),
        added_by_member_id=added_by_member_id,
    )
    db.add(venue)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ValidationError("Email in use")
    await db.refresh(venue)
    logger.info("venue registered", extra={"venue_id": venue.id})
    return venue


async def sign_in_member(db: AsyncSession, *, email: str, password: str) -> dict:
    res = await db.execute(select(Member).where(Member.email == _norm_email(email)))
    member = res.scalar_one_or_none()
    if not member or not verify_password(password, member.password_hash):
        raise ValidationError("Invalid credentials")
    if not member.is_active:
        raise ValidationError("Member is inactive")
    return issue_token_pair(subject_id=member.id, kind=MEMBER)


async def sign_in_venue(db: AsyncSession, *, email: str, password: str) -> dict:
    res = await db.execute(select(Venue).where(Venue.email == _norm_email(email)))
    venue = res.scalar_one_or_none()
    if not venue or not verify_password(password, venue.password_hash):
        raise ValidationError("Invalid credentials")
    return issue_token_pair(subject_id=venue.id, kind=VENUE)


async def request_password_reset(
    db: AsyncSession,
    *,
    email: str,
    now: datetime | None = None,
) -> tuple[Member, str]:
    """Store a fresh reset token on the member; the caller mails it."""
    now = now or utc_now()
    res = await db.execute(select(Member).where(Member.email == _norm_email(email)))
    member = res.scalar_one_or_none()
    if not member:
        raise NotFoundError("Member not found")

    token = secrets.token_hex(20)
    member.reset_token = token
    member.reset_token_expires_at = now + timedelta(minutes=settings.PASSWORD_RESET_MINUTES)
    await db.commit()
    return member, token


async def confirm_password_reset(
    db: AsyncSession,
    *,
    token: str,
    new_password: str,
    now: datetime | None = None,
) -> Member:
    now = now or utc_now()
    res = await db.execute(select(Member).where(Member.reset_token == (token or "")))
    member = res.scalar_one_or_none()
    if (
        not member
        or member.reset_token_expires_at is None
        or as_utc(member.reset_token_expires_at) <= now
    ):
        raise NotFoundError("Invalid or expired token")

    member.password_hash = hash_password(new_password)
    member.reset_token = None
    member.reset_token_expires_at = None
    await db.commit()
    await db.refresh(member)
    logger.info("password reset", extra={"member_id": member.id})
    return member
