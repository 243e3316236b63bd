from __future__ import annotations

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from hivex.core.db import get_db
from hivex.core.security import MEMBER, VENUE, TokenError, decode_token
from hivex.models.member import Member
from hivex.models.venue import Venue

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/members/signin")


def _subject(token: str, expected_kind: str) -> int:
    try:
        payload = decode_token(token)
    except TokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Access token required")
    if payload.get("kind") != expected_kind:
        raise HTTPException(status_code=403, detail=f"{expected_kind.capitalize()} account required")

    try:
        return int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid subject in token")


async def get_current_member(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> Member:
    member = await db.get(Member, _subject(token, MEMBER))
    if not member:
        raise HTTPException(status_code=401, detail="Member not found")
    if not member.is_active:
        raise HTTPException(status_code=401, detail="Member inactive")
    return member


async def get_current_venue(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> Venue:
    venue = await db.get(Venue, _subject(token, VENUE))
    if not venue:
        raise HTTPException(status_code=401, detail="Venue not found")
    return venue


def require_broker(current_member: Member = Depends(get_current_member)) -> Member:
    if not current_member.is_broker:
        raise HTTPException(status_code=403, detail="Broker only")
    return current_member
