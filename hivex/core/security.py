from __future__ import annotations

import bcrypt
import jwt
from datetime import datetime, timedelta, timezone

from hivex.core.config import settings

MEMBER = "member"
VENUE = "venue"


class TokenError(Exception):
    pass


# -------------------------
# Password hashing (bcrypt)
# -------------------------
def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


# -------------------------
# JWT tokens
# -------------------------
def _encode(*, subject_id: int, kind: str, token_type: str, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(subject_id),
        "kind": kind,
        "type": token_type,
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def create_access_token(*, subject_id: int, kind: str) -> str:
    return _encode(
        subject_id=subject_id,
        kind=kind,
        token_type="access",
        lifetime=timedelta(minutes=settings.JWT_ACCESS_MINUTES),
    )


def create_refresh_token(*, subject_id: int, kind: str) -> str:
    return _encode(
        subject_id=subject_id,
        kind=kind,
        token_type="refresh",
        lifetime=timedelta(days=settings.JWT_REFRESH_DAYS),
    )


def issue_token_pair(*, subject_id: int, kind: str) -> dict:
    return {
        "access_token": create_access_token(subject_id=subject_id, kind=kind),
        "refresh_token": create_refresh_token(subject_id=subject_id, kind=kind),
        "token_type": "bearer",
    }


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.ExpiredSignatureError as e:
        raise TokenError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise TokenError("Invalid token") from e
