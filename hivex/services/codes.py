# hivex/services/codes.py
from __future__ import annotations

import logging
import secrets
import string

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hivex.core.config import settings
from hivex.models.coupon import Coupon
from hivex.services.exceptions import CodeSpaceExhaustedError, ValidationError

logger = logging.getLogger(__name__)

CHARSETS: dict[str, str] = {
    "numbers": string.digits,
    "alphabetic": string.ascii_letters,
    "alphanumeric": string.digits + string.ascii_letters,
}


def resolve_charset(name: str) -> str:
    """Named charset, or the string itself used as the alphabet."""
    charset = CHARSETS.get(name, name)
    # dedupe, keep order
    charset = "".join(dict.fromkeys(charset or ""))
    if not charset:
        raise ValidationError("charset must not be empty")
    return charset


def code_space(charset: str, length: int) -> int:
    return len(charset) ** int(length)


def random_code(charset: str, length: int) -> str:
    if int(length) < 1:
        raise ValidationError("code length must be >= 1")
    return "".join(secrets.choice(charset) for _ in range(int(length)))


async def _code_exists(db: AsyncSession, code: str) -> bool:
    res = await db.execute(select(Coupon.id).where(Coupon.code == code).limit(1))
    return res.first() is not None


async def generate(
    db: AsyncSession,
    charset: str | None = None,
    length: int | None = None,
    *,
    reserved: set[str] | None = None,
    max_retries: int | None = None,
) -> str:
    """
    Draw a coupon code not used by any coupon in the system.

    ``reserved`` holds codes already drawn for the current batch but not yet
    flushed; they count as taken. The drawn code is added to it.

    The unique constraint on ``coupons.code`` stays the final guard against a
    concurrent batch drawing the same code.
    """
    alphabet = resolve_charset(charset or settings.COUPON_CODE_CHARSET)
    size = int(length or settings.COUPON_CODE_LENGTH)
    attempts = int(max_retries or settings.COUPON_CODE_MAX_RETRIES)

    for attempt in range(1, attempts + 1):
        code = random_code(alphabet, size)
        if reserved is not None and code in reserved:
            continue
        if await _code_exists(db, code):
            logger.debug("coupon code collision", extra={"attempt": attempt})
            continue
        if reserved is not None:
            reserved.add(code)
        return code

    logger.error(
        "coupon code space exhausted",
        extra={"length": size, "charset_size": len(alphabet), "attempts": attempts},
    )
    raise CodeSpaceExhaustedError(
        f"No free coupon code after {attempts} attempts (length={size}); increase COUPON_CODE_LENGTH"
    )
