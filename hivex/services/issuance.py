# hivex/services/issuance.py
from __future__ import annotations

import logging
from datetime import datetime

import anyio
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hivex.core.config import settings
from hivex.core.timeutil import utc_now
from hivex.models.coupon import Coupon
from hivex.models.deal import Deal
from hivex.models.qr_image import QrImage
from hivex.services import codes
from hivex.services.coupons import log_event
from hivex.services.deals import get_deal
from hivex.services.exceptions import (
    ConcurrencyConflictError,
    DealAlreadyIssuedError,
    HivexError,
    StorageError,
    ValidationError,
)
from hivex.services.qr_storage import QrStorage, render_qr_png

logger = logging.getLogger(__name__)

# Warn when one batch would take more than this share of the code space.
CODE_SPACE_WARN_RATIO = 0.01


def _render_and_store(storage: QrStorage, code: str, stored_refs: list[str]) -> str:
    try:
        payload = render_qr_png(code)
    except Exception as exc:
        raise StorageError("QR generation failed") from exc
    ref = storage.store(payload)
    stored_refs.append(ref)
    return ref


def _discard_artifacts(storage: QrStorage | None, refs: list[str]) -> None:
    if storage is None:
        return
    for ref in refs:
        storage.delete(ref)


async def _warn_on_code_pressure(db: AsyncSession, total: int) -> None:
    charset = codes.resolve_charset(settings.COUPON_CODE_CHARSET)
    space = codes.code_space(charset, settings.COUPON_CODE_LENGTH)
    existing = int((await db.execute(select(func.count(Coupon.id)))).scalar_one() or 0)
    if total + existing > space * CODE_SPACE_WARN_RATIO:
        logger.warning(
            "coupon code space getting crowded; consider a longer COUPON_CODE_LENGTH",
            extra={"code_space": space, "batch": total, "existing": existing},
        )


async def issue_deal(
    db: AsyncSession,
    *,
    deal_id: int,
    venue_id: int,
    with_qr: bool = False,
    qr_storage: QrStorage | None = None,
    now: datetime | None = None,
) -> list[Coupon]:
    """
    Mint exactly ``total_created`` coupons for a deal, once.

    - ``issued_at`` is claimed with a conditional update first, so a second
      (or concurrent) issue call fails with DealAlreadyIssuedError.
    - Each coupon snapshots title/value/expiry as they are after that update;
      the deal is frozen from then on.
    - Single commit: on any failure the whole batch, the ``issued_at`` marker
      and every stored QR artifact are rolled back.
    """
    now = now or utc_now()
    deal = await get_deal(db, deal_id=deal_id, venue_id=venue_id)
    if deal.is_issued:
        raise DealAlreadyIssuedError()

    total = int(deal.total_created or 0)
    if total < 1:
        raise ValidationError("total_created must be >= 1")
    if with_qr and not settings.QR_ENABLED:
        raise ValidationError("QR images are disabled")
    if with_qr and qr_storage is None:
        raise ValidationError("QR storage is not configured")

    await _warn_on_code_pressure(db, total)

    stored_refs: list[str] = []
    created: list[Coupon] = []

    try:
        res = await db.execute(
            update(Deal)
            .where(Deal.id == deal.id, Deal.issued_at.is_(None))
            .values(issued_at=now)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise DealAlreadyIssuedError()

        # re-read inside the transaction; these are the values being frozen
        await db.refresh(deal)

        reserved: set[str] = set()
        for _ in range(total):
            code = await codes.generate(db, reserved=reserved)

            qr_image = None
            if with_qr:
                ref = await anyio.to_thread.run_sync(_render_and_store, qr_storage, code, stored_refs)
                qr_image = QrImage(filename=ref, content_type="image/png", uploaded_at=now)
                db.add(qr_image)

            c = Coupon(
                code=code,
                deal_id=deal.id,
                venue_id=deal.venue_id,
                title=deal.title,
                value=deal.value,
                expiry=deal.expiry,
                member_id=None,
                claimed_at=None,
                points=settings.COUPON_POINTS,
                redeemed=False,
                redeemed_at=None,
                qr_image_id=None,
                created_at=now,
            )
            if qr_image is not None:
                c.qr_image = qr_image
            db.add(c)
            created.append(c)

            log_event(
                db,
                coupon_code=code,
                actor_id=int(venue_id),
                event_type="issued",
                meta={"deal_id": int(deal.id), "qr": bool(qr_image)},
                created_at=now,
            )

        await db.commit()

    except HivexError:
        await db.rollback()
        await anyio.to_thread.run_sync(_discard_artifacts, qr_storage, stored_refs)
        raise
    except IntegrityError as exc:
        # another batch committed one of our codes first
        await db.rollback()
        await anyio.to_thread.run_sync(_discard_artifacts, qr_storage, stored_refs)
        logger.warning("issuance lost a code race", extra={"deal_id": int(deal_id)})
        raise ConcurrencyConflictError("Coupon code collided with a concurrent issuance; retry") from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        await anyio.to_thread.run_sync(_discard_artifacts, qr_storage, stored_refs)
        logger.exception("issuance failed", extra={"deal_id": int(deal_id)})
        raise StorageError() from exc
    except Exception:
        await db.rollback()
        await anyio.to_thread.run_sync(_discard_artifacts, qr_storage, stored_refs)
        raise

    logger.info("deal issued", extra={"deal_id": int(deal.id), "count": len(created), "qr": with_qr})
    return created
