from __future__ import annotations

import logging
import uuid
from io import BytesIO
from pathlib import Path
from typing import Protocol

import qrcode

from hivex.core.config import settings
from hivex.services.exceptions import NotFoundError, StorageError

logger = logging.getLogger(__name__)


class QrStorage(Protocol):
    def store(self, payload: bytes) -> str: ...

    def fetch(self, ref: str) -> bytes: ...

    def delete(self, ref: str) -> None: ...


class FileQrStorage:
    """Keeps QR images as files under one directory; the ref is the file name."""

    def __init__(self, root: str | Path | None = None):
        self.root = Path(root or settings.QR_STORAGE_DIR)

    def _path(self, ref: str) -> Path:
        name = Path(ref).name
        if not name or name != ref:
            raise NotFoundError("QR image not found")
        return self.root / name

    def store(self, payload: bytes) -> str:
        ref = f"{uuid.uuid4().hex}.png"
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            (self.root / ref).write_bytes(payload)
        except OSError as exc:
            raise StorageError("Could not store QR image") from exc
        return ref

    def fetch(self, ref: str) -> bytes:
        path = self._path(ref)
        if not path.exists():
            raise NotFoundError("QR image not found")
        try:
            return path.read_bytes()
        except OSError as exc:
            raise StorageError("Could not read QR image") from exc

    def delete(self, ref: str) -> None:
        path = self._path(ref)
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.warning("QR image cleanup failed", extra={"ref": ref})


def render_qr_png(data: str) -> bytes:
    """Render ``data`` as a PNG QR code."""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_H,
        box_size=10,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def get_qr_storage() -> QrStorage:
    """FastAPI dependency; tests override it."""
    return FileQrStorage()
