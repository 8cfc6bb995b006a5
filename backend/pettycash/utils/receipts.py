"""Receipt upload validation and storage.

Receipts are JPEG, PNG or GIF images or PDF documents. Uploads are checked
by content rather than trusting the client: PDFs must start with the
`%PDF` marker and images must pass a Pillow `verify()`. Accepted files are
written to the configured upload directory under a timestamped, randomised
name and never overwrite an existing file.
"""

from __future__ import annotations

import io
import re
import time
import uuid
from pathlib import Path

from PIL import Image

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/gif", "application/pdf"}
ALLOWED_IMAGE_FORMATS = {"JPEG", "PNG", "GIF"}
CONTENT_TYPES_BY_SUFFIX = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".pdf": "application/pdf",
}
URL_PREFIX = "/uploads/"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class ReceiptRejected(ValueError):
    """The upload is not an acceptable receipt. `status_code` suggests the HTTP code."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


def validate_filename(filename: str | None) -> str:
    if not filename or len(filename) > 200:
        raise ReceiptRejected("invalid filename")
    if "/" in filename or "\\" in filename:
        raise ReceiptRejected("invalid filename path")
    return filename


def sniff_kind(payload: bytes, content_type: str | None) -> str:
    """Return `pdf` or `image`, or raise `ReceiptRejected` (415)."""
    if content_type and content_type not in ALLOWED_CONTENT_TYPES and content_type != "application/octet-stream":
        raise ReceiptRejected("invalid file type; only JPEG, PNG, GIF and PDF files are allowed", 415)
    if payload[:4] == b"%PDF":
        return "pdf"
    try:
        img = Image.open(io.BytesIO(payload))
        fmt = img.format
        img.verify()
    except Exception:
        raise ReceiptRejected("unsupported file content; expected image or PDF", 415)
    if fmt not in ALLOWED_IMAGE_FORMATS:
        raise ReceiptRejected(f"unsupported image format: {fmt}", 415)
    return "image"


def safe_name(filename: str) -> str:
    """Reduce `filename` to a conservative character set, keeping the suffix."""
    name = _UNSAFE_CHARS.sub("_", Path(filename).name).strip("._")
    return name or "receipt"


def store_receipt(payload: bytes, filename: str, content_type: str | None, upload_dir: Path,
                  max_bytes: int) -> str:
    """Validate and persist an uploaded receipt, returning its public URL."""
    validate_filename(filename)
    if not payload:
        raise ReceiptRejected("empty file")
    if len(payload) > max_bytes:
        raise ReceiptRejected("file too large", 413)
    sniff_kind(payload, content_type)
    upload_dir.mkdir(parents=True, exist_ok=True)
    stored = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{safe_name(filename)}"
    with open(upload_dir / stored, "xb") as fh:
        fh.write(payload)
    return URL_PREFIX + stored


def resolve_stored(upload_dir: Path, name: str) -> Path | None:
    """Return the path of a stored receipt, or None if `name` escapes the directory or is missing."""
    root = upload_dir.resolve()
    candidate = (root / name).resolve()
    if candidate.parent != root or not candidate.is_file():
        return None
    return candidate


def media_type_for(path: Path) -> str:
    return CONTENT_TYPES_BY_SUFFIX.get(path.suffix.lower(), "application/octet-stream")
