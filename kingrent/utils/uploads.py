# kingrent/utils/uploads.py
from __future__ import annotations

from dataclasses import dataclass

from werkzeug.utils import secure_filename

# Detected from content, never from the client-supplied filename or header.
MIME_PDF = "application/pdf"
MIME_JPEG = "image/jpeg"
MIME_PNG = "image/png"
MIME_WEBP = "image/webp"

ALLOWED_MIME_TYPES = (MIME_JPEG, MIME_PNG, MIME_WEBP, MIME_PDF)

EXTENSIONS = {
    MIME_PDF: "pdf",
    MIME_JPEG: "jpg",
    MIME_PNG: "png",
    MIME_WEBP: "webp",
}

DEFAULT_MAX_BYTES = 10 * 1024 * 1024


class UploadRejected(ValueError):
    """Raised for files we refuse to store. status is the HTTP code to answer with."""

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.status = status


@dataclass(frozen=True)
class ValidatedUpload:
    data: bytes
    mime_type: str
    size: int
    safe_name: str


def detect_mime_type(data: bytes) -> str | None:
    head = data[:12]
    if head.startswith(b"%PDF"):
        return MIME_PDF
    if head.startswith(b"\xff\xd8\xff"):
        return MIME_JPEG
    if head.startswith(b"\x89PNG"):
        return MIME_PNG
    if len(head) >= 12 and head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return MIME_WEBP
    return None


def safe_filename(name: str | None, mime_type: str | None = None) -> str:
    base = (name or "").strip().replace("\\", "/").split("/")[-1]
    s = secure_filename(base)[:120] or "file"
    ext = EXTENSIONS.get(mime_type or "")
    if ext and not s.lower().endswith("." + ext):
        s = f"{s}.{ext}"
    return s


def validate_upload(data: bytes, filename: str | None, max_bytes: int = DEFAULT_MAX_BYTES) -> ValidatedUpload:
    if not data:
        raise UploadRejected("File is empty")

    size = len(data)
    if size > max_bytes:
        raise UploadRejected(
            f"File too large: {size / (1024 * 1024):.2f}MB exceeds {max_bytes // (1024 * 1024)}MB limit",
            status=413,
        )

    mime = detect_mime_type(data)
    if mime not in ALLOWED_MIME_TYPES:
        raise UploadRejected("Invalid file type. Allowed: JPEG, PNG, WebP, PDF")

    return ValidatedUpload(data=data, mime_type=mime, size=size, safe_name=safe_filename(filename, mime))
