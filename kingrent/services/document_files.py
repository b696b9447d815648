# kingrent/services/document_files.py
from __future__ import annotations

import hashlib
import hmac
import os
import time
from dataclasses import dataclass
from urllib.parse import urlencode

from flask import current_app, url_for

from kingrent.models import utcnow_naive
from kingrent.utils.uploads import ValidatedUpload

BUCKETS = ("invoices", "fines", "contracts", "payment-proofs", "client-documents")


class StorageKeyError(ValueError):
    pass


# =========================================================
# Types
# =========================================================
@dataclass(frozen=True)
class StoredFile:
    storage_key: str
    sha256: str
    mime_type: str
    size: int
    file_name: str

    def as_dict(self) -> dict:
        return {
            "storage_key": self.storage_key,
            "sha256": self.sha256,
            "mime_type": self.mime_type,
            "size": self.size,
            "file_name": self.file_name,
        }


# =========================================================
# Storage helpers
# =========================================================
def _storage_dir() -> str:
    """
    Local storage by default.
    Priority:
      1) Flask config / env: DOCUMENT_STORAGE_DIR
      2) instance_path/uploads
    """
    base = current_app.config.get("DOCUMENT_STORAGE_DIR") or os.getenv("DOCUMENT_STORAGE_DIR")
    if not base:
        base = os.path.join(current_app.instance_path, "uploads")

    os.makedirs(base, exist_ok=True)
    return base


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _abs_path(storage_key: str) -> str:
    base = os.path.realpath(_storage_dir())
    path = os.path.realpath(os.path.join(base, storage_key))
    if os.path.commonpath([base, path]) != base:
        raise StorageKeyError("Storage key escapes the storage directory")
    return path


def make_storage_key(bucket: str, owner_id, file_name: str) -> str:
    """
    Example:
      invoices/<supplier_invoice_id>/20260221T010203Z_invoice.pdf
    """
    if bucket not in BUCKETS:
        raise StorageKeyError(f"Unknown bucket: {bucket}")
    ts = utcnow_naive().strftime("%Y%m%dT%H%M%S%fZ")
    owner = str(owner_id) if owner_id else "unassigned"
    return f"{bucket}/{owner}/{ts}_{file_name}"


# =========================================================
# Store / load / delete
# =========================================================
def store_upload(bucket: str, owner_id, upload: ValidatedUpload) -> StoredFile:
    key = make_storage_key(bucket, owner_id, upload.safe_name)
    abs_path = _abs_path(key)
    os.makedirs(os.path.dirname(abs_path), exist_ok=True)

    with open(abs_path, "wb") as f:
        f.write(upload.data)

    return StoredFile(
        storage_key=key,
        sha256=sha256_hex(upload.data),
        mime_type=upload.mime_type,
        size=upload.size,
        file_name=upload.safe_name,
    )


def load_file_bytes(storage_key: str) -> bytes:
    with open(_abs_path(storage_key), "rb") as f:
        return f.read()


def delete_file(storage_key: str) -> bool:
    try:
        os.remove(_abs_path(storage_key))
        return True
    except FileNotFoundError:
        current_app.logger.warning("Stored file already missing: %s", storage_key)
        return False


# =========================================================
# Signed URLs
# =========================================================
def _signing_key() -> bytes:
    secret = current_app.config.get("FILE_SIGNING_SECRET") or current_app.config["SECRET_KEY"]
    return secret.encode("utf-8")


def sign(storage_key: str, expires: int) -> str:
    msg = f"{storage_key}:{expires}".encode("utf-8")
    return hmac.new(_signing_key(), msg, hashlib.sha256).hexdigest()


def verify_signature(storage_key: str, expires, signature: str, now: float | None = None) -> bool:
    try:
        exp = int(expires)
    except (TypeError, ValueError):
        return False
    if exp < int(now if now is not None else time.time()):
        return False
    return hmac.compare_digest(sign(storage_key, exp), signature or "")


def signed_url(storage_key: str, expires_in: int | None = None) -> str:
    ttl = expires_in or current_app.config.get("SIGNED_URL_TTL_SECONDS", 3600)
    expires = int(time.time()) + int(ttl)
    base = url_for("public.download_file", storage_key=storage_key)
    return f"{base}?{urlencode({'expires': expires, 'signature': sign(storage_key, expires)})}"
