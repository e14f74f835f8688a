"""
Blob store for delivery files.

Interface (what the delivery workflow relies on):
    put(data, content_type, key_prefix, filename) -> reference
    url_for(reference) -> url
    delete(reference)

``LocalBlobStore`` keeps files under UPLOAD_DIR and hands out short-lived
download URLs: ``/api/v1/files/<token>`` where the token is a signed JWT
naming the reference.  The workflow never opens the files itself.
"""

import logging
import mimetypes
import secrets
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Protocol

import jwt
from flask import current_app

from cutroom.core.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

EXTENSION_KEY = "cutroom.blob_store"
DOWNLOAD_TOKEN_TYPE = "download"
ALGORITHM = "HS256"

ALLOWED_CONTENT_TYPES = frozenset({
    "video/mp4", "video/quicktime", "video/x-msvideo", "video/webm", "video/x-matroska",
    "image/jpeg", "image/png", "image/gif", "image/webp", "image/svg+xml",
    "audio/mpeg", "audio/wav", "audio/ogg", "audio/aac",
    "application/pdf",
    "application/zip", "application/x-zip-compressed",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
})


class BlobStore(Protocol):
    def put(self, data: bytes, content_type: str, key_prefix: str, filename: str = "") -> str: ...

    def url_for(self, reference: str) -> str: ...

    def delete(self, reference: str) -> None: ...


def check_upload(data: bytes, content_type: str | None, max_bytes: int):
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise ValidationError(
            f"File type {content_type or 'unknown'} not allowed", details={"file": "content type"},
        )
    if not data:
        raise ValidationError("Uploaded file is empty", details={"file": "empty"})
    if len(data) > max_bytes:
        raise ValidationError(
            f"File exceeds the {max_bytes // (1024 * 1024)} MB limit", details={"file": "too large"},
        )


class LocalBlobStore:
    """Disk-backed store for development and single-host deployments."""

    def __init__(self, root, secret, url_ttl=3600):
        self.root = Path(root).resolve()
        self.secret = secret
        self.url_ttl = url_ttl

    def _path(self, reference: str) -> Path:
        path = (self.root / reference).resolve()
        if self.root not in path.parents:
            raise ValidationError("Invalid file reference")
        return path

    def put(self, data: bytes, content_type: str, key_prefix: str, filename: str = "") -> str:
        suffix = Path(filename).suffix or (mimetypes.guess_extension(content_type or "") or "")
        reference = f"{key_prefix.strip('/')}/{int(time.time() * 1000)}-{secrets.token_hex(8)}{suffix}"
        path = self._path(reference)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.info("Stored blob %s (%d bytes)", reference, len(data))
        return reference

    def url_for(self, reference: str) -> str:
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {
                "ref": reference,
                "type": DOWNLOAD_TOKEN_TYPE,
                "iat": now,
                "exp": now + timedelta(seconds=self.url_ttl),
            },
            self.secret,
            algorithm=ALGORITHM,
        )
        return f"/api/v1/files/{token}"

    def resolve_token(self, token: str) -> Path:
        """Turn a download token back into a file path (NotFoundError if invalid)."""
        try:
            payload = jwt.decode(token, self.secret, algorithms=[ALGORITHM])
        except jwt.InvalidTokenError:
            raise NotFoundError("File") from None
        if payload.get("type") != DOWNLOAD_TOKEN_TYPE or not payload.get("ref"):
            raise NotFoundError("File")
        path = self._path(payload["ref"])
        if not path.is_file():
            raise NotFoundError("File", payload["ref"])
        return path

    def delete(self, reference: str) -> None:
        path = self._path(reference)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.debug("Blob %s already gone", reference)


def init_blob_store(app):
    root = app.config.get("UPLOAD_DIR")
    store = LocalBlobStore(
        root,
        app.config.get("JWT_SECRET_KEY") or app.config["SECRET_KEY"],
        url_ttl=app.config.get("DOWNLOAD_URL_EXPIRES", 3600),
    )
    Path(root).mkdir(parents=True, exist_ok=True)
    app.extensions[EXTENSION_KEY] = store
    return store


def get_blob_store() -> BlobStore:
    return current_app.extensions[EXTENSION_KEY]
