"""
Classification of incoming image values and parsing of stored references.
"""

from __future__ import annotations

import base64
import binascii
import re
from typing import Optional, Union
from urllib.parse import urlparse

from backend.errors import UnsupportedEncoding, UnsupportedMediaType
from backend.references import (
    DEFAULT_IMAGE_URL,
    EMPTY,
    EXTENSIONS_BY_SUBTYPE,
    INLINE_URL_PREFIX,
    LEGACY_PLACEHOLDER_PREFIX,
    LOCAL_URL_PREFIX,
    InlineRef,
    LocalRef,
    PendingUpload,
    RemoteRef,
    StoredImageReference,
)

MAX_UPLOAD_BYTES = 5 * 1024 * 1024

_DATA_URL_RE = re.compile(
    r"^data:image/(?P<subtype>[a-zA-Z0-9.+-]+);base64,(?P<payload>.+)$", re.DOTALL
)
_BARE_FILENAME_RE = re.compile(
    r"^[^/\\]+\.(jpg|jpeg|png|webp|gif|bmp|svg|avif)$", re.IGNORECASE
)


def decode_inline(value: str) -> PendingUpload:
    """
    Decode a ``data:image/<subtype>;base64,<payload>`` string.

    Raises ``UnsupportedEncoding`` for unknown subtypes or bad base64 so the
    caller can keep whatever reference it had before.
    """
    match = _DATA_URL_RE.match(value.strip())
    if not match:
        raise UnsupportedEncoding("Inline image must be a base64 data:image URL")
    subtype = match.group("subtype").lower()
    if subtype not in EXTENSIONS_BY_SUBTYPE:
        raise UnsupportedEncoding(f"Unsupported inline image type: image/{subtype}")
    try:
        data = base64.b64decode(match.group("payload"), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise UnsupportedEncoding(
            f"Inline image payload is not valid base64: {exc}"
        ) from exc
    if not data:
        raise UnsupportedEncoding("Inline image payload is empty")
    return PendingUpload(data=data, mime_type=f"image/{subtype}")


def validate_upload(
    data: bytes,
    mime_type: Optional[str],
    filename: Optional[str] = None,
    *,
    max_bytes: int = MAX_UPLOAD_BYTES,
) -> PendingUpload:
    # Parameters such as "; name=x" are dropped so every tier stores the
    # same bare MIME type.
    mime_type = (mime_type or "").split(";", 1)[0].strip().lower()
    if not mime_type.startswith("image/"):
        raise UnsupportedMediaType("Only image files are allowed")
    if mime_type[len("image/"):] not in EXTENSIONS_BY_SUBTYPE:
        raise UnsupportedMediaType(f"Unsupported image type: {mime_type}")
    if len(data) > max_bytes:
        raise UnsupportedMediaType(f"Image exceeds the {max_bytes} byte limit")
    if not data:
        raise UnsupportedMediaType("Image upload is empty")
    return PendingUpload(data=data, mime_type=mime_type, filename=filename)


def _is_placeholder(value: str) -> bool:
    return value == DEFAULT_IMAGE_URL or value.startswith(LEGACY_PLACEHOLDER_PREFIX)


def _local_path(value: str) -> Optional[str]:
    if value.startswith(LOCAL_URL_PREFIX):
        name = value[len(LOCAL_URL_PREFIX):]
    elif value.startswith(LOCAL_URL_PREFIX[1:]):
        name = value[len(LOCAL_URL_PREFIX) - 1:]
    else:
        return None
    name = name.split("?", 1)[0].split("#", 1)[0]
    if not name or "/" in name or "\\" in name or name in (".", ".."):
        return None
    return LOCAL_URL_PREFIX + name


def _from_url(value: str, object_id: Optional[str]) -> Optional[StoredImageReference]:
    parsed = urlparse(value)
    if not parsed.netloc:
        return None
    if object_id is None:
        # Earlier deployments stored absolute local URLs like
        # http://localhost:5000/uploads/<name>.
        legacy = _local_path(parsed.path)
        if legacy:
            return LocalRef(legacy)
    return RemoteRef(value, object_id)


def parse_reference(
    value: Optional[str], object_id: Optional[str] = None
) -> Optional[StoredImageReference]:
    """
    Parse a persisted image string into a reference.

    Returns ``None`` for strings that match no known format; callers render
    those as the default placeholder.
    """
    value = (value or "").strip()
    if not value or _is_placeholder(value):
        return EMPTY
    if value.startswith(INLINE_URL_PREFIX):
        match = _DATA_URL_RE.match(value)
        if not match or match.group("subtype").lower() not in EXTENSIONS_BY_SUBTYPE:
            return None
        return InlineRef(f"image/{match.group('subtype').lower()}", match.group("payload"))
    if value.startswith(("https://", "http://")):
        return _from_url(value, object_id or None)
    local = _local_path(value)
    if local:
        return LocalRef(local)
    if _BARE_FILENAME_RE.match(value):
        return LocalRef(LOCAL_URL_PREFIX + value)
    return None


def classify(
    upload: Optional[PendingUpload] = None,
    candidate: Optional[str] = None,
    *,
    max_bytes: int = MAX_UPLOAD_BYTES,
) -> Union[PendingUpload, StoredImageReference]:
    """
    Decide what an incoming image value is.

    An upload (already read into a ``PendingUpload``) wins over a string.
    Inline ``data:`` strings are decoded into a ``PendingUpload`` so they are
    persisted by the active store like any upload. Strings that are not a
    URL, inline payload or uploads path are ignored rather than stored.
    """
    if upload is not None:
        return validate_upload(
            upload.data, upload.mime_type, upload.filename, max_bytes=max_bytes
        )

    value = (candidate or "").strip()
    if not value or _is_placeholder(value):
        return EMPTY
    if value.startswith(INLINE_URL_PREFIX):
        pending = decode_inline(value)
        return validate_upload(pending.data, pending.mime_type, max_bytes=max_bytes)
    if value.startswith(("https://", "http://")):
        return _from_url(value, None) or EMPTY
    local = _local_path(value)
    if local:
        return LocalRef(local)
    return EMPTY
