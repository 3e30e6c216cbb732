"""
Stored image references.

A listing's image is persisted as one string column (plus the remote object
id for remote objects). In code it is always one of the variants below;
``backend.classifier`` is the only place that turns strings back into them.
"""

from __future__ import annotations

import base64
import enum
from dataclasses import dataclass
from typing import Optional, Union

LOCAL_URL_PREFIX = "/uploads/"
INLINE_URL_PREFIX = "data:image/"

# MIME subtype -> file extension for every image format we accept inline.
EXTENSIONS_BY_SUBTYPE = {
    "jpeg": ".jpg",
    "jpg": ".jpg",
    "png": ".png",
    "webp": ".webp",
    "gif": ".gif",
    "bmp": ".bmp",
    "svg+xml": ".svg",
    "avif": ".avif",
}

MIME_TYPES_BY_EXTENSION = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".svg": "image/svg+xml",
    ".avif": "image/avif",
}


class ReferenceKind(str, enum.Enum):
    REMOTE = "remote"
    LOCAL = "local"
    INLINE = "inline"
    EMPTY = "empty"


@dataclass(frozen=True)
class RemoteRef:
    url: str
    object_id: Optional[str] = None

    kind = ReferenceKind.REMOTE

    def to_storage(self) -> str:
        return self.url


@dataclass(frozen=True)
class LocalRef:
    relative_path: str

    kind = ReferenceKind.LOCAL

    @property
    def filename(self) -> str:
        return self.relative_path.rsplit("/", 1)[-1]

    def to_storage(self) -> str:
        return self.relative_path


@dataclass(frozen=True)
class InlineRef:
    mime_type: str
    base64_payload: str

    kind = ReferenceKind.INLINE

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str) -> "InlineRef":
        return cls(mime_type, base64.b64encode(data).decode("ascii"))

    def to_storage(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64_payload}"

    def decode(self) -> bytes:
        return base64.b64decode(self.base64_payload, validate=True)


@dataclass(frozen=True)
class EmptyRef:
    kind = ReferenceKind.EMPTY

    def to_storage(self) -> str:
        return ""


StoredImageReference = Union[RemoteRef, LocalRef, InlineRef, EmptyRef]

EMPTY = EmptyRef()


@dataclass(frozen=True)
class PendingUpload:
    """Validated raw bytes waiting to be handed to a store."""

    data: bytes
    mime_type: str
    filename: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


def storage_fields(reference: StoredImageReference) -> tuple[str, Optional[str]]:
    """Return the ``(image, image_object_id)`` column values for a reference."""
    object_id = reference.object_id if isinstance(reference, RemoteRef) else None
    return reference.to_storage(), object_id


def extension_for_mime(mime_type: str) -> str:
    subtype = mime_type.split("/", 1)[-1].split(";", 1)[0].strip().lower()
    return EXTENSIONS_BY_SUBTYPE.get(subtype, "")


def mime_for_filename(filename: str) -> Optional[str]:
    _, dot, ext = filename.rpartition(".")
    if not dot:
        return None
    return MIME_TYPES_BY_EXTENSION.get(f".{ext.lower()}")


_PLACEHOLDER_SVG = (
    "<svg xmlns='http://www.w3.org/2000/svg' width='400' height='250' "
    "viewBox='0 0 400 250'><rect width='400' height='250' fill='#e5e7eb'/>"
    "<text x='200' y='125' font-family='Arial, sans-serif' font-size='20' "
    "fill='#6b7280' text-anchor='middle' dominant-baseline='middle'>No Image</text>"
    "</svg>"
)

DEFAULT_IMAGE_URL = "data:image/svg+xml;base64," + base64.b64encode(
    _PLACEHOLDER_SVG.encode("utf-8")
).decode("ascii")

# Older rows stored a URL-encoded SVG placeholder instead of leaving the field empty.
LEGACY_PLACEHOLDER_PREFIX = "data:image/svg+xml;utf8,"
