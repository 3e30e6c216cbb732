"""
Image stores: S3-compatible object storage, local filesystem, inline payloads,
and an in-memory stand-in for the remote store used in development and tests.

Every store persists raw bytes with ``put`` and reclaims them with ``delete``.
``delete`` is best effort: a missing object is not an error and store errors
are logged, never raised.
"""

from __future__ import annotations

import logging
import os
import random
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from backend.errors import DeleteFailure, StoreTransientFailure
from backend.references import (
    LOCAL_URL_PREFIX,
    InlineRef,
    LocalRef,
    ReferenceKind,
    RemoteRef,
    StoredImageReference,
    extension_for_mime,
)

logger = logging.getLogger(__name__)

_random = random.SystemRandom()


class ImageStore(Protocol):
    """Defines the operations the API needs from an image backend."""

    kind: ReferenceKind

    def put(self, data: bytes, mime_type: str) -> StoredImageReference:
        ...

    def delete(self, reference: StoredImageReference) -> None:
        ...

    def owns(self, reference: StoredImageReference) -> bool:
        ...


def generate_filename(mime_type: str) -> str:
    """``<ms timestamp>-<random>.<ext>``; unique without any locking."""
    millis = int(time.time() * 1000)
    suffix = _random.randint(0, 10**9)
    return f"{millis}-{suffix}{extension_for_mime(mime_type)}"


def _object_id(reference: StoredImageReference) -> Optional[str]:
    if isinstance(reference, RemoteRef):
        return reference.object_id
    return None


@dataclass
class InMemoryRemoteImageStore:
    """Test double for the remote store."""

    base_url: str = "https://example.test/storage"
    key_prefix: str = "listings"
    stored_objects: dict = None
    fail_puts: bool = False
    fail_deletes: bool = False

    kind = ReferenceKind.REMOTE

    def __post_init__(self):
        if self.stored_objects is None:
            self.stored_objects = {}

    def put(self, data: bytes, mime_type: str) -> StoredImageReference:
        if self.fail_puts:
            raise StoreTransientFailure("Remote upload failed")
        key = f"{self.key_prefix}/{generate_filename(mime_type)}"
        self.stored_objects[key] = data
        return RemoteRef(url=f"{self.base_url}/{key}", object_id=key)

    def get_bytes(self, key: str) -> bytes:
        stored = self.stored_objects.get(key)
        if stored is None:
            raise FileNotFoundError(key)
        return stored

    def delete(self, reference: StoredImageReference) -> None:
        key = _object_id(reference)
        if not key:
            return
        if self.fail_deletes:
            logger.warning("Remote delete failed for %s", key)
            return
        self.stored_objects.pop(key, None)

    def owns(self, reference: StoredImageReference) -> bool:
        return _object_id(reference) is not None


@dataclass
class S3ImageStore:
    """
    S3-compatible object store (AWS S3, Tencent COS, MinIO, R2).
    """

    bucket: str
    access_key_id: str
    secret_access_key: str
    region: str = ""
    endpoint: str = ""
    public_base_url: str = ""
    key_prefix: str = "listings"
    timeout_seconds: float = 10.0
    client: object = field(default=None, repr=False)

    kind = ReferenceKind.REMOTE

    def __post_init__(self):
        if self.client is not None:
            return
        # One attempt with bounded timeouts; falling back to the next store
        # is handled by the caller.
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
            connect_timeout=self.timeout_seconds,
            read_timeout=self.timeout_seconds,
            retries={"max_attempts": 1, "mode": "standard"},
        )
        self.client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def object_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        if self.endpoint:
            parsed = urlparse(self.endpoint)
            scheme = parsed.scheme or "https"
            host = parsed.netloc or parsed.path
            return f"{scheme}://{self.bucket}.{host}/{key}"
        region = self.region or "us-east-1"
        return f"https://{self.bucket}.s3.{region}.amazonaws.com/{key}"

    def put(self, data: bytes, mime_type: str) -> StoredImageReference:
        key = f"{self.key_prefix.strip('/')}/{generate_filename(mime_type)}"
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=mime_type,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StoreTransientFailure(f"Remote upload failed: {exc}") from exc
        return RemoteRef(url=self.object_url(key), object_id=key)

    def delete(self, reference: StoredImageReference) -> None:
        key = _object_id(reference)
        if not key:
            return
        try:
            self._remove(key)
        except DeleteFailure as exc:
            logger.warning("%s", exc)

    def _remove(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                return
            raise DeleteFailure(f"Remote delete failed for {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise DeleteFailure(f"Remote delete failed for {key}: {exc}") from exc

    def owns(self, reference: StoredImageReference) -> bool:
        return _object_id(reference) is not None


@dataclass
class LocalImageStore:
    """Files under a managed root, served at ``/uploads/<name>``."""

    root: Path

    kind = ReferenceKind.LOCAL

    def __post_init__(self):
        self.root = Path(self.root)

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def is_writable(self) -> bool:
        try:
            self.ensure_root()
        except OSError:
            return False
        return os.access(self.root, os.W_OK)

    def path_for(self, reference: StoredImageReference) -> Optional[Path]:
        """Absolute path for a local reference, or None if it escapes the root."""
        if not isinstance(reference, LocalRef):
            return None
        root = self.root.resolve()
        candidate = (root / reference.filename).resolve()
        try:
            candidate.relative_to(root)
        except ValueError:
            return None
        return candidate

    def put(self, data: bytes, mime_type: str) -> StoredImageReference:
        try:
            self.ensure_root()
            filename = generate_filename(mime_type)
            # "xb" never replaces a file another writer created first.
            with open(self.root / filename, "xb") as handle:
                handle.write(data)
        except OSError as exc:
            raise StoreTransientFailure(f"Local write failed: {exc}") from exc
        return LocalRef(LOCAL_URL_PREFIX + filename)

    def delete(self, reference: StoredImageReference) -> None:
        path = self.path_for(reference)
        if path is None:
            return
        try:
            self._remove(path)
        except DeleteFailure as exc:
            logger.warning("%s", exc)

    def _remove(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise DeleteFailure(f"Local delete failed for {path}: {exc}") from exc

    def owns(self, reference: StoredImageReference) -> bool:
        return isinstance(reference, LocalRef)


class InlineImageStore:
    """Keeps the image inside the reference itself. Always succeeds."""

    kind = ReferenceKind.INLINE

    def put(self, data: bytes, mime_type: str) -> StoredImageReference:
        return InlineRef.from_bytes(data, mime_type)

    def delete(self, reference: StoredImageReference) -> None:
        return None

    def owns(self, reference: StoredImageReference) -> bool:
        return isinstance(reference, InlineRef)
