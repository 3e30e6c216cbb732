"""
Image ingestion service.

Holds the ordered chain of image stores selected once at startup and applies
the write policies shared by every request:

* an upload goes to the first store in the chain; a failing store hands the
  same bytes to the next one, once, with no retry loop;
* a replaced or deleted image is reclaimed only after the listing has been
  saved with its new reference;
* reclaiming never raises.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from backend.classifier import MAX_UPLOAD_BYTES, classify
from backend.config import REMOTE_STORE_ENV_VARS, Settings
from backend.errors import StoreTransientFailure, StoreUnavailable
from backend.references import (
    EmptyRef,
    PendingUpload,
    ReferenceKind,
    StoredImageReference,
)
from backend.storage import (
    ImageStore,
    InlineImageStore,
    InMemoryRemoteImageStore,
    LocalImageStore,
    S3ImageStore,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Ingested:
    reference: StoredImageReference
    # True when bytes were written by this call and belong to no listing yet.
    persisted: bool = False


@dataclass
class MediaService:
    stores: Sequence[ImageStore]
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    require_remote: bool = False
    missing_remote_vars: list[str] = field(default_factory=list)

    @property
    def remote_store(self) -> Optional[ImageStore]:
        return self.store_for_kind(ReferenceKind.REMOTE)

    def store_for_kind(self, kind: ReferenceKind) -> Optional[ImageStore]:
        for store in self.stores:
            if store.kind == kind:
                return store
        return None

    def ingest(
        self,
        upload: Optional[PendingUpload] = None,
        candidate: Optional[str] = None,
    ) -> Ingested:
        """
        Turn an incoming image value into a persisted reference.

        Validation errors propagate before anything is written.
        """
        classified = classify(upload, candidate, max_bytes=self.max_upload_bytes)
        if isinstance(classified, PendingUpload):
            return Ingested(self.persist(classified), persisted=True)
        return Ingested(classified)

    def persist(self, pending: PendingUpload) -> StoredImageReference:
        if self.require_remote and self.remote_store is None:
            raise StoreUnavailable(
                "Remote image store is not configured (missing: %s)"
                % (", ".join(self.missing_remote_vars) or "unknown")
            )
        if not self.stores:
            raise StoreTransientFailure("No image store is available")

        last_error: Optional[StoreTransientFailure] = None
        for store in self.stores:
            try:
                return store.put(pending.data, pending.mime_type)
            except StoreTransientFailure as exc:
                logger.warning(
                    "%s image store failed, trying next tier: %s",
                    store.kind.value,
                    exc,
                )
                last_error = exc
        raise StoreTransientFailure(
            f"All image stores failed; last error: {last_error}"
        )

    def reclaim(self, reference: Optional[StoredImageReference]) -> None:
        """Delete the bytes behind a superseded reference. Never raises."""
        if reference is None or isinstance(reference, EmptyRef):
            return
        for store in self.stores:
            if store.owns(reference):
                try:
                    store.delete(reference)
                except Exception:
                    logger.exception(
                        "Unexpected error reclaiming %s image", reference.kind.value
                    )
                return
        logger.info(
            "No active store owns %s image %s; leaving it in place",
            reference.kind.value,
            reference.to_storage()[:80],
        )

    def superseded(
        self,
        previous: Optional[StoredImageReference],
        current: StoredImageReference,
    ) -> Optional[StoredImageReference]:
        """The reference to reclaim after ``previous`` was replaced by ``current``."""
        if previous is None or previous.to_storage() == current.to_storage():
            return None
        return previous

    def describe(self) -> dict:
        return {
            "stores": [store.kind.value for store in self.stores],
            "remote_configured": self.remote_store is not None,
            "missing_remote_vars": list(self.missing_remote_vars),
        }


def build_remote_store(settings: Settings) -> Optional[ImageStore]:
    if settings.use_in_memory_backends:
        return InMemoryRemoteImageStore(key_prefix=settings.s3_key_prefix)
    if not settings.has_remote_store:
        return None
    return S3ImageStore(
        bucket=settings.s3_bucket.strip(),
        access_key_id=settings.aws_access_key_id.strip(),
        secret_access_key=settings.aws_secret_access_key.strip(),
        region=settings.s3_region or "",
        endpoint=settings.s3_endpoint or "",
        public_base_url=settings.s3_public_base_url or "",
        key_prefix=settings.s3_key_prefix,
        timeout_seconds=settings.remote_timeout_seconds,
    )


def build_store_chain(settings: Settings) -> list[ImageStore]:
    """
    Remote first when configured, then the local directory when it can be
    written, then inline payloads which always succeed.
    """
    chain: list[ImageStore] = []
    remote = build_remote_store(settings)
    if remote is not None:
        chain.append(remote)

    local = LocalImageStore(settings.uploads_dir)
    if local.is_writable():
        chain.append(local)
    else:
        logger.warning(
            "Upload directory %s is not writable; images will be stored inline",
            settings.uploads_dir,
        )
    chain.append(InlineImageStore())
    return chain


def build_media_service(settings: Settings) -> MediaService:
    missing = settings.missing_remote_store_vars()
    if settings.use_in_memory_backends:
        missing = []
    elif missing and len(missing) < len(REMOTE_STORE_ENV_VARS):
        logger.warning(
            "Remote image store disabled; missing environment variables: %s",
            ", ".join(missing),
        )
    service = MediaService(
        stores=build_store_chain(settings),
        max_upload_bytes=settings.max_upload_bytes,
        require_remote=settings.require_remote_store,
        missing_remote_vars=missing,
    )
    logger.info(
        "Image stores: %s", " -> ".join(store.kind.value for store in service.stores)
    )
    return service

