"""
One-shot rewrite of listing images from one storage kind to another.

Typical runs move local ``/uploads`` files to the remote store before the
local disk goes away, or move inline ``data:`` payloads out of the database.
Listings are processed one at a time; a failing listing is counted and left
unchanged, never retried within the same run.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional, Sequence

from backend.classifier import parse_reference
from backend.config import PROJECT_ROOT, Settings
from backend.db import DbClient, ListingRecord
from backend.errors import StoreTransientFailure
from backend.references import (
    InlineRef,
    LocalRef,
    ReferenceKind,
    StoredImageReference,
    mime_for_filename,
)
from backend.storage import ImageStore

logger = logging.getLogger(__name__)


@dataclass
class MigrationReport:
    scanned: int = 0
    migrated: int = 0
    skipped: int = 0
    missing: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def candidate_directories(settings: Settings) -> list[Path]:
    """Where local files may live: the configured root, then the repo default."""
    dirs = [settings.uploads_dir, PROJECT_ROOT / "uploads"]
    unique: list[Path] = []
    for directory in dirs:
        if directory not in unique:
            unique.append(directory)
    return unique


def locate_local_file(
    reference: LocalRef, search_dirs: Sequence[Path]
) -> Optional[Path]:
    for directory in search_dirs:
        candidate = Path(directory) / reference.filename
        if candidate.is_file():
            return candidate
    return None


def _load_bytes(
    reference: StoredImageReference, search_dirs: Sequence[Path]
) -> Optional[tuple[bytes, str]]:
    if isinstance(reference, LocalRef):
        path = locate_local_file(reference, search_dirs)
        if path is None:
            return None
        mime_type = mime_for_filename(path.name) or "application/octet-stream"
        return path.read_bytes(), mime_type
    if isinstance(reference, InlineRef):
        try:
            return reference.decode(), reference.mime_type
        except ValueError:
            return None
    return None


def migrate_listing(
    db: DbClient,
    record: ListingRecord,
    *,
    source_kind: ReferenceKind,
    target: ImageStore,
    search_dirs: Sequence[Path],
    report: MigrationReport,
    dry_run: bool = False,
) -> None:
    report.scanned += 1
    reference = parse_reference(record.image, record.image_object_id)
    if reference is None or reference.kind != source_kind:
        report.skipped += 1
        return

    try:
        loaded = _load_bytes(reference, search_dirs)
    except OSError as exc:
        logger.error("[failed] Listing %s: cannot read image: %s", record.listing_id, exc)
        report.failed += 1
        return
    if loaded is None:
        logger.warning(
            "[missing] Listing %s: no bytes found for %r",
            record.listing_id,
            record.image[:80],
        )
        report.missing += 1
        return

    if dry_run:
        logger.info("[dry-run] Listing %s would be migrated", record.listing_id)
        report.migrated += 1
        return

    data, mime_type = loaded
    try:
        new_reference = target.put(data, mime_type)
    except StoreTransientFailure as exc:
        logger.error("[failed] Listing %s: %s", record.listing_id, exc)
        report.failed += 1
        return

    try:
        updated = db.set_listing_image(record.listing_id, new_reference)
    except Exception:
        logger.exception("[failed] Listing %s: saving new image", record.listing_id)
        target.delete(new_reference)
        report.failed += 1
        return
    if updated is None:
        logger.warning("[failed] Listing %s disappeared during migration", record.listing_id)
        target.delete(new_reference)
        report.failed += 1
        return

    report.migrated += 1
    logger.info(
        "[migrated] Listing %s -> %s", record.listing_id, new_reference.to_storage()[:120]
    )


def migrate_listing_images(
    db: DbClient,
    *,
    source_kind: ReferenceKind,
    target: ImageStore,
    search_dirs: Sequence[Path] = (),
    dry_run: bool = False,
    batch_size: int = 100,
) -> MigrationReport:
    if target.kind == source_kind:
        raise ValueError("Source and target storage kinds must differ")
    report = MigrationReport()
    for record in db.iter_listings(batch_size=batch_size):
        if not (record.image or "").strip():
            continue
        migrate_listing(
            db,
            record,
            source_kind=source_kind,
            target=target,
            search_dirs=search_dirs,
            report=report,
            dry_run=dry_run,
        )
    return report
