"""
Migrate listing images between storage kinds.

Examples:

    python scripts/migrate_listing_images.py --source local --target remote
    python scripts/migrate_listing_images.py --source inline --target local --dry-run

Listings whose image is already of another kind are reported as skipped, so
running the script twice is safe.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.config import get_settings
from backend.db import PostgresDbClient
from backend.media import build_remote_store
from backend.migration import candidate_directories, migrate_listing_images
from backend.references import ReferenceKind
from backend.storage import LocalImageStore

logger = logging.getLogger(__name__)


def build_target(kind: str, settings):
    if kind == ReferenceKind.REMOTE.value:
        store = build_remote_store(settings)
        if store is None:
            logger.error(
                "Missing remote storage env vars: %s",
                ", ".join(settings.missing_remote_store_vars()),
            )
        return store
    if kind == ReferenceKind.LOCAL.value:
        store = LocalImageStore(settings.uploads_dir)
        if not store.is_writable():
            logger.error("Upload directory %s is not writable", settings.uploads_dir)
            return None
        return store
    return None


def open_database(settings):
    if not settings.database_url:
        logger.error("DATABASE_URL is not set; nothing to migrate")
        return None
    return PostgresDbClient(settings.database_url)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Migrate listing images")
    parser.add_argument(
        "--source",
        choices=[ReferenceKind.LOCAL.value, ReferenceKind.INLINE.value],
        default=ReferenceKind.LOCAL.value,
        help="Storage kind to migrate away from",
    )
    parser.add_argument(
        "--target",
        choices=[ReferenceKind.REMOTE.value, ReferenceKind.LOCAL.value],
        default=ReferenceKind.REMOTE.value,
        help="Storage kind to migrate to",
    )
    parser.add_argument(
        "--search-dir",
        action="append",
        default=[],
        help="Extra directory to look for local files in (repeatable)",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=100,
        help="Rows fetched per database round trip",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report how many listings would be migrated without writing",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")
    if args.source == args.target:
        logger.error("Source and target must differ")
        return 1

    settings = get_settings()
    db = open_database(settings)
    if db is None:
        return 1
    target = build_target(args.target, settings)
    if target is None:
        return 1

    search_dirs = candidate_directories(settings) + [Path(d) for d in args.search_dir]
    report = migrate_listing_images(
        db,
        source_kind=ReferenceKind(args.source),
        target=target,
        search_dirs=search_dirs,
        dry_run=args.dry_run,
        batch_size=args.batch_size,
    )
    logger.info("Migration complete")
    logger.info("%s", json.dumps(report.as_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
