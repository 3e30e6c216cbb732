"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from backend.config import get_settings
from backend.db import DbClient, InMemoryDbClient, PostgresDbClient
from backend.media import MediaService, build_media_service
from backend.resolver import ImageResolver

_db_client: DbClient | None = None
_media_service: MediaService | None = None
_image_resolver: ImageResolver | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so listings persist across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_media_service() -> MediaService:
    """
    Return the media service; its store chain is chosen once per process.
    """
    global _media_service
    if _media_service:
        return _media_service

    _media_service = build_media_service(get_settings())
    return _media_service


def get_image_resolver() -> ImageResolver:
    global _image_resolver
    if _image_resolver:
        return _image_resolver

    _image_resolver = ImageResolver.from_settings(get_settings())
    return _image_resolver
