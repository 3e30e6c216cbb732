"""
Error taxonomy for image ingestion and storage.

Each error carries the HTTP status the API responds with; the app installs a
single exception handler for ``MediaError``.
"""

from __future__ import annotations


class MediaError(Exception):
    """Base class for image ingestion failures."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnsupportedMediaType(MediaError):
    """Upload is not an image or exceeds the size limit."""

    status_code = 415


class UnsupportedEncoding(MediaError):
    """Inline ``data:`` payload is malformed or of an unknown subtype."""

    status_code = 400


class StoreUnavailable(MediaError):
    """The remote store is required by policy but is not configured."""

    status_code = 503


class StoreTransientFailure(MediaError):
    """A store could not persist bytes (network or disk error)."""

    status_code = 502


class DeleteFailure(MediaError):
    """Raised inside a store when reclaiming bytes fails. Never surfaces."""
