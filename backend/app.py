"""
FastAPI application entry point for the listings backend.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from backend.config import Settings, get_settings
from backend.errors import MediaError
from backend.references import LOCAL_URL_PREFIX
from backend.routes import router

logger = logging.getLogger(__name__)


class UploadsStaticFiles(StaticFiles):
    """Read-only view of the uploads directory that is never cached."""

    async def get_response(self, path, scope):
        response = await super().get_response(path, scope)
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
        response.headers["Pragma"] = "no-cache"
        response.headers["Expires"] = "0"
        response.headers["Cross-Origin-Resource-Policy"] = "cross-origin"
        return response


async def media_error_handler(request: Request, exc: MediaError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="Listings Backend (FastAPI)", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(MediaError, media_error_handler)
    app.include_router(router, prefix=settings.api_prefix)

    uploads_dir = settings.uploads_dir
    try:
        uploads_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning("Cannot create upload directory %s: %s", uploads_dir, exc)
    app.mount(
        LOCAL_URL_PREFIX.rstrip("/"),
        UploadsStaticFiles(directory=str(uploads_dir), check_dir=False),
        name="uploads",
    )
    return app


app = create_app()
