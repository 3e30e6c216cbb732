"""
Rendering stored image references as client-facing URLs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from backend.classifier import parse_reference
from backend.config import Settings
from backend.references import (
    DEFAULT_IMAGE_URL,
    InlineRef,
    LocalRef,
    RemoteRef,
    StoredImageReference,
)


@dataclass(frozen=True)
class RequestContext:
    """The parts of an inbound request that identify the public origin."""

    host: Optional[str] = None
    scheme: Optional[str] = None
    forwarded_host: Optional[str] = None
    forwarded_proto: Optional[str] = None

    @classmethod
    def from_headers(cls, headers, scheme: Optional[str] = None) -> "RequestContext":
        return cls(
            host=headers.get("host"),
            scheme=scheme,
            forwarded_host=headers.get("x-forwarded-host"),
            forwarded_proto=headers.get("x-forwarded-proto"),
        )

    def base_url(self) -> Optional[str]:
        # Proxies may append hops: "a.example.com, b.internal".
        host = _first_value(self.forwarded_host) or _first_value(self.host)
        if not host:
            return None
        proto = _first_value(self.forwarded_proto) or self.scheme or "http"
        return f"{proto}://{host}"


def _first_value(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    first = value.split(",", 1)[0].strip()
    return first or None


@dataclass
class ImageResolver:
    public_base_url: Optional[str] = None
    default_image_url: str = DEFAULT_IMAGE_URL
    is_production: bool = False
    dev_base_url: str = "http://localhost:8000"

    @classmethod
    def from_settings(cls, settings: Settings) -> "ImageResolver":
        return cls(
            public_base_url=(settings.public_base_url or "").strip() or None,
            default_image_url=settings.default_image_url or DEFAULT_IMAGE_URL,
            is_production=settings.is_production,
            dev_base_url=f"http://localhost:{settings.port}",
        )

    def local_base_url(self, context: Optional[RequestContext] = None) -> Optional[str]:
        """
        Origin that serves ``/uploads``: configuration, then the request, then
        the development default. None in production when nothing is known.
        """
        if self.public_base_url:
            return self.public_base_url.rstrip("/")
        if context is not None:
            inferred = context.base_url()
            if inferred:
                return inferred.rstrip("/")
        if self.is_production:
            return None
        return self.dev_base_url.rstrip("/")

    def resolve(
        self,
        reference: Optional[StoredImageReference],
        context: Optional[RequestContext] = None,
    ) -> str:
        if isinstance(reference, (RemoteRef, InlineRef)):
            return reference.to_storage() or self.default_image_url
        if isinstance(reference, LocalRef):
            base_url = self.local_base_url(context)
            if base_url is None:
                return self.default_image_url
            return f"{base_url}{reference.relative_path}"
        return self.default_image_url

    def resolve_value(
        self,
        value: Optional[str],
        object_id: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> str:
        return self.resolve(parse_reference(value, object_id), context)
