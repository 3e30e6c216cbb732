"""
Pydantic schemas for the listings API.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel


class ListingResponse(BaseModel):
    listing_id: str
    title: str
    description: Optional[str] = None
    city: str
    price_per_night: float
    owner_id: Optional[str] = None
    image: str
    image_kind: str
    created_at: float
    updated_at: float


class ListListingsResponse(BaseModel):
    listings: list[ListingResponse]


class DeleteListingResponse(BaseModel):
    status: Literal["deleted"]
    listing_id: str


class HealthResponse(BaseModel):
    status: Literal["ok"]
    stores: list[str]
    remote_configured: bool
    missing_remote_vars: list[str]
