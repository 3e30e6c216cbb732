"""
HTTP routes for the listings API.

Listing CRUD here is thin plumbing around the media service: writes ingest
the incoming image, save the listing, and only then reclaim the image the
listing no longer uses.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    Form,
    HTTPException,
    Query,
    Request,
)
from fastapi.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from backend.db import DbClient, ListingRecord
from backend.dependencies import (
    get_db_client,
    get_image_resolver,
    get_media_service,
)
from backend.media import Ingested, MediaService
from backend.references import EMPTY, EmptyRef, PendingUpload, StoredImageReference
from backend.resolver import ImageResolver, RequestContext
from backend.schemas import (
    DeleteListingResponse,
    HealthResponse,
    ListingResponse,
    ListListingsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

IMAGE_FIELD = "image"


def _request_context(request: Request) -> RequestContext:
    return RequestContext.from_headers(request.headers, scheme=request.url.scheme)


def _to_response(
    record: ListingRecord, resolver: ImageResolver, context: RequestContext
) -> ListingResponse:
    reference = record.image_ref
    return ListingResponse(
        listing_id=record.listing_id,
        title=record.title,
        description=record.description,
        city=record.city,
        price_per_night=record.price_per_night,
        owner_id=record.owner_id,
        image=resolver.resolve(reference, context),
        image_kind=reference.kind.value if reference is not None else "unknown",
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


async def _read_image_field(
    request: Request, max_bytes: int
) -> tuple[Optional[PendingUpload], Optional[str]]:
    """
    The ``image`` form field is either a file part or a plain string.

    At most ``max_bytes + 1`` bytes are read so oversized uploads are
    rejected without buffering them whole.
    """
    form = await request.form()
    value = form.get(IMAGE_FIELD)
    if isinstance(value, UploadFile):
        data = await value.read(max_bytes + 1)
        if not data and not value.filename:
            # Browsers send an empty part when no file was chosen.
            return None, None
        return PendingUpload(data, value.content_type or "", value.filename), None
    if isinstance(value, str):
        return None, value
    return None, None


def _reclaim_unreferenced(
    db: DbClient, media: MediaService, reference: Optional[StoredImageReference]
) -> None:
    if reference is None or isinstance(reference, EmptyRef):
        return
    remaining = db.count_listings_with_image(reference)
    if remaining:
        logger.info(
            "Keeping %s image still used by %d listing(s)",
            reference.kind.value,
            remaining,
        )
        return
    media.reclaim(reference)


def _create_listing(
    db: DbClient,
    media: MediaService,
    upload: Optional[PendingUpload],
    candidate: Optional[str],
    fields: dict,
) -> ListingRecord:
    ingested = media.ingest(upload, candidate)
    try:
        return db.create_listing(image=ingested.reference, **fields)
    except Exception:
        _discard(media, ingested)
        raise


def _update_listing(
    db: DbClient,
    media: MediaService,
    existing: ListingRecord,
    upload: Optional[PendingUpload],
    candidate: Optional[str],
    clear_image: bool,
    fields: dict,
) -> tuple[Optional[ListingRecord], Optional[StoredImageReference]]:
    """
    Returns the saved listing and the reference it stopped using, if any.
    """
    ingested: Optional[Ingested] = None
    new_reference: Optional[StoredImageReference] = None
    if upload is not None or candidate:
        ingested = media.ingest(upload, candidate)
        # An echoed URL equal to the stored value is no change; writing it
        # back would drop the stored object id.
        reference = ingested.reference
        if not isinstance(reference, EmptyRef) and (
            reference.to_storage() != existing.image
        ):
            new_reference = reference
    if new_reference is None and clear_image:
        new_reference = EMPTY

    try:
        record = db.update_listing(existing.listing_id, image=new_reference, **fields)
    except Exception:
        _discard(media, ingested)
        raise
    if record is None:
        _discard(media, ingested)
        return None, None
    if new_reference is None:
        return record, None
    return record, media.superseded(existing.image_ref, new_reference)


def _discard(media: MediaService, ingested: Optional[Ingested]) -> None:
    """Drop bytes written for a listing save that did not happen."""
    if ingested is not None and ingested.persisted:
        media.reclaim(ingested.reference)


@router.post("/listings", response_model=ListingResponse, status_code=201)
async def create_listing(
    request: Request,
    title: str = Form(..., min_length=1, max_length=200),
    city: str = Form(..., min_length=1, max_length=120),
    price_per_night: float = Form(..., ge=0),
    description: Optional[str] = Form(None),
    owner_id: Optional[str] = Form(None),
    db: DbClient = Depends(get_db_client),
    media: MediaService = Depends(get_media_service),
    resolver: ImageResolver = Depends(get_image_resolver),
):
    upload, candidate = await _read_image_field(request, media.max_upload_bytes)
    fields = {
        "title": title,
        "city": city,
        "price_per_night": price_per_night,
        "description": description,
        "owner_id": owner_id,
    }
    record = await run_in_threadpool(
        _create_listing, db, media, upload, candidate, fields
    )
    return _to_response(record, resolver, _request_context(request))


@router.get("/listings", response_model=ListListingsResponse)
def list_listings(
    request: Request,
    owner_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: DbClient = Depends(get_db_client),
    resolver: ImageResolver = Depends(get_image_resolver),
):
    context = _request_context(request)
    records = db.list_listings(limit=limit, owner_id=owner_id)
    return ListListingsResponse(
        listings=[_to_response(record, resolver, context) for record in records]
    )


@router.get("/listings/{listing_id}", response_model=ListingResponse)
def get_listing(
    listing_id: str,
    request: Request,
    db: DbClient = Depends(get_db_client),
    resolver: ImageResolver = Depends(get_image_resolver),
):
    record = db.get_listing(listing_id)
    if not record:
        raise HTTPException(status_code=404, detail="Listing not found")
    return _to_response(record, resolver, _request_context(request))


@router.put("/listings/{listing_id}", response_model=ListingResponse)
async def update_listing(
    listing_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    title: Optional[str] = Form(None, min_length=1, max_length=200),
    city: Optional[str] = Form(None, min_length=1, max_length=120),
    price_per_night: Optional[float] = Form(None, ge=0),
    description: Optional[str] = Form(None),
    clear_image: bool = Form(False),
    db: DbClient = Depends(get_db_client),
    media: MediaService = Depends(get_media_service),
    resolver: ImageResolver = Depends(get_image_resolver),
):
    existing = await run_in_threadpool(db.get_listing, listing_id)
    if not existing:
        raise HTTPException(status_code=404, detail="Listing not found")

    upload, candidate = await _read_image_field(request, media.max_upload_bytes)
    fields = {
        "title": title,
        "city": city,
        "price_per_night": price_per_night,
        "description": description,
    }
    record, stale = await run_in_threadpool(
        _update_listing,
        db,
        media,
        existing,
        upload,
        candidate,
        clear_image,
        fields,
    )
    if record is None:
        raise HTTPException(status_code=404, detail="Listing not found")
    if stale is not None:
        background_tasks.add_task(_reclaim_unreferenced, db, media, stale)
    return _to_response(record, resolver, _request_context(request))


@router.delete("/listings/{listing_id}", response_model=DeleteListingResponse)
def delete_listing(
    listing_id: str,
    background_tasks: BackgroundTasks,
    db: DbClient = Depends(get_db_client),
    media: MediaService = Depends(get_media_service),
):
    record = db.get_listing(listing_id)
    if not record:
        raise HTTPException(status_code=404, detail="Listing not found")
    if not db.delete_listing(listing_id):
        raise HTTPException(status_code=404, detail="Listing not found")
    background_tasks.add_task(_reclaim_unreferenced, db, media, record.image_ref)
    return DeleteListingResponse(status="deleted", listing_id=listing_id)


@router.get("/health", response_model=HealthResponse)
def health(media: MediaService = Depends(get_media_service)):
    return HealthResponse(status="ok", **media.describe())
