"""
Listing persistence for Postgres and an in-memory test implementation.

Only the columns the image subsystem depends on are modelled beyond the
basic listing fields.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Dict, Iterator, Optional, Protocol

from sqlalchemy import Column, Float, String, Text, create_engine, or_, select
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from backend.classifier import parse_reference
from backend.references import (
    LocalRef,
    RemoteRef,
    StoredImageReference,
    storage_fields,
)

LISTING_FIELDS = ("title", "description", "city", "price_per_night", "owner_id")


@dataclass
class ListingRecord:
    listing_id: str
    title: str
    city: str
    price_per_night: float
    description: Optional[str] = None
    image: str = ""
    image_object_id: Optional[str] = None
    owner_id: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    @property
    def image_ref(self) -> Optional[StoredImageReference]:
        return parse_reference(self.image, self.image_object_id)


class DbClient(Protocol):
    """Interface for listing storage."""

    def create_listing(
        self,
        *,
        title: str,
        city: str,
        price_per_night: float,
        description: Optional[str] = None,
        owner_id: Optional[str] = None,
        image: Optional[StoredImageReference] = None,
    ) -> ListingRecord:
        ...

    def get_listing(self, listing_id: str) -> Optional[ListingRecord]:
        ...

    def list_listings(
        self, limit: int = 100, owner_id: Optional[str] = None
    ) -> list[ListingRecord]:
        ...

    def update_listing(
        self,
        listing_id: str,
        *,
        image: Optional[StoredImageReference] = None,
        **fields,
    ) -> Optional[ListingRecord]:
        ...

    def set_listing_image(
        self, listing_id: str, image: StoredImageReference
    ) -> Optional[ListingRecord]:
        ...

    def delete_listing(self, listing_id: str) -> bool:
        ...

    def count_listings_with_image(self, reference: StoredImageReference) -> int:
        ...

    def iter_listings(self, batch_size: int = 100) -> Iterator[ListingRecord]:
        ...


def same_image(
    stored: Optional[StoredImageReference], reference: StoredImageReference
) -> bool:
    """True when ``stored`` points at the same bytes as ``reference``."""
    if stored is None:
        return False
    if isinstance(reference, LocalRef):
        return (
            isinstance(stored, LocalRef)
            and stored.relative_path == reference.relative_path
        )
    if isinstance(reference, RemoteRef) and reference.object_id:
        return isinstance(stored, RemoteRef) and (
            stored.object_id == reference.object_id or stored.url == reference.url
        )
    return stored.to_storage() == reference.to_storage()


def _clean_fields(fields: dict) -> dict:
    unknown = set(fields) - set(LISTING_FIELDS)
    if unknown:
        raise ValueError(f"Unknown listing fields: {', '.join(sorted(unknown))}")
    return {key: value for key, value in fields.items() if value is not None}


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.listings: Dict[str, ListingRecord] = {}

    def create_listing(
        self,
        *,
        title: str,
        city: str,
        price_per_night: float,
        description: Optional[str] = None,
        owner_id: Optional[str] = None,
        image: Optional[StoredImageReference] = None,
    ) -> ListingRecord:
        image_value, object_id = storage_fields(image) if image else ("", None)
        record = ListingRecord(
            listing_id=uuid.uuid4().hex,
            title=title,
            city=city,
            price_per_night=price_per_night,
            description=description,
            owner_id=owner_id,
            image=image_value,
            image_object_id=object_id,
        )
        self.listings[record.listing_id] = record
        return replace(record)

    def get_listing(self, listing_id: str) -> Optional[ListingRecord]:
        record = self.listings.get(listing_id)
        return replace(record) if record else None

    def list_listings(
        self, limit: int = 100, owner_id: Optional[str] = None
    ) -> list[ListingRecord]:
        items = [
            replace(record)
            for record in self.listings.values()
            if owner_id is None or record.owner_id == owner_id
        ]
        items.sort(key=lambda record: record.created_at, reverse=True)
        return items[:limit]

    def update_listing(
        self,
        listing_id: str,
        *,
        image: Optional[StoredImageReference] = None,
        **fields,
    ) -> Optional[ListingRecord]:
        record = self.listings.get(listing_id)
        if not record:
            return None
        for key, value in _clean_fields(fields).items():
            setattr(record, key, value)
        if image is not None:
            record.image, record.image_object_id = storage_fields(image)
        record.updated_at = time.time()
        return replace(record)

    def set_listing_image(
        self, listing_id: str, image: StoredImageReference
    ) -> Optional[ListingRecord]:
        return self.update_listing(listing_id, image=image)

    def delete_listing(self, listing_id: str) -> bool:
        return self.listings.pop(listing_id, None) is not None

    def count_listings_with_image(self, reference: StoredImageReference) -> int:
        return sum(
            1
            for record in self.listings.values()
            if same_image(record.image_ref, reference)
        )

    def iter_listings(self, batch_size: int = 100) -> Iterator[ListingRecord]:
        for listing_id in list(self.listings):
            record = self.listings.get(listing_id)
            if record:
                yield replace(record)


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _to_record(self, row: "ListingRow") -> ListingRecord:
        return ListingRecord(
            listing_id=row.listing_id,
            title=row.title,
            description=row.description,
            city=row.city,
            price_per_night=row.price_per_night,
            image=row.image or "",
            image_object_id=row.image_object_id,
            owner_id=row.owner_id,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def create_listing(
        self,
        *,
        title: str,
        city: str,
        price_per_night: float,
        description: Optional[str] = None,
        owner_id: Optional[str] = None,
        image: Optional[StoredImageReference] = None,
    ) -> ListingRecord:
        now = time.time()
        image_value, object_id = storage_fields(image) if image else ("", None)
        with self.Session() as session:
            row = ListingRow(
                listing_id=uuid.uuid4().hex,
                title=title,
                description=description,
                city=city,
                price_per_night=price_per_night,
                image=image_value,
                image_object_id=object_id,
                owner_id=owner_id,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_record(row)

    def get_listing(self, listing_id: str) -> Optional[ListingRecord]:
        with self.Session() as session:
            row = session.get(ListingRow, listing_id)
            if not row:
                return None
            return self._to_record(row)

    def list_listings(
        self, limit: int = 100, owner_id: Optional[str] = None
    ) -> list[ListingRecord]:
        with self.Session() as session:
            stmt = select(ListingRow).order_by(ListingRow.created_at.desc())
            if owner_id is not None:
                stmt = stmt.where(ListingRow.owner_id == owner_id)
            rows = session.execute(stmt.limit(limit)).scalars().all()
            return [self._to_record(row) for row in rows]

    def update_listing(
        self,
        listing_id: str,
        *,
        image: Optional[StoredImageReference] = None,
        **fields,
    ) -> Optional[ListingRecord]:
        with self.Session() as session:
            row = session.get(ListingRow, listing_id)
            if not row:
                return None
            for key, value in _clean_fields(fields).items():
                setattr(row, key, value)
            if image is not None:
                row.image, row.image_object_id = storage_fields(image)
            row.updated_at = time.time()
            session.commit()
            session.refresh(row)
            return self._to_record(row)

    def set_listing_image(
        self, listing_id: str, image: StoredImageReference
    ) -> Optional[ListingRecord]:
        return self.update_listing(listing_id, image=image)

    def delete_listing(self, listing_id: str) -> bool:
        with self.Session() as session:
            row = session.get(ListingRow, listing_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def count_listings_with_image(self, reference: StoredImageReference) -> int:
        # Narrow in SQL, then compare parsed references so legacy spellings of
        # the same file or object are counted too.
        if isinstance(reference, LocalRef):
            condition = ListingRow.image.contains(reference.filename, autoescape=True)
        elif isinstance(reference, RemoteRef) and reference.object_id:
            condition = or_(
                ListingRow.image == reference.url,
                ListingRow.image_object_id == reference.object_id,
            )
        else:
            condition = ListingRow.image == reference.to_storage()
        with self.Session() as session:
            stmt = select(ListingRow.image, ListingRow.image_object_id).where(condition)
            rows = session.execute(stmt).all()
        return sum(
            1
            for image, object_id in rows
            if same_image(parse_reference(image, object_id), reference)
        )

    def iter_listings(self, batch_size: int = 100) -> Iterator[ListingRecord]:
        # Keyset pagination so rows rewritten mid-scan are not revisited.
        last_id = ""
        while True:
            with self.Session() as session:
                stmt = (
                    select(ListingRow)
                    .where(ListingRow.listing_id > last_id)
                    .order_by(ListingRow.listing_id.asc())
                    .limit(batch_size)
                )
                rows = session.execute(stmt).scalars().all()
                records = [self._to_record(row) for row in rows]
            if not records:
                return
            yield from records
            last_id = records[-1].listing_id


Base = declarative_base()


class ListingRow(Base):
    __tablename__ = "listings"

    listing_id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    city = Column(String, nullable=False, index=True)
    price_per_night = Column(Float, nullable=False)
    image = Column(Text, nullable=False, default="")
    image_object_id = Column(String, nullable=True)
    owner_id = Column(String, nullable=True, index=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)
