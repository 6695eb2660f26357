"""ORM tables for listings, the scrape queue and raw page cache metadata."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)

from db import Base


class ListingRow(Base):
    __tablename__ = "listings"
    __table_args__ = (UniqueConstraint("source", "source_url", name="uq_listing_source_url"),)

    id = Column(Integer, primary_key=True)
    source = Column(String(32), nullable=False)
    source_url = Column(Text, nullable=False)
    vin = Column(String(17), index=True)
    title = Column(Text)
    year = Column(Integer)
    model = Column(String(32))
    trim = Column(String(32))
    generation = Column(String(16))
    price = Column(Integer)
    mileage = Column(Integer)
    exterior_color = Column(String(64))
    is_paint_to_sample = Column(Boolean, nullable=False, default=False)
    interior_color = Column(String(64))
    transmission = Column(String(32))
    location = Column(Text)
    list_date = Column(Date)
    sold_date = Column(Date)
    scraped_at = Column(DateTime)
    first_seen_at = Column(DateTime, server_default=func.now())
    options_text = Column(Text)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class QueueRow(Base):
    __tablename__ = "scrape_queue"
    __table_args__ = (UniqueConstraint("source", "url", name="uq_queue_source_url"),)

    id = Column(Integer, primary_key=True)
    source = Column(String(32), nullable=False)
    url = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default="pending")
    priority = Column(Integer, nullable=False, default=2)
    hints = Column(JSON)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    rescrape_fields = Column(JSON)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class CacheRow(Base):
    __tablename__ = "raw_html_cache"
    __table_args__ = (UniqueConstraint("source", "url", name="uq_cache_source_url"),)

    id = Column(Integer, primary_key=True)
    source = Column(String(32), nullable=False)
    url = Column(Text, nullable=False)
    path = Column(Text, nullable=False)
    byte_size = Column(Integer, nullable=False)
    content_hash = Column(String(64), nullable=False)
    compressed = Column(Boolean, nullable=False, default=True)
    fetched_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime)


Index("idx_queue_pending", QueueRow.source, QueueRow.status, QueueRow.priority)
Index("idx_listings_model_year", ListingRow.model, ListingRow.year)
