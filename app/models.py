"""SQLAlchemy ORM models for the short link service.

This module defines the database schema using SQLAlchemy declarative models
with the indexes the redirect path and the analytics queries rely on.

Data Model Layout
=================
::
    links table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ code (VARCHAR(64) UNIQUE, INDEXED)
    ├─ destination_url (TEXT NOT NULL)
    ├─ custom_alias (BOOLEAN DEFAULT FALSE)
    ├─ owner_id (VARCHAR(64) NULL, INDEXED)
    ├─ clicks (INTEGER DEFAULT 0)
    ├─ active (BOOLEAN DEFAULT TRUE)
    ├─ expires_at (TIMESTAMPTZ NULL)
    ├─ created_at (TIMESTAMPTZ)
    └─ updated_at (TIMESTAMPTZ, ON UPDATE)

    visit_events table (append-only)
    ├─ id (SERIAL PRIMARY KEY)
    ├─ link_id (FK links.id ON DELETE CASCADE)
    ├─ timestamp (TIMESTAMPTZ)
    ├─ ip_address, device, browser, os, referrer, country, city
    └─ INDEX (link_id, timestamp), INDEX device, INDEX browser, INDEX os

Class Relationship Diagram
=========================
::
    Link 1 ──── * VisitEvent
    (no back-reference from Link; events only point at their link)

How to Use
===========
**Step 1: Import**::
    from app.models import Link, VisitEvent

**Step 2: Create a new link**::
    link = Link(code="abc123", destination_url="https://example.com")
    db.add(link)
    await db.commit()

**Step 3: Query links**::
    result = await db.execute(select(Link).where(Link.code == "abc123"))
    link = result.scalar_one_or_none()

**Step 4: Count a click (single statement, evaluated by the store)**::
    await db.execute(update(Link).where(Link.code == "abc123").values(clicks=Link.clicks + 1))

Key Behaviours
===============
- code is unique and indexed; the constraint is what settles allocation races.
- Timestamps are written as UTC by the application (microsecond precision, so
  "newest first" ordering is stable).
- clicks starts at 0 and is only ever incremented by the store.
- Visit events are never updated after insert.

Classes:
    Link:  A short code mapped to its destination plus validity metadata.
    VisitEvent:  One immutable record of a resolved redirect.
"""

import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.clock import utcnow
from app.database import Base

__all__ = ["Link", "VisitEvent"]


class Link(Base):
    __tablename__ = "links"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    destination_url: Mapped[str] = mapped_column(Text, nullable=False)
    custom_alias: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    clicks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Link(id={self.id}, code='{self.code}', clicks={self.clicks}, active={self.active})>"


class VisitEvent(Base):
    __tablename__ = "visit_events"
    __table_args__ = (Index("ix_visit_events_link_timestamp", "link_id", "timestamp"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    link_id: Mapped[int] = mapped_column(ForeignKey("links.id", ondelete="CASCADE"), nullable=False)
    timestamp: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    device: Mapped[str] = mapped_column(String(32), index=True, default="unknown", nullable=False)
    browser: Mapped[str] = mapped_column(String(64), index=True, default="unknown", nullable=False)
    os: Mapped[str] = mapped_column(String(64), index=True, default="unknown", nullable=False)
    referrer: Mapped[str] = mapped_column(Text, default="direct", nullable=False)
    country: Mapped[str] = mapped_column(String(64), default="unknown", nullable=False)
    city: Mapped[str] = mapped_column(String(128), default="unknown", nullable=False)

    def __repr__(self) -> str:
        return f"<VisitEvent(id={self.id}, link_id={self.link_id}, device='{self.device}')>"
