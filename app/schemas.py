"""Pydantic schemas for request/response validation in the short link service.

This module defines Pydantic models for API input validation, output
serialization, the visit-event queue payloads and the Redis cache payload.

Schema Hierarchy
=================
::
    LinkCreate (Input)
    ├─ destinationUrl: str (validated URL)
    ├─ customAlias: str | None (format checked by CodeAllocator)
    └─ expiresAt: datetime | None

    LinkUpdate (Input)
    ├─ active: bool | None
    └─ expiresAt: datetime | None (explicit null clears it)

    LinkResponse (Output)
    └─ id, code, shortUrl, destinationUrl, customAlias, ownerId, clicks,
       active, expiresAt, createdAt, updatedAt

    Destination (resolve() result)
    VisitContext → VisitCapture → VisitEventRecord (capture pipeline)
    AnalyticsSummary, DailyClicks, CategoryCount, VisitEventResponse (analytics)

How to Use
===========
**Step 1: Input validation**::
    @router.post("/api/urls")
    async def create_link(payload: LinkCreate):
        # payload.destination_url is already validated
        ...

**Step 2: Response serialization**::
    return LinkResponse.from_link(link, settings.BASE_URL)

Key Behaviours
===============
- JSON field names are camelCase; snake_case names are accepted on input too.
- Destination URLs are checked with the validators library; reachability is not.
- An empty customAlias is treated as no alias.
- All datetime fields are timezone-aware UTC on output.

Classes:
    LinkCreate, LinkUpdate:  Input schemas for the link operations.
    LinkResponse, DeleteResponse:  Output schemas for the link operations.
    Destination:  Successful redirect decision.
    VisitContext, VisitCapture, VisitEventRecord:  Visit capture payloads.
    VisitEventResponse, TopLink, CategoryCount, DailyClicks, AnalyticsSummary:  Analytics views.
    HealthResponse:  Output schema for health checks.
    CachedLinkPayload:  Redis cache payload for a link.
"""

import datetime

import validators
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.clock import as_utc, utcnow
from app.enums import HealthStatus
from app.models import Link

__all__ = [
    "LinkCreate",
    "LinkUpdate",
    "LinkResponse",
    "DeleteResponse",
    "Destination",
    "VisitContext",
    "VisitCapture",
    "VisitEventRecord",
    "VisitEventResponse",
    "TopLink",
    "CategoryCount",
    "DailyClicks",
    "AnalyticsSummary",
    "HealthResponse",
    "CachedLinkPayload",
]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class LinkCreate(CamelModel):
    destination_url: str
    custom_alias: str | None = None
    expires_at: datetime.datetime | None = None

    @field_validator("destination_url")
    @classmethod
    def validate_destination_url(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Please provide the destination URL")
        if not validators.url(v):
            raise ValueError("Invalid destination URL provided")
        return v

    @field_validator("custom_alias")
    @classmethod
    def blank_alias_is_none(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("expires_at")
    @classmethod
    def normalize_expiry(cls, v: datetime.datetime | None) -> datetime.datetime | None:
        return as_utc(v) if v is not None else None


class LinkUpdate(CamelModel):
    active: bool | None = None
    expires_at: datetime.datetime | None = None

    @field_validator("expires_at")
    @classmethod
    def normalize_expiry(cls, v: datetime.datetime | None) -> datetime.datetime | None:
        return as_utc(v) if v is not None else None

    def changes(self) -> dict:
        """Only the fields the caller actually sent; ``expiresAt: null`` clears the expiry."""
        fields: dict = {}
        if self.active is not None:
            fields["active"] = self.active
        if "expires_at" in self.model_fields_set:
            fields["expires_at"] = self.expires_at
        return fields


class LinkResponse(CamelModel):
    id: int
    code: str
    short_url: str
    destination_url: str
    custom_alias: bool
    owner_id: str | None
    clicks: int
    active: bool
    expires_at: datetime.datetime | None
    created_at: datetime.datetime
    updated_at: datetime.datetime

    @classmethod
    def from_link(cls, link: Link, base_url: str) -> "LinkResponse":
        return cls(
            id=link.id,
            code=link.code,
            short_url=f"{base_url}/{link.code}",
            destination_url=link.destination_url,
            custom_alias=link.custom_alias,
            owner_id=link.owner_id,
            clicks=link.clicks,
            active=link.active,
            expires_at=as_utc(link.expires_at) if link.expires_at else None,
            created_at=as_utc(link.created_at),
            updated_at=as_utc(link.updated_at),
        )


class DeleteResponse(CamelModel):
    id: int
    message: str


class Destination(CamelModel):
    destination_url: str
    code: str
    clicks: int


class VisitContext(CamelModel):
    """Request metadata the redirect route forwards to the dispatcher."""

    user_agent: str | None = None
    referrer: str | None = None
    ip_address: str | None = None


class VisitCapture(CamelModel):
    """One pending capture request sitting in the recorder queue."""

    link_id: int
    user_agent: str | None = None
    referrer: str | None = None
    ip_address: str | None = None
    timestamp: datetime.datetime = Field(default_factory=utcnow)


class VisitEventRecord(BaseModel):
    """Normalized visit event handed to a sink, and the Kafka message body."""

    link_id: int = Field(..., description="Primary key of the resolved link")
    timestamp: datetime.datetime
    ip_address: str | None = None
    device: str = "unknown"
    browser: str = "unknown"
    os: str = "unknown"
    referrer: str = "direct"
    country: str = "unknown"
    city: str = "unknown"


class VisitEventResponse(CamelModel):
    id: int
    link_id: int
    timestamp: datetime.datetime
    ip_address: str | None
    device: str
    browser: str
    os: str
    referrer: str
    country: str
    city: str

    @field_validator("timestamp")
    @classmethod
    def timestamp_as_utc(cls, v: datetime.datetime) -> datetime.datetime:
        return as_utc(v)


class TopLink(CamelModel):
    id: int
    code: str
    short_url: str
    destination_url: str
    clicks: int


class CategoryCount(CamelModel):
    category: str
    count: int


class DailyClicks(CamelModel):
    date: datetime.date
    clicks: int


class AnalyticsSummary(CamelModel):
    total_urls: int
    total_clicks: int
    top_urls: list[TopLink]
    recent_events: list[VisitEventResponse]
    device_breakdown: list[CategoryCount]


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class CachedLinkPayload(BaseModel):
    """Redis cache payload for a link: everything resolve() needs without a DB read."""

    id: int
    code: str
    destination_url: str
    custom_alias: bool
    owner_id: str | None
    clicks: int
    active: bool
    expires_at: datetime.datetime | None
    created_at: datetime.datetime
    updated_at: datetime.datetime

    model_config = {"from_attributes": True}
