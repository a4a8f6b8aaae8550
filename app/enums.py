"""Shared enums for the short link service.

This module defines all status and category enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = [
    "HealthStatus",
    "RequestStatus",
    "CacheStatus",
    "RedirectOutcome",
    "GoneReason",
    "EventSinkBackend",
    "DeviceCategory",
    "Window",
    "Dimension",
]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    ERROR = "error"


class CacheStatus(StrEnum):
    """Cache status values for metrics."""

    HIT = "true"
    MISS = "false"


class RedirectOutcome(StrEnum):
    """Classification of a resolve() call, used as a metric label."""

    REDIRECTED = "redirected"
    NOT_FOUND = "not_found"
    GONE = "gone"


class GoneReason(StrEnum):
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"


class EventSinkBackend(StrEnum):
    """Where the event recorder hands captured visits."""

    DATABASE = "database"
    KAFKA = "kafka"


class DeviceCategory(StrEnum):
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"
    BOT = "bot"
    UNKNOWN = "unknown"


class Window(StrEnum):
    """Named lookback intervals for the clicks-over-time series."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"

    @classmethod
    def from_str(cls, value: str | None) -> "Window | None":
        """Parse a window name, returning None for anything unrecognized."""
        if value is None:
            return None
        try:
            return cls(value.lower())
        except ValueError:
            return None


class Dimension(StrEnum):
    """Categorical visit-event fields a breakdown can group by."""

    DEVICE = "device"
    BROWSER = "browser"
    OS = "os"
