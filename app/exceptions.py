"""Error taxonomy for link allocation, resolution and analytics.

Every error the core raises derives from ``ShortLinkError`` and carries the
HTTP status the route layer answers with, so expected conditions never
surface as a bare 500::

    ShortLinkError
    ├─ InvalidInput (400)
    │   └─ InvalidAliasFormat
    ├─ LinkNotFound (404)
    ├─ Conflict (409)
    │   ├─ AliasTaken
    │   └─ DuplicateCode
    ├─ LinkGone (410)
    └─ CodeSpaceExhausted (503)

``EventCaptureError`` sits outside the hierarchy: it is raised by
event sinks and absorbed by ``EventRecorder``; it never reaches a caller.
"""

from app.enums import GoneReason

__all__ = [
    "ShortLinkError",
    "InvalidInput",
    "InvalidAliasFormat",
    "LinkNotFound",
    "Conflict",
    "AliasTaken",
    "DuplicateCode",
    "LinkGone",
    "CodeSpaceExhausted",
    "EventCaptureError",
]


class ShortLinkError(Exception):
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInput(ShortLinkError):
    status_code = 400


class InvalidAliasFormat(InvalidInput):
    def __init__(self, alias: str, reason: str = "use letters, digits, hyphens and underscores only") -> None:
        super().__init__(f"Custom alias '{alias}' is invalid: {reason}")
        self.alias = alias


class LinkNotFound(ShortLinkError):
    status_code = 404

    def __init__(self, message: str = "Short URL not found") -> None:
        super().__init__(message)


class Conflict(ShortLinkError):
    status_code = 409


class AliasTaken(Conflict):
    def __init__(self, alias: str) -> None:
        super().__init__(f"Custom alias '{alias}' is already in use")
        self.alias = alias


class DuplicateCode(Conflict):
    """Raised by the registry when the unique constraint on code rejects an insert."""

    def __init__(self, code: str) -> None:
        super().__init__(f"Short code '{code}' already exists")
        self.code = code


class LinkGone(ShortLinkError):
    status_code = 410

    def __init__(self, code: str, reason: GoneReason) -> None:
        message = (
            "This link has been deactivated" if reason is GoneReason.DEACTIVATED else "This link has expired"
        )
        super().__init__(message)
        self.code = code
        self.reason = reason


class CodeSpaceExhausted(ShortLinkError):
    status_code = 503

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Could not allocate a unique short code after {attempts} attempts")
        self.attempts = attempts


class EventCaptureError(Exception):
    """Transient failure while persisting or publishing a visit event."""
