"""Short code allocation.

Flow Diagram: create_link()
============================
::
    ┌──────────────┐
    │ customAlias? │
    └──────┬───────┘
    ┌──────┴──────────────┐
    │ YES                  │ NO
    ▼                      ▼
┌──────────────┐    ┌──────────────────┐
│ validate     │    │ nanoid(6) until  │◄──────┐
│ format       │    │ no row has it    │       │
└──────┬───────┘    └────────┬─────────┘       │
       ▼                     ▼                 │
┌──────────────┐    ┌──────────────────┐  DuplicateCode
│ exists? →    │    │ INSERT           │───────┘
│ AliasTaken   │    └────────┬─────────┘  (bounded by
└──────┬───────┘             ▼             CODE_MAX_ATTEMPTS)
       ▼                  created
┌──────────────┐
│ INSERT       │── DuplicateCode → AliasTaken
└──────────────┘

The existence check is only a fast path. The decision is made by the unique
constraint on ``links.code`` at INSERT time, so of two concurrent requests
for the same alias exactly one is stored and the other gets ``AliasTaken``;
a random code that loses a race is simply replaced by a fresh one.
"""

import logging
import re
from typing import Callable

from nanoid import generate
from prometheus_client import Counter

from app.config import Settings
from app.enums import RequestStatus
from app.exceptions import AliasTaken, CodeSpaceExhausted, Conflict, DuplicateCode, InvalidAliasFormat, InvalidInput
from app.models import Link
from app.registry import LinkRegistry
from app.schemas import LinkCreate

__all__ = ["ALPHABET", "RESERVED_CODES", "CodeAllocator", "generate_code"]

# nanoid's URL-safe alphabet
ALPHABET = "_-0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
ALIAS_PATTERN = re.compile(r"[A-Za-z0-9_-]+")

# Paths served by the app itself; a code with one of these names could never be reached.
RESERVED_CODES = frozenset({"api", "docs", "health", "metrics", "redoc"})

CODE_COLLISIONS_TOTAL = Counter(
    "shortlinks_code_collisions_total",
    "Generated codes rejected because they were already in use",
)
LINK_CREATION_REQUESTS_TOTAL = Counter(
    "shortlinks_link_creation_requests_total",
    "Link creation attempts by outcome",
    ["status"],
)


def generate_code(length: int = 6) -> str:
    assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
    return generate(ALPHABET, length)


class CodeAllocator:
    def __init__(
        self,
        registry: LinkRegistry,
        code_length: int = 6,
        max_attempts: int = 10,
        alias_max_length: int = 64,
        generator: Callable[[int], str] = generate_code,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        assert max_attempts > 0, f"max_attempts must be positive, got {max_attempts!r}"
        self._registry = registry
        self._code_length = code_length
        self._max_attempts = max_attempts
        self._alias_max_length = alias_max_length
        self._generate = generator
        self._logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_settings(
        cls,
        registry: LinkRegistry,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> "CodeAllocator":
        return cls(
            registry,
            code_length=settings.SHORT_CODE_LENGTH,
            max_attempts=settings.CODE_MAX_ATTEMPTS,
            alias_max_length=settings.ALIAS_MAX_LENGTH,
            logger=logger,
        )

    def validate_alias(self, alias: str) -> str:
        if not ALIAS_PATTERN.fullmatch(alias):
            raise InvalidAliasFormat(alias)
        if len(alias) > self._alias_max_length:
            raise InvalidAliasFormat(alias, f"at most {self._alias_max_length} characters")
        if alias.lower() in RESERVED_CODES:
            raise InvalidAliasFormat(alias, "this name is reserved")
        return alias

    async def allocate(self, custom_alias: str | None = None) -> str:
        """Return a code that is free right now.

        Raises:
            InvalidAliasFormat: the alias has characters outside [A-Za-z0-9_-].
            AliasTaken: the alias already names a link.
            CodeSpaceExhausted: every generated candidate was taken.
        """
        if custom_alias is not None:
            alias = self.validate_alias(custom_alias)
            if await self._registry.code_exists(alias):
                raise AliasTaken(alias)
            return alias

        for _ in range(self._max_attempts):
            code = self._generate(self._code_length)
            if code.lower() not in RESERVED_CODES and not await self._registry.code_exists(code):
                return code
            CODE_COLLISIONS_TOTAL.inc()
        raise CodeSpaceExhausted(self._max_attempts)

    async def create_link(self, payload: LinkCreate, owner_id: str | None = None) -> Link:
        try:
            link = await self._create_link(payload, owner_id)
        except InvalidInput:
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.VALIDATION_ERROR).inc()
            raise
        except Conflict:
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.CONFLICT).inc()
            raise
        except CodeSpaceExhausted:
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            raise
        LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        return link

    async def _create_link(self, payload: LinkCreate, owner_id: str | None) -> Link:
        if payload.custom_alias is not None:
            code = await self.allocate(payload.custom_alias)
            try:
                return await self._registry.create(self._new_link(code, payload, owner_id, custom_alias=True))
            except DuplicateCode as exc:
                raise AliasTaken(code) from exc

        for attempt in range(1, self._max_attempts + 1):
            code = await self.allocate()
            try:
                return await self._registry.create(self._new_link(code, payload, owner_id, custom_alias=False))
            except DuplicateCode:
                CODE_COLLISIONS_TOTAL.inc()
                self._logger.warning(f"Generated code {code} lost an insert race (attempt {attempt})")
        raise CodeSpaceExhausted(self._max_attempts)

    @staticmethod
    def _new_link(code: str, payload: LinkCreate, owner_id: str | None, custom_alias: bool) -> Link:
        return Link(
            code=code,
            destination_url=payload.destination_url,
            custom_alias=custom_alias,
            owner_id=owner_id,
            expires_at=payload.expires_at,
            clicks=0,
            active=True,
        )
