"""Durable code → link mapping with a Redis cache-aside layer.

Every other component reads and mutates links through ``LinkRegistry``.

Flow Diagram: find_by_code()
=============================
::
    ┌─────────────┐
    │ find_by_code│
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Redis GET    │
    │ link:{code}  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ SELECT  │  │ Rebuild │
│ by code │  │ Link    │
└────┬────┘  └─────────┘
     ▼
┌─────────┐
│ SETEX   │
│ (TTL)   │
└─────────┘

Key Behaviours
===============
- ``increment_clicks`` is one ``UPDATE ... SET clicks = clicks + 1 RETURNING``
  statement, so concurrent redirects of the same code never lose a count. Its
  WHERE clause also requires the row to be active and unexpired, so validity
  is decided by the database and never by a cached copy.
- ``create`` relies on the unique constraint on ``code``: the losing insert of
  a race surfaces as ``DuplicateCode`` instead of overwriting.
- The cache is dropped on every update and delete. A cached payload may lag
  behind the database (failed invalidation, or a concurrent read writing an
  older row back); ``find_by_code(code, use_cache=False)`` rereads the row and
  overwrites the entry.
- Redis failures are logged and fall back to the database.
"""

import datetime
import logging
from typing import Any

import redis.asyncio as redis
from prometheus_client import Counter
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.clock import as_utc, utcnow
from app.enums import CacheStatus
from app.exceptions import DuplicateCode
from app.models import Link
from app.schemas import CachedLinkPayload

__all__ = ["LinkRegistry", "UPDATABLE_FIELDS"]

UPDATABLE_FIELDS = frozenset({"active", "expires_at"})

LINK_CACHE_LOOKUPS_TOTAL = Counter(
    "shortlinks_link_cache_lookups_total",
    "Link lookups by code, labelled by cache hit",
    ["cache_hit"],
)
DATABASE_WRITES_TOTAL = Counter(
    "shortlinks_database_writes_total",
    "Link write operations issued by the registry",
    ["operation"],
)


class LinkRegistry:
    def __init__(
        self,
        db: AsyncSession,
        cache: redis.Redis | None = None,
        cache_ttl: int = 3600,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._db = db
        self._cache = cache
        self._cache_ttl = cache_ttl
        self._logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------ reads

    async def find_by_code(self, code: str, use_cache: bool = True) -> Link | None:
        """Look up a link by code.

        With ``use_cache=False`` the database row is authoritative: it replaces
        whatever the cache held, and a missing row evicts the cached entry.
        """
        if use_cache:
            cached = await self._cache_get(code)
            if cached is not None:
                LINK_CACHE_LOOKUPS_TOTAL.labels(cache_hit=CacheStatus.HIT).inc()
                return cached
            LINK_CACHE_LOOKUPS_TOTAL.labels(cache_hit=CacheStatus.MISS).inc()

        result = await self._db.execute(
            select(Link).where(Link.code == code).execution_options(populate_existing=not use_cache)
        )
        link = result.scalar_one_or_none()
        if link is not None:
            await self._cache_set(link)
        elif not use_cache:
            await self._cache_delete(code)
        return link

    async def find_by_id(self, link_id: int) -> Link | None:
        return await self._db.get(Link, link_id)

    async def code_exists(self, code: str) -> bool:
        result = await self._db.execute(select(func.count()).select_from(Link).where(Link.code == code))
        return result.scalar_one() > 0

    async def list_for_owner(self, owner_id: str) -> list[Link]:
        result = await self._db.execute(
            select(Link).where(Link.owner_id == owner_id).order_by(Link.created_at.desc(), Link.id.desc())
        )
        return list(result.scalars().all())

    # ----------------------------------------------------------------- writes

    async def create(self, link: Link) -> Link:
        """Insert ``link``; raises ``DuplicateCode`` when its code is already taken."""
        self._db.add(link)
        try:
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            raise DuplicateCode(link.code) from exc
        DATABASE_WRITES_TOTAL.labels(operation="create").inc()
        await self._db.refresh(link)
        return link

    async def increment_clicks(self, code: str, now: datetime.datetime | None = None) -> int | None:
        """Atomically add one click to a link that is active and unexpired at ``now``.

        Returns the new count, or None when no such row exists: the code is
        unknown, deactivated, or past its expiry.
        """
        now = as_utc(now) if now is not None else utcnow()
        result = await self._db.execute(
            update(Link)
            .where(
                Link.code == code,
                Link.active.is_(True),
                or_(Link.expires_at.is_(None), Link.expires_at >= now),
            )
            .values(clicks=Link.clicks + 1)
            .returning(Link.clicks)
            .execution_options(synchronize_session=False)
        )
        new_count = result.scalar_one_or_none()
        await self._db.commit()
        DATABASE_WRITES_TOTAL.labels(operation="increment_clicks").inc()
        return new_count

    async def update(self, link_id: int, fields: dict[str, Any]) -> Link | None:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        link = await self.find_by_id(link_id)
        if link is None:
            return None
        for name, value in fields.items():
            setattr(link, name, value)
        await self._db.commit()
        DATABASE_WRITES_TOTAL.labels(operation="update").inc()
        await self._db.refresh(link)
        await self._cache_delete(link.code)
        return link

    async def delete(self, link_id: int) -> bool:
        """Remove a link permanently. Returns False when it was already absent."""
        result = await self._db.execute(delete(Link).where(Link.id == link_id).returning(Link.code))
        code = result.scalar_one_or_none()
        await self._db.commit()
        if code is None:
            return False
        DATABASE_WRITES_TOTAL.labels(operation="delete").inc()
        await self._cache_delete(code)
        return True

    # ------------------------------------------------------------------ cache

    @staticmethod
    def _cache_key(code: str) -> str:
        return f"link:{code}"

    async def _cache_get(self, code: str) -> Link | None:
        if self._cache is None:
            return None
        try:
            cached = await self._cache.get(self._cache_key(code))
        except redis.RedisError as exc:
            self._logger.warning(f"Cache read failed for {code}: {exc}")
            return None
        if not cached:
            return None
        try:
            payload = CachedLinkPayload.model_validate_json(cached)
        except ValueError as exc:
            self._logger.error(f"Cache deserialization error for {code}: {exc}")
            return None
        return Link(**payload.model_dump())

    async def _cache_set(self, link: Link) -> None:
        if self._cache is None:
            return
        payload = CachedLinkPayload.model_validate(link)
        try:
            await self._cache.setex(self._cache_key(link.code), self._cache_ttl, payload.model_dump_json())
        except redis.RedisError as exc:
            self._logger.warning(f"Cache write failed for {link.code}: {exc}")

    async def _cache_delete(self, code: str) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.delete(self._cache_key(code))
        except redis.RedisError as exc:
            self._logger.warning(f"Cache invalidation failed for {code}: {exc}")
