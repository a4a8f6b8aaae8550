"""Dependency injection with a singleton service manager.

Shared resources (logger, Redis client, event recorder) live on one
``ServiceManager``; the per-request ``RequestContext`` pairs them with the
request's database session and client metadata. The core components are built
per request from that context by the ``get_*`` factories below, which tests
replace through ``app.dependency_overrides``.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.aggregation import AggregationEngine
from app.allocator import CodeAllocator
from app.config import Settings, get_settings
from app.database import async_session, get_db
from app.dispatcher import RedirectDispatcher
from app.enums import EventSinkBackend
from app.models import Link
from app.recorder import DatabaseEventSink, EventRecorder, EventSink, KafkaEventSink
from app.registry import LinkRegistry

__all__ = [
    "ServiceManager",
    "RequestContext",
    "get_service_manager",
    "get_cache",
    "get_event_recorder",
    "get_request_context",
    "get_current_principal",
    "require_principal",
    "require_ownership",
    "get_registry",
    "get_allocator",
    "get_dispatcher",
    "get_aggregation",
]


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton holder for resources shared by every request."""

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self) -> None:
        if not self._initialized:
            self.settings = get_settings()
            self.logger = self._setup_logger()
            self.cache = self._setup_redis()
            self.recorder = EventRecorder(
                self._setup_sink(),
                max_pending=self.settings.EVENT_QUEUE_MAX_SIZE,
                logger=self.logger,
            )
            self._initialized = True

    def _setup_logger(self) -> logging.Logger:
        logger = logging.getLogger("shortlinks")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.setLevel(logging.INFO)
        return logger

    def _setup_redis(self) -> redis.Redis:
        return redis.from_url(self.settings.REDIS_URL, encoding="utf-8", decode_responses=True)

    def _setup_sink(self) -> EventSink:
        if self.settings.EVENT_SINK == EventSinkBackend.KAFKA:
            return KafkaEventSink()
        return DatabaseEventSink(async_session)

    async def cleanup(self) -> None:
        if not self._initialized:
            return
        await self.recorder.stop(self.settings.EVENT_DRAIN_TIMEOUT_SECONDS)
        await self.cache.aclose()
        self._initialized = False


_service_manager = ServiceManager()


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request view of the shared resources.

    Attributes:
        database: Async database session (the only per-request resource)
        service_manager: Singleton service manager with shared resources
        cache: Redis client, or None when caching is disabled
        request_id: Unique identifier for this request
        trace_id: Correlation ID taken from ``X-Trace-ID``
        user_agent: Client user agent string
        client_ip: Client IP address
        referrer: ``Referer`` header, if any
        start_time: Request start timestamp
    """

    database: AsyncSession
    service_manager: ServiceManager
    cache: redis.Redis | None = None
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    referrer: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Shared logger carrying this request's identifiers."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    def get_duration(self) -> float:
        """Request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_cache(manager: ServiceManager = Depends(get_service_manager)) -> redis.Redis | None:
    return manager.cache


async def get_event_recorder(manager: ServiceManager = Depends(get_service_manager)) -> EventRecorder:
    return manager.recorder


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: ServiceManager = Depends(get_service_manager),
    cache: redis.Redis | None = Depends(get_cache),
) -> RequestContext:
    return RequestContext(
        database=db,
        service_manager=manager,
        cache=cache,
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=request.client.host if request.client else None,
        referrer=request.headers.get("referer"),
    )


def get_current_principal(request: Request) -> str | None:
    """Owner id supplied by the auth layer in front of this service; None means anonymous."""
    principal = request.headers.get(get_settings().PRINCIPAL_HEADER)
    if principal is None or not principal.strip():
        return None
    return principal.strip()


def require_principal(principal: str | None) -> str:
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return principal


def require_ownership(link: Link, principal: str | None) -> None:
    require_principal(principal)
    if link.owner_id != principal:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized to access this URL")


def get_registry(ctx: RequestContext = Depends(get_request_context)) -> LinkRegistry:
    return LinkRegistry(ctx.database, ctx.cache, ctx.settings.CACHE_TTL_SECONDS, ctx.logger)


def get_allocator(
    ctx: RequestContext = Depends(get_request_context),
    registry: LinkRegistry = Depends(get_registry),
) -> CodeAllocator:
    return CodeAllocator.from_settings(registry, ctx.settings, ctx.logger)


def get_dispatcher(
    ctx: RequestContext = Depends(get_request_context),
    registry: LinkRegistry = Depends(get_registry),
    recorder: EventRecorder = Depends(get_event_recorder),
) -> RedirectDispatcher:
    return RedirectDispatcher(registry, recorder, logger=ctx.logger)


def get_aggregation(ctx: RequestContext = Depends(get_request_context)) -> AggregationEngine:
    return AggregationEngine.from_settings(ctx.database, ctx.settings)
