"""FastAPI route definitions for the short link REST API.

API Endpoint Overview
=====================
::
    GET    /health
        └─ HealthResponse (200)

    POST   /api/urls
        ├─ LinkCreate (request body)
        └─ LinkResponse (201) or 400/409/503
    GET    /api/urls                         owner's links, newest first
    GET    /api/urls/{id}                    LinkResponse or 401/403/404
    PUT    /api/urls/{id}                    LinkUpdate → LinkResponse
    DELETE /api/urls/{id}                    DeleteResponse (200, also when absent)

    GET    /api/analytics/summary            AnalyticsSummary
    GET    /api/analytics/url/{id}           raw visit events, newest first
    GET    /api/analytics/url/{id}/clicks    ?timeframe=day|week|month|year
    GET    /api/analytics/url/{id}/devices
    GET    /api/analytics/url/{id}/browsers
    GET    /api/analytics/url/{id}/os

    GET    /{code}
        └─ 307 Redirect, 404 unknown, 410 deactivated or expired

Key Behaviours
===============
- The caller's identity comes from ``get_current_principal``; link and
  analytics routes check ownership before touching the core components.
- ``ShortLinkError`` subclasses carry their HTTP status; routes log them at
  warning level and answer with the message verbatim.
- ``/{code}`` is registered last so it never shadows the API paths.
- 307 redirects preserve the HTTP method.
"""

from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy import text

from app.aggregation import AggregationEngine
from app.allocator import CodeAllocator
from app.dependencies import (
    RequestContext,
    get_aggregation,
    get_allocator,
    get_current_principal,
    get_dispatcher,
    get_registry,
    get_request_context,
    require_ownership,
    require_principal,
)
from app.dispatcher import RedirectDispatcher
from app.enums import Dimension, HealthStatus
from app.exceptions import ShortLinkError
from app.models import Link
from app.registry import LinkRegistry
from app.schemas import (
    AnalyticsSummary,
    CategoryCount,
    DailyClicks,
    DeleteResponse,
    HealthResponse,
    LinkCreate,
    LinkResponse,
    LinkUpdate,
    VisitContext,
    VisitEventResponse,
)

__all__ = ["router"]

router = APIRouter()


def _fail(ctx: RequestContext, operation: str, exc: ShortLinkError) -> NoReturn:
    ctx.logger.warning(
        f"{operation} failed: {exc.message}",
        extra={"operation": operation, "error": type(exc).__name__, "duration_ms": ctx.get_duration()},
    )
    raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


async def _owned_link(link_id: int, registry: LinkRegistry, principal: str | None) -> Link:
    require_principal(principal)
    link = await registry.find_by_id(link_id)
    if link is None:
        raise HTTPException(status_code=404, detail="Short URL not found")
    require_ownership(link, principal)
    return link


# ============================================================================
# HEALTH
# ============================================================================


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await ctx.database.execute(text("SELECT 1"))
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        if ctx.cache is None:
            raise ConnectionError("cache client not configured")
        await ctx.cache.ping()
    except Exception as e:
        ctx.logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    ctx.logger.info(f"Health check completed: {status.value}")
    return HealthResponse(status=status, database=db_status, cache=cache_status)


# ============================================================================
# LINKS
# ============================================================================


@router.post("/api/urls", response_model=LinkResponse, status_code=201, tags=["urls"])
async def create_link(
    payload: LinkCreate,
    ctx: RequestContext = Depends(get_request_context),
    allocator: CodeAllocator = Depends(get_allocator),
    principal: str | None = Depends(get_current_principal),
) -> LinkResponse:
    ctx.logger.info(
        f"Link creation requested: {payload.destination_url}",
        extra={"operation": "create_link", "custom_alias": payload.custom_alias},
    )
    try:
        link = await allocator.create_link(payload, owner_id=principal)
    except ShortLinkError as exc:
        _fail(ctx, "create_link", exc)

    ctx.logger.info(
        f"Link created: {link.code}",
        extra={"operation": "create_link", "link_id": link.id, "duration_ms": ctx.get_duration()},
    )
    return LinkResponse.from_link(link, ctx.settings.BASE_URL)


@router.get("/api/urls", response_model=list[LinkResponse], tags=["urls"])
async def list_links(
    ctx: RequestContext = Depends(get_request_context),
    registry: LinkRegistry = Depends(get_registry),
    principal: str | None = Depends(get_current_principal),
) -> list[LinkResponse]:
    owner_id = require_principal(principal)
    links = await registry.list_for_owner(owner_id)
    return [LinkResponse.from_link(link, ctx.settings.BASE_URL) for link in links]


@router.get("/api/urls/{link_id}", response_model=LinkResponse, tags=["urls"])
async def get_link(
    link_id: int,
    ctx: RequestContext = Depends(get_request_context),
    registry: LinkRegistry = Depends(get_registry),
    principal: str | None = Depends(get_current_principal),
) -> LinkResponse:
    link = await _owned_link(link_id, registry, principal)
    return LinkResponse.from_link(link, ctx.settings.BASE_URL)


@router.put("/api/urls/{link_id}", response_model=LinkResponse, tags=["urls"])
async def update_link(
    link_id: int,
    payload: LinkUpdate,
    ctx: RequestContext = Depends(get_request_context),
    registry: LinkRegistry = Depends(get_registry),
    principal: str | None = Depends(get_current_principal),
) -> LinkResponse:
    await _owned_link(link_id, registry, principal)
    link = await registry.update(link_id, payload.changes())
    if link is None:
        raise HTTPException(status_code=404, detail="Short URL not found")
    ctx.logger.info(f"Link updated: {link.code}", extra={"operation": "update_link", "link_id": link.id})
    return LinkResponse.from_link(link, ctx.settings.BASE_URL)


@router.delete("/api/urls/{link_id}", response_model=DeleteResponse, tags=["urls"])
async def delete_link(
    link_id: int,
    ctx: RequestContext = Depends(get_request_context),
    registry: LinkRegistry = Depends(get_registry),
    principal: str | None = Depends(get_current_principal),
) -> DeleteResponse:
    require_principal(principal)
    link = await registry.find_by_id(link_id)
    if link is None:
        return DeleteResponse(id=link_id, message="URL already removed")
    require_ownership(link, principal)

    removed = await registry.delete(link_id)
    ctx.logger.info(f"Link deleted: {link_id}", extra={"operation": "delete_link", "removed": removed})
    return DeleteResponse(id=link_id, message="URL deleted" if removed else "URL already removed")


# ============================================================================
# ANALYTICS
# ============================================================================


@router.get("/api/analytics/summary", response_model=AnalyticsSummary, tags=["analytics"])
async def analytics_summary(
    aggregation: AggregationEngine = Depends(get_aggregation),
    principal: str | None = Depends(get_current_principal),
) -> AnalyticsSummary:
    return await aggregation.summary(require_principal(principal))


@router.get("/api/analytics/url/{link_id}", response_model=list[VisitEventResponse], tags=["analytics"])
async def link_events(
    link_id: int,
    registry: LinkRegistry = Depends(get_registry),
    aggregation: AggregationEngine = Depends(get_aggregation),
    principal: str | None = Depends(get_current_principal),
) -> list[VisitEventResponse]:
    await _owned_link(link_id, registry, principal)
    return await aggregation.events_for_link(link_id)


@router.get("/api/analytics/url/{link_id}/clicks", response_model=list[DailyClicks], tags=["analytics"])
async def link_clicks_over_time(
    link_id: int,
    timeframe: str | None = None,
    registry: LinkRegistry = Depends(get_registry),
    aggregation: AggregationEngine = Depends(get_aggregation),
    principal: str | None = Depends(get_current_principal),
) -> list[DailyClicks]:
    await _owned_link(link_id, registry, principal)
    return await aggregation.clicks_over_time(link_id, timeframe)


async def _breakdown(
    link_id: int,
    dimension: Dimension,
    registry: LinkRegistry,
    aggregation: AggregationEngine,
    principal: str | None,
) -> list[CategoryCount]:
    await _owned_link(link_id, registry, principal)
    return await aggregation.breakdown(link_id, dimension)


@router.get("/api/analytics/url/{link_id}/devices", response_model=list[CategoryCount], tags=["analytics"])
async def link_devices(
    link_id: int,
    registry: LinkRegistry = Depends(get_registry),
    aggregation: AggregationEngine = Depends(get_aggregation),
    principal: str | None = Depends(get_current_principal),
) -> list[CategoryCount]:
    return await _breakdown(link_id, Dimension.DEVICE, registry, aggregation, principal)


@router.get("/api/analytics/url/{link_id}/browsers", response_model=list[CategoryCount], tags=["analytics"])
async def link_browsers(
    link_id: int,
    registry: LinkRegistry = Depends(get_registry),
    aggregation: AggregationEngine = Depends(get_aggregation),
    principal: str | None = Depends(get_current_principal),
) -> list[CategoryCount]:
    return await _breakdown(link_id, Dimension.BROWSER, registry, aggregation, principal)


@router.get("/api/analytics/url/{link_id}/os", response_model=list[CategoryCount], tags=["analytics"])
async def link_operating_systems(
    link_id: int,
    registry: LinkRegistry = Depends(get_registry),
    aggregation: AggregationEngine = Depends(get_aggregation),
    principal: str | None = Depends(get_current_principal),
) -> list[CategoryCount]:
    return await _breakdown(link_id, Dimension.OS, registry, aggregation, principal)


# ============================================================================
# REDIRECT
# ============================================================================


@router.get("/{code}", tags=["redirect"])
async def redirect_to_destination(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    dispatcher: RedirectDispatcher = Depends(get_dispatcher),
) -> RedirectResponse:
    visit = VisitContext(user_agent=ctx.user_agent, referrer=ctx.referrer, ip_address=ctx.client_ip)
    try:
        destination = await dispatcher.resolve(code, visit)
    except ShortLinkError as exc:
        _fail(ctx, "redirect", exc)

    ctx.logger.info(
        f"Redirect successful: {code} -> {destination.destination_url}",
        extra={"operation": "redirect", "clicks": destination.clicks, "duration_ms": ctx.get_duration()},
    )
    return RedirectResponse(url=destination.destination_url, status_code=307)
