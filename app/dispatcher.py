"""Redirect decision pipeline.

Flow Diagram: resolve()
========================
::
    ┌──────────────────┐
    │ find_by_code     │── miss ──────────────► LinkNotFound (404)
    └────────┬─────────┘
             ▼
    ┌──────────────────┐      no row      ┌──────────────────────┐
    │ increment_clicks │─────────────────►│ reread, cache bypass │
    │ WHERE active AND │                  └──────────┬───────────┘
    │ not expired      │       gone ── LinkNotFound (404)
    └────────┬─────────┘       inactive ── LinkGone(deactivated) (410)
             │                 expired ── LinkGone(expired) (410)
             ▼
    ┌──────────────────┐
    │ recorder.submit  │   fire-and-forget, never awaited
    └────────┬─────────┘
             ▼
        Destination

Expiry is evaluated against the clock at resolution time; a link becomes
expired purely by the passage of time, with no write involved. The cached
link only supplies the destination: whether the click counts is decided by
the conditional UPDATE, so a stale cache entry never revives a deactivated
or expired link.
"""

import datetime
import logging
import time
from typing import Callable

from prometheus_client import Counter, Histogram

from app.clock import as_utc, utcnow
from app.enums import GoneReason, RedirectOutcome
from app.exceptions import LinkGone, LinkNotFound
from app.models import Link
from app.recorder import EventRecorder
from app.registry import LinkRegistry
from app.schemas import Destination, VisitCapture, VisitContext

__all__ = ["RedirectDispatcher"]

REDIRECT_REQUESTS_TOTAL = Counter(
    "shortlinks_redirect_requests_total",
    "Redirect resolutions by outcome",
    ["outcome"],
)
REDIRECT_RESOLVE_DURATION = Histogram(
    "shortlinks_redirect_resolve_duration_seconds",
    "Time taken to resolve a short code",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)


class RedirectDispatcher:
    def __init__(
        self,
        registry: LinkRegistry,
        recorder: EventRecorder,
        now: Callable[[], datetime.datetime] = utcnow,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._registry = registry
        self._recorder = recorder
        self._now = now
        self._logger = logger or logging.getLogger(__name__)

    async def resolve(self, code: str, visit: VisitContext | None = None) -> Destination:
        """Decide where ``code`` redirects to, counting the click.

        Raises:
            LinkNotFound: no link has this code.
            LinkGone: the link is deactivated or past its expiry.
        """
        start = time.perf_counter()
        try:
            destination = await self._resolve(code, visit or VisitContext())
        except LinkNotFound:
            REDIRECT_REQUESTS_TOTAL.labels(outcome=RedirectOutcome.NOT_FOUND).inc()
            raise
        except LinkGone as exc:
            REDIRECT_REQUESTS_TOTAL.labels(outcome=RedirectOutcome.GONE).inc()
            self._logger.info(f"Refused redirect for {code}: {exc.reason}")
            raise
        finally:
            REDIRECT_RESOLVE_DURATION.observe(time.perf_counter() - start)
        REDIRECT_REQUESTS_TOTAL.labels(outcome=RedirectOutcome.REDIRECTED).inc()
        return destination

    async def _resolve(self, code: str, visit: VisitContext) -> Destination:
        link = await self._registry.find_by_code(code)
        if link is None:
            raise LinkNotFound()

        now = self._now()
        clicks = await self._registry.increment_clicks(code, now)
        if clicks is None:
            link = await self._explain_refusal(code, now)
            clicks = await self._registry.increment_clicks(code, now)
            if clicks is None:
                raise LinkNotFound()

        self._recorder.submit(
            VisitCapture(
                link_id=link.id,
                user_agent=visit.user_agent,
                referrer=visit.referrer,
                ip_address=visit.ip_address,
                timestamp=now,
            )
        )
        return Destination(destination_url=link.destination_url, code=link.code, clicks=clicks)

    async def _explain_refusal(self, code: str, now: datetime.datetime) -> Link:
        """Reread a link whose click was refused and raise the matching error.

        Returns the fresh row only when it is valid again, which happens when it
        was reactivated between the refused update and this read.
        """
        link = await self._registry.find_by_code(code, use_cache=False)
        if link is None:
            raise LinkNotFound()
        self.check_valid(link, now)
        return link

    def check_valid(self, link: Link, now: datetime.datetime | None = None) -> None:
        """Raise ``LinkGone`` unless ``link`` is active and unexpired at ``now``."""
        now = now or self._now()
        if not link.active:
            raise LinkGone(link.code, GoneReason.DEACTIVATED)
        if link.expires_at is not None and as_utc(link.expires_at) < now:
            raise LinkGone(link.code, GoneReason.EXPIRED)
