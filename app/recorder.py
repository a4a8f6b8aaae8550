"""Visit event capture, decoupled from the redirect response.

Architecture Overview
=====================
::
    RedirectDispatcher                  EventRecorder (one per process)
    ──────────────────                  ───────────────────────────────
    submit(VisitCapture) ──put_nowait──► asyncio.Queue ──► worker task
         returns None,                                      │
         never raises                                       ▼
                                               capture(): parse user agent,
                                               build VisitEventRecord
                                                            │
                                               ┌────────────┴────────────┐
                                               ▼                         ▼
                                     DatabaseEventSink            KafkaEventSink
                                     INSERT visit_events          publish → ingestion worker

Key Behaviours
===============
- ``submit`` is the only entry point the redirect path uses. It does not await
  anything, so capture latency can never delay a redirect, and it traps every
  error, so capture failures can never fail one.
- A full queue drops the event and counts it; nothing is retried.
- ``capture`` logs and swallows every failure and reports it as ``False``; a
  lost event is a gap in analytics, not an application error.
- Location fields are a stub that always answers "unknown".
"""

import asyncio
import datetime
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence

from prometheus_client import Counter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.clock import as_utc, utcnow
from app.exceptions import EventCaptureError
from app.kafka import publish_visit_event
from app.models import VisitEvent
from app.schemas import VisitCapture, VisitEventRecord
from app.user_agent import UNKNOWN, parse_user_agent

__all__ = [
    "EventSink",
    "DatabaseEventSink",
    "KafkaEventSink",
    "EventRecorder",
    "resolve_location",
]

VISIT_EVENTS_CAPTURED_TOTAL = Counter(
    "shortlinks_visit_events_captured_total",
    "Visit events handed to the sink successfully",
)
VISIT_EVENTS_FAILED_TOTAL = Counter(
    "shortlinks_visit_events_failed_total",
    "Visit events lost because the sink failed",
)
VISIT_EVENTS_DROPPED_TOTAL = Counter(
    "shortlinks_visit_events_dropped_total",
    "Visit events dropped before capture (queue full or recorder stopped)",
)

DEFAULT_REFERRER = "direct"


def resolve_location(ip_address: str | None) -> tuple[str, str]:
    """Country and city for an IP. Geolocation is not performed."""
    return UNKNOWN, UNKNOWN


# ============================================================================
# SINKS
# ============================================================================


class EventSink(ABC):
    """Destination for normalized visit events."""

    @abstractmethod
    async def write(self, record: VisitEventRecord) -> None:
        """Persist or forward one event; raise ``EventCaptureError`` on failure."""

    async def write_many(self, records: Sequence[VisitEventRecord]) -> None:
        for record in records:
            await self.write(record)


class DatabaseEventSink(EventSink):
    """Appends rows to ``visit_events`` using short-lived sessions of its own."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def write(self, record: VisitEventRecord) -> None:
        await self.write_many([record])

    async def write_many(self, records: Sequence[VisitEventRecord]) -> None:
        if not records:
            return
        async with self._session_factory() as session:
            session.add_all([VisitEvent(**record.model_dump()) for record in records])
            await session.commit()


class KafkaEventSink(EventSink):
    """Publishes events for ``services/ingestion/worker.py`` to store."""

    async def write(self, record: VisitEventRecord) -> None:
        if not await publish_visit_event(record):
            raise EventCaptureError("Kafka producer is not available")


# ============================================================================
# RECORDER
# ============================================================================


class EventRecorder:
    def __init__(
        self,
        sink: EventSink,
        max_pending: int = 10000,
        logger: logging.Logger | None = None,
    ) -> None:
        self._sink = sink
        self._queue: asyncio.Queue[VisitCapture] = asyncio.Queue(maxsize=max_pending)
        self._worker: asyncio.Task | None = None
        self._stopping = False
        self._logger = logger or logging.getLogger(__name__)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def submit(self, capture: VisitCapture) -> None:
        """Queue a capture request without waiting for it. Never raises."""
        try:
            if self._stopping:
                VISIT_EVENTS_DROPPED_TOTAL.inc()
                self._logger.warning(f"Recorder stopping, dropped visit event for link {capture.link_id}")
                return
            self._ensure_worker()
            self._queue.put_nowait(capture)
        except asyncio.QueueFull:
            VISIT_EVENTS_DROPPED_TOTAL.inc()
            self._logger.warning(f"Visit event queue full, dropped event for link {capture.link_id}")
        except Exception:
            VISIT_EVENTS_DROPPED_TOTAL.inc()
            self._logger.exception(f"Could not queue visit event for link {capture.link_id}")

    async def capture(
        self,
        link_id: int,
        user_agent: str | None,
        referrer: str | None,
        ip_address: str | None = None,
        timestamp: datetime.datetime | None = None,
    ) -> bool:
        """Normalize and store one visit event. Failures are logged and reported as False."""
        try:
            record = self.build_record(link_id, user_agent, referrer, ip_address, timestamp)
            await self._sink.write(record)
        except Exception as exc:
            VISIT_EVENTS_FAILED_TOTAL.inc()
            self._logger.error(f"Visit event capture failed for link {link_id}: {exc}")
            return False
        VISIT_EVENTS_CAPTURED_TOTAL.inc()
        return True

    @staticmethod
    def build_record(
        link_id: int,
        user_agent: str | None,
        referrer: str | None,
        ip_address: str | None = None,
        timestamp: datetime.datetime | None = None,
    ) -> VisitEventRecord:
        agent = parse_user_agent(user_agent)
        country, city = resolve_location(ip_address)
        return VisitEventRecord(
            link_id=link_id,
            timestamp=as_utc(timestamp) if timestamp else utcnow(),
            ip_address=ip_address,
            device=agent.device,
            browser=agent.browser,
            os=agent.os,
            referrer=(referrer or "").strip() or DEFAULT_REFERRER,
            country=country,
            city=city,
        )

    # ------------------------------------------------------------ lifecycle

    def start(self) -> None:
        self._stopping = False
        self._ensure_worker()

    async def drain(self) -> None:
        """Wait until every queued capture has been attempted."""
        if self._worker is None and self._queue.empty():
            return
        self._ensure_worker()
        await self._queue.join()

    async def stop(self, timeout: float = 5.0) -> None:
        """Stop accepting events, give queued ones ``timeout`` seconds, then cancel the worker."""
        self._stopping = True
        try:
            await asyncio.wait_for(self.drain(), timeout)
        except asyncio.TimeoutError:
            self._logger.warning(f"Recorder stopped with {self.pending} visit events still queued")
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run(), name="visit-event-recorder")

    async def _run(self) -> None:
        while True:
            capture = await self._queue.get()
            try:
                await self.capture(**capture.model_dump())
            finally:
                self._queue.task_done()
