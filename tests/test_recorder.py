"""EventRecorder capture and queueing tests."""

import datetime
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import EventCaptureError
from app.kafka import is_kafka_ready, publish_visit_event
from app.models import Link, VisitEvent
from app.recorder import DatabaseEventSink, EventRecorder, EventSink, KafkaEventSink
from app.registry import LinkRegistry
from app.schemas import VisitCapture, VisitEventRecord

CHROME_WINDOWS_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class CollectingSink(EventSink):
    def __init__(self) -> None:
        self.records: list[VisitEventRecord] = []

    async def write(self, record: VisitEventRecord) -> None:
        self.records.append(record)


class BrokenSink(EventSink):
    async def write(self, record: VisitEventRecord) -> None:
        raise EventCaptureError("store unavailable")


def test_build_record_normalizes_fields() -> None:
    record = EventRecorder.build_record(7, CHROME_WINDOWS_UA, None, "203.0.113.9")
    assert record.link_id == 7
    assert record.device == "desktop"
    assert record.browser == "Chrome"
    assert record.os == "Windows"
    assert record.referrer == "direct"
    assert record.ip_address == "203.0.113.9"
    assert (record.country, record.city) == ("unknown", "unknown")
    assert record.timestamp.tzinfo is not None


def test_build_record_unrecognized_agent_is_unknown() -> None:
    record = EventRecorder.build_record(1, "SomethingNobodyShips/0.1", "  ")
    assert (record.device, record.browser, record.os) == ("unknown", "unknown", "unknown")
    assert record.referrer == "direct"


def test_build_record_keeps_given_timestamp() -> None:
    naive = datetime.datetime(2024, 1, 2, 3, 4, 5)
    record = EventRecorder.build_record(1, None, "https://example.org", timestamp=naive)
    assert record.timestamp == naive.replace(tzinfo=datetime.timezone.utc)
    assert record.referrer == "https://example.org"


@pytest.mark.asyncio
async def test_capture_hands_record_to_sink() -> None:
    sink = CollectingSink()
    recorder = EventRecorder(sink)

    assert await recorder.capture(3, CHROME_WINDOWS_UA, "https://t.co/") is True
    assert len(sink.records) == 1
    assert sink.records[0].referrer == "https://t.co/"


@pytest.mark.asyncio
async def test_capture_swallows_sink_failure() -> None:
    recorder = EventRecorder(BrokenSink())
    assert await recorder.capture(3, CHROME_WINDOWS_UA, None) is False


@pytest.mark.asyncio
async def test_submit_is_processed_by_worker() -> None:
    sink = CollectingSink()
    recorder = EventRecorder(sink)
    try:
        recorder.submit(VisitCapture(link_id=1, user_agent=CHROME_WINDOWS_UA))
        recorder.submit(VisitCapture(link_id=2))
        await recorder.drain()
    finally:
        await recorder.stop()

    assert sorted(record.link_id for record in sink.records) == [1, 2]
    assert recorder.pending == 0


@pytest.mark.asyncio
async def test_submit_drops_when_queue_is_full() -> None:
    sink = CollectingSink()
    recorder = EventRecorder(sink, max_pending=1)
    try:
        recorder.submit(VisitCapture(link_id=1))
        recorder.submit(VisitCapture(link_id=2))
        assert recorder.pending == 1
        await recorder.drain()
    finally:
        await recorder.stop()

    assert [record.link_id for record in sink.records] == [1]


@pytest.mark.asyncio
async def test_submit_after_stop_is_dropped() -> None:
    sink = CollectingSink()
    recorder = EventRecorder(sink)
    await recorder.stop()

    recorder.submit(VisitCapture(link_id=1))

    assert recorder.pending == 0
    assert sink.records == []


@pytest.mark.asyncio
async def test_database_sink_inserts_rows(session_factory, db_session: AsyncSession) -> None:
    link = await LinkRegistry(db_session).create(Link(code="sinked", destination_url="https://example.com"))
    sink = DatabaseEventSink(session_factory)

    await sink.write_many(
        [
            EventRecorder.build_record(link.id, CHROME_WINDOWS_UA, None),
            EventRecorder.build_record(link.id, None, "https://example.org"),
        ]
    )

    rows = (await db_session.execute(select(VisitEvent).order_by(VisitEvent.id))).scalars().all()
    assert [(row.device, row.referrer) for row in rows] == [("desktop", "direct"), ("unknown", "https://example.org")]


@pytest.mark.asyncio
async def test_kafka_sink_raises_without_producer() -> None:
    record = EventRecorder.build_record(1, None, None)
    with patch("app.recorder.publish_visit_event", AsyncMock(return_value=False)):
        with pytest.raises(EventCaptureError):
            await KafkaEventSink().write(record)


@pytest.mark.asyncio
async def test_kafka_sink_publishes_record() -> None:
    record = EventRecorder.build_record(1, None, None)
    publish = AsyncMock(return_value=True)
    with patch("app.recorder.publish_visit_event", publish):
        await KafkaEventSink().write(record)
    publish.assert_awaited_once_with(record)


@pytest.mark.asyncio
async def test_publish_without_producer_reports_false() -> None:
    assert is_kafka_ready() is False
    assert await publish_visit_event(EventRecorder.build_record(1, None, None)) is False
