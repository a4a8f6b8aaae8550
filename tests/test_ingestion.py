"""Ingestion worker tests for the Kafka visit-event path."""

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models import Link, VisitEvent
from app.recorder import DatabaseEventSink, EventRecorder
from services.ingestion.worker import parse_batch, store_batch


def test_parse_batch_skips_invalid_payloads() -> None:
    good = EventRecorder.build_record(1, None, None).model_dump(mode="json")
    batch = parse_batch([good, {"link_id": "not-a-number"}, {"device": "mobile"}])
    assert len(batch) == 1
    assert batch[0].link_id == 1
    assert batch[0].referrer == "direct"


@pytest.mark.asyncio
async def test_store_batch_inserts_rows(
    session_factory: async_sessionmaker[AsyncSession], db_session: AsyncSession
) -> None:
    link = Link(code="queued", destination_url="https://example.com")
    db_session.add(link)
    await db_session.commit()

    payloads = [EventRecorder.build_record(link.id, None, None).model_dump(mode="json") for _ in range(3)]
    stored = await store_batch(DatabaseEventSink(session_factory), parse_batch(payloads))

    assert stored == 3
    count = await db_session.scalar(select(func.count()).select_from(VisitEvent).where(VisitEvent.link_id == link.id))
    assert count == 3


@pytest.mark.asyncio
async def test_store_empty_batch(session_factory: async_sessionmaker[AsyncSession]) -> None:
    assert await store_batch(DatabaseEventSink(session_factory), []) == 0
