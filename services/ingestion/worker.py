"""Separate ingestion consumer service for visit events.

Used when the API runs with ``EVENT_SINK=kafka``: the API publishes one
message per resolved redirect and this worker stores them in batches in the
``visit_events`` table the dashboards read from.
"""

import asyncio
import json
import logging
import os
from collections.abc import Iterable
from typing import Any

from aiokafka import AIOKafkaConsumer
from prometheus_client import Counter, start_http_server
from pydantic import ValidationError

from app.config import get_settings
from app.database import async_session, init_db
from app.recorder import DatabaseEventSink, EventSink
from app.schemas import VisitEventRecord

__all__ = ["parse_batch", "store_batch", "run"]

settings = get_settings()
logger = logging.getLogger(__name__)

INGESTION_KAFKA_EVENTS_TOTAL = Counter(
    "ingestion_kafka_events_total",
    "Kafka visit events consumed by ingestion workers",
)
INGESTION_INVALID_EVENTS_TOTAL = Counter(
    "ingestion_invalid_events_total",
    "Kafka messages skipped because they were not valid visit events",
)
INGESTION_DB_ROWS_TOTAL = Counter(
    "ingestion_db_rows_total",
    "Visit event rows inserted by ingestion workers",
)


def _consumer_name() -> str:
    return os.getenv("INGESTION_CONSUMER_NAME", settings.INGESTION_CONSUMER_NAME)


def parse_batch(payloads: Iterable[Any]) -> list[VisitEventRecord]:
    """Validate raw message values, skipping (and counting) malformed ones."""
    batch: list[VisitEventRecord] = []
    for payload in payloads:
        try:
            batch.append(VisitEventRecord.model_validate(payload))
        except ValidationError:
            INGESTION_INVALID_EVENTS_TOTAL.inc()
            logger.warning("invalid kafka visit payload", exc_info=True)
    return batch


async def store_batch(sink: EventSink, batch: list[VisitEventRecord]) -> int:
    if not batch:
        return 0
    await sink.write_many(batch)
    INGESTION_DB_ROWS_TOTAL.inc(len(batch))
    return len(batch)


async def run() -> None:
    metrics_port = int(os.getenv("INGESTION_METRICS_PORT", "9200"))
    start_http_server(metrics_port)

    await init_db()
    sink = DatabaseEventSink(async_session)

    consumer = AIOKafkaConsumer(
        settings.KAFKA_VISIT_TOPIC,
        bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
        group_id=settings.INGESTION_CONSUMER_GROUP,
        value_deserializer=lambda payload: json.loads(payload.decode("utf-8")),
        client_id=_consumer_name(),
        enable_auto_commit=False,
    )
    await consumer.start()
    logger.info(f"Ingestion worker {_consumer_name()} consuming {settings.KAFKA_VISIT_TOPIC}")

    try:
        while True:
            try:
                records = await consumer.getmany(
                    timeout_ms=settings.INGESTION_BLOCK_MS, max_records=settings.INGESTION_BATCH_SIZE
                )
                payloads = [record.value for partition in records.values() for record in partition]
                if not payloads:
                    continue
                INGESTION_KAFKA_EVENTS_TOTAL.inc(len(payloads))
                await store_batch(sink, parse_batch(payloads))
                await consumer.commit()
            except Exception:
                logger.warning("ingestion loop iteration failed", exc_info=True)
                await asyncio.sleep(1)
    finally:
        await consumer.stop()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run())
