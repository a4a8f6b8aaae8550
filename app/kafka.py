"""Kafka producer for visit events (used when ``EVENT_SINK=kafka``).

Messages are keyed by link id, so all visits of one link land on the same
partition and reach the ingestion worker in capture order.
"""

import json
import logging

from aiokafka import AIOKafkaProducer
from prometheus_client import Counter

from app.config import get_settings
from app.schemas import VisitEventRecord

__all__ = ["close_kafka", "init_kafka", "is_kafka_ready", "publish_visit_event"]

settings = get_settings()
logger = logging.getLogger(__name__)

KAFKA_VISIT_EVENTS_PUBLISHED_TOTAL = Counter(
    "shortlinks_kafka_visit_events_published_total",
    "Visit events acknowledged by Kafka",
)

_producer: AIOKafkaProducer | None = None


def is_kafka_ready() -> bool:
    return _producer is not None


async def init_kafka() -> None:
    global _producer
    if _producer is not None:
        return

    producer = AIOKafkaProducer(
        bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
        client_id=f"{settings.APP_NAME}-producer",
        key_serializer=lambda key: str(key).encode("utf-8"),
        value_serializer=lambda payload: json.dumps(payload).encode("utf-8"),
        acks="all",
    )
    try:
        await producer.start()
    except Exception:
        logger.warning("Kafka producer unavailable, visit events will not be published", exc_info=True)
        await producer.stop()
        return
    _producer = producer


async def close_kafka() -> None:
    global _producer
    if _producer is None:
        return
    await _producer.stop()
    _producer = None


async def publish_visit_event(record: VisitEventRecord) -> bool:
    """Send ``record`` and wait for the broker ack; False when no producer is running."""
    assert isinstance(record, VisitEventRecord), f"record must be VisitEventRecord, got {type(record).__name__}"

    if _producer is None:
        return False

    await _producer.send_and_wait(settings.KAFKA_VISIT_TOPIC, record.model_dump(mode="json"), key=record.link_id)
    KAFKA_VISIT_EVENTS_PUBLISHED_TOTAL.inc()
    return True
