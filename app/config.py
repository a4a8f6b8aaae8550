"""Settings for the short link service, read from the environment.

Setting Groups
==============
::
    service      APP_NAME, APP_ENV, BASE_URL (prefix of every shortUrl)
    storage      DATABASE_URL, DATABASE_ECHO
    cache        REDIS_URL, CACHE_TTL_SECONDS
    allocation   SHORT_CODE_LENGTH, CODE_MAX_ATTEMPTS, ALIAS_MAX_LENGTH
    identity     PRINCIPAL_HEADER
    capture      EVENT_SINK, EVENT_QUEUE_MAX_SIZE, EVENT_DRAIN_TIMEOUT_SECONDS
    messaging    KAFKA_*, INGESTION_*
    dashboards   SUMMARY_TOP_LINKS, SUMMARY_RECENT_EVENTS, DEFAULT_LOOKBACK_DAYS

Key Behaviours
===============
- ``get_settings()`` builds the object once per process; tests that need other
  values set environment variables before the first call.
- Variable names are case sensitive and a ``.env`` file is honoured.
- EVENT_SINK selects where visit events go: "database" writes rows from the
  in-process worker, "kafka" publishes them for services/ingestion/worker.py.
"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "shortlinks"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"

    # PostgreSQL in deployments, SQLite (aiosqlite) for local runs and tests
    DATABASE_URL: str = "postgresql+asyncpg://shortlinks:shortlinks@db:5432/shortlinks"
    DATABASE_ECHO: bool = False

    # Redis (link lookup cache)
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_TTL_SECONDS: int = 3600

    # Code allocation
    SHORT_CODE_LENGTH: int = 6
    CODE_MAX_ATTEMPTS: int = 10
    ALIAS_MAX_LENGTH: int = 64

    # Stand-in for the external auth layer
    PRINCIPAL_HEADER: str = "X-Principal-Id"

    # Visit event capture
    EVENT_SINK: str = "database"
    EVENT_QUEUE_MAX_SIZE: int = 10000
    EVENT_DRAIN_TIMEOUT_SECONDS: float = 5.0

    # Kafka queue
    KAFKA_BOOTSTRAP_SERVERS: str = "kafka:9092"
    KAFKA_VISIT_TOPIC: str = "visit_events"
    INGESTION_CONSUMER_GROUP: str = "visit_ingestion_group"
    INGESTION_CONSUMER_NAME: str = "ingestion-consumer-1"
    INGESTION_BATCH_SIZE: int = 500
    INGESTION_BLOCK_MS: int = 1000

    # Dashboard aggregation
    SUMMARY_TOP_LINKS: int = 5
    SUMMARY_RECENT_EVENTS: int = 10
    DEFAULT_LOOKBACK_DAYS: int = 30

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
