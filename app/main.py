"""FastAPI application entry point for the short link service.

Application Lifecycle Diagram
=============================
::
    ┌──────────────────┐
    │ lifespan()       │
    │ startup:         │
    │  init_db()       │
    │  init_kafka()    │  only when EVENT_SINK=kafka
    │  service manager │  logger, Redis, EventRecorder
    │  recorder.start()│
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ Serve HTTP       │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ lifespan()       │
    │ shutdown:        │
    │  cleanup()       │  bounded drain of queued visit events, Redis close
    │  close_kafka()   │
    │  close_db()      │
    └──────────────────┘

How to Use
===========
**Step 1: Run with uvicorn**::
    uvicorn app.main:app --host 0.0.0.0 --port 8080

**Step 2: Make API calls**::
    curl -X POST http://localhost:8080/api/urls \
         -H "Content-Type: application/json" \
         -H "X-Principal-Id: alice" \
         -d '{"destinationUrl": "https://example.com", "customAlias": "promo"}'

    curl -i http://localhost:8080/promo

Key Behaviours
===============
- Request validation errors are answered with 400 rather than FastAPI's 422.
- Prometheus metrics are exposed at /metrics.
"""

__all__ = ["app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from app.config import get_settings
from app.database import close_db, init_db
from app.dependencies import _service_manager
from app.enums import EventSinkBackend
from app.kafka import close_kafka, init_kafka, is_kafka_ready
from app.routes import router

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize()
    _service_manager.logger.info(f"Starting {settings.APP_NAME} ({settings.APP_ENV}), visit events go to {settings.EVENT_SINK}")
    if settings.EVENT_SINK == EventSinkBackend.KAFKA:
        await init_kafka()
        if not is_kafka_ready():
            _service_manager.logger.warning("EVENT_SINK is kafka but no producer is running; visit events will be lost")
    _service_manager.recorder.start()
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_kafka()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Short link resolution and visit analytics API",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
