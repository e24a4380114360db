"""ASGI entry point for the Markdown Embed service.

Wires the v1 routers, root health probes, ``{message, status}`` error bodies
and the lifespan that owns every shared client: the metadata database engine,
Qdrant, the RabbitMQ connection, the job publisher and the queue consumer.
"""

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, TypeVar

import aio_pika
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from qdrant_client import QdrantClient
from starlette.exceptions import HTTPException as StarletteHTTPException
from tenacity import AsyncRetrying, before_sleep_log, stop_after_attempt, wait_fixed

from markdown_embed import __version__
from markdown_embed.api.v1 import health
from markdown_embed.api.v1.router import router as v1_router
from markdown_embed.config import get_settings
from markdown_embed.database.connection import create_engine
from markdown_embed.database.models import Base
from markdown_embed.database.session import create_session_factory
from markdown_embed.dependencies import build_pipeline
from markdown_embed.services.queue_publisher import EmbeddingQueuePublisher
from markdown_embed.services.queue_setup import setup_queues
from markdown_embed.utils.errors import EmbedServiceException
from markdown_embed.utils.logging import (
    get_logger,
    log_error,
    log_request,
    set_request_id,
    setup_logging,
)
from markdown_embed.workers.queue_consumer import QueueConsumer

settings = get_settings()
setup_logging(settings)
logger = get_logger("main")

T = TypeVar("T")

CONNECT_RETRY_DELAY = 3.0


async def connect_with_retry(name: str, connect: Callable[[], Awaitable[T]]) -> T:
    """Run ``connect`` until it succeeds; containers may still be starting."""
    attempts = 10 if settings.is_development else 3
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(CONNECT_RETRY_DELAY),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    ):
        with attempt:
            result = await connect()
    logger.info(f"Connected to {name} (attempt {attempt.retry_state.attempt_number})")
    return result


async def _connect_qdrant() -> QdrantClient:
    client = QdrantClient(
        url=settings.qdrant.url,
        api_key=settings.qdrant.api_key,
        timeout=settings.qdrant.timeout,
    )
    await asyncio.to_thread(client.get_collections)
    return client


async def _connect_rabbitmq() -> aio_pika.abc.AbstractRobustConnection:
    return await aio_pika.connect_robust(settings.rabbitmq.url)


async def _start_queue(app: FastAPI) -> None:
    """Declare the queue topology, then attach the publisher and (optionally) the consumer."""
    app.state.rabbitmq_connection = await connect_with_retry("RabbitMQ", _connect_rabbitmq)
    connection = app.state.rabbitmq_connection

    await setup_queues(connection, settings)

    publisher = EmbeddingQueuePublisher(settings, connection=connection)
    await publisher.connect()
    app.state.queue_publisher = publisher

    if not settings.rabbitmq.consumer_enabled:
        logger.info("Not consuming embedding jobs: RABBITMQ_CONSUMER_ENABLED=false")
        return

    consumer = QueueConsumer(connection, app.state.pipeline, settings)
    await consumer.start()
    app.state.queue_consumer = consumer
    logger.info(f"Consuming embedding jobs from {settings.rabbitmq.queue_name}")


async def _stop(app: FastAPI) -> None:
    """Release shared clients in reverse start order."""
    state = app.state

    if state.queue_consumer is not None:
        try:
            await state.queue_consumer.stop()
        except Exception as e:
            logger.error(f"Queue consumer did not stop cleanly: {e}", exc_info=True)

    if state.queue_publisher is not None:
        await state.queue_publisher.close()

    if state.rabbitmq_connection is not None and not state.rabbitmq_connection.is_closed:
        try:
            await state.rabbitmq_connection.close()
        except Exception as e:
            logger.error(f"RabbitMQ connection did not close cleanly: {e}", exc_info=True)

    if state.pipeline is not None:
        await state.pipeline.close()

    if state.qdrant_client is not None:
        state.qdrant_client.close()

    await state.db_engine.dispose()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.app_name} ({settings.environment.value})")
    settings.validate_configuration()

    for name in ("rabbitmq_connection", "queue_publisher", "queue_consumer", "qdrant_client", "pipeline"):
        setattr(app.state, name, None)

    engine = create_engine(settings)
    app.state.db_engine = engine
    if settings.is_development and settings.database.is_sqlite:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("PageMetadata table ensured in local SQLite database")

    try:
        try:
            app.state.qdrant_client = await connect_with_retry("Qdrant", _connect_qdrant)
        except Exception as e:
            if settings.is_production:
                raise
            logger.warning(
                f"Qdrant at {settings.qdrant.url} is unreachable ({e}); "
                "vector upserts will softfail until it comes up"
            )

        app.state.pipeline = build_pipeline(
            settings,
            session_factory=create_session_factory(engine),
            qdrant_client=app.state.qdrant_client,
        )

        try:
            await _start_queue(app)
        except Exception as e:
            if settings.is_production:
                raise
            logger.warning(
                f"RabbitMQ is unavailable ({e}); only the HTTP endpoint will embed pages"
            )

        logger.info(f"{settings.app_name} ready")
        yield
    finally:
        await _stop(app)
        logger.info(f"{settings.app_name} stopped")


app = FastAPI(
    title="Markdown Embed Service",
    description="Embeds crawled markdown pages and upserts them into the vector index",
    version=__version__,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=3600,
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Tag log records with the caller's X-Request-ID (or a fresh one) and time the request."""
    rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    set_request_id(rid)
    started = time.perf_counter()
    resp = await call_next(request)
    resp.headers["X-Request-ID"] = rid
    log_request(request.method, request.url.path, resp.status_code, (time.perf_counter() - started) * 1000)
    return resp


def failed(request: Request, exc: Exception, status_code: int, message: str, **context) -> JSONResponse:
    log_error(exc, context={"path": request.url.path, "method": request.method, **context})
    return JSONResponse(status_code=status_code, content={"message": message, "status": "failed"})


@app.exception_handler(EmbedServiceException)
async def on_service_error(request: Request, exc: EmbedServiceException):
    return failed(request, exc, exc.status_code, exc.message, code=exc.code)


@app.exception_handler(StarletteHTTPException)
async def on_http_error(request: Request, exc: StarletteHTTPException):
    return failed(request, exc, exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def on_invalid_body(request: Request, exc: RequestValidationError):
    """Body validation failures are 400s, like every other malformed request."""
    return failed(request, exc, status.HTTP_400_BAD_REQUEST, "Invalid request body")


@app.exception_handler(Exception)
async def on_unexpected_error(request: Request, exc: Exception):
    return failed(request, exc, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


app.include_router(v1_router)
# Probes at the root as well as under /api/v1
app.include_router(health.router, include_in_schema=False)


@app.get("/", tags=["root"])
async def service_info():
    return {
        "service": settings.app_name,
        "version": __version__,
        "status": "running",
        "environment": settings.environment.value,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "markdown_embed.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.server.reload and settings.is_development,
        log_level=settings.log_level.lower(),
    )
