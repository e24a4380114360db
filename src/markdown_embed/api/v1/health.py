"""Health check endpoints."""

import asyncio

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from markdown_embed.config import Settings
from markdown_embed.database.connection import check_connection as check_database
from markdown_embed.dependencies import get_app_settings
from markdown_embed.services.storage_service import StorageService
from markdown_embed.utils.logging import get_logger

logger = get_logger("health")

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(settings: Settings = Depends(get_app_settings)):
    """
    Health check endpoint.

    Returns basic service health status. Does not check external dependencies.
    """
    logger.debug("Health check requested")
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "environment": settings.environment.value,
    }


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check(request: Request, settings: Settings = Depends(get_app_settings)):
    """
    Readiness check endpoint.

    Checks connectivity to external dependencies:
    - Metadata database
    - Azure Blob Storage (markdown downloads)
    - Embedding provider configuration
    - Qdrant (vector index)
    - RabbitMQ (queue consumer)

    Returns 503 if any critical dependency is unavailable. RabbitMQ is not
    critical since the HTTP endpoint works without it.
    """
    logger.debug("Readiness check requested")

    checks = {
        "database": False,
        "storage": False,
        "embeddings": False,
        "qdrant": False,
        "rabbitmq": False,
    }

    checks["database"] = await check_database(getattr(request.app.state, "db_engine", None))

    storage = StorageService(settings)
    try:
        checks["storage"] = await storage.check_connection()
    finally:
        await storage.close()

    checks["embeddings"] = settings.embedding.is_configured
    if not checks["embeddings"]:
        logger.warning(
            "Embeddings configuration check failed: missing API key",
            extra={"extra_fields": {"provider": settings.embedding.provider.value}},
        )

    qdrant_client = getattr(request.app.state, "qdrant_client", None)
    if qdrant_client is not None:
        try:
            await asyncio.to_thread(qdrant_client.get_collections)
            checks["qdrant"] = True
        except Exception as e:
            logger.warning(f"Qdrant connection check failed: {e}")

    connection = getattr(request.app.state, "rabbitmq_connection", None)
    checks["rabbitmq"] = connection is not None and not connection.is_closed

    critical_ready = (
        checks["database"] and checks["storage"] and checks["embeddings"] and checks["qdrant"]
    )
    body = {
        "status": "ready" if critical_ready else "not_ready",
        "app_name": settings.app_name,
        "environment": settings.environment.value,
        "checks": checks,
    }

    if not critical_ready:
        logger.warning(f"Readiness check failed (critical): {checks}")
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)

    if not all(checks.values()):
        logger.warning(f"Readiness check partial (non-critical): {checks}")
    return body
