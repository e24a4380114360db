"""Admin endpoints for queue monitoring."""

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from markdown_embed.auth.bearer import BearerAuthDep
from markdown_embed.config import Settings
from markdown_embed.dependencies import get_app_settings
from markdown_embed.services.queue_setup import verify_queues
from markdown_embed.utils.logging import get_logger

logger = get_logger("admin")

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[BearerAuthDep])


@router.get("/queues", status_code=status.HTTP_200_OK)
async def get_queue_status(request: Request, settings: Settings = Depends(get_app_settings)):
    """
    Get status of the embedding queues.

    Returns existence and depth of:
    - Main queue (generate-embedding)
    - Dead-letter queue (generate-embedding-dlq)
    """
    logger.debug("Queue status check requested")

    connection = getattr(request.app.state, "rabbitmq_connection", None)
    if connection is None or connection.is_closed:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"message": "RabbitMQ connection not available", "status": "failed"},
        )

    try:
        queue_status = await verify_queues(connection, settings)
    except Exception as e:
        logger.error(f"Failed to get queue status: {e}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"message": "Failed to get queue status", "status": "failed"},
        )

    consumer = getattr(request.app.state, "queue_consumer", None)
    return {
        "status": "success",
        "consumer_running": bool(consumer and consumer.is_running),
        "queues": queue_status,
    }
