"""API v1 router aggregation."""

from fastapi import APIRouter

from markdown_embed.api.v1 import admin, embeddings, health

# Create v1 API router with version prefix
router = APIRouter(
    prefix="/api/v1",
    tags=["v1"],
    responses={
        401: {"description": "Unauthorized"},
        500: {"description": "Internal server error"},
    },
)

router.include_router(health.router)
router.include_router(embeddings.router)
router.include_router(admin.router)


@router.get(
    "/",
    summary="API Information",
    description="Get API version and status information",
    tags=["v1"],
)
async def api_info():
    """
    Get API v1 information.

    This endpoint is public and does not require authentication.
    """
    return {
        "version": "v1",
        "status": "active",
        "service": "markdown-embed",
        "endpoints": {
            "health": "/api/v1/health",
            "ready": "/api/v1/ready",
            "embeddings": "/api/v1/embeddings",
            "enqueue": "/api/v1/embeddings/enqueue",
            "admin": {
                "queues": "/api/v1/admin/queues",
            },
        },
    }
