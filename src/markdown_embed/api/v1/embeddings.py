"""Embedding endpoints.

``/embeddings`` runs the pipeline synchronously for one URL and maps the
outcome to an HTTP status. ``/embeddings/enqueue`` publishes jobs for the queue
consumer instead.
"""

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from markdown_embed.auth.bearer import BearerAuthDep
from markdown_embed.config import Settings
from markdown_embed.dependencies import get_app_settings, get_pipeline, get_queue_publisher
from markdown_embed.models.request import EmbeddingJobPayload, EmbeddingRequest, EnqueueRequest
from markdown_embed.pipeline.embedding_pipeline import EmbeddingPipeline
from markdown_embed.services.queue_publisher import EmbeddingQueuePublisher
from markdown_embed.utils.errors import ValidationError
from markdown_embed.utils.logging import get_logger

logger = get_logger("embeddings_api")

router = APIRouter(tags=["embeddings"])

URL_REQUIRED_MESSAGE = "URL is required"
INVALID_URL_MESSAGE = "Invalid URL"


async def parse_embedding_request(request: Request, default_namespace: str) -> EmbeddingRequest:
    """
    Parse a ``{url, namespace?}`` JSON body.

    Raises:
        ValidationError: If the body is not JSON or has no usable ``url``.
    """
    try:
        body = await request.json()
    except ValueError:
        body = None

    if not isinstance(body, dict) or not body.get("url"):
        raise ValidationError(URL_REQUIRED_MESSAGE)

    try:
        payload = EmbeddingJobPayload.model_validate(body)
    except PydanticValidationError as e:
        raise ValidationError(URL_REQUIRED_MESSAGE, errors=e.errors(include_url=False)) from e
    return build_request(payload, default_namespace)


def build_request(
    payload: EmbeddingJobPayload, default_namespace: str, **details
) -> EmbeddingRequest:
    """
    Canonicalize a payload into an EmbeddingRequest.

    Raises:
        ValidationError: If the URL is missing or does not parse.
    """
    try:
        return payload.to_request(default_namespace)
    except PydanticValidationError as e:
        raise ValidationError(
            URL_REQUIRED_MESSAGE, errors=e.errors(include_url=False), details=details
        ) from e
    except ValueError as e:
        raise ValidationError(INVALID_URL_MESSAGE, details={"url": payload.url, **details}) from e


@router.api_route(
    "/embeddings",
    methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    dependencies=[BearerAuthDep],
    summary="Embed one markdown document",
    responses={
        200: {"description": "Vectors upserted"},
        400: {"description": "URL is required"},
        401: {"description": "Unauthorized"},
        404: {"description": "No valid markdown found"},
        405: {"description": "Invalid request method"},
        500: {"description": "Transient failure, safe to retry"},
    },
)
async def create_embedding(
    request: Request,
    pipeline: EmbeddingPipeline = Depends(get_pipeline),
    settings: Settings = Depends(get_app_settings),
):
    """
    Embed the markdown stored for ``url`` and upsert it into the vector index.

    Only POST is accepted; the route is registered for other methods so that
    the bearer check runs before the method check.
    """
    if request.method != "POST":
        raise StarletteHTTPException(
            status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
            detail="Invalid request method",
        )

    embedding_request = await parse_embedding_request(request, settings.default_namespace)
    logger.info(
        "Embedding request received",
        extra={
            "extra_fields": {
                "url": embedding_request.url,
                "namespace": embedding_request.namespace,
            }
        },
    )

    outcome = await pipeline.run([embedding_request])
    return JSONResponse(status_code=outcome.http_code, content=outcome.to_response_body())


@router.post(
    "/embeddings/enqueue",
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[BearerAuthDep],
    summary="Queue markdown documents for embedding",
)
async def enqueue_embeddings(
    body: EnqueueRequest,
    publisher: EmbeddingQueuePublisher = Depends(get_queue_publisher),
    settings: Settings = Depends(get_app_settings),
):
    """Publish one embedding job per entry onto the embedding queue."""
    requests = [
        build_request(job, settings.default_namespace, index=index)
        for index, job in enumerate(body.jobs)
    ]

    queued = 0
    for embedding_request in requests:
        await publisher.publish(
            {"url": embedding_request.url, "namespace": embedding_request.namespace}
        )
        queued += 1

    logger.info(f"Queued embedding jobs: count={queued}")
    return {"message": "Queued embedding jobs", "status": "queued", "queued": queued}
