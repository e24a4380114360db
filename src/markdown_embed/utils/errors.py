"""Custom exception classes for the Markdown Embed service."""

from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional, Type

from markdown_embed.utils.logging import get_logger

logger = get_logger("errors")


class EmbedServiceException(Exception):
    """Base exception for all Markdown Embed errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "status_code": self.status_code,
                "details": self.details,
            }
        }


class PipelineStage(str, Enum):
    """Steps of the embedding pipeline that talk to an external collaborator."""

    LOOKUP = "lookup"
    FETCH = "fetch"
    EMBED = "embed"
    UPSERT = "upsert"
    UPDATE = "update"


class PipelineStageError(EmbedServiceException):
    """Infrastructure fault raised by one pipeline stage."""

    stage: PipelineStage = PipelineStage.LOOKUP
    default_message = "Pipeline stage failed"
    default_code = "PIPELINE_STAGE_ERROR"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        error_details["stage"] = self.stage.value
        super().__init__(
            message=message or self.default_message,
            status_code=500,
            code=self.default_code,
            details=error_details,
        )


class MetadataQueryError(PipelineStageError):
    """Raised when the page metadata store cannot be queried."""

    stage = PipelineStage.LOOKUP
    default_message = "Failed to get URL metadata"
    default_code = "METADATA_QUERY_ERROR"


class BlobFetchError(PipelineStageError):
    """Raised when markdown cannot be downloaded from blob storage."""

    stage = PipelineStage.FETCH
    default_message = "Failed to get markdown"
    default_code = "BLOB_FETCH_ERROR"


class EmbeddingGenerationError(PipelineStageError):
    """Raised when the embedding provider fails or returns no embeddings."""

    stage = PipelineStage.EMBED
    default_message = "Failed to generate embeddings"
    default_code = "EMBEDDING_GENERATION_ERROR"

    def __init__(
        self,
        message: Optional[str] = None,
        model: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if model:
            error_details["model"] = model
        super().__init__(message=message, details=error_details)


class VectorUpsertError(PipelineStageError):
    """Raised when vectors cannot be written to the index."""

    stage = PipelineStage.UPSERT
    default_message = "Failed to upsert vectors"
    default_code = "VECTOR_UPSERT_ERROR"


class MetadataUpdateError(PipelineStageError):
    """Raised when the embedding timestamp cannot be recorded."""

    stage = PipelineStage.UPDATE
    default_message = "Failed to update page metadata"
    default_code = "METADATA_UPDATE_ERROR"


STAGE_ERRORS: Dict[PipelineStage, Type[PipelineStageError]] = {
    PipelineStage.LOOKUP: MetadataQueryError,
    PipelineStage.FETCH: BlobFetchError,
    PipelineStage.EMBED: EmbeddingGenerationError,
    PipelineStage.UPSERT: VectorUpsertError,
    PipelineStage.UPDATE: MetadataUpdateError,
}


class AuthenticationError(EmbedServiceException):
    """Raised when the bearer token is missing or wrong."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message=message, status_code=401, code="AUTHENTICATION_ERROR")


class ValidationError(EmbedServiceException):
    """Raised for malformed ingress payloads."""

    def __init__(
        self,
        message: str = "Validation failed",
        errors: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if errors:
            error_details["validation_errors"] = errors
        super().__init__(
            message=message,
            status_code=400,
            code="VALIDATION_ERROR",
            details=error_details,
        )


class QueueError(EmbedServiceException):
    """Raised for message queue errors."""

    def __init__(
        self,
        message: str = "Message queue operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=502,
            code="QUEUE_ERROR",
            details=details,
        )


@asynccontextmanager
async def stage_errors(
    stage: PipelineStage,
    message: Optional[str] = None,
    **context: Any,
) -> AsyncIterator[None]:
    """
    Tag any failure inside the block with its pipeline stage.

    Stage errors raised inside the block propagate untouched. Every other
    exception is logged with ``context`` and re-raised as the stage's error
    type, chained to the original.

    Usage:
        async with stage_errors(PipelineStage.FETCH, storage_key=key):
            data = await blob.download_blob()
    """
    try:
        yield
    except PipelineStageError:
        raise
    except Exception as e:
        error_cls = STAGE_ERRORS[stage]
        logger.error(
            f"{error_cls.default_message}: {type(e).__name__}: {e}",
            extra={"extra_fields": {"stage": stage.value, **context}},
        )
        details = {**context, "error": str(e)}
        raise error_cls(message, details=details) from e
