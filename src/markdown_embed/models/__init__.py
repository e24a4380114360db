"""Pydantic models shared by the pipeline and ingress adapters."""

from markdown_embed.models.document import DocumentMetadataRecord, ResolvedDocument
from markdown_embed.models.embedding import (
    EmbeddingBatch,
    EmbeddingVector,
    VectorMetadata,
    make_vector_id,
)
from markdown_embed.models.outcome import PipelineOutcome, PipelineStatus
from markdown_embed.models.request import (
    DEFAULT_NAMESPACE,
    EmbeddingJobPayload,
    EmbeddingRequest,
    EnqueueRequest,
    canonical_url,
)

__all__ = [
    "DEFAULT_NAMESPACE",
    "DocumentMetadataRecord",
    "EmbeddingBatch",
    "EmbeddingJobPayload",
    "EmbeddingRequest",
    "EmbeddingVector",
    "EnqueueRequest",
    "PipelineOutcome",
    "PipelineStatus",
    "ResolvedDocument",
    "VectorMetadata",
    "canonical_url",
    "make_vector_id",
]
