"""Embedding models for the vector index."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from markdown_embed.models.document import ResolvedDocument

# Every document is currently embedded as a single chunk.
FIRST_CHUNK_INDEX = 0


def make_vector_id(doc_id: str, chunk_index: int = FIRST_CHUNK_INDEX) -> str:
    """Build the durable vector id ``<doc_id>:<chunk_index>``."""
    return f"{doc_id}:{chunk_index}"


class VectorMetadata(BaseModel):
    """Metadata stored alongside each vector. Consumers rely on these keys."""

    url: str
    doc_id: str
    r2_key: str


class EmbeddingVector(BaseModel):
    """One vector record written to the index."""

    id: str = Field(..., description="'<doc_id>:0'")
    values: List[float] = Field(..., description="Embedding values")
    namespace: str = Field(..., description="Index namespace")
    metadata: VectorMetadata

    @classmethod
    def from_document(cls, document: ResolvedDocument, values: List[float]) -> "EmbeddingVector":
        return cls(
            id=make_vector_id(document.doc_id),
            values=values,
            namespace=document.namespace,
            metadata=VectorMetadata(
                url=document.url,
                doc_id=document.doc_id,
                r2_key=document.storage_key,
            ),
        )


class EmbeddingBatch(BaseModel):
    """Result of one batched embedding call, aligned with the input texts."""

    vectors: List[List[float]] = Field(..., description="One vector per input text, same order")
    billed_units: Dict[str, Any] = Field(default_factory=dict, description="Provider usage accounting")
    warnings: List[str] = Field(default_factory=list, description="Provider advisory messages")
    response_id: Optional[str] = Field(default=None, description="Provider response id")
    model: Optional[str] = Field(default=None, description="Model used")

    @property
    def dimension(self) -> int:
        return len(self.vectors[0]) if self.vectors else 0
