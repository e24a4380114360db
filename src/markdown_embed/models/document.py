"""Document models for the embedding pipeline."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class DocumentMetadataRecord(BaseModel):
    """A PageMetadata row as seen by the pipeline."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Document identifier")
    url: str = Field(..., description="Page URL")
    storage_path: str = Field(..., description="Blob storage key of the crawled markdown")
    embedding_created_at: Optional[datetime] = Field(
        default=None, description="When the document was last embedded"
    )


class ResolvedDocument(BaseModel):
    """Markdown that was found in both the metadata store and blob storage."""

    markdown: str
    url: str
    doc_id: str
    storage_key: str
    namespace: str
