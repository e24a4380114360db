"""Wiring of pipeline collaborators, shared by the HTTP app and the queue consumer."""

from typing import Optional

from fastapi import Request
from qdrant_client import QdrantClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from markdown_embed.config import Settings, get_settings
from markdown_embed.pipeline.embedding_pipeline import EmbeddingPipeline
from markdown_embed.repositories.page_metadata_repository import PageMetadataRepository
from markdown_embed.services.embedding_service import EmbeddingService
from markdown_embed.services.queue_publisher import EmbeddingQueuePublisher
from markdown_embed.services.storage_service import StorageService
from markdown_embed.services.vector_service import VectorService
from markdown_embed.utils.errors import EmbedServiceException, QueueError


def build_pipeline(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    qdrant_client: Optional[QdrantClient] = None,
) -> EmbeddingPipeline:
    """Build an EmbeddingPipeline over the app's session factory and Qdrant client."""
    return EmbeddingPipeline(
        metadata_repository=PageMetadataRepository(session_factory),
        storage_service=StorageService(settings),
        embedding_service=EmbeddingService(settings),
        vector_service=VectorService(settings, client=qdrant_client),
    )


def get_pipeline(request: Request) -> EmbeddingPipeline:
    """FastAPI dependency returning the app-wide pipeline."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise EmbedServiceException("Embedding pipeline is not available", status_code=503)
    return pipeline


def get_app_settings() -> Settings:
    """FastAPI dependency returning the settings (overridable in tests)."""
    return get_settings()


def get_queue_publisher(request: Request) -> EmbeddingQueuePublisher:
    """FastAPI dependency returning the app-wide queue publisher."""
    publisher = getattr(request.app.state, "queue_publisher", None)
    if publisher is None:
        raise QueueError("Embedding queue is not available")
    return publisher
