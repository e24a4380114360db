"""Pytest configuration and fixtures for markdown-embed tests."""

import os

# Set environment variables before any imports that read settings
os.environ["ENVIRONMENT"] = "development"
os.environ["AUTH_API_TOKEN"] = "test-token"
os.environ["COHERE_API_KEY"] = "test-cohere-key"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RABBITMQ_CONSUMER_ENABLED"] = "false"

from typing import Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from markdown_embed.config import (
    AuthSettings,
    DatabaseSettings,
    EmbeddingSettings,
    QdrantSettings,
    RabbitMQSettings,
    Settings,
    StorageSettings,
)
from markdown_embed.database.models import Base
from markdown_embed.models.document import DocumentMetadataRecord
from markdown_embed.models.embedding import EmbeddingBatch, EmbeddingVector
from markdown_embed.utils.errors import (
    BlobFetchError,
    EmbeddingGenerationError,
    MetadataQueryError,
    MetadataUpdateError,
    VectorUpsertError,
)

# Test database URL (in-memory SQLite for unit tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_API_TOKEN = "test-token"


@pytest.fixture
def settings() -> Settings:
    """Settings with every collaborator configured for tests."""
    return Settings(
        auth=AuthSettings(api_token=TEST_API_TOKEN),
        database=DatabaseSettings(url=TEST_DATABASE_URL),
        storage=StorageSettings(
            connection_string="UseDevelopmentStorage=true",
            container_name="markdown",
        ),
        embedding=EmbeddingSettings(
            embedding_provider="cohere",
            cohere_api_key="test-cohere-key",
            cohere_base_url="https://cohere.test",
            embedding_max_retries=3,
        ),
        qdrant=QdrantSettings(url="http://qdrant.test:6333", collection_name="test-index"),
        rabbitmq=RabbitMQSettings(batch_size=5, batch_timeout=0.05, max_retries=3),
    )


@pytest.fixture
async def engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# In-memory collaborators for pipeline and adapter tests


class FakeMetadataRepository:
    """Page metadata keyed by URL."""

    def __init__(self, pages: Optional[Dict[str, DocumentMetadataRecord]] = None):
        self.pages = pages or {}
        self.lookups: List[str] = []
        self.updated: List[str] = []
        self.fail_lookup = False
        self.fail_update_for: set = set()

    def add(self, doc_id: str, url: str, storage_path: str) -> None:
        self.pages[url] = DocumentMetadataRecord(id=doc_id, url=url, storage_path=storage_path)

    async def get_by_url(self, url: str) -> Optional[DocumentMetadataRecord]:
        self.lookups.append(url)
        if self.fail_lookup:
            raise MetadataQueryError(details={"url": url})
        return self.pages.get(url)

    async def mark_embedded(self, doc_id: str, embedded_at=None) -> None:
        if doc_id in self.fail_update_for:
            raise MetadataUpdateError(details={"doc_id": doc_id})
        self.updated.append(doc_id)


class FakeStorageService:
    """Markdown blobs keyed by storage key."""

    def __init__(self, blobs: Optional[Dict[str, str]] = None):
        self.blobs = blobs or {}
        self.fetched: List[str] = []
        self.fail = False

    async def fetch_markdown(self, storage_key: str) -> Optional[str]:
        self.fetched.append(storage_key)
        if self.fail:
            raise BlobFetchError(details={"storage_key": storage_key})
        return self.blobs.get(storage_key)

    async def close(self) -> None:
        pass


class FakeEmbeddingService:
    """Returns one fixed-dimension vector per text."""

    def __init__(self, dimension: int = 4):
        self.dimension = dimension
        self.calls: List[List[str]] = []
        self.error: Optional[Exception] = None

    async def embed_documents(self, texts: List[str]) -> EmbeddingBatch:
        self.calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return EmbeddingBatch(
            vectors=[[float(i)] * self.dimension for i in range(len(texts))],
            billed_units={"input_tokens": 3 * len(texts)},
            warnings=[],
            response_id="resp-1",
        )

    async def close(self) -> None:
        pass


class FakeVectorService:
    """Records every upsert call."""

    def __init__(self):
        self.calls: List[List[EmbeddingVector]] = []
        self.fail = False

    @property
    def upserted(self) -> List[EmbeddingVector]:
        return [v for call in self.calls for v in call]

    async def upsert(self, vectors: List[EmbeddingVector]) -> List[str]:
        if self.fail:
            raise VectorUpsertError(details={"count": len(vectors)})
        self.calls.append(list(vectors))
        return [v.id for v in vectors]


@pytest.fixture
def metadata_repository() -> FakeMetadataRepository:
    return FakeMetadataRepository()


@pytest.fixture
def storage_service() -> FakeStorageService:
    return FakeStorageService()


@pytest.fixture
def embedding_service() -> FakeEmbeddingService:
    return FakeEmbeddingService()


@pytest.fixture
def vector_service() -> FakeVectorService:
    return FakeVectorService()


@pytest.fixture
def pipeline(metadata_repository, storage_service, embedding_service, vector_service):
    """EmbeddingPipeline wired to in-memory collaborators."""
    from markdown_embed.pipeline.embedding_pipeline import EmbeddingPipeline

    return EmbeddingPipeline(
        metadata_repository=metadata_repository,
        storage_service=storage_service,
        embedding_service=embedding_service,
        vector_service=vector_service,
    )


@pytest.fixture
def provider_error() -> EmbeddingGenerationError:
    return EmbeddingGenerationError("Embedding request failed: ConnectError", model="test-model")
