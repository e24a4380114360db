"""Unit tests for VectorService."""

import uuid

import pytest
from unittest.mock import MagicMock

from qdrant_client.http.exceptions import UnexpectedResponse
from qdrant_client.models import Distance, PayloadSchemaType

from markdown_embed.models.embedding import EmbeddingVector, VectorMetadata
from markdown_embed.services.vector_service import VectorService, make_point_id
from markdown_embed.utils.errors import VectorUpsertError


def make_vector(doc_id: str, dimension: int = 4, namespace: str = "markdown-rag") -> EmbeddingVector:
    return EmbeddingVector(
        id=f"{doc_id}:0",
        values=[0.5] * dimension,
        namespace=namespace,
        metadata=VectorMetadata(
            url=f"https://example.com/{doc_id}",
            doc_id=doc_id,
            r2_key=f"pages/{doc_id}.md",
        ),
    )


def collection_info(size: int) -> MagicMock:
    info = MagicMock()
    info.config.params.vectors.size = size
    return info


def not_found() -> UnexpectedResponse:
    return UnexpectedResponse(
        status_code=404,
        reason_phrase="Not Found",
        content=b'{"status":{"error":"Not found"}}',
        headers={},
    )


class TestMakePointId:
    def test_deterministic_uuid(self):
        point_id = make_point_id("doc123:0")

        assert point_id == make_point_id("doc123:0")
        assert point_id != make_point_id("doc124:0")
        assert uuid.UUID(point_id).version == 5


class TestUpsert:
    @pytest.mark.asyncio
    async def test_single_call_with_payload(self, settings):
        client = MagicMock()
        client.get_collection.return_value = collection_info(4)
        service = VectorService(settings, client=client)

        point_ids = await service.upsert([make_vector("doc1"), make_vector("doc2", namespace="team")])

        assert point_ids == [make_point_id("doc1:0"), make_point_id("doc2:0")]
        client.upsert.assert_called_once()
        kwargs = client.upsert.call_args.kwargs
        assert kwargs["collection_name"] == "test-index"
        assert kwargs["wait"] is True
        points = kwargs["points"]
        assert [p.payload["vector_id"] for p in points] == ["doc1:0", "doc2:0"]
        assert points[1].payload == {
            "vector_id": "doc2:0",
            "namespace": "team",
            "url": "https://example.com/doc2",
            "doc_id": "doc2",
            "r2_key": "pages/doc2.md",
        }

    @pytest.mark.asyncio
    async def test_creates_missing_collection(self, settings):
        client = MagicMock()
        client.get_collection.side_effect = not_found()
        service = VectorService(settings, client=client)

        await service.upsert([make_vector("doc1", dimension=8)])

        create_kwargs = client.create_collection.call_args.kwargs
        assert create_kwargs["collection_name"] == "test-index"
        assert create_kwargs["vectors_config"].size == 8
        assert create_kwargs["vectors_config"].distance == Distance.COSINE
        client.create_payload_index.assert_called_once_with(
            collection_name="test-index",
            field_name="namespace",
            field_schema=PayloadSchemaType.KEYWORD,
        )

    @pytest.mark.asyncio
    async def test_collection_checked_once(self, settings):
        client = MagicMock()
        client.get_collection.return_value = collection_info(4)
        service = VectorService(settings, client=client)

        await service.upsert([make_vector("doc1")])
        await service.upsert([make_vector("doc2")])

        assert client.get_collection.call_count == 1
        assert client.upsert.call_count == 2

    @pytest.mark.asyncio
    async def test_dimension_mismatch_with_collection(self, settings):
        client = MagicMock()
        client.get_collection.return_value = collection_info(1024)
        service = VectorService(settings, client=client)

        with pytest.raises(VectorUpsertError) as exc_info:
            await service.upsert([make_vector("doc1")])

        assert exc_info.value.details["actual"] == 1024
        client.upsert.assert_not_called()

    @pytest.mark.asyncio
    async def test_upsert_failure(self, settings):
        client = MagicMock()
        client.get_collection.return_value = collection_info(4)
        client.upsert.side_effect = ConnectionError("qdrant down")
        service = VectorService(settings, client=client)

        with pytest.raises(VectorUpsertError) as exc_info:
            await service.upsert([make_vector("doc1")])

        assert exc_info.value.message == "Failed to upsert vectors"
        assert exc_info.value.details["vector_ids"] == ["doc1:0"]

    @pytest.mark.asyncio
    async def test_empty_batch(self, settings):
        service = VectorService(settings, client=MagicMock())

        with pytest.raises(VectorUpsertError):
            await service.upsert([])

    @pytest.mark.asyncio
    async def test_mixed_dimensions(self, settings):
        service = VectorService(settings, client=MagicMock())

        with pytest.raises(VectorUpsertError):
            await service.upsert([make_vector("doc1", 4), make_vector("doc2", 8)])
