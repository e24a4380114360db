"""Qdrant integration service for storing markdown embeddings."""

from __future__ import annotations

import asyncio
import uuid
from typing import List, Optional

from qdrant_client import QdrantClient
from qdrant_client.http.exceptions import UnexpectedResponse
from qdrant_client.models import Distance, PayloadSchemaType, PointStruct, VectorParams

from markdown_embed.config import Settings, get_settings
from markdown_embed.models.embedding import EmbeddingVector
from markdown_embed.utils.errors import PipelineStage, VectorUpsertError, stage_errors
from markdown_embed.utils.logging import get_logger

logger = get_logger("vector_service")

# Deterministic namespace for deriving Qdrant point UUIDs from vector ids
_POINT_ID_NAMESPACE = uuid.UUID("0f6f3c55-6b0e-4d6a-9a53-7f5e2a1c9d41")

_DISTANCES = {
    "cosine": Distance.COSINE,
    "dot": Distance.DOT,
    "euclid": Distance.EUCLID,
}


def make_point_id(vector_id: str) -> str:
    """Map a vector id such as ``doc123:0`` to a stable Qdrant point UUID."""
    return str(uuid.uuid5(_POINT_ID_NAMESPACE, vector_id))


class VectorService:
    """
    Store document vectors in Qdrant.

    Strategy:
    - One collection for every namespace; the namespace is a payload field
      with a keyword index, so a whole batch is a single upsert call
    - Point ids are uuid5(vector id); the vector id itself is kept in the
      payload as ``vector_id``, so re-embedding a document overwrites its point
    - The collection is created on first use with the vector dimension
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[QdrantClient] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client
        self._ensured_size: Optional[int] = None

    @property
    def collection_name(self) -> str:
        return self._settings.qdrant.collection_name

    def _get_client(self) -> QdrantClient:
        if self._client is not None:
            return self._client

        self._client = QdrantClient(
            url=self._settings.qdrant.url,
            api_key=self._settings.qdrant.api_key,
            timeout=self._settings.qdrant.timeout,
        )
        return self._client

    def _ensure_collection(self, vector_size: int) -> None:
        """Create the collection if missing and check its vector size."""
        client = self._get_client()
        try:
            info = client.get_collection(self.collection_name)
        except UnexpectedResponse as e:
            if getattr(e, "status_code", None) != 404:
                raise
            client.create_collection(
                collection_name=self.collection_name,
                vectors_config=VectorParams(
                    size=vector_size,
                    distance=_DISTANCES[self._settings.qdrant.distance],
                ),
            )
            client.create_payload_index(
                collection_name=self.collection_name,
                field_name="namespace",
                field_schema=PayloadSchemaType.KEYWORD,
            )
            logger.info(
                f"Created Qdrant collection: {self.collection_name} (vector_size={vector_size})"
            )
            return

        current_size = getattr(getattr(info.config.params, "vectors", None), "size", None)
        if current_size is not None and int(current_size) != int(vector_size):
            raise VectorUpsertError(
                "Qdrant collection vector size mismatch",
                details={
                    "collection": self.collection_name,
                    "expected": vector_size,
                    "actual": int(current_size),
                },
            )

    def _to_point(self, vector: EmbeddingVector) -> PointStruct:
        return PointStruct(
            id=make_point_id(vector.id),
            vector=vector.values,
            payload={
                "vector_id": vector.id,
                "namespace": vector.namespace,
                **vector.metadata.model_dump(),
            },
        )

    async def upsert(self, vectors: List[EmbeddingVector]) -> List[str]:
        """
        Upsert all vectors in one call.

        Returns:
            The Qdrant point ids, in input order

        Raises:
            VectorUpsertError: If the collection check or the upsert fails
        """
        if not vectors:
            raise VectorUpsertError("No vectors to upsert", details={"count": 0})

        vector_size = len(vectors[0].values)
        if any(len(v.values) != vector_size for v in vectors):
            raise VectorUpsertError(
                "Vectors in one batch must share a dimension",
                details={"dimensions": sorted({len(v.values) for v in vectors})},
            )

        def _upsert() -> List[str]:
            if self._ensured_size != vector_size:
                self._ensure_collection(vector_size)
                self._ensured_size = vector_size
            points = [self._to_point(v) for v in vectors]
            self._get_client().upsert(
                collection_name=self.collection_name, points=points, wait=True
            )
            return [str(p.id) for p in points]

        async with stage_errors(
            PipelineStage.UPSERT,
            collection=self.collection_name,
            vector_ids=[v.id for v in vectors],
        ):
            point_ids = await asyncio.to_thread(_upsert)

        logger.info(
            "Upserted vectors",
            extra={
                "extra_fields": {
                    "collection": self.collection_name,
                    "vector_ids": [v.id for v in vectors],
                    "points": len(point_ids),
                }
            },
        )
        return point_ids

    async def check_connection(self) -> bool:
        """Check that Qdrant is reachable."""
        try:
            await asyncio.to_thread(self._get_client().get_collections)
            return True
        except Exception as e:
            logger.warning(f"Qdrant connection check failed: {e}")
            return False
