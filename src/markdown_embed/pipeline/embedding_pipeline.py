"""Embedding pipeline: resolve, embed, upsert, then record timestamps."""

import asyncio
from typing import List, Optional, Sequence

from markdown_embed.models.document import ResolvedDocument
from markdown_embed.models.embedding import EmbeddingVector
from markdown_embed.models.outcome import PipelineOutcome
from markdown_embed.models.request import EmbeddingRequest
from markdown_embed.repositories.page_metadata_repository import PageMetadataRepository
from markdown_embed.services.embedding_service import EmbeddingService
from markdown_embed.services.storage_service import StorageService
from markdown_embed.services.vector_service import VectorService
from markdown_embed.utils.errors import EmbeddingGenerationError, PipelineStageError
from markdown_embed.utils.logging import get_logger

logger = get_logger("embedding_pipeline")


class EmbeddingPipeline:
    """
    Turns a batch of EmbeddingRequests into exactly one PipelineOutcome.

    Processing:
    1. Resolve each request in order: metadata lookup, then blob fetch.
       Unknown URLs and missing blobs are skipped.
    2. No resolved documents -> hardfail (404, do not retry)
    3. One embedding call for every resolved document, in order
    4. One vector upsert for the whole batch
    5. Best-effort embedding timestamp per document
    6. success (200) with the provider's billed units and warnings

    Lookup, fetch, embed and upsert faults end the run as softfail (500,
    retry the same batch). Nothing irreversible has happened before the
    upsert, and the upsert overwrites by vector id.
    """

    def __init__(
        self,
        metadata_repository: PageMetadataRepository,
        storage_service: StorageService,
        embedding_service: EmbeddingService,
        vector_service: VectorService,
    ):
        self.metadata_repository = metadata_repository
        self.storage_service = storage_service
        self.embedding_service = embedding_service
        self.vector_service = vector_service

    async def _resolve_one(self, request: EmbeddingRequest) -> Optional[ResolvedDocument]:
        record = await self.metadata_repository.get_by_url(request.url)
        if record is None:
            logger.info(f"Skipping URL not in metadata store: {request.url}")
            return None

        markdown = await self.storage_service.fetch_markdown(record.storage_path)
        if markdown is None:
            logger.info(
                f"Skipping URL with missing markdown: {request.url} (storage_key={record.storage_path})"
            )
            return None

        return ResolvedDocument(
            markdown=markdown,
            url=request.url,
            doc_id=record.id,
            storage_key=record.storage_path,
            namespace=request.namespace,
        )

    async def resolve(self, requests: Sequence[EmbeddingRequest]) -> List[ResolvedDocument]:
        """Look up and fetch every request, keeping request order and dropping skipped items."""
        documents: List[ResolvedDocument] = []
        for request in requests:
            document = await self._resolve_one(request)
            if document is not None:
                documents.append(document)
        return documents

    async def _mark_embedded(self, doc_id: str) -> bool:
        try:
            await self.metadata_repository.mark_embedded(doc_id)
            return True
        except Exception as e:
            logger.warning(f"Failed to update PageMetadata: doc_id={doc_id} - {e}")
            return False

    async def _update_metadata(self, vectors: List[EmbeddingVector]) -> int:
        results = await asyncio.gather(
            *(self._mark_embedded(v.metadata.doc_id) for v in vectors)
        )
        return sum(1 for ok in results if ok)

    async def run(self, requests: Sequence[EmbeddingRequest]) -> PipelineOutcome:
        """
        Run the pipeline for one batch.

        Args:
            requests: Ordered embedding requests

        Returns:
            PipelineOutcome classifying the run as success, hardfail or softfail
        """
        logger.info(f"Embedding pipeline started: requests={len(requests)}")

        try:
            documents = await self.resolve(requests)
            if not documents:
                logger.info(f"No valid markdown found: requests={len(requests)}")
                return PipelineOutcome.hardfail()

            batch = await self.embedding_service.embed_documents(
                [d.markdown for d in documents]
            )
            if len(batch.vectors) != len(documents):
                raise EmbeddingGenerationError(
                    "Embedding response size mismatch",
                    details={"expected": len(documents), "got": len(batch.vectors)},
                )

            vectors = [
                EmbeddingVector.from_document(document, values)
                for document, values in zip(documents, batch.vectors)
            ]
            await self.vector_service.upsert(vectors)
        except PipelineStageError as e:
            logger.error(
                f"Embedding pipeline failed at {e.details.get('stage')}: {e.message}",
                extra={"extra_fields": {"code": e.code, "details": e.details}},
            )
            return PipelineOutcome.softfail(e.message)
        except Exception as e:
            logger.error(f"Unexpected error in embedding pipeline: {e}", exc_info=True)
            return PipelineOutcome.softfail("Failed to process embedding request")

        updated = await self._update_metadata(vectors)
        logger.info(
            f"Embedding pipeline succeeded: requests={len(requests)}, "
            f"vectors={len(vectors)}, metadata_updated={updated}"
        )
        return PipelineOutcome.success(batch.billed_units, batch.warnings)

    async def close(self) -> None:
        """Close the network clients owned by the pipeline's services."""
        await self.embedding_service.close()
        await self.storage_service.close()
