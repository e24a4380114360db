"""Repository for the PageMetadata table."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from markdown_embed.database.models import PageMetadata
from markdown_embed.database.session import session_scope
from markdown_embed.models.document import DocumentMetadataRecord
from markdown_embed.utils.errors import PipelineStage, stage_errors
from markdown_embed.utils.logging import get_logger

logger = get_logger("page_metadata_repository")


class PageMetadataRepository:
    """
    Reads crawled page metadata and records embedding timestamps.

    Each call runs in its own short transaction, so concurrent pipeline runs
    never share a session.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_by_url(self, url: str) -> Optional[DocumentMetadataRecord]:
        """
        Look up a page by its exact URL.

        Returns:
            The metadata record, or None when the URL was never crawled.

        Raises:
            MetadataQueryError: If the query itself fails.
        """
        async with stage_errors(PipelineStage.LOOKUP, url=url):
            async with session_scope(self.session_factory) as session:
                result = await session.execute(
                    select(PageMetadata).where(PageMetadata.url == url)
                )
                row = result.scalar_one_or_none()

        if row is None:
            logger.info(
                "URL is not in the database",
                extra={"extra_fields": {"url": url}},
            )
            return None

        record = DocumentMetadataRecord(
            id=str(row.id),
            url=row.url,
            storage_path=str(row.r2_path),
            embedding_created_at=row.embedding_created_at,
        )
        logger.info(
            "Fetched URL metadata from PageMetadata",
            extra={"extra_fields": {"url": url, "doc_id": record.id, "r2_path": record.storage_path}},
        )
        return record

    async def mark_embedded(self, doc_id: str, embedded_at: Optional[datetime] = None) -> None:
        """
        Stamp ``embedding_created_at`` for a document.

        Raises:
            MetadataUpdateError: If the update fails.
        """
        embedded_at = embedded_at or datetime.now(timezone.utc)
        async with stage_errors(PipelineStage.UPDATE, doc_id=doc_id):
            async with session_scope(self.session_factory) as session:
                result = await session.execute(
                    update(PageMetadata)
                    .where(PageMetadata.id == doc_id)
                    .values(embedding_created_at=embedded_at)
                )

        if result.rowcount == 0:
            logger.warning(
                "No PageMetadata row updated",
                extra={"extra_fields": {"doc_id": doc_id}},
            )
            return

        logger.info(
            "Updated PageMetadata embedding timestamp",
            extra={"extra_fields": {"doc_id": doc_id, "embedding_created_at": embedded_at.isoformat()}},
        )
