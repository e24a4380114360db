"""Repositories for data access."""

from markdown_embed.repositories.page_metadata_repository import PageMetadataRepository

__all__ = ["PageMetadataRepository"]
