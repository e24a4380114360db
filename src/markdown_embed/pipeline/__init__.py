"""Embedding pipeline orchestration."""

from markdown_embed.pipeline.embedding_pipeline import EmbeddingPipeline

__all__ = ["EmbeddingPipeline"]
