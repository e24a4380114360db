"""Markdown Embed service: embeds crawled markdown into a vector index."""

__version__ = "0.1.0"
