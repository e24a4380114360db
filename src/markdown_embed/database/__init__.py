"""Database package for the page metadata store."""

from markdown_embed.database.connection import check_connection, create_engine
from markdown_embed.database.models import Base, PageMetadata
from markdown_embed.database.session import create_session_factory, session_scope

__all__ = [
    "Base",
    "PageMetadata",
    "check_connection",
    "create_engine",
    "create_session_factory",
    "session_scope",
]
