"""SQLAlchemy models for the page metadata store.

The crawler owns this table; this service only reads rows and stamps
``embedding_created_at``.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class PageMetadata(Base):
    """A crawled page and the location of its markdown in blob storage."""

    __tablename__ = "PageMetadata"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    url: Mapped[str] = mapped_column(Text, unique=True, index=True, nullable=False)
    r2_path: Mapped[str] = mapped_column(Text, nullable=False)
    embedding_created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<PageMetadata(id={self.id}, url={self.url})>"
