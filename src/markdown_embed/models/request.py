"""Inbound embedding request models."""

from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_NAMESPACE = "markdown-rag"

_DEFAULT_PORTS = {"http": 80, "https": 443}


def canonical_url(url: str) -> str:
    """
    Normalize a page URL to the form the crawler stores.

    Lowercases the scheme and host, drops the scheme's default port and gives
    an empty path the root ``/``.

    Raises:
        ValueError: If ``url`` is not an absolute URL with a host.
    """
    parts = urlsplit(url.strip())
    port = parts.port
    if not parts.scheme or not parts.hostname:
        raise ValueError(f"Invalid URL: {url}")

    scheme = parts.scheme.lower()
    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        host = f"{host}:{port}"
    userinfo, _, _ = parts.netloc.rpartition("@")
    netloc = f"{userinfo}@{host}" if userinfo else host

    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, parts.fragment))


class EmbeddingRequest(BaseModel):
    """
    A single document to embed.

    Built by an ingress adapter (HTTP body or queue message) and consumed once
    by the pipeline. The URL is matched exactly against the metadata store.
    """

    model_config = ConfigDict(frozen=True)

    url: str = Field(..., min_length=1, description="Crawled page URL as stored in PageMetadata")
    namespace: str = Field(
        default=DEFAULT_NAMESPACE, min_length=1, description="Vector index namespace"
    )

    @field_validator("url")
    @classmethod
    def reject_blank_url(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("url must not be blank")
        return v


class EmbeddingJobPayload(BaseModel):
    """Wire format of an embedding request (HTTP body or queue message body)."""

    url: Optional[str] = Field(default=None, description="Page URL to embed")
    namespace: Optional[str] = Field(default=None, description="Optional namespace override")

    def to_request(self, default_namespace: str = DEFAULT_NAMESPACE) -> EmbeddingRequest:
        """
        Build an EmbeddingRequest with a canonical URL, falling back to the default namespace.

        Raises:
            ValueError: If ``url`` does not parse as an absolute URL.
        """
        url = canonical_url(self.url) if self.url and self.url.strip() else ""
        return EmbeddingRequest(url=url, namespace=self.namespace or default_namespace)


class EnqueueRequest(BaseModel):
    """Body of the enqueue endpoint: one or more jobs to publish."""

    jobs: list[EmbeddingJobPayload] = Field(..., min_length=1, description="Jobs to publish")
