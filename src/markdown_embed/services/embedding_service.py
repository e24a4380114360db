"""Embedding generation service (provider-agnostic)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from markdown_embed.config import EmbeddingProvider, Settings, get_settings
from markdown_embed.models.embedding import EmbeddingBatch
from markdown_embed.utils.errors import EmbeddingGenerationError, PipelineStage, stage_errors
from markdown_embed.utils.logging import get_logger

logger = get_logger("embedding_service")

COHERE_EMBED_PATH = "/v2/embed"
FLOAT_EMBEDDING_TYPE = "float"
_RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class TransientEmbeddingError(EmbeddingGenerationError):
    """Provider failure worth retrying (rate limit, 5xx, network)."""


class EmbeddingService:
    """
    Generate embeddings for whole markdown documents.

    One call to :meth:`embed_documents` is one batched provider request
    (retried on transient failures). The result is atomic: either every text
    gets a vector, in input order, or EmbeddingGenerationError is raised.

    Providers:
    - cohere: Cohere v2 embed API, ``search_document`` input type, float vectors
    - openai: OpenAI embeddings API
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        openai_client: Optional[Any] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._provider = self._settings.embedding.provider
        self._model_name = self._settings.embedding.embedding_model
        self._http_client = http_client
        self._openai_client = openai_client
        self.wait = wait_exponential(multiplier=1, min=1, max=10)

    @property
    def model_name(self) -> str:
        return self._model_name

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            embedding = self._settings.embedding
            self._http_client = httpx.AsyncClient(
                base_url=embedding.cohere_base_url.rstrip("/"),
                timeout=embedding.embedding_timeout,
            )
        return self._http_client

    def _get_openai_client(self):
        if self._openai_client is None:
            from openai import AsyncOpenAI

            embedding = self._settings.embedding
            self._openai_client = AsyncOpenAI(
                api_key=embedding.openai_api_key,
                base_url=embedding.openai_base_url,
                timeout=embedding.embedding_timeout,
                max_retries=0,
            )
        return self._openai_client

    async def _embed_with_cohere(self, texts: List[str]) -> EmbeddingBatch:
        """Call the Cohere v2 embed endpoint once for all texts."""
        embedding = self._settings.embedding
        payload = {
            "model": self._model_name,
            "texts": texts,
            "input_type": embedding.embedding_input_type,
            "embedding_types": [FLOAT_EMBEDDING_TYPE],
        }
        headers = {
            "Authorization": f"Bearer {embedding.cohere_api_key}",
            "Accept": "application/json",
        }

        try:
            response = await self._get_http_client().post(
                COHERE_EMBED_PATH, json=payload, headers=headers
            )
        except httpx.TransportError as e:
            raise TransientEmbeddingError(
                f"Embedding request failed: {type(e).__name__}",
                model=self._model_name,
                details={"error": str(e)},
            ) from e

        if response.status_code in _RETRYABLE_STATUS_CODES:
            raise TransientEmbeddingError(
                f"Embedding provider returned {response.status_code}",
                model=self._model_name,
                details={"status_code": response.status_code, "response": response.text[:500]},
            )
        if response.status_code != 200:
            raise EmbeddingGenerationError(
                f"Embedding provider returned {response.status_code}",
                model=self._model_name,
                details={"status_code": response.status_code, "response": response.text[:500]},
            )

        data: Dict[str, Any] = response.json()
        meta = data.get("meta") or {}
        vectors = (data.get("embeddings") or {}).get(FLOAT_EMBEDDING_TYPE)
        if not vectors:
            logger.error(
                "Failed to generate embeddings",
                extra={"extra_fields": {"response_id": data.get("id"), "meta": meta}},
            )
            raise EmbeddingGenerationError(
                model=self._model_name,
                details={"response_id": data.get("id")},
            )

        return EmbeddingBatch(
            vectors=vectors,
            billed_units=meta.get("billed_units") or {},
            warnings=meta.get("warnings") or [],
            response_id=data.get("id"),
            model=self._model_name,
        )

    async def _embed_with_openai(self, texts: List[str]) -> EmbeddingBatch:
        """Call the OpenAI embeddings endpoint once for all texts."""
        from openai import APIConnectionError, APIStatusError, RateLimitError

        client = self._get_openai_client()
        try:
            resp = await client.embeddings.create(model=self._model_name, input=texts)
        except (APIConnectionError, RateLimitError) as e:
            raise TransientEmbeddingError(
                f"Embedding request failed: {e}", model=self._model_name
            ) from e
        except APIStatusError as e:
            error_cls = (
                TransientEmbeddingError
                if e.status_code in _RETRYABLE_STATUS_CODES
                else EmbeddingGenerationError
            )
            raise error_cls(
                f"Embedding provider returned {e.status_code}", model=self._model_name
            ) from e

        if not resp.data:
            raise EmbeddingGenerationError(model=self._model_name, details={"response_id": None})

        ordered = sorted(resp.data, key=lambda d: d.index)
        usage = getattr(resp, "usage", None)
        billed_units = {"input_tokens": usage.prompt_tokens} if usage is not None else {}
        return EmbeddingBatch(
            vectors=[d.embedding for d in ordered],
            billed_units=billed_units,
            warnings=[],
            model=self._model_name,
        )

    async def _embed_once(self, texts: List[str]) -> EmbeddingBatch:
        if self._provider == EmbeddingProvider.COHERE:
            return await self._embed_with_cohere(texts)
        if self._provider == EmbeddingProvider.OPENAI:
            return await self._embed_with_openai(texts)
        raise EmbeddingGenerationError(
            f"Unsupported embedding provider: {self._provider}", model=self._model_name
        )

    async def _embed_with_retry(self, texts: List[str]) -> EmbeddingBatch:
        """Embed with retry logic (rate limits, transient failures)."""
        async for attempt in AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.embedding.embedding_max_retries)),
            wait=self.wait,
            retry=retry_if_exception_type(TransientEmbeddingError),
        ):
            with attempt:
                return await self._embed_once(texts)
        # unreachable due to reraise=True
        raise EmbeddingGenerationError("Embedding retries exhausted", model=self._model_name)

    def _validate(self, batch: EmbeddingBatch, expected: int) -> None:
        if len(batch.vectors) != expected:
            raise EmbeddingGenerationError(
                "Embedding response size mismatch",
                model=self._model_name,
                details={"expected": expected, "got": len(batch.vectors)},
            )

        expected_dimension = self._settings.embedding.embedding_dimension
        for vector in batch.vectors:
            if not vector:
                raise EmbeddingGenerationError(model=self._model_name)
            if expected_dimension is not None and len(vector) != expected_dimension:
                raise EmbeddingGenerationError(
                    "Embedding dimension mismatch",
                    model=self._model_name,
                    details={
                        "expected_dimension": expected_dimension,
                        "actual_dimension": len(vector),
                    },
                )

    async def embed_documents(self, texts: List[str]) -> EmbeddingBatch:
        """
        Embed a batch of documents in one provider call.

        Args:
            texts: Non-empty, ordered list of markdown documents

        Returns:
            EmbeddingBatch whose vectors are aligned with ``texts``

        Raises:
            EmbeddingGenerationError: On any provider, transport or validation failure
        """
        if not texts:
            raise EmbeddingGenerationError(
                "No texts to embed", model=self._model_name, details={"count": 0}
            )

        if not self._settings.embedding.is_configured:
            raise EmbeddingGenerationError(
                "Embeddings are not configured. Set COHERE_API_KEY (EMBEDDING_PROVIDER=cohere) "
                "or OPENAI_API_KEY (EMBEDDING_PROVIDER=openai).",
                model=self._model_name,
            )

        logger.info(
            f"Generating embeddings: provider={self._provider.value}, "
            f"model={self._model_name}, texts={len(texts)}"
        )

        async with stage_errors(PipelineStage.EMBED, model=self._model_name, texts=len(texts)):
            batch = await self._embed_with_retry(texts)
            self._validate(batch, len(texts))

        logger.info(
            "Generated embeddings",
            extra={
                "extra_fields": {
                    "response_id": batch.response_id,
                    "count": len(batch.vectors),
                    "dimension": batch.dimension,
                    "billed_units": batch.billed_units,
                    "warnings": batch.warnings,
                }
            },
        )
        return batch

    async def close(self) -> None:
        """Close underlying HTTP clients."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
        if self._openai_client is not None and hasattr(self._openai_client, "close"):
            await self._openai_client.close()
            self._openai_client = None
