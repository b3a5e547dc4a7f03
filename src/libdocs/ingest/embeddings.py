"""Embedding providers: turn chunk text into vectors via LiteLLM.

Any LiteLLM embedding model string works (``openai/text-embedding-3-small``,
``voyage/voyage-3.5``, ...). Known models carry their dimensionality and batch
limits; unknown models must have ``dimensions`` configured.

Transient faults (rate limits, timeouts, connection errors, 5xx) surface as
RateLimited so the orchestrator can back off and retry. Everything else is a
ProviderError.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import litellm

from libdocs.errors import ProviderError, RateLimited

if TYPE_CHECKING:
    from libdocs.config import EmbeddingCfg

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    litellm.RateLimitError,
    litellm.Timeout,
    litellm.APIConnectionError,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
)


@dataclass(frozen=True)
class ModelSpec:
    dimensions: int
    max_batch_items: int
    max_batch_tokens: int


# Keyed by model name without the provider prefix.
KNOWN_MODELS: dict[str, ModelSpec] = {
    "text-embedding-3-small": ModelSpec(1536, 2048, 300_000),
    "text-embedding-3-large": ModelSpec(3072, 2048, 300_000),
    "text-embedding-ada-002": ModelSpec(1536, 2048, 300_000),
    "voyage-3.5": ModelSpec(1024, 1000, 320_000),
    "voyage-3.5-lite": ModelSpec(1024, 1000, 1_000_000),
    "voyage-code-3": ModelSpec(1024, 1000, 120_000),
}

_DEFAULT_BATCH_ITEMS = 256
_DEFAULT_BATCH_TOKENS = 100_000


class EmbeddingProvider(ABC):
    """Capability interface for embedding backends.

    Implementations must return one vector per input text, in input order,
    each of length ``dimensions``.
    """

    model: str
    dimensions: int
    max_batch_items: int
    max_batch_tokens: int

    @staticmethod
    def count_tokens(text: str) -> int:
        """Approximate token count: 4 characters ≈ 1 token."""
        return max(1, len(text) // 4)

    @abstractmethod
    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts* in one request.

        Raises:
            RateLimited: On a retryable provider fault.
            ProviderError: On any other fault or a malformed response.
        """


class LiteLLMEmbeddingProvider(EmbeddingProvider):
    """Embedding provider backed by ``litellm.embedding()``.

    Args:
        model: LiteLLM model string in 'provider/model' format.
        dimensions: Vector size; required for models not in KNOWN_MODELS.
        max_batch_items: Override the per-request item limit.
        max_batch_tokens: Override the per-request token limit.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        model: str,
        dimensions: int | None = None,
        max_batch_items: int | None = None,
        max_batch_tokens: int | None = None,
        timeout: float = 60.0,
    ) -> None:
        spec = KNOWN_MODELS.get(model.split("/")[-1])
        if dimensions is None and spec is None:
            raise ValueError(
                f"Unknown embedding model '{model}'. Set embedding.dimensions in the config."
            )
        self.model = model
        self.dimensions = dimensions or spec.dimensions
        self.max_batch_items = max_batch_items or (spec.max_batch_items if spec else _DEFAULT_BATCH_ITEMS)
        self.max_batch_tokens = max_batch_tokens or (
            spec.max_batch_tokens if spec else _DEFAULT_BATCH_TOKENS
        )
        self.timeout = timeout
        # Only request a reduced size when it differs from the model's native one.
        self._request_dimensions = (
            self.dimensions if spec is not None and self.dimensions != spec.dimensions else None
        )

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        kwargs: dict = {"model": self.model, "input": list(texts), "timeout": self.timeout}
        if self._request_dimensions is not None:
            kwargs["dimensions"] = self._request_dimensions

        try:
            response = litellm.embedding(**kwargs)
        except _TRANSIENT_ERRORS as exc:
            raise RateLimited(f"{self.model}: {exc}") from exc
        except Exception as exc:
            raise ProviderError(f"{self.model}: {exc}") from exc

        vectors = [item["embedding"] for item in response.data]
        if len(vectors) != len(texts):
            raise ProviderError(
                f"{self.model} returned {len(vectors)} embeddings for {len(texts)} inputs"
            )
        for vec in vectors:
            if len(vec) != self.dimensions:
                raise ProviderError(
                    f"{self.model} returned a {len(vec)}-dimensional vector, "
                    f"expected {self.dimensions}"
                )
        logger.debug("Embedded %d text(s) with %s", len(texts), self.model)
        return vectors


def iter_batches(
    texts: Sequence[str],
    max_items: int,
    max_tokens: int,
    count_tokens: Callable[[str], int],
) -> Iterator[list[str]]:
    """Yield consecutive slices of *texts* within the item and token limits.

    Order is preserved. A single text over *max_tokens* is yielded alone.
    """
    if max_items < 1 or max_tokens < 1:
        raise ValueError("batch limits must be >= 1")
    batch: list[str] = []
    batch_tokens = 0
    for text in texts:
        tokens = count_tokens(text)
        if batch and (len(batch) >= max_items or batch_tokens + tokens > max_tokens):
            yield batch
            batch, batch_tokens = [], 0
        batch.append(text)
        batch_tokens += tokens
    if batch:
        yield batch


def create_provider(cfg: EmbeddingCfg) -> EmbeddingProvider:
    """Build the embedding provider described by the ``embedding`` config section."""
    return LiteLLMEmbeddingProvider(
        model=cfg.model,
        dimensions=cfg.dimensions,
        max_batch_items=cfg.max_batch_items,
        max_batch_tokens=cfg.max_batch_tokens,
        timeout=cfg.timeout,
    )
