"""Query engine: embed a question and return the nearest documentation chunks.

Pipeline:
  1. Resolve the library configuration; refuse unpopulated libraries.
  2. Check the stored corpus was built with the live embedding model.
  3. Embed the question and run a k-nearest-neighbour search.
  4. Optionally summarize the hits into an answer. A summarizer failure is
     reported on the result; the retrieved chunks are still returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from libdocs.db.models import ScoredChunk
from libdocs.db.store import VectorStore
from libdocs.errors import ConfigMismatch, NotFound, ProviderError, describe
from libdocs.ingest.embeddings import EmbeddingProvider
from libdocs.rag.summarizer import AnswerSummarizer

logger = logging.getLogger(__name__)


@dataclass
class QueryResult:
    library: str
    version: str | None
    question: str
    chunks: list[ScoredChunk] = field(default_factory=list)
    summary: str | None = None
    summary_error: str | None = None


class QueryEngine:
    """Answer natural-language questions against one store connection.

    Args:
        store: Open VectorStore (one per thread).
        provider: Embedding provider; must match the provider used at population.
        top_k: Number of chunks to retrieve.
        summarizer: Optional answer summarizer.
    """

    def __init__(
        self,
        store: VectorStore,
        provider: EmbeddingProvider,
        top_k: int = 5,
        summarizer: AnswerSummarizer | None = None,
    ) -> None:
        if top_k < 1:
            raise ValueError("top_k must be >= 1")
        self._store = store
        self._provider = provider
        self.top_k = top_k
        self._summarizer = summarizer

    def answer(
        self,
        name: str,
        question: str,
        version_spec: str | None = None,
        summarize: bool = True,
    ) -> QueryResult:
        """Retrieve the chunks most relevant to *question* for library *name*.

        Raises:
            ValueError: If *question* is blank.
            NotFound: If the library is not configured or has never been populated.
            ConfigMismatch: If the corpus was embedded with a different model or size.
            RateLimited, ProviderError: If the question cannot be embedded.
        """
        if not question.strip():
            raise ValueError("question must not be empty")

        label = f"{name}@{version_spec}" if version_spec else name
        config = self._store.resolve_library(name, version_spec)
        if config is None:
            raise NotFound(
                f"Library '{label}' is not configured. Add it with `libdocs add {name}` "
                "and query again once population completes."
            )
        if not config.is_populated:
            job = self._store.get_latest_job(config.id)
            state = f" (latest job: {job.status.value})" if job else ""
            raise NotFound(
                f"Library '{config.label}' has not been populated yet{state}. "
                f"Run `libdocs populate {config.name} --version {config.version_spec}` or wait "
                "for the running job."
            )
        if (
            config.embedding_model != self._provider.model
            or config.dimensions != self._provider.dimensions
        ):
            raise ConfigMismatch(
                f"Library '{config.label}' was embedded with {config.embedding_model} "
                f"({config.dimensions} dims) but the configured model is {self._provider.model} "
                f"({self._provider.dimensions} dims). Re-populate it to switch models."
            )

        vector = self._provider.embed([question])[0]
        hits = self._store.similarity_search(config.id, vector, self.top_k)
        logger.info("Query on %s returned %d chunk(s)", config.label, len(hits))

        result = QueryResult(
            library=config.label, version=config.current_version, question=question, chunks=hits
        )
        if summarize and self._summarizer is not None and hits:
            try:
                result.summary = self._summarizer.summarize(config.label, question, hits)
            except ProviderError as exc:
                result.summary_error = describe(exc)
                logger.warning("Summarization failed for %s: %s", config.label, exc)
        return result


def format_result(result: QueryResult) -> str:
    """Render *result* as plain text for transports without rich output."""
    if not result.chunks:
        return f"No relevant documentation found in {result.library} for: {result.question}"

    lines: list[str] = []
    if result.summary:
        lines.extend([f"From {result.library} docs (version {result.version}): {result.summary}", ""])
    elif result.summary_error:
        lines.extend([f"Summary unavailable: {result.summary_error}", ""])

    for i, scored in enumerate(result.chunks, start=1):
        lines.append(
            f"{i}. [{scored.chunk.item_path}] {scored.chunk.text} "
            f"(similarity: {scored.similarity:.3f})"
        )
    return "\n".join(lines)
