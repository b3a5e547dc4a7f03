"""libdocs ingest pipeline: fetcher, chunker, embedding providers and orchestrator."""

from libdocs.ingest.base import BaseChunker, ChunkingResult
from libdocs.ingest.embeddings import EmbeddingProvider, LiteLLMEmbeddingProvider, create_provider
from libdocs.ingest.fetcher import DocsFetcher, FetchResult, Page
from libdocs.ingest.rustdoc import RustdocChunker

__all__ = [
    "BaseChunker",
    "ChunkingResult",
    "DocsFetcher",
    "EmbeddingProvider",
    "FetchResult",
    "LiteLLMEmbeddingProvider",
    "Page",
    "RustdocChunker",
    "create_provider",
]
