"""Base chunker interface and token-budget splitting helpers."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from libdocs.db.models import Chunk

if TYPE_CHECKING:
    from libdocs.ingest.fetcher import Page

_PARAGRAPH_RE = re.compile(r"\n\s*\n")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


@dataclass
class ChunkingResult:
    """Chunks produced from a page set, plus the pages that could not be parsed."""

    chunks: list[Chunk] = field(default_factory=list)
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


class BaseChunker(ABC):
    """Abstract base for documentation chunkers.

    Subclasses implement ``chunk()`` and use ``_split_to_budget()`` to keep
    every piece within ``max_tokens``.

    Token counting uses a 4-chars-per-token approximation; no external
    tokenizer dependency is required.
    """

    def __init__(self, max_tokens: int = 512) -> None:
        if max_tokens < 1:
            raise ValueError("max_tokens must be >= 1")
        self.max_tokens = max_tokens

    @abstractmethod
    def chunk(self, pages: Sequence[Page]) -> ChunkingResult:
        """Split fetched *pages* into Chunk objects.

        Returns:
            A ChunkingResult. Chunks are ordered by page then by position
            within the page.

        Raises:
            ParseError: If no page could be parsed.
        """

    @staticmethod
    def count_tokens(text: str) -> int:
        """Approximate token count: 4 characters ≈ 1 token."""
        return max(1, len(text) // 4)

    def _split_to_budget(self, text: str) -> list[str]:
        """Split *text* into pieces of at most ``max_tokens`` tokens.

        Splits at paragraph boundaries first, then sentences, then whitespace;
        never inside a word. A single word longer than the budget is kept whole
        as its own piece. Empty pieces are dropped.
        """
        text = text.strip()
        if not text:
            return []
        if self.count_tokens(text) <= self.max_tokens:
            return [text]

        pieces: list[str] = []
        for paragraph in _PARAGRAPH_RE.split(text):
            paragraph = paragraph.strip()
            if not paragraph:
                continue
            if self.count_tokens(paragraph) <= self.max_tokens:
                pieces.append(paragraph)
                continue
            for sentence in _SENTENCE_RE.split(paragraph):
                sentence = sentence.strip()
                if not sentence:
                    continue
                if self.count_tokens(sentence) <= self.max_tokens:
                    pieces.append(sentence)
                else:
                    pieces.extend(self._split_words(sentence))
        return self._merge(pieces, "\n\n")

    def _split_words(self, text: str) -> list[str]:
        return self._merge(text.split(), " ")

    def _merge(self, pieces: list[str], joiner: str) -> list[str]:
        """Greedily join consecutive *pieces* while the result stays within budget."""
        merged: list[str] = []
        current = ""
        for piece in pieces:
            candidate = f"{current}{joiner}{piece}" if current else piece
            if current and self.count_tokens(candidate) > self.max_tokens:
                merged.append(current)
                current = piece
            else:
                current = candidate
        if current:
            merged.append(current)
        return merged
