"""Answer summarizer: compose a grounded answer from retrieved documentation chunks."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import litellm

from libdocs.db.models import ScoredChunk
from libdocs.errors import ProviderError

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """\
You are an expert on the {library} library. Answer the user's question using \
only the documentation excerpts provided. If the excerpts do not contain the \
answer, say so plainly instead of guessing. Refer to items by their path."""

_USER_PROMPT = """\
Documentation excerpts:

{context}

Question: {question}"""

_DEFAULT_MODEL = "openai/gpt-4o-mini"


class AnswerSummarizer:
    """Ask a completion model to answer a question from retrieved chunks.

    Args:
        model: LiteLLM model string for answer generation.
        max_tokens: Maximum tokens in the generated answer.
        timeout: Per-request timeout in seconds; a timeout is not retried.
    """

    def __init__(
        self,
        model: str = _DEFAULT_MODEL,
        max_tokens: int = 1024,
        timeout: float = 60.0,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout

    def summarize(self, library: str, question: str, chunks: Sequence[ScoredChunk]) -> str:
        """Return an answer to *question* grounded in *chunks*.

        Raises:
            ProviderError: If the completion call fails.
        """
        context = "\n\n---\n\n".join(
            f"[{sc.chunk.item_path}]\n{sc.chunk.text}" for sc in chunks
        )
        messages = [
            {"role": "system", "content": _SYSTEM_PROMPT.format(library=library)},
            {"role": "user", "content": _USER_PROMPT.format(context=context, question=question)},
        ]
        try:
            response = litellm.completion(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=0.0,
                num_retries=0,
                timeout=self.timeout,
            )
        except Exception as exc:
            raise ProviderError(f"{self.model}: {exc}") from exc
        answer = response.choices[0].message.content or ""
        logger.debug("Summarized %d chunk(s) for %s with %s", len(chunks), library, self.model)
        return answer.strip()
