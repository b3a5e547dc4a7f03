"""Rustdoc chunker: one chunk set per documented item on a docs.rs page.

Strategy:
- Locate the page's content container (``#main-content``, ``main``, or any
  ``.docblock``). Pages without one are unparsable and counted as skipped.
- The page heading plus its top-level doc block becomes one item
  (module / type / function description).
- Every member section (methods, required trait methods, enum variants,
  struct fields, associated constants and types) becomes one item: its
  signature line followed by its doc block.
- Items over ``max_tokens`` are split by paragraph, then sentence, then word.
"""

from __future__ import annotations

import logging
import re
import urllib.parse
from collections.abc import Sequence

import html2text
from bs4 import BeautifulSoup, Tag

from libdocs.db.models import Chunk
from libdocs.errors import ParseError
from libdocs.ingest.base import BaseChunker, ChunkingResult
from libdocs.ingest.fetcher import Page

logger = logging.getLogger(__name__)

_MEMBER_ID_RE = re.compile(
    r"^(method|tymethod|variant|structfield|associatedconstant|associatedtype)\.(.+?)(-\d+)?$"
)
# Anchors, source links and stability badges that add noise to signatures.
_NOISE_SELECTORS = ("a.anchor", "a.src", "a.srclink", ".rightside", "button", "script", "style")


class RustdocChunker(BaseChunker):
    """Split rustdoc HTML pages into per-item chunks."""

    def chunk(self, pages: Sequence[Page]) -> ChunkingResult:
        if not pages:
            raise ParseError("No documentation pages to chunk")

        result = ChunkingResult()
        for page in pages:
            try:
                chunks = self.chunk_page(page)
            except ParseError as exc:
                result.skipped += 1
                result.errors.append(f"{page.url}: {exc}")
                logger.warning("Skipping unparsable page %s: %s", page.url, exc)
                continue
            result.chunks.extend(chunks)

        if result.skipped == len(pages):
            raise ParseError(f"None of the {len(pages)} fetched page(s) could be parsed")
        return result

    def chunk_page(self, page: Page) -> list[Chunk]:
        """Return the chunks for one page.

        Raises:
            ParseError: If the page has no recognisable documentation content.
        """
        soup = BeautifulSoup(page.html, "html.parser")
        container = soup.select_one("#main-content") or soup.find("main")
        if container is None:
            if soup.select_one(".docblock") is None:
                raise ParseError("no documentation content container found")
            container = soup.body or soup
        for selector in _NOISE_SELECTORS:
            for tag in container.select(selector):
                tag.decompose()

        base_path = item_path_from_url(page.url)
        chunks: list[Chunk] = []

        top_text = self._top_item_text(container)
        if top_text:
            chunks.extend(self._make_chunks(base_path, top_text, page.url))

        for member in container.find_all(id=_MEMBER_ID_RE):
            member_name = _MEMBER_ID_RE.match(member["id"]).group(2)
            text = self._member_text(member)
            if not text:
                continue
            path = f"{base_path}::{member_name}" if base_path else member_name
            chunks.extend(self._make_chunks(path, text, f"{page.url}#{member['id']}"))

        return chunks

    # ------------------------------------------------------------------
    # Item extraction
    # ------------------------------------------------------------------

    @staticmethod
    def _top_item_text(container: Tag) -> str:
        doc = container.select_one("details.top-doc div.docblock") or container.find(
            "div", class_="docblock", recursive=False
        )
        if doc is None:
            return ""
        body = _html_to_text(doc)
        if not body:
            return ""
        heading = container.find("h1")
        title = " ".join(heading.get_text(" ", strip=True).split()) if heading else ""
        return f"{title}\n\n{body}" if title else body

    @staticmethod
    def _member_text(member: Tag) -> str:
        header = member.select_one(".code-header") or member
        signature = " ".join(header.get_text(" ", strip=True).split())

        doc: Tag | None = None
        summary = member.find_parent("summary")
        if summary is not None and summary.parent is not None:
            doc = summary.parent.find("div", class_="docblock", recursive=False)
        else:
            sibling = member.find_next_sibling()
            if sibling is not None and "docblock" in (sibling.get("class") or []):
                doc = sibling

        body = _html_to_text(doc) if doc is not None else ""
        return "\n\n".join(part for part in (signature, body) if part)

    def _make_chunks(self, item_path: str, text: str, source_url: str) -> list[Chunk]:
        return [
            Chunk(
                item_path=item_path,
                text=piece,
                part=i,
                token_count=self.count_tokens(piece),
                source_url=source_url,
            )
            for i, piece in enumerate(self._split_to_budget(text))
        ]


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def item_path_from_url(url: str) -> str:
    """Derive a Rust item path from a docs.rs page URL.

    ``https://docs.rs/tokio/latest/tokio/sync/struct.Mutex.html`` → ``tokio::sync::Mutex``.
    """
    segments = [s for s in urllib.parse.urlparse(url).path.split("/") if s]
    # Drop the /{name}/{version}/ prefix.
    if len(segments) >= 3:
        segments = segments[2:]
    if segments and segments[-1].endswith(".html"):
        leaf = segments.pop()[: -len(".html")]
        if leaf != "index" and "." in leaf:
            segments.append(leaf.split(".", 1)[1])
        elif leaf not in ("index", "all"):
            segments.append(leaf)
    return "::".join(segments)


def _html_to_text(tag: Tag) -> str:
    # HTML2Text instances keep parse state; one per call keeps workers independent.
    converter = html2text.HTML2Text()
    converter.ignore_links = True
    converter.ignore_images = True
    converter.body_width = 0
    return converter.handle(str(tag)).strip()
