"""Shared pytest fixtures."""

from __future__ import annotations

import threading
from collections.abc import Sequence
from unittest.mock import MagicMock

import pytest

from libdocs.db.connection import Database
from libdocs.db.schema import initialize
from libdocs.db.store import open_store
from libdocs.ingest.embeddings import EmbeddingProvider
from libdocs.ingest.fetcher import DocsFetcher, FetchResult, Page
from libdocs.ingest.orchestrator import Orchestrator
from libdocs.ingest.rustdoc import RustdocChunker
from libdocs.service import DocsService

# Dimensions of FakeProvider vectors: one per keyword plus a constant bias.
_KEYWORDS = ("mutex", "channel", "spawn")


class FakeProvider(EmbeddingProvider):
    """Deterministic keyword-count embeddings with scriptable failures.

    ``failures`` is consumed one entry per ``embed`` call; an exception entry
    is raised, ``None`` lets the call succeed. ``gate`` (if set) blocks every
    call until the event is set.
    """

    def __init__(
        self,
        model: str = "fake/keyword-embed",
        max_batch_items: int = 2,
        failures: Sequence[Exception | None] = (),
        gate: threading.Event | None = None,
    ) -> None:
        self.model = model
        self.dimensions = len(_KEYWORDS) + 1
        self.max_batch_items = max_batch_items
        self.max_batch_tokens = 100_000
        self.failures = list(failures)
        self.gate = gate
        self.calls: list[list[str]] = []

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if self.gate is not None:
            self.gate.wait(timeout=10)
        self.calls.append(list(texts))
        if self.failures:
            failure = self.failures.pop(0)
            if failure is not None:
                raise failure
        return [vectorize(text) for text in texts]


def vectorize(text: str) -> list[float]:
    lowered = text.lower()
    return [float(lowered.count(word)) for word in _KEYWORDS] + [0.1]


def rustdoc_html(
    title: str,
    top_doc: str | None,
    members: Sequence[tuple[str, str, str]] = (),
) -> str:
    """Build a minimal docs.rs-style page.

    *members* are ``(anchor_id, signature, doc)`` triples, e.g.
    ``("method.lock", "pub fn lock(&self)", "Locks the mutex.")``.
    """
    top = (
        '<details class="toggle top-doc" open><summary>Expand description</summary>'
        f'<div class="docblock"><p>{top_doc}</p></div></details>'
        if top_doc
        else ""
    )
    body = "".join(
        '<details class="toggle method-toggle" open><summary>'
        f'<section id="{anchor}" class="method"><a href="#{anchor}" class="anchor">§</a>'
        f'<h4 class="code-header">{signature}</h4></section></summary>'
        f'<div class="docblock"><p>{doc}</p></div></details>'
        for anchor, signature, doc in members
    )
    return (
        "<html><head><title>docs</title></head><body>"
        '<span class="version">1.0.0</span>'
        '<section id="main-content" class="content">'
        f'<div class="main-heading"><h1>{title}</h1></div>{top}{body}'
        "</section></body></html>"
    )


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".libdocs.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def database(tmp_path):
    """Database handle on a fresh file; each user opens its own connection."""
    return Database(tmp_path / ".libdocs.db")


@pytest.fixture
def store(database):
    s = open_store(database)
    yield s
    s.close()


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def make_provider():
    """FakeProvider factory, for tests that script failures or gate calls."""
    return FakeProvider


@pytest.fixture
def embed_text():
    """The FakeProvider embedding function, for writing vectors directly."""
    return vectorize


@pytest.fixture
def page_html():
    """rustdoc page builder."""
    return rustdoc_html


@pytest.fixture
def docs_service(database, fake_provider):
    """DocsService over the tmp database with a canned two-page crate fetcher.

    Nothing is configured; tests add ``demo-lib`` themselves. Closed after the test.
    """
    base = "https://docs.rs/demo-lib/1.0.0/demo_lib"
    pages = [
        Page(url=f"{base}/struct.Mutex.html", html=rustdoc_html(
            "Struct demo_lib::Mutex", "A mutex for shared state.",
            [("method.lock", "pub fn lock(&amp;self)", "Locks this mutex.")],
        )),
        Page(url=f"{base}/fn.spawn.html", html=rustdoc_html("Function demo_lib::spawn", "Spawns a task.")),
    ]
    fetcher = MagicMock(spec=DocsFetcher)
    fetcher.fetch.return_value = FetchResult(pages=pages, version="1.0.0")
    orchestrator = Orchestrator(database, fetcher, RustdocChunker(), fake_provider, sleep=lambda _s: None)
    service = DocsService(database, orchestrator, fake_provider)
    yield service
    service.close()
