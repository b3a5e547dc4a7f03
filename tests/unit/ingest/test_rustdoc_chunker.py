"""Tests for RustdocChunker: item extraction from docs.rs pages."""

from __future__ import annotations

import pytest

from libdocs.errors import ParseError
from libdocs.ingest.fetcher import Page
from libdocs.ingest.rustdoc import RustdocChunker, item_path_from_url

BASE = "https://docs.rs/demo-lib/1.0.0/demo_lib"


@pytest.fixture
def widget_page(page_html):
    html = page_html(
        "Struct demo_lib::Widget",
        "A widget that renders itself.",
        [
            ("method.new", "pub fn new() -&gt; Widget", "Creates a widget."),
            ("method.render", "pub fn render(&amp;self)", "Renders the widget."),
        ],
    )
    return Page(url=f"{BASE}/struct.Widget.html", html=html)


# ------------------------------------------------------------------
# item_path_from_url
# ------------------------------------------------------------------

@pytest.mark.parametrize("url,expected", [
    (f"{BASE}/struct.Widget.html", "demo_lib::Widget"),
    (f"{BASE}/sync/struct.Mutex.html", "demo_lib::sync::Mutex"),
    (f"{BASE}/fn.spawn.html", "demo_lib::spawn"),
    (f"{BASE}/index.html", "demo_lib"),
    (f"{BASE}/", "demo_lib"),
    (f"{BASE}/sync/index.html", "demo_lib::sync"),
    (f"{BASE}/all.html", "demo_lib"),
])
def test_item_path_from_url(url, expected):
    assert item_path_from_url(url) == expected


# ------------------------------------------------------------------
# Single page
# ------------------------------------------------------------------

def test_top_item_and_members(widget_page):
    chunks = RustdocChunker().chunk_page(widget_page)
    assert [c.item_path for c in chunks] == [
        "demo_lib::Widget",
        "demo_lib::Widget::new",
        "demo_lib::Widget::render",
    ]
    assert chunks[0].text == "Struct demo_lib::Widget\n\nA widget that renders itself."
    assert chunks[1].text == "pub fn new() -> Widget\n\nCreates a widget."
    assert chunks[2].text == "pub fn render(&self)\n\nRenders the widget."


def test_member_source_url_has_anchor(widget_page):
    chunks = RustdocChunker().chunk_page(widget_page)
    assert chunks[0].source_url == widget_page.url
    assert chunks[1].source_url == f"{widget_page.url}#method.new"


def test_token_counts_set(widget_page):
    for chunk in RustdocChunker().chunk_page(widget_page):
        assert chunk.token_count == max(1, len(chunk.text) // 4)
        assert chunk.part == 0


def test_anchor_noise_removed(widget_page):
    chunks = RustdocChunker().chunk_page(widget_page)
    assert all("§" not in c.text for c in chunks)


def test_variants_and_duplicate_anchors(page_html):
    html = page_html(
        "Enum demo_lib::Color",
        "Colours.",
        [
            ("variant.Red", "Red", "Pure red."),
            ("method.new-1", "pub fn new() -&gt; Color", "Second impl block."),
        ],
    )
    chunks = RustdocChunker().chunk_page(Page(url=f"{BASE}/enum.Color.html", html=html))
    paths = [c.item_path for c in chunks]
    assert paths == ["demo_lib::Color", "demo_lib::Color::Red", "demo_lib::Color::new"]


def test_page_without_top_doc(page_html):
    html = page_html("Function demo_lib::spawn", None, [])
    assert RustdocChunker().chunk_page(Page(url=f"{BASE}/fn.spawn.html", html=html)) == []


def test_long_member_split_into_parts(page_html):
    doc = " ".join(f"Sentence number {i} about the renderer." for i in range(80))
    html = page_html("Struct demo_lib::Widget", None, [("method.render", "pub fn render()", doc)])
    chunks = RustdocChunker(max_tokens=50).chunk_page(Page(url=f"{BASE}/struct.Widget.html", html=html))
    assert len(chunks) > 1
    assert {c.item_path for c in chunks} == {"demo_lib::Widget::render"}
    assert [c.part for c in chunks] == list(range(len(chunks)))
    assert all(c.token_count <= 50 for c in chunks)


def test_loose_docblock_falls_back_to_body():
    html = '<html><body><div class="docblock"><p>Loose docs.</p></div></body></html>'
    chunks = RustdocChunker().chunk_page(Page(url=f"{BASE}/index.html", html=html))
    assert [(c.item_path, c.text) for c in chunks] == [("demo_lib", "Loose docs.")]


def test_page_without_docs_raises():
    with pytest.raises(ParseError):
        RustdocChunker().chunk_page(Page(url=f"{BASE}/x.html", html="<html><body><p>hi</p></body></html>"))


# ------------------------------------------------------------------
# Page sets
# ------------------------------------------------------------------

def test_chunk_skips_unparsable_pages(widget_page):
    broken = Page(url=f"{BASE}/broken.html", html="<html><body>nothing here</body></html>")
    result = RustdocChunker().chunk([broken, widget_page])
    assert result.skipped == 1
    assert len(result.errors) == 1
    assert broken.url in result.errors[0]
    assert len(result.chunks) == 3


def test_chunk_preserves_page_order(widget_page, page_html):
    other = Page(
        url=f"{BASE}/fn.spawn.html",
        html=page_html("Function demo_lib::spawn", "Spawns a task.", []),
    )
    result = RustdocChunker().chunk([other, widget_page])
    assert result.chunks[0].item_path == "demo_lib::spawn"
    assert result.chunks[1].item_path == "demo_lib::Widget"


def test_chunk_is_deterministic(widget_page):
    chunker = RustdocChunker()
    first = [(c.item_path, c.part, c.text) for c in chunker.chunk([widget_page]).chunks]
    second = [(c.item_path, c.part, c.text) for c in chunker.chunk([widget_page]).chunks]
    assert first == second


def test_chunk_no_pages_raises():
    with pytest.raises(ParseError):
        RustdocChunker().chunk([])


def test_chunk_all_unparsable_raises():
    pages = [Page(url=f"{BASE}/{i}.html", html="<p>no docs</p>") for i in range(2)]
    with pytest.raises(ParseError, match="None of the 2"):
        RustdocChunker().chunk(pages)
