"""Content fetcher: crawl a library's rendered documentation from docs.rs.

Request limits:
- Allowed URL schemes: https:// and http:// only.
- Content-Type whitelist: text/html and text/plain only.
- Max response body: 5 MB.
- Max redirects: 3.
- HTTP 429 and 5xx are retried with exponential backoff (1s doubling, max 30s).
- 404 and other 4xx responses are permanent; a timeout is not retried.
"""

from __future__ import annotations

import logging
import re
import socket
import time
import urllib.error
import urllib.parse
import urllib.request
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from http.client import HTTPResponse

from bs4 import BeautifulSoup

from libdocs.errors import FetchError, PageNotFound

logger = logging.getLogger(__name__)

_USER_AGENT = "libdocs/0.1 (documentation indexer)"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_MAX_REDIRECTS = 3
_ALLOWED_SCHEMES = {"https", "http"}
_ALLOWED_CONTENT_TYPES = {"text/html", "text/plain"}
_BACKOFF_START = 1.0
_BACKOFF_MAX = 30.0
# Links are only followed while this share of max_pages is still unprocessed.
_FOLLOW_FRACTION = 0.75

_VERSION_SEGMENT_RE = re.compile(r"^v?\d+(\.\d+)*([-+][0-9A-Za-z.-]+)?$")


@dataclass
class Page:
    """One fetched documentation page."""

    url: str
    html: str

    @property
    def path(self) -> str:
        return urllib.parse.urlparse(self.url).path


@dataclass
class FetchResult:
    pages: list[Page] = field(default_factory=list)
    version: str | None = None
    failed: int = 0


class _HttpStatusError(Exception):
    def __init__(self, url: str, code: int) -> None:
        super().__init__(f"HTTP {code} for '{url}'")
        self.code = code


class DocsFetcher:
    """Breadth-first crawler over one library's documentation tree.

    Args:
        base_url: Documentation host, e.g. ``https://docs.rs``.
        max_pages: Upper bound on pages fetched per library.
        timeout: Per-request timeout in seconds.
        max_retries: Retries after the first attempt on 429/5xx responses.
        request_delay: Seconds to pause between page requests.
        sleep: Injected sleep function (tests pass a no-op).
    """

    def __init__(
        self,
        base_url: str = "https://docs.rs",
        max_pages: int = 200,
        timeout: float = 30.0,
        max_retries: int = 3,
        request_delay: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_pages < 1:
            raise ValueError("max_pages must be >= 1")
        parsed = urllib.parse.urlparse(base_url)
        if parsed.scheme not in _ALLOWED_SCHEMES:
            raise ValueError(
                f"Unsupported URL scheme '{parsed.scheme}'. Only https:// and http:// are allowed."
            )
        self.base_url = base_url.rstrip("/")
        self.max_pages = max_pages
        self.timeout = timeout
        self.max_retries = max_retries
        self.request_delay = request_delay
        self._sleep = sleep

    def root_url(self, name: str, version_spec: str) -> str:
        return f"{self.base_url}/{name}/{version_spec}/{name.replace('-', '_')}/"

    def fetch(self, name: str, version_spec: str = "latest") -> FetchResult:
        """Crawl the documentation for *name* at *version_spec*.

        Returns:
            FetchResult with pages in crawl order and the resolved version.

        Raises:
            PageNotFound: If the root page does not exist.
            FetchError: If the root page cannot be fetched for any other reason.
        """
        root = self.root_url(name, version_spec)
        scope = f"{self.base_url}/{name}/{version_spec}/"
        result = FetchResult()
        queue: deque[str] = deque([root])
        seen: set[str] = {root}
        fetched: set[str] = set()
        processed = 0

        while queue and len(result.pages) < self.max_pages:
            url = queue.popleft()
            if processed and self.request_delay > 0:
                self._sleep(self.request_delay)
            processed += 1
            try:
                html, final_url = self._get(url)
            except FetchError:
                if url == root:
                    raise
                logger.warning("Skipping %s: fetch failed", url, exc_info=True)
                result.failed += 1
                continue

            final_url = _canonical(final_url)
            if final_url in fetched:
                logger.debug("Skipping %s: already fetched as %s", url, final_url)
                continue
            fetched.add(final_url)
            seen.add(final_url)
            result.pages.append(Page(url=final_url, html=html))

            if url == root:
                result.version = _resolve_version(html, final_url, version_spec)
                # Partial pins and "latest" may redirect to a concrete version directory.
                scope = _version_scope(final_url, name) or scope

            if processed < self.max_pages * _FOLLOW_FRACTION:
                for link in _extract_links(html, final_url, scope):
                    if link not in seen:
                        seen.add(link)
                        queue.append(link)

        logger.info(
            "Fetched %d page(s) for %s@%s (version %s, %d failed)",
            len(result.pages), name, version_spec, result.version, result.failed,
        )
        return result

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _get(self, url: str) -> tuple[str, str]:
        """Fetch *url* with retry on 429/5xx. Returns (decoded_body, final_url)."""
        delay = _BACKOFF_START
        for attempt in range(self.max_retries + 1):
            try:
                body, final_url = self._open(url)
                return body.decode("utf-8", errors="replace"), final_url
            except _HttpStatusError as exc:
                retryable = exc.code == 429 or exc.code >= 500
                if exc.code == 404:
                    raise PageNotFound(f"No documentation at '{url}' (HTTP 404)") from exc
                if not retryable or attempt == self.max_retries:
                    raise FetchError(f"Failed to fetch '{url}': {exc}") from exc
                logger.info(
                    "HTTP %d for %s, retry %d/%d in %.0fs",
                    exc.code, url, attempt + 1, self.max_retries, delay,
                )
            self._sleep(delay)
            delay = min(delay * 2, _BACKOFF_MAX)
        raise AssertionError("unreachable")

    def _open(self, url: str) -> tuple[bytes, str]:
        """Single request with timeout, redirect limit, size cap, and Content-Type check.

        Returns (body_bytes, final_url).
        """
        request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
        opener = urllib.request.build_opener(_LimitedRedirectHandler(_MAX_REDIRECTS))

        try:
            response: HTTPResponse = opener.open(request, timeout=self.timeout)
        except urllib.error.HTTPError as exc:
            raise _HttpStatusError(url, exc.code) from exc
        except (socket.timeout, TimeoutError) as exc:
            raise FetchError(f"Timed out fetching '{url}' after {self.timeout}s") from exc
        except urllib.error.URLError as exc:
            raise FetchError(f"Failed to fetch '{url}': {exc.reason}") from exc

        with response:
            raw_ct = response.headers.get("Content-Type", "text/html")
            ct = raw_ct.split(";")[0].strip().lower()
            if ct not in _ALLOWED_CONTENT_TYPES:
                raise FetchError(
                    f"Unsupported Content-Type '{ct}' for URL '{url}'. "
                    f"Accepted: {', '.join(sorted(_ALLOWED_CONTENT_TYPES))}"
                )
            body = response.read(_MAX_BYTES + 1)
            if len(body) > _MAX_BYTES:
                raise FetchError(
                    f"Response body exceeds {_MAX_BYTES // (1024 * 1024)} MB limit for URL '{url}'."
                )
            return body, response.geturl()


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Raise an error after more than *max_redirects* redirects."""

    def __init__(self, max_redirects: int) -> None:
        self._max_redirects = max_redirects
        self._count = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._count += 1
        if self._count > self._max_redirects:
            raise FetchError(
                f"Too many redirects (>{self._max_redirects}) for URL '{req.full_url}'."
            )
        return super().redirect_request(req, fp, code, msg, headers, newurl)


# ------------------------------------------------------------------
# HTML helpers
# ------------------------------------------------------------------

def _extract_links(html: str, page_url: str, scope: str) -> list[str]:
    """Return in-scope documentation links from *html*, in document order."""
    soup = BeautifulSoup(html, "html.parser")
    links: list[str] = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith(("#", "mailto:", "javascript:")):
            continue
        absolute, _fragment = urllib.parse.urldefrag(urllib.parse.urljoin(page_url, href))
        if not absolute.startswith(scope) or "/src/" in absolute:
            continue
        if not (absolute.endswith(".html") or absolute.endswith("/")):
            continue
        links.append(_canonical(absolute))
    return links


def _canonical(url: str) -> str:
    """Fold ``.../index.html`` onto its directory URL."""
    if url.endswith("/index.html"):
        return url[: -len("index.html")]
    return url


def _version_scope(url: str, name: str) -> str | None:
    """``{base}/{name}/{version}/`` prefix of a documentation page URL, if present."""
    parsed = urllib.parse.urlparse(url)
    segments = parsed.path.split("/")
    if name not in segments:
        return None
    i = segments.index(name)
    if i + 1 >= len(segments) or not segments[i + 1]:
        return None
    return f"{parsed.scheme}://{parsed.netloc}{'/'.join(segments[: i + 2])}/"


def _resolve_version(html: str, final_url: str, version_spec: str) -> str | None:
    """Concrete version from the page's ``.version`` element, the URL, or the spec."""
    soup = BeautifulSoup(html, "html.parser")
    elem = soup.select_one(".version")
    if elem is not None:
        text = elem.get_text(strip=True)
        if text:
            return text[1:] if text.startswith("v") and text[1:2].isdigit() else text

    for segment in urllib.parse.urlparse(final_url).path.split("/"):
        if _VERSION_SEGMENT_RE.match(segment):
            return segment.lstrip("v")

    if version_spec != "latest":
        return version_spec
    return None
