"""Error taxonomy shared by the ingestion pipeline, the store and the query path.

Per-page ParseError is absorbed by the chunker and counted; every other error
aborts the current population job (recorded verbatim on the job row) or the
current query (raised to the caller).
"""

from __future__ import annotations


class LibdocsError(Exception):
    """Base class for all libdocs errors."""


class NotFound(LibdocsError):
    """Library/version is not configured, or has never been populated."""


class AlreadyInProgress(LibdocsError):
    """A population job is already pending or running for this library."""


class ParseError(LibdocsError):
    """Documentation markup could not be parsed into chunks."""


class RateLimited(LibdocsError):
    """The embedding API asked us to slow down (or timed out). Retryable."""


class ProviderError(LibdocsError):
    """Non-retryable embedding or completion provider fault."""


class ConfigMismatch(LibdocsError):
    """Stored corpus does not match the live embedding model, dimensionality or metric."""


class StorageError(LibdocsError):
    """Persistence layer fault. Never swallowed."""


class InvalidTransition(LibdocsError):
    """A population job was asked to move to a status it cannot reach."""


class FetchError(LibdocsError):
    """The documentation host could not be reached or returned an error."""


class PageNotFound(FetchError):
    """The documentation host has no page for the requested library/version."""


def describe(exc: BaseException) -> str:
    """Return ``"<ErrorType>: <message>"``, the form recorded on failed jobs."""
    message = str(exc).strip()
    return f"{type(exc).__name__}: {message}" if message else type(exc).__name__
