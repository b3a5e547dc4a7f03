"""Logging configuration for the libdocs CLI.

Library modules only call ``logging.getLogger(__name__)``; handlers are
installed here, once, by the CLI entry point.
"""

from __future__ import annotations

import logging
import os

import litellm
from rich.console import Console
from rich.logging import RichHandler

# Third-party loggers that are noisy below WARNING.
_QUIET_LOGGERS = ("LiteLLM", "LiteLLM Router", "LiteLLM Proxy", "httpx", "httpcore", "openai")


def configure_logging(verbose: bool = False, level: str | None = None) -> None:
    """Route log records through rich on stderr.

    Level precedence: *level* argument, then ``LIBDOCS_LOG_LEVEL``, then
    INFO when *verbose* else WARNING.
    """
    name = level or os.environ.get("LIBDOCS_LOG_LEVEL") or ("INFO" if verbose else "WARNING")
    handler = RichHandler(console=Console(stderr=True), show_path=False, markup=False)
    logging.basicConfig(
        level=name.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )
    for logger_name in _QUIET_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
    # LiteLLM prints provider hints straight to stdout unless told not to.
    litellm.suppress_debug_info = True
