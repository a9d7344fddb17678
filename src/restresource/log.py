"""Diagnostics setup for restresource.

Every module logs through ``logging.getLogger(__name__)`` and never
configures handlers itself. Applications that want to see the library's
diagnostics call :func:`configure_logging`, which installs a
:class:`rich.logging.RichHandler` writing to stderr so diagnostics never mix
with data written to stdout.
"""

from __future__ import annotations

import logging
import os
import sys

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "restresource"


def _should_disable_color() -> bool:
    """Return True if ``NO_COLOR`` is set or ``TERM`` is ``dumb``."""
    return "NO_COLOR" in os.environ or os.environ.get("TERM") == "dumb"


def configure_logging(verbose: bool = False, no_color: bool = False) -> logging.Logger:
    """Install a stderr Rich handler on the package logger.

    Calling this more than once replaces the previously installed handler
    instead of stacking a second one.

    Args:
        verbose: Log at DEBUG (cache hits, single-flight joins, batch
            progress, retries) instead of WARNING.
        no_color: Disable colour even when stderr is a terminal.

    Returns:
        The configured ``restresource`` logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    console = Console(
        file=sys.stderr,
        stderr=True,
        no_color=no_color or _should_disable_color(),
    )
    handler = RichHandler(console=console, show_path=False, rich_tracebacks=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    return logger
