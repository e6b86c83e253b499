"""Logging setup for the ``insightrag`` logger namespace.

Library modules only call ``logging.getLogger(__name__)``; the CLI calls
:func:`setup_logging` once to attach a rich console handler.
Level: ``--verbose`` → DEBUG, otherwise INSIGHTRAG_LOG_LEVEL (default WARNING).
"""

from __future__ import annotations

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

_ROOT = "insightrag"


def setup_logging(verbose: bool = False, console: Console | None = None) -> logging.Logger:
    """Attach a RichHandler to the ``insightrag`` logger (idempotent)."""
    logger = logging.getLogger(_ROOT)

    if verbose:
        level = logging.DEBUG
    else:
        level_name = os.getenv("INSIGHTRAG_LOG_LEVEL", "WARNING").upper()
        level = getattr(logging, level_name, logging.WARNING)
    logger.setLevel(level)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=verbose,
            rich_tracebacks=True,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s", datefmt="[%X]"))
        logger.addHandler(handler)
        logger.propagate = False

    return logger
