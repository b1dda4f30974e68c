from __future__ import annotations

import logging
from typing import TextIO

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def verbosity_level(verbose: bool = False, quiet: bool = False) -> int:
    """Map -v / -q flags to a logging level. --quiet wins over --verbose."""
    if quiet:
        return logging.WARNING
    if verbose:
        return logging.DEBUG
    return logging.INFO


def get_logger(
    name: str,
    level: int = logging.INFO,
    log_format: str | None = None,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Return ``name``'s logger at ``level`` with a single console handler.

    Repeated calls only change the level. Loggers below ``name`` in the
    dotted hierarchy (``osm2arango.domain.importer`` under ``osm2arango``)
    propagate to this handler.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if logger.handlers:
        return logger

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(log_format or DEFAULT_LOG_FORMAT))
    logger.addHandler(handler)

    return logger
