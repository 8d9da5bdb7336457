"""
chunkscribe.logging - Centralized logging configuration.

Provides the package logger. Verbose mode adds thread names, since chunks
are captured, transcribed and inserted on different threads.
"""

from __future__ import annotations

import logging

logger = logging.getLogger("chunkscribe")

ENGINE_LOGGERS = ("faster_whisper", "huggingface_hub", "numba", "urllib3")


def configure_logging(verbose: bool = False) -> None:
    """Configure logging for chunkscribe and quiet the engine libraries.

    Args:
        verbose: If True, log chunkscribe at DEBUG; otherwise WARNING.
            Engine libraries stay at WARNING either way.
    """
    level = logging.DEBUG if verbose else logging.WARNING
    fmt = "%(relativeCreated)6.0fms %(threadName)s %(levelname)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt if verbose else "%(levelname)s: %(message)s",
    )
    logger.setLevel(level)
    for name in ENGINE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
