"""Timing utilities for monitoring."""
import logging
import time
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def timer(label: str):
    """
    Context manager for timing async operations.

    Args:
        label: Description of the operation
    """
    start = time.monotonic()
    try:
        yield
    finally:
        elapsed = time.monotonic() - start
        logger.debug("[TIMING] %s: %.3fs", label, elapsed)
