"""
Process utilities for Mongo Lens.
"""
import gc
from typing import Tuple

import psutil
from loguru import logger


def read_memory_usage() -> Tuple[int, int]:
    """
    Current process memory as (used_bytes, total_bytes).

    Used is the resident set size of this process; total is the physical
    memory of the host.
    """
    used = psutil.Process().memory_info().rss
    total = psutil.virtual_memory().total
    return used, total


def request_garbage_collection() -> int:
    """Best-effort full collection pass. Returns the number of objects freed."""
    try:
        freed = gc.collect()
        logger.debug(f"Garbage collection freed {freed} objects")
        return freed
    except Exception as e:
        logger.debug(f"Garbage collection failed: {e}")
        return 0
