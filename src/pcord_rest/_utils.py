"""
Utility functions for the pcord_rest client.

This module provides internal helper functions used throughout the client.
These functions are not part of the public API and may change without notice.
"""

from __future__ import annotations

import time
import traceback


def capture_stack(skip: int = 1) -> str:
    """
    Capture the current call stack as a formatted string.

    Requests fail on scheduler threads, long after the caller issued them.
    The captured stack is attached to errors so they point back to the
    original call site.

    Args:
        skip: Number of innermost frames to drop (default: 1, this function).
    """
    frames = traceback.extract_stack()
    if skip > 0:
        frames = frames[:-skip]
    return "".join(traceback.format_list(frames))


def seconds_until(timestamp: float) -> float:
    """Return the seconds from now until an epoch `timestamp`, clamped to >= 0."""
    return max(0.0, timestamp - time.time())


def is_timeout_exception(exc: Exception) -> bool:
    """
    Determine if an exception indicates a timeout condition.

    Supported timeout exceptions:
        - requests.Timeout: socket-level timeout of the transport
        - RequestTimeoutError: the request's own timeout budget elapsed
        - TimeoutError: Python built-in
    """
    # Lazy imports to avoid circular dependencies
    import requests

    from pcord_rest._errors import RequestTimeoutError

    return isinstance(exc, (requests.Timeout, RequestTimeoutError, TimeoutError))
