"""
Response classification for the pcord_rest client.

Every response goes through two phases:

1. `observe()` as soon as headers are in: records the rate-limit headers in
   the bucket store, arms the global throttle on a global 429, and raises
   TransientResponseError for 429/5xx so the scheduler retries the request.
2. `decode()` for everything else: reads and parses the body (JSON or raw
   bytes), hands out the live stream to streaming callers, and turns error
   statuses into DiscordAPIError.

Recognized headers:
    - X-RateLimit-Remaining: requests left in the bucket's window.
    - X-RateLimit-Reset: absolute reset time, fractional epoch seconds.
    - Retry-After: relative reset time in seconds (fallback).
    - X-RateLimit-Global: marks a 429 as a global (cross-route) limit.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import requests

from pcord_rest._errors import DiscordAPIError
from pcord_rest._request import JSON_CONTENT_TYPE
from pcord_rest._retry import TransientResponseError

if TYPE_CHECKING:
    from pcord_rest._rate_limit import BucketStore, GlobalThrottle
    from pcord_rest._request import PreparedRequest

logger = logging.getLogger(__name__)

TOO_MANY_REQUESTS = 429

HEADER_REMAINING = "X-RateLimit-Remaining"
HEADER_RESET = "X-RateLimit-Reset"
HEADER_RETRY_AFTER = "Retry-After"
HEADER_GLOBAL = "X-RateLimit-Global"


def _parse_float(value: str | None) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_error_code(value: Any) -> int:
    """Return the remote error code as an int, or -1 if absent or malformed."""
    if isinstance(value, bool):
        return -1
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return -1


def is_transient_status(status: int) -> bool:
    """Return True for statuses that are retried instead of surfaced."""
    return status == TOO_MANY_REQUESTS or status >= 500


@dataclass(frozen=True)
class RateLimitInfo:
    """
    Rate-limit headers of one response.

    Attributes:
        remaining: Requests left in the bucket's window, if reported.
        reset: Absolute epoch time of the reset, if it could be derived.
        is_global: Whether the global-limit marker was present.
    """

    remaining: int | None
    reset: float | None
    is_global: bool

    @classmethod
    def from_headers(cls, headers: Mapping[str, str], now: float | None = None) -> RateLimitInfo:
        """
        Extract rate-limit information from (case-insensitive) headers.

        The absolute X-RateLimit-Reset wins over the relative Retry-After.
        """
        reset = _parse_float(headers.get(HEADER_RESET))
        if reset is None:
            retry_after = _parse_float(headers.get(HEADER_RETRY_AFTER))
            if retry_after is not None:
                reset = (now if now is not None else time.time()) + retry_after

        remaining_value = _parse_float(headers.get(HEADER_REMAINING))
        remaining = int(remaining_value) if remaining_value is not None else None

        global_marker = headers.get(HEADER_GLOBAL)
        is_global = global_marker is not None and global_marker.strip().lower() not in ("", "false", "0")

        return cls(remaining=remaining, reset=reset, is_global=is_global)


class ResponseClassifier:
    """
    Applies responses to rate-limit state and decides their outcome.

    Args:
        buckets: Store updated from X-RateLimit-Remaining/Reset.
        throttle: Global throttle armed on global 429s.
    """

    def __init__(self, buckets: BucketStore, throttle: GlobalThrottle):
        self.buckets = buckets
        self.throttle = throttle

    def observe(
        self,
        request: PreparedRequest,
        response: requests.Response,
        on_headers: Callable[[], None] | None = None,
    ) -> RateLimitInfo:
        """
        Handle the header stage of a response.

        Args:
            request: The request the response belongs to.
            response: Response with headers read, body unread.
            on_headers: Called once rate-limit state is updated.

        Returns:
            The parsed rate-limit information.

        Raises:
            TransientResponseError: For 429 and 5xx responses. The body has
                been discarded; the request should be sent again as-is.
        """
        info = RateLimitInfo.from_headers(response.headers)

        if info.remaining is not None and request.bucket is not None:
            self.buckets.update(request.bucket, remaining=info.remaining, reset=info.reset)

        status = response.status_code
        if status == TOO_MANY_REQUESTS and info.reset is not None and info.is_global:
            self.throttle.arm(info.reset)

        if on_headers is not None:
            on_headers()

        if is_transient_status(status):
            response.close()
            logger.warning(
                f"{request.method} {request.path} | HTTP {status}, "
                f"re-queueing on bucket {request.bucket or '<global>'}"
            )
            raise TransientResponseError.from_response(response, reset=info.reset)

        return info

    def decode(self, request: PreparedRequest, response: requests.Response) -> Any:
        """
        Handle the body stage of a non-transient response.

        Returns:
            The live decoded stream for successful streaming requests,
            parsed JSON when the content type is JSON, raw bytes otherwise.

        Raises:
            DiscordAPIError: If the status is 400 or above.
            ValueError: If a successful JSON body cannot be parsed.
        """
        status = response.status_code
        if request.stream and status < 400:
            raw = response.raw
            raw.decode_content = True
            return raw

        try:
            content = response.content
        finally:
            response.close()

        is_json = response.headers.get("Content-Type", "").startswith(JSON_CONTENT_TYPE)

        if status >= 400:
            raise self._api_error(request, response, content, is_json)

        if is_json:
            return json.loads(content) if content else None
        return content

    @staticmethod
    def _api_error(
        request: PreparedRequest,
        response: requests.Response,
        content: bytes,
        is_json: bool,
    ) -> DiscordAPIError:
        code = -1
        message = response.reason or f"HTTP {response.status_code}"
        if is_json and content:
            try:
                data = json.loads(content)
            except ValueError:
                data = None
            if isinstance(data, dict):
                code = _parse_error_code(data.get("code"))
                message = str(data.get("message") or message)

        logger.debug(f"{request.method} {request.path} | HTTP {response.status_code} [{code}] {message}")
        return DiscordAPIError(
            code=code,
            message=message,
            status=response.status_code,
            origin_stack=request.origin_stack,
        )
