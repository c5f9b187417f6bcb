"""
Error taxonomy for the pcord_rest client.

Errors raised by the client itself (missing token, timeouts) are
`RestError` instances carrying a `RestErrorCode`. Errors reported by the
remote API are `DiscordAPIError` instances carrying the remote error code.

Example:
    >>> from pcord_rest import RESTClient, DiscordAPIError, RequestTimeoutError
    >>> try:
    ...     client.request("GET", "/channels/123")
    ... except DiscordAPIError as e:
    ...     print(f"API error {e.code}: {e.message}")
    ... except RequestTimeoutError as e:
    ...     print(f"Gave up on {e.path} after {e.timeout}s")
"""

from __future__ import annotations

import enum


class RestErrorCode(enum.IntEnum):
    """Error codes for `RestError` and `RestWarning`."""

    TOKEN_REQUIRED = 0
    """A token is required but none was configured."""

    TIMEOUT = 1
    """A request took longer than its timeout budget."""

    INVALID_API_VERSION = 2
    """The API version is not a whole number greater than 0."""


_MESSAGES: dict[RestErrorCode, str] = {
    RestErrorCode.TOKEN_REQUIRED: "A token is required to perform this operation.",
    RestErrorCode.TIMEOUT: "The request to {} timed out after {}s.",
    RestErrorCode.INVALID_API_VERSION: "An invalid API version was provided: {!r}.",
}


def format_message(code: RestErrorCode, *args: object) -> str:
    """Render the message template for `code` with `args`."""
    return _MESSAGES[code].format(*args)


class RestError(Exception):
    """
    An error created by the client itself (not by the remote API).

    Attributes:
        code: The `RestErrorCode` identifying the failure.

    Example:
        >>> error = RestError(RestErrorCode.TIMEOUT, "/api/v9/users/@me", 1.5)
        >>> str(error)
        'The request to /api/v9/users/@me timed out after 1.5s.'
    """

    def __init__(self, code: RestErrorCode, *args: object):
        self.code = code
        super().__init__(format_message(code, *args))


class TokenRequiredError(RestError):
    """Raised when an authenticated request is made without a configured token."""

    def __init__(self) -> None:
        super().__init__(RestErrorCode.TOKEN_REQUIRED)


class RequestTimeoutError(RestError):
    """
    Raised when a request does not complete within its timeout budget.

    The budget covers every attempt of the request, so a request that was
    retried after a 429 or 5xx response only has the time left over from
    previous attempts.

    Attributes:
        path: The final wire path of the request.
        timeout: The original timeout budget in seconds.
    """

    def __init__(self, path: str, timeout: float | None):
        self.path = path
        self.timeout = timeout
        super().__init__(RestErrorCode.TIMEOUT, path, timeout)


class RestWarning(UserWarning):
    """
    Advisory emitted through `warnings.warn` for non-fatal misconfiguration.

    Shares its message templates with `RestError`; only the type differs.
    """

    def __init__(self, code: RestErrorCode, *args: object):
        self.code = code
        super().__init__(format_message(code, *args))


class DiscordAPIError(Exception):
    """
    An error returned by the remote API.

    If the response body did not carry a structured error, `code` is -1 and
    `message` is the HTTP reason phrase.

    Attributes:
        code: The remote error code, or -1.
        message: The remote error message.
        status: The HTTP status code of the final response.
        origin_stack: Formatted stack of the call site that issued the request.
            The failure is detected on a scheduler thread, far away from the
            caller, so this is what points back to the offending call.
    """

    def __init__(
        self,
        code: int,
        message: str,
        status: int | None = None,
        origin_stack: str | None = None,
    ):
        self.code = code
        self.message = message
        self.status = status
        self.origin_stack = origin_stack
        super().__init__(message)

    def __str__(self) -> str:
        text = f"[{self.code}] {self.message}"
        if self.origin_stack:
            text += f"\nRequest issued at:\n{self.origin_stack.rstrip()}"
        return text
