"""
Request preparation for the pcord_rest client.

Turns what the caller asked for (method, route and RequestOptions) into an
immutable PreparedRequest: final wire path, merged headers, encoded body,
timeout budget and rate-limit bucket key. Preparation is pure; nothing is
sent and no shared state is touched, so a prepared request can be built
ahead of time, retried as-is, or thrown away.

Example:
    >>> from pcord_rest._config import RestConfig
    >>> from pcord_rest._request import RequestOptions, RequestPreparer
    >>> preparer = RequestPreparer(RestConfig(token="abc"))
    >>> prepared = preparer.prepare(
    ...     "POST", "/channels/123/messages",
    ...     RequestOptions(body={"content": "hi"}, auth=True),
    ... )
    >>> prepared.path
    '/api/v9/channels/123/messages'
    >>> prepared.bucket
    'channels/123'
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from importlib.metadata import version as _get_version
from types import MappingProxyType
from typing import IO, Any
from urllib.parse import urlencode

from requests.structures import CaseInsensitiveDict

from pcord_rest._auth import AuthProvider, create_token_auth
from pcord_rest._config import RequestDestination, RestConfig, check_api_version
from pcord_rest._utils import capture_stack

BASE_USER_AGENT = f"DiscordBot (https://github.com/pcordjs/rest, {_get_version('pcord-rest')})"

ACCEPT_ENCODING = "gzip,deflate"
JSON_CONTENT_TYPE = "application/json"

_BUCKET_PATTERN = re.compile(r"^/(channels/\d+|guilds/\d+|webhooks/\d+/\d+)")

# Request bodies accepted as-is: raw bytes, text, or a byte stream.
Body = bytes | bytearray | memoryview | str | IO[bytes] | Iterable[bytes]
QueryString = Mapping[str, Any] | Iterable[tuple[str, Any]] | str


def get_rate_limit_bucket(route: str) -> str | None:
    """
    Map an unprefixed route to its rate-limit bucket key.

    Sub-resources share the bucket of their parent channel or guild.

    Example:
        >>> get_rate_limit_bucket("/channels/123/messages/456")
        'channels/123'
        >>> get_rate_limit_bucket("/webhooks/1/2")
        'webhooks/1/2'
        >>> get_rate_limit_bucket("/sticker-packs") is None
        True
    """
    match = _BUCKET_PATTERN.match(route)
    return match.group(1) if match else None


def is_stream_body(body: object) -> bool:
    """Return True for file-like objects and iterators of bytes."""
    if isinstance(body, (bytes, bytearray, memoryview, str)):
        return False
    return hasattr(body, "read") or isinstance(body, Iterator)


@dataclass(frozen=True)
class RequestOptions:
    """
    Per-request options.

    Attributes:
        headers: Headers to send; they override the default headers.
        body: Raw bytes/str, a byte stream, or any JSON-serializable value.
        auth: Whether to send the Authorization header (requires a token).
        timeout: Timeout budget in seconds. None falls back to the client
            default; the client default None means unbounded.
        query_string: Query parameters appended to the path.
        destination: Send to the API (default) or to the CDN.
        stream: Return the live response body stream instead of reading it.
    """

    headers: Mapping[str, str] | None = None
    body: Any = None
    auth: bool = False
    timeout: float | None = None
    query_string: QueryString | None = None
    destination: RequestDestination = RequestDestination.API
    stream: bool = False


@dataclass(frozen=True)
class PreparedRequest:
    """
    A fully resolved wire request. Never modified after preparation; retries
    send the exact same instance again.

    Attributes:
        method: HTTP method, upper-case.
        route: The route as given by the caller (without version prefix).
        path: Final wire path, including version prefix and query string.
        base_url: Scheme, host and optional port.
        headers: Merged headers (case-insensitive, read-only).
        body: Encoded body bytes, a byte stream, or None.
        timeout: Timeout budget in seconds (None = unbounded).
        bucket: Rate-limit bucket key, or None for the global queue.
        stream: Whether the caller wants the live response stream.
        origin_stack: Formatted stack of the call site.
    """

    method: str
    route: str
    path: str
    base_url: str
    headers: Mapping[str, str]
    body: bytes | IO[bytes] | Iterable[bytes] | None = None
    timeout: float | None = None
    bucket: str | None = None
    stream: bool = False
    origin_stack: str = field(default="", repr=False, compare=False)

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.path}"

    @property
    def has_stream_body(self) -> bool:
        return self.body is not None and is_stream_body(self.body)

    def rewind_body(self) -> bool:
        """
        Prepare the body to be sent again.

        Returns:
            True if the body can be replayed (bytes, no body, or a seekable
            stream that was rewound), False otherwise.
        """
        if not self.has_stream_body:
            return True
        seek = getattr(self.body, "seek", None)
        seekable = getattr(self.body, "seekable", None)
        if seek is None or (seekable is not None and not seekable()):
            return False
        seek(0)
        return True


class RequestPreparer:
    """
    Builds PreparedRequest instances from caller input.

    Args:
        config: Client configuration (hosts, version, token, defaults).
        auth: Authentication provider. Defaults to one built from `config`.
    """

    def __init__(self, config: RestConfig, auth: AuthProvider | None = None):
        assert config is not None, "config cannot be None."
        self.config = config
        self.auth = auth or create_token_auth(config)
        check_api_version(config.api_version)

    @property
    def user_agent(self) -> str:
        parts = [BASE_USER_AGENT]
        if self.config.user_agent_suffix:
            parts.append(self.config.user_agent_suffix)
        return ", ".join(parts)

    @property
    def api_prefix(self) -> str:
        version = self.config.api_version
        if isinstance(version, float) and version.is_integer():
            version = int(version)
        return f"/api/v{version}"

    def base_url(self, destination: RequestDestination) -> str:
        host = self.config.cdn if destination == RequestDestination.CDN else self.config.api
        port = f":{self.config.port}" if self.config.port is not None else ""
        return f"{self.config.scheme}://{host}{port}"

    def prepare(
        self,
        method: str,
        route: str,
        options: RequestOptions | None = None,
        origin_stack: str | None = None,
    ) -> PreparedRequest:
        """
        Prepare a request.

        Args:
            method: HTTP method.
            route: Unprefixed route, e.g. "/channels/123".
            options: Per-request options.
            origin_stack: Call-site stack; captured here when not given.

        Raises:
            TokenRequiredError: If `options.auth` is set and no token is configured.
            TypeError: If a structured body is not JSON-serializable.
        """
        assert method, "method cannot be empty."
        assert route.startswith("/"), f"route must start with '/', got {route!r}"
        options = options or RequestOptions()

        headers: CaseInsensitiveDict[str] = CaseInsensitiveDict({
            "User-Agent": self.user_agent,
            "Accept-Encoding": ACCEPT_ENCODING,
        })

        body, content_type = self._encode_body(options.body)
        if content_type:
            headers["Content-Type"] = content_type

        headers.update(options.headers or {})

        if options.auth:
            headers.update(self.auth.get_auth_headers())

        is_cdn = options.destination == RequestDestination.CDN
        path = route if is_cdn else f"{self.api_prefix}{route}"
        if options.query_string:
            path += f"?{self._encode_query(options.query_string)}"

        timeout = options.timeout if options.timeout is not None else self.config.timeout
        if body is not None and is_stream_body(body):
            timeout = None

        return PreparedRequest(
            method=method.upper(),
            route=route,
            path=path,
            base_url=self.base_url(options.destination),
            headers=MappingProxyType(headers),
            body=body,
            timeout=timeout,
            bucket=None if is_cdn else get_rate_limit_bucket(route),
            stream=options.stream,
            origin_stack=origin_stack if origin_stack is not None else capture_stack(skip=2),
        )

    @staticmethod
    def _encode_body(body: Any) -> tuple[bytes | IO[bytes] | Iterable[bytes] | None, str | None]:
        if body is None:
            return None, None
        if isinstance(body, (bytes, bytearray, memoryview)):
            return bytes(body), None
        if isinstance(body, str):
            return body.encode("utf-8"), None
        if is_stream_body(body):
            return body, None
        return json.dumps(body).encode("utf-8"), JSON_CONTENT_TYPE

    @staticmethod
    def _encode_query(query_string: QueryString) -> str:
        if isinstance(query_string, str):
            return query_string.removeprefix("?")
        return urlencode(query_string, doseq=True)
