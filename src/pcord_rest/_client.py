"""
Caller-facing REST client.

Example:
    >>> from pcord_rest import RESTClient, TokenType
    >>> client = RESTClient(token="my-bot-token", token_type=TokenType.BOT)
    >>> me = client.request("GET", "/users/@me", auth=True)
    >>> client.request(
    ...     "POST", "/channels/123/messages",
    ...     body={"content": "Hello!"}, auth=True, timeout=10.0,
    ... )
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from concurrent.futures import Future
from typing import Any

from pcord_rest._auth import AuthProvider
from pcord_rest._config import PCORD, RequestDestination, RestConfig
from pcord_rest._http import HttpTransport, SessionHttpTransport
from pcord_rest._rate_limit import BucketStore, GlobalThrottle
from pcord_rest._request import PreparedRequest, QueryString, RequestOptions, RequestPreparer
from pcord_rest._scheduler import RequestScheduler
from pcord_rest._utils import capture_stack

logger = logging.getLogger(__name__)


class RESTClient:
    """
    Rate-limit aware client for the REST API.

    Requests to routes that share a server-side rate limit are sent one at a
    time and in order; requests are held back while a bucket is exhausted or
    a global limit is active, and 429/5xx responses are retried within the
    request's timeout budget.

    Args:
        config: Base configuration. Defaults to `PCORD.config`.
        transport: Transport override. Defaults to a SessionHttpTransport
            owned (and closed) by this client.
        auth: Authentication provider override. Defaults to a token
            provider built from the configuration.
        **overrides: RestConfig field overrides, e.g. `token="..."`,
            `api_version=10`, `timeout=30.0`.

    Raises:
        ValueError: If overrides contain unknown fields.
        ConfigValidationError: If the resulting configuration is invalid.
    """

    def __init__(
        self,
        config: RestConfig | None = None,
        transport: HttpTransport | None = None,
        auth: AuthProvider | None = None,
        **overrides: Any,
    ):
        base = config or PCORD.config
        self.config = base.with_overrides(overrides).validate()
        self.preparer = RequestPreparer(self.config, auth=auth)
        self._owns_transport = transport is None
        self.transport = transport or SessionHttpTransport()
        self.scheduler = RequestScheduler(
            transport=self.transport,
            buckets=BucketStore(),
            throttle=GlobalThrottle(),
        )

    @property
    def user_agent(self) -> str:
        return self.preparer.user_agent

    @property
    def buckets(self) -> BucketStore:
        return self.scheduler.buckets

    @property
    def throttle(self) -> GlobalThrottle:
        return self.scheduler.throttle

    def prepare(
        self,
        method: str,
        route: str,
        *,
        headers: Mapping[str, str] | None = None,
        body: Any = None,
        auth: bool = False,
        timeout: float | None = None,
        query_string: QueryString | None = None,
        destination: RequestDestination = RequestDestination.API,
        stream: bool = False,
    ) -> PreparedRequest:
        """Build a PreparedRequest without sending it."""
        options = RequestOptions(
            headers=headers,
            body=body,
            auth=auth,
            timeout=timeout,
            query_string=query_string,
            destination=destination,
            stream=stream,
        )
        return self.preparer.prepare(method, route, options, origin_stack=capture_stack(skip=3))

    def submit(self, method: str, route: str, **options: Any) -> Future[Any]:
        """
        Queue a request and return its future.

        Accepts the same options as `request`.

        Raises:
            TokenRequiredError: Synchronously, if `auth=True` without a token.
        """
        prepared = self.prepare(method, route, **options)
        return self.scheduler.schedule(prepared)

    def request(self, method: str, route: str, **options: Any) -> Any:
        """
        Send a request and wait for its result.

        Args:
            method: HTTP method.
            route: Route without the /api/v{n} prefix, e.g. "/channels/123".
            **options: headers, body, auth, timeout (seconds), query_string,
                destination, stream.

        Returns:
            Parsed JSON for JSON responses, raw bytes otherwise, or the live
            response stream when `stream=True`.

        Raises:
            TokenRequiredError: If `auth=True` and no token is configured.
            RequestTimeoutError: If the timeout budget elapsed.
            DiscordAPIError: If the API answered with an error status.
            requests.RequestException: If the connection failed.
        """
        return self.submit(method, route, **options).result()

    def close(self) -> None:
        """Close the transport if this client created it."""
        if self._owns_transport:
            self.scheduler.close()

    def __enter__(self) -> RESTClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"RESTClient(api={self.config.api!r}, api_version={self.config.api_version!r})"
