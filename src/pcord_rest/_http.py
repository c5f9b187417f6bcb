"""
Transport abstraction for the pcord_rest client.

The transport sends exactly one HTTP request and returns as soon as the
response headers are in; the body is left unread so the caller can decide
to buffer it or hand it out as a stream. Rate limiting, retries and body
decoding live above this layer.

Available implementations:
    - HttpTransport: Abstract base class.
    - SessionHttpTransport: requests.Session based transport with
      connection pooling (keep-alive). Default.

Example:
    >>> from pcord_rest._http import SessionHttpTransport
    >>> transport = SessionHttpTransport()
    >>> response = transport.send(prepared_request, timeout=10.0)
    >>> response.status_code
    200
"""

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, override

import requests

if TYPE_CHECKING:
    from pcord_rest._request import PreparedRequest

logger = logging.getLogger(__name__)


class HttpTransport(ABC):
    """
    Abstract base class for transports.

    Implementations must be thread-safe: every drain loop sends through the
    same transport instance.

    Example:
        >>> class MyTransport(HttpTransport):
        ...     def send(self, request, timeout=None):
        ...         return requests.request(
        ...             request.method, request.url,
        ...             headers=dict(request.headers), data=request.body,
        ...             timeout=timeout, stream=True,
        ...         )
    """

    @abstractmethod
    def send(self, request: "PreparedRequest", timeout: float | None = None) -> requests.Response:
        """
        Send a prepared request.

        Args:
            request: The request to send.
            timeout: Socket timeout in seconds (None = no timeout).

        Returns:
            The HTTP response with headers read and the body not yet consumed.

        Raises:
            requests.RequestException: If no response could be obtained.
        """
        pass

    def close(self) -> None:
        """Release pooled connections. No-op by default."""
        return None


class SessionHttpTransport(HttpTransport):
    """
    Transport backed by a persistent requests.Session.

    The session keeps connections alive and is shared read-only by all
    dispatches. Response bodies are streamed so headers are available before
    the body is downloaded; gzip/deflate decoding is handled by urllib3.

    Args:
        session: Session to use. A new one is created (and owned) if omitted.
    """

    def __init__(self, session: requests.Session | None = None):
        self._owns_session = session is None
        self.session = session or requests.Session()

    @override
    def send(self, request: "PreparedRequest", timeout: float | None = None) -> requests.Response:
        assert request is not None, "request cannot be None."
        assert timeout is None or timeout > 0, "timeout must be > 0 or None."

        # A read timeout would stay on the live body handed to streaming callers.
        socket_timeout = (timeout, None) if request.stream else timeout

        logger.debug(f"{request.method} {request.url} (timeout={socket_timeout})")
        return self.session.request(
            method=request.method,
            url=request.url,
            headers=dict(request.headers),
            data=request.body,
            timeout=socket_timeout,
            stream=True,
        )

    @override
    def close(self) -> None:
        if self._owns_session:
            self.session.close()
