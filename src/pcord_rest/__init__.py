"""
Rate-limit aware REST client for the Discord API.

Quick Start:
    >>> from pcord_rest import RESTClient
    >>> client = RESTClient(token="my-bot-token")
    >>> channel = client.request("GET", "/channels/123", auth=True)

Global Configuration:
    >>> from pcord_rest import PCORD
    >>> PCORD.configure(token="my-bot-token", timeout=30.0)
    >>> client = RESTClient()  # picks up the configured defaults

Main Classes:
    - RESTClient: Caller-facing client (request / submit).
    - RequestOptions: Per-request options.
    - PreparedRequest: Fully resolved wire request.

Configuration:
    - PCORD: Global configuration singleton.
    - RestConfig: Configuration dataclass.
    - TokenType: Bot or Bearer token.
    - RequestDestination: API or CDN.
    - ConfigEnvVarError / ConfigValidationError: Configuration errors.

Scheduling:
    - RequestScheduler: Per-bucket FIFO drain loops.
    - BucketStore / RateLimitBucket: Per-route rate-limit state.
    - GlobalThrottle: Pause for global rate limits.
    - ResponseClassifier: Applies responses to rate-limit state.

Transport:
    - HttpTransport: Abstract transport.
    - SessionHttpTransport: requests.Session based transport. Default.

Errors:
    - RestError / RestErrorCode: Errors raised by the client itself.
    - TokenRequiredError: Authenticated request without a token.
    - RequestTimeoutError: Timeout budget elapsed.
    - DiscordAPIError: Error reported by the API.
    - RestWarning: Advisory warnings.
"""

from importlib.metadata import version as _get_version

__version__ = _get_version("pcord-rest")

from pcord_rest._auth import AuthProvider, TokenAuthProvider
from pcord_rest._client import RESTClient
from pcord_rest._config import (
    PCORD,
    ConfigEnvVarError,
    ConfigValidationError,
    RequestDestination,
    RestConfig,
    TokenType,
)
from pcord_rest._errors import (
    DiscordAPIError,
    RequestTimeoutError,
    RestError,
    RestErrorCode,
    RestWarning,
    TokenRequiredError,
)
from pcord_rest._http import HttpTransport, SessionHttpTransport
from pcord_rest._rate_limit import BucketStore, GlobalThrottle, RateLimitBucket
from pcord_rest._request import (
    BASE_USER_AGENT,
    PreparedRequest,
    RequestOptions,
    RequestPreparer,
    get_rate_limit_bucket,
)
from pcord_rest._response import RateLimitInfo, ResponseClassifier
from pcord_rest._retry import RetryableError, TransientResponseError
from pcord_rest._scheduler import RequestJob, RequestScheduler

__all__ = [
    "__version__",
    # Client
    "RESTClient",
    "RequestOptions",
    "PreparedRequest",
    "RequestPreparer",
    "BASE_USER_AGENT",
    "get_rate_limit_bucket",
    # Configuration
    "PCORD",
    "RestConfig",
    "TokenType",
    "RequestDestination",
    "ConfigEnvVarError",
    "ConfigValidationError",
    # Authentication
    "AuthProvider",
    "TokenAuthProvider",
    # Scheduling
    "RequestScheduler",
    "RequestJob",
    "BucketStore",
    "RateLimitBucket",
    "GlobalThrottle",
    "ResponseClassifier",
    "RateLimitInfo",
    "RetryableError",
    "TransientResponseError",
    # Transport
    "HttpTransport",
    "SessionHttpTransport",
    # Errors
    "RestError",
    "RestErrorCode",
    "TokenRequiredError",
    "RequestTimeoutError",
    "DiscordAPIError",
    "RestWarning",
]
