"""
Authentication providers for the pcord_rest client.

The main classes are:
- AuthProvider: Abstract base class for authentication providers.
- TokenAuthProvider: Static bot/bearer token implementation.

Example:
    >>> from pcord_rest._auth import TokenAuthProvider
    >>> auth = TokenAuthProvider(token="my-token")
    >>> auth.get_auth_headers()
    {'Authorization': 'Bot my-token'}
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, override

from pcord_rest._config import TokenType
from pcord_rest._errors import TokenRequiredError

if TYPE_CHECKING:
    from pcord_rest._config import RestConfig


class AuthProvider(ABC):
    """
    Abstract base class for authentication providers.

    Implementations must be thread-safe: requests are prepared on caller
    threads concurrently.
    """

    @abstractmethod
    def get_authorization(self) -> str:
        """
        Return the value of the Authorization header.

        Raises:
            TokenRequiredError: If no token is available.
        """
        pass

    def get_auth_headers(self) -> dict[str, str]:
        """Return authorization headers for HTTP requests."""
        return {"Authorization": self.get_authorization()}


class TokenAuthProvider(AuthProvider):
    """
    Authentication with a static token.

    Args:
        token: The token, or None when the client is used anonymously.
        token_type: Token category; decides the header prefix.
    """

    def __init__(self, token: str | None, token_type: TokenType = TokenType.BOT):
        assert isinstance(token_type, TokenType), "token_type must be a TokenType."
        self._token = token
        self._token_type = token_type

    @property
    def token_type(self) -> TokenType:
        return self._token_type

    def has_token(self) -> bool:
        return bool(self._token)

    @override
    def get_authorization(self) -> str:
        if not self._token:
            raise TokenRequiredError()
        return f"{self._token_type.value} {self._token}"


def create_token_auth(config: RestConfig) -> TokenAuthProvider:
    """Create a TokenAuthProvider from a RestConfig."""
    return TokenAuthProvider(token=config.token, token_type=config.token_type)
