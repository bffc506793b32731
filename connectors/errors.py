"""
Error taxonomy for the connect flow.

Everything except ``DuplicateConnectionError`` is terminal for the current
interaction; the controller turns the duplicate case into a flash signal.
"""

from __future__ import annotations

from typing import Optional


class ConnectError(Exception):
    """Base class for all connection-establishment failures."""

    code = "connect_error"

    def __init__(self, message: str, *, provider_id: Optional[str] = None):
        super().__init__(message)
        self.provider_id = provider_id


class UnknownProviderError(ConnectError):
    """No connection factory is registered under the requested provider id."""

    code = "unknown_provider"

    def __init__(self, provider_id: str):
        super().__init__(f"No connection factory for provider '{provider_id}'", provider_id=provider_id)


class ProviderUnavailableError(ConnectError):
    """Transport failure or server error while talking to the provider."""

    code = "provider_unavailable"


class InvalidVerifierError(ConnectError):
    """OAuth1 callback is missing its verifier or does not match a pending request token."""

    code = "invalid_verifier"


class AuthorizationDeniedError(ConnectError):
    """The provider redirected back with an error instead of a code."""

    code = "authorization_denied"

    def __init__(
        self,
        message: str,
        *,
        provider_id: Optional[str] = None,
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ):
        super().__init__(message, provider_id=provider_id)
        self.error = error
        self.error_description = error_description


class InvalidStateError(AuthorizationDeniedError):
    """OAuth2 ``state`` value is missing, forged or expired."""

    code = "invalid_state"


class TokenExchangeError(ConnectError):
    """The provider rejected the verifier, code or refresh token."""

    code = "token_exchange_failed"

    def __init__(self, message: str, *, provider_id: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, provider_id=provider_id)
        self.status_code = status_code


class DuplicateConnectionError(ConnectError):
    """The user already holds a connection with the same key."""

    code = "duplicate_connection"

    def __init__(self, key):
        super().__init__(
            f"Connection already exists for {key.provider_id}/{key.provider_user_id}",
            provider_id=key.provider_id,
        )
        self.key = key


class NoSuchConnectionError(ConnectError):
    code = "no_such_connection"

    def __init__(self, key):
        super().__init__(
            f"No connection for {key.provider_id}/{key.provider_user_id}",
            provider_id=key.provider_id,
        )
        self.key = key


class NotConnectedError(ConnectError):
    code = "not_connected"

    def __init__(self, provider_id: str):
        super().__init__(f"Not connected to provider '{provider_id}'", provider_id=provider_id)
