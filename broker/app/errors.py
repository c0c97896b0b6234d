"""
Broker Error Taxonomy
=====================

Every failure in the sign-in core is one of these exceptions. Each carries a
machine code, an HTTP status and a message that is safe to show to the end
user. Handlers registered in ``app.main`` decide whether it becomes a JSON body
or an HTML page.
"""

from typing import Optional


GENERIC_SIGN_IN_ERROR = "Cannot complete sign-in for this application."


class BrokerError(Exception):
    """Base exception for all request-scoped broker errors"""

    code = "broker_error"
    status_code = 400
    default_message = "The request could not be completed."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCredentials(BrokerError):
    code = "invalid_credentials"
    status_code = 401
    default_message = "Invalid email or password."


class AlreadyExists(BrokerError):
    code = "already_exists"
    status_code = 409
    default_message = "User already exists."


class UnknownClient(BrokerError):
    code = "unknown_client"
    status_code = 400
    default_message = GENERIC_SIGN_IN_ERROR


class InvalidRedirect(BrokerError):
    code = "invalid_redirect"
    status_code = 400
    default_message = GENERIC_SIGN_IN_ERROR


class ProviderNotConfigured(BrokerError):
    """The provider is disabled for every user, not just this one."""

    code = "provider_not_configured"
    status_code = 503

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"{provider.capitalize()} login is not configured.")


class UnknownProvider(BrokerError):
    code = "unknown_provider"
    status_code = 404
    default_message = "Unknown identity provider."


class StateInvalid(BrokerError):
    """
    The continuation carried through the provider is missing or broken.

    The principal may still have authenticated successfully with the provider;
    when it has, it is attached so the caller can decide what to do with it.
    """

    code = "state_invalid"
    status_code = 400
    default_message = "The sign-in request could not be resumed."

    def __init__(self, message: Optional[str] = None, principal=None):
        self.principal = principal
        super().__init__(message)


class AuthFailed(BrokerError):
    code = "auth_failed"
    status_code = 401
    default_message = "Authentication failed."


class SessionExpired(BrokerError):
    """
    Reserved for storage backends that can tell expiry apart from absence.

    The in-memory session store resolves an expired handle exactly like a
    guest, so callers of the gate only ever see ``Unauthenticated``.
    """

    code = "session_expired"
    status_code = 401
    default_message = "Your session has expired. Please log in again."


class Unauthenticated(BrokerError):
    code = "unauthenticated"
    status_code = 401
    default_message = "Authentication required"


class NotFound(BrokerError):
    code = "not_found"
    status_code = 404
    default_message = "Not found."


class TokenExpired(BrokerError):
    code = "token_expired"
    status_code = 401
    default_message = "Token has expired"


class TokenInvalid(BrokerError):
    code = "token_invalid"
    status_code = 401
    default_message = "Invalid token"


__all__ = [
    "GENERIC_SIGN_IN_ERROR",
    "BrokerError",
    "InvalidCredentials",
    "AlreadyExists",
    "UnknownClient",
    "InvalidRedirect",
    "ProviderNotConfigured",
    "UnknownProvider",
    "StateInvalid",
    "AuthFailed",
    "SessionExpired",
    "Unauthenticated",
    "NotFound",
    "TokenExpired",
    "TokenInvalid",
]
