"""
Error taxonomy for the account-linking broker.

Every error carries an HTTP ``status_code`` so the route layer can turn
it into a response without inspecting the type.  Messages are shown to
callers as-is, so they must never contain a code verifier or a token.

    BrokerError (500)
    +-- ConfigurationError          (500)
    +-- UnknownProviderError        (404)
    +-- ProviderDeniedError         (400)
    +-- MalformedCallbackError      (400)
    +-- InvalidOrExpiredStateError  (400)
    +-- TokenExchangeError          (502)
    +-- RefreshFailedError          (401)
    +-- AccountNotLinkedError       (404)
    +-- ClientConstructionError     (502)
"""

from __future__ import annotations

from typing import Optional


class BrokerError(Exception):
    """Base class for all broker errors."""

    status_code: int = 500
    error_type: str = "broker_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(BrokerError):
    """Provider credentials or redirect URI are missing."""

    error_type = "configuration_error"


class UnknownProviderError(BrokerError):
    status_code = 404
    error_type = "unknown_provider"


class ProviderDeniedError(BrokerError):
    """The user declined consent (or the provider returned ``error=``)."""

    status_code = 400
    error_type = "provider_denied"


class MalformedCallbackError(BrokerError):
    status_code = 400
    error_type = "malformed_callback"


class InvalidOrExpiredStateError(BrokerError):
    """Unknown, replayed, expired or mismatched ``state``."""

    status_code = 400
    error_type = "invalid_state"


class TokenExchangeError(BrokerError):
    """The provider token endpoint failed or rejected the code."""

    status_code = 502
    error_type = "token_exchange_error"

    def __init__(self, message: str, provider_error: Optional[str] = None):
        super().__init__(message)
        self.provider_error = provider_error


class RefreshFailedError(BrokerError):
    """Refresh rejected; the account must be re-linked by its owner."""

    status_code = 401
    error_type = "refresh_failed"

    def __init__(self, message: str, account_id: Optional[str] = None):
        super().__init__(message)
        self.account_id = account_id


class AccountNotLinkedError(BrokerError):
    status_code = 404
    error_type = "account_not_linked"


class ClientConstructionError(BrokerError):
    """The pool factory raised; nothing was cached for the key."""

    status_code = 502
    error_type = "client_construction_error"
