"""
Error taxonomy for xeropay.

Every error raised across a component boundary derives from XeroPayError so
the HTTP layer and the CLI can render it as structured output. Messages never
carry token material.
"""

from __future__ import annotations

from typing import Any


class XeroPayError(Exception):
    """Base class for all xeropay errors."""

    error_type: str = "xeropay_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.error_type, "message": self.message}


class NotInitialized(XeroPayError):
    """No session has been persisted yet. An admin must complete consent."""

    error_type = "not_initialized"

    def __init__(self, message: str = "No Xero session found. Visit /xero/connect to authorize.") -> None:
        super().__init__(message)


class RefreshFailed(XeroPayError):
    """The refresh token exchange was rejected or could not be completed.

    ``needs_consent`` is True when the provider rejected the grant (revoked or
    expired refresh token) and only a fresh consent can recover. It is False
    for transport failures, timeouts and provider outages, where trying again
    later may succeed.
    """

    error_type = "refresh_failed"

    def __init__(self, message: str, *, needs_consent: bool) -> None:
        super().__init__(message)
        self.needs_consent = needs_consent

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["needs_consent"] = self.needs_consent
        return data


class ConsentExchangeFailed(XeroPayError):
    """The authorization code exchange or the tenant fetch failed."""

    error_type = "consent_exchange_failed"


class AmbiguousOrMissingContact(XeroPayError):
    """Zero or several contacts share the requested account number."""

    error_type = "ambiguous_or_missing_contact"

    def __init__(self, account_number: str, found: int) -> None:
        super().__init__(f"Expected a unique contact for studentId {account_number}")
        self.account_number = account_number
        self.found = found


class SessionStoreError(XeroPayError):
    """The persisted session exists but cannot be read or written."""

    error_type = "session_store_error"


class AccountingAPIError(XeroPayError):
    """The accounting API answered a business query with an error status."""

    error_type = "accounting_api_error"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderError(Exception):
    """Raw failure from the OAuth2 provider endpoints.

    ``status_code`` is None when the request never got an HTTP answer
    (connection error, timeout). ``error`` is the OAuth2 ``error`` code from
    the response body when the provider sent one.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error = error

    @property
    def is_rejection(self) -> bool:
        """True when the provider refused the grant rather than failing to answer."""
        if self.error in {"invalid_grant", "unauthorized_client", "invalid_client"}:
            return True
        return self.status_code in {400, 401, 403}
