"""
Typed errors shared by adapters, services and the API layer.

Every error carries a stable ``code`` and the HTTP status the API maps it to.
"""
from typing import Any, Dict, Optional


class TrackProfitError(Exception):
    """Base exception for all TrackProfit failures."""

    code = "error"
    status_code = 500
    default_message = "Unexpected error"

    def __init__(
        self,
        message: Optional[str] = None,
        field: Optional[str] = None,
        provider: Optional[str] = None,
    ):
        self.message = message or self.default_message
        super().__init__(self.message)
        self.field = field
        self.provider = provider

    def to_dict(self) -> Dict[str, Any]:
        body = {"code": self.code, "message": self.message}
        if self.field:
            body["field"] = self.field
        if self.provider:
            body["provider"] = self.provider
        return body

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, provider={self.provider!r})"


class InvalidInput(TrackProfitError):
    """Missing required field, invalid date, non-numeric money."""

    code = "invalid_input"
    status_code = 400
    default_message = "Invalid input"


class AuthFailed(TrackProfitError):
    """Credential is invalid or expired. Never retried."""

    code = "auth_failed"
    status_code = 401
    default_message = "Authentication failed - please re-authenticate"


class NotFound(TrackProfitError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class UnknownTopic(NotFound):
    """Webhook topic this app does not handle."""

    default_message = "Unhandled webhook topic"


class Conflict(TrackProfitError):
    code = "conflict"
    status_code = 409
    default_message = "Conflicting write"


class NotConfigured(TrackProfitError):
    """The shop has not saved credentials for a provider."""

    code = "not_configured"
    status_code = 412
    default_message = "Provider credentials are not configured"


class NoDirectory(TrackProfitError):
    """Ads token is valid but no ad accounts could be listed."""

    code = "no_directory"
    status_code = 422
    default_message = "No ad accounts found for this access token"


class TransientError(TrackProfitError):
    """Network failure, 5xx or rate limit. Safe to retry with backoff."""

    code = "transient"
    status_code = 503
    default_message = "Temporary provider failure - please retry"


class TransientCarrierError(TransientError):
    code = "transient_carrier"
    default_message = "Carrier is temporarily unavailable - please retry"


class DependencyUnavailable(TrackProfitError):
    """The persistent store could not be reached."""

    code = "dependency_unavailable"
    status_code = 503
    default_message = "Storage is unavailable"


class DeadlineExceeded(TrackProfitError):
    code = "timeout"
    status_code = 504
    default_message = "Operation did not complete before its deadline"
