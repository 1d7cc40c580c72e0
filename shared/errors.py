"""
Shared error taxonomy for the auth middleware.

Four categories matter to callers:

- ConfigError: bad or missing driver, invalid rule. Fatal at startup.
- InfraError: the identity provider could not be reached or answered garbage.
- CredentialRejected: the presented credential is invalid, expired or malformed.
- AccessDenied: the credential is fine but the rule engine refused the request.
"""

from typing import Dict, Any, Optional, Iterable
from pydantic import BaseModel
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format.

    ``code`` is the HTTP status, ``error`` the symbolic error code.
    """

    trace_id: Optional[str] = None
    code: int
    error: str
    message: str
    details: Dict[str, Any] = {}


class AuthLayerException(Exception):
    """Base exception for the auth middleware."""

    http_status: int = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.http_status,
            error=self.code,
            message=self.message,
            details=self.details
        )


class ConfigError(AuthLayerException):
    """Invalid or incomplete configuration."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIG_ERROR", message, details)


class InfraError(AuthLayerException):
    """Network, parsing or key errors while talking to the identity provider."""

    def __init__(self, message: str = "Authentication server error", details: Optional[Dict[str, Any]] = None,
                 code: str = "INFRA_ERROR"):
        super().__init__(code, message, details)


class AuthServerError(InfraError):
    """The identity provider answered with an unexpected HTTP status."""

    def __init__(self, status: int, message: str = "Unexpected response from authentication server",
                 details: Optional[Dict[str, Any]] = None, code: str = "AUTH_SERVER_ERROR"):
        self.status = status
        details = dict(details or {})
        details.setdefault("status", status)
        super().__init__(message, details, code=code)


class TicketDenied(AuthServerError):
    """The identity provider refused to exchange a session credential for a token."""

    def __init__(self, status: int, message: str = "Ticket request denied", details: Optional[Dict[str, Any]] = None):
        super().__init__(status, message, details, code="TICKET_DENIED")


class RevocationNotSupported(AuthLayerException):
    """The driver has no way of revoking a session credential."""

    http_status = 501

    def __init__(self, driver: str):
        super().__init__(
            "REVOCATION_NOT_SUPPORTED",
            f"Driver `{driver}` does not support logout",
            {"driver": driver},
        )


class CredentialRejected(AuthLayerException):
    """Client-side credential fault: missing, malformed, expired or invalid."""

    http_status = 401

    def __init__(self, message: str = "Unauthorized request", details: Optional[Dict[str, Any]] = None,
                 http_status: Optional[int] = None):
        if http_status is not None:
            self.http_status = http_status
        super().__init__("CREDENTIAL_REJECTED", message, details)


class AccessDenied(AuthLayerException):
    """The rule engine refused the request."""

    http_status = 403

    def __init__(self, resource: str, method: str, username: str, groups: Iterable[str]):
        self.resource = resource
        self.method = method
        self.username = username
        self.groups = sorted(groups)
        super().__init__(
            "ACCESS_DENIED",
            f"Access denied for user `{username}` member of {self.groups}",
            {"resource": resource, "method": method, "username": username, "groups": self.groups},
        )
