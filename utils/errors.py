"""
Error taxonomy for the entitlement subsystem.

Every error carries the HTTP status it maps to, so routers can simply let
them propagate to the exception handler registered in main.py.
"""
from typing import Any, Optional


class EntitlementError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    retryable = False

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class AuthError(EntitlementError):
    """Missing or invalid caller identity."""

    status_code = 401


class ValidationError(EntitlementError):
    """Bad request input: missing/unknown price id, malformed webhook body."""

    status_code = 400


class UpstreamError(EntitlementError):
    """
    The payment processor or the record store failed.

    Read paths absorb it and serve cached state; write paths surface it so
    the caller can retry.
    """

    status_code = 502
    retryable = True


class SignatureError(EntitlementError):
    """Webhook authenticity check failed. Never processed."""

    status_code = 400
