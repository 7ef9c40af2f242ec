"""
Exception classes for ZPay services.

Every error carries a stable code the dashboard switches on, a message that
is safe to show to users and the HTTP status the API layer responds with.
"""

from typing import Any, Dict, Optional


class ZPayError(Exception):
    """
    Base exception for all service errors.

    Every exception includes:
    - Error code (NOT_FOUND, CONFLICT, ...)
    - User message (safe to show to users)
    - HTTP status code (for API responses)
    """

    code = "INTERNAL_SERVER_ERROR"
    http_status = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        http_status: Optional[int] = None,
        user_message: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.user_message = user_message or message
        self.metadata = kwargs

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses"""
        return {
            "error": {
                "code": self.code,
                "message": self.user_message,
                "type": self.__class__.__name__,
            }
        }


class NotFoundError(ZPayError):
    """Requested record does not exist."""

    code = "NOT_FOUND"
    http_status = 404


class ConflictError(ZPayError):
    """Unique field (email, username) already taken."""

    code = "CONFLICT"
    http_status = 409


class UnauthorizedError(ZPayError):
    """Missing or invalid credentials, or not an admin."""

    code = "UNAUTHORIZED"
    http_status = 401


class ForbiddenError(ZPayError):
    """Authenticated but the action is not allowed on this record."""

    code = "FORBIDDEN"
    http_status = 403


class BadRequestError(ZPayError):
    """Input passed shape validation but is semantically invalid."""

    code = "BAD_REQUEST"
    http_status = 400


class UsageLimitExceededError(ZPayError):
    """
    API key has used up its monthly allowance.

    Self-hosted instances expect a 403 here, not a 429.
    """

    code = "TOO_MANY_REQUESTS"
    http_status = 403

    def __init__(self, api_key_id: str, monthly_usage: int, limit: int, **kwargs: Any):
        super().__init__(
            "Usage limit exceeded for this API key",
            api_key_id=api_key_id,
            monthly_usage=monthly_usage,
            limit=limit,
            **kwargs,
        )


class ServiceNotConfiguredError(ZPayError):
    """An optional integration (SMS, email, Stripe) has no credentials."""

    code = "INTERNAL_SERVER_ERROR"
    http_status = 500


class ExternalServiceError(ZPayError):
    """Payment automation API (or another upstream) could not be reached."""

    code = "BAD_GATEWAY"
    http_status = 502

    def __init__(self, message: str, service: str, **kwargs: Any):
        super().__init__(message, service=service, **kwargs)
        self.service = service
