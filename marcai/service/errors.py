from __future__ import annotations

from typing import Any, Optional

from marcai.service import messages

# Backend marker distinguishing a lapsed access token from invalid credentials
TOKEN_EXPIRED_CODE = "TOKEN_EXPIRED"


class ApiError(Exception):
    """Base class for every failure surfaced by the API client.

    Each subclass fixes an ``error_code`` and, where a response was received,
    an HTTP ``status_code``. ``user_message`` is the text a presentation layer
    can show as-is.
    """

    status_code: Optional[int] = None
    error_code: str = "api_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
        user_message: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}
        self.user_message = user_message or message


class NetworkError(ApiError):
    """No response was received (DNS, refused connection, reset)."""
    error_code = "network_error"


class RequestTimeoutError(NetworkError):
    """The request was aborted after the configured deadline."""
    error_code = "timeout"


class ResponseDecodeError(ApiError):
    """A response arrived but its body could not be read (bad encoding)."""
    error_code = "response_unreadable"


class AuthenticationError(ApiError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class AuthenticationExpiredError(AuthenticationError):
    """Access token lapsed; recoverable through a refresh."""
    error_code = "token_expired"


class AuthenticationInvalidError(AuthenticationError):
    """Credentials rejected without an expiry marker; forces logout."""
    error_code = "invalid_credentials"


class RefreshFailedError(AuthenticationError):
    """The refresh call itself failed; the session is being terminated."""
    error_code = "refresh_failed"


class ClientError(ApiError):
    """Any 4xx other than 401."""
    status_code = 400
    error_code = "client_error"


class ForbiddenError(ClientError):
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ClientError):
    status_code = 404
    error_code = "not_found"


class ValidationError(ClientError):
    """Request validation failed (422); ``field_errors`` holds the flattened list."""
    status_code = 422
    error_code = "validation_error"

    def __init__(self, message: str, *, field_errors: Optional[list[str]] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.field_errors = list(field_errors or [])


class RateLimitedError(ClientError):
    status_code = 429
    error_code = "rate_limited"


class ServerError(ApiError):
    """Any 5xx."""
    status_code = 500
    error_code = "server_error"


_CLIENT_ERRORS: dict[int, type[ClientError]] = {
    403: ForbiddenError,
    404: NotFoundError,
    422: ValidationError,
    429: RateLimitedError,
}


def is_expiry_signal(payload: Any) -> bool:
    """Return True when a 401 body carries the token-expired marker."""
    return isinstance(payload, dict) and payload.get("code") == TOKEN_EXPIRED_CODE


def error_for_response(status_code: int, payload: Any) -> ApiError:
    """Build the error matching an HTTP status and its decoded JSON body."""
    detail = payload if isinstance(payload, dict) else {}
    server_message = messages.payload_message(payload)
    user_message = messages.message_for_status(status_code, payload)
    message = server_message or user_message

    if status_code == 401:
        cls: type[ApiError] = (
            AuthenticationExpiredError if is_expiry_signal(payload) else AuthenticationInvalidError
        )
        return cls(message, status_code=401, detail=detail, user_message=user_message)
    if status_code == 422:
        return ValidationError(
            message,
            status_code=422,
            detail=detail,
            user_message=user_message,
            field_errors=messages.flatten_validation_errors(payload),
        )
    if 400 <= status_code < 500:
        cls = _CLIENT_ERRORS.get(status_code, ClientError)
        return cls(message, status_code=status_code, detail=detail, user_message=user_message)
    if status_code >= 500:
        return ServerError(message, status_code=status_code, detail=detail, user_message=user_message)
    return ApiError(message, status_code=status_code, detail=detail, user_message=user_message)


__all__ = [
    "TOKEN_EXPIRED_CODE",
    "ApiError",
    "NetworkError",
    "RequestTimeoutError",
    "AuthenticationError",
    "AuthenticationExpiredError",
    "AuthenticationInvalidError",
    "RefreshFailedError",
    "ClientError",
    "ForbiddenError",
    "NotFoundError",
    "ValidationError",
    "RateLimitedError",
    "ServerError",
    "error_for_response",
    "is_expiry_signal",
]
