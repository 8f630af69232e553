from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    INVALID_TOKEN = "invalid_token"
    INVALID_REQUEST = "invalid_request"
    CREDENTIALS_EXHAUSTED = "credentials_exhausted"
    UPSTREAM_ERROR = "upstream_error"
    UPSTREAM_UNREACHABLE = "upstream_unreachable"
    STREAM_INTERRUPTED = "stream_interrupted"

    @classmethod
    def from_status(cls, status: int | None) -> "ErrorCode":
        if status == 401:
            return cls.INVALID_TOKEN
        if status == 503:
            return cls.CREDENTIALS_EXHAUSTED
        if status is not None and 400 <= status < 500:
            return cls.INVALID_REQUEST
        return cls.UPSTREAM_ERROR


class GatewayError(Exception):
    """Base error surfaced to gateway callers as a JSON error body."""

    status_code: int = 500
    default_code: ErrorCode = ErrorCode.UPSTREAM_ERROR

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: ErrorCode | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.code = code or self.default_code


class AuthenticationError(GatewayError):
    status_code = 401
    default_code = ErrorCode.INVALID_TOKEN


class InvalidRequestError(GatewayError):
    status_code = 400
    default_code = ErrorCode.INVALID_REQUEST


class CredentialsExhaustedError(GatewayError):
    """No untried credential remained, or every allowed attempt failed."""

    status_code = 503
    default_code = ErrorCode.CREDENTIALS_EXHAUSTED

    def __init__(self, message: str, *, last_status: int | None = None) -> None:
        super().__init__(message)
        self.last_status = last_status


class UpstreamStatusError(GatewayError):
    """Non-retryable upstream status, propagated to the caller as-is."""

    default_code = ErrorCode.UPSTREAM_ERROR

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(
            f"Upstream API error: {status_code}",
            status_code=status_code,
            code=ErrorCode.from_status(status_code),
        )
        self.body = body


class UpstreamUnavailableError(GatewayError):
    status_code = 502
    default_code = ErrorCode.UPSTREAM_UNREACHABLE


def make_error_body(*, message: str, code: ErrorCode | str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"error": message}
    if code is not None:
        payload["code"] = code.value if isinstance(code, ErrorCode) else str(code)
    return payload
