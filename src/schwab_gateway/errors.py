"""Gateway Error Hierarchy.

Typed exceptions for the gateway internals plus the result/error-list
values returned across the public boundary. Public operations never raise:
they convert exceptions into ErrorDetail entries on a Result.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    """Standardized gateway error codes."""

    CONNECTION_FAILED = "CONNECTION_FAILED"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    REQUEST_FAILED = "REQUEST_FAILED"
    DECODE_FAILED = "DECODE_FAILED"
    RECONCILIATION_FAILED = "RECONCILIATION_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class GatewayError(Exception):
    """Base exception for all gateway errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code


class ConnectError(GatewayError):
    """Raised when the streaming handshake or socket fails."""

    def __init__(self, message: str = "Stream connection failed", status_code: Optional[int] = None):
        super().__init__(message, ErrorCode.CONNECTION_FAILED, status_code)


class AuthError(GatewayError):
    """Raised when a token exchange fails."""

    def __init__(self, message: str = "Token exchange failed", status_code: Optional[int] = None):
        super().__init__(message, ErrorCode.AUTHENTICATION_FAILED, status_code)


class RequestError(GatewayError):
    """Raised when a REST call returns a non-success status."""

    def __init__(self, message: str = "Request failed", status_code: Optional[int] = None):
        super().__init__(message, ErrorCode.REQUEST_FAILED, status_code)


class DecodeError(GatewayError):
    """Raised for a malformed stream frame."""

    def __init__(self, message: str = "Malformed stream frame"):
        super().__init__(message, ErrorCode.DECODE_FAILED)


class ReconciliationError(GatewayError):
    """Raised when the account cannot be re-synced after a mutation."""

    def __init__(self, message: str = "Account reconciliation failed"):
        super().__init__(message, ErrorCode.RECONCILIATION_FAILED)


@dataclass
class ErrorDetail:
    """One error descriptor carried by a Result."""
    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    message: str = ""
    status_code: Optional[int] = None
    source: str = ""

    @classmethod
    def from_exception(cls, exc: BaseException, source: str = "") -> "ErrorDetail":
        if isinstance(exc, GatewayError):
            return cls(
                code=exc.error_code,
                message=exc.message,
                status_code=exc.status_code,
                source=source,
            )
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"{type(exc).__name__}: {exc}",
            source=source,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "status_code": self.status_code,
            "source": self.source,
        }


@dataclass
class Result(Generic[T]):
    """Value-or-errors envelope returned by every public operation.

    Absence of data plus a non-empty error list signals failure. Batch
    operations may carry both data and errors (partial failure).
    """
    data: Optional[T] = None
    errors: list[ErrorDetail] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    @classmethod
    def ok(cls, data: T) -> "Result[T]":
        return cls(data=data)

    @classmethod
    def fail(cls, error: BaseException, source: str = "") -> "Result[T]":
        return cls(errors=[ErrorDetail.from_exception(error, source)])

    def add_error(self, error: BaseException, source: str = "") -> None:
        self.errors.append(ErrorDetail.from_exception(error, source))
