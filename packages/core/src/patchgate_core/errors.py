"""Error codes and exceptions for the review session lifecycle.

Every failure a caller can see maps to one stable ErrorCode. The HTTP layer
turns the code into a status and a response body; the CLI turns it into a
ClickException. Decision functions in patchgate_core.guard never raise;
only the service layer converts a refusal into one of these exceptions.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_AUTH = "MISSING_AUTH"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    SESSION_NOT_APPROVED = "SESSION_NOT_APPROVED"
    SESSION_ALREADY_APPLIED = "SESSION_ALREADY_APPLIED"
    WRITE_BACK_FAILED = "WRITE_BACK_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_STATUS_CODES: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.MISSING_AUTH: 401,
    ErrorCode.PAYLOAD_TOO_LARGE: 413,
    ErrorCode.SESSION_NOT_FOUND: 404,
    ErrorCode.SESSION_EXPIRED: 410,
    ErrorCode.SESSION_NOT_APPROVED: 400,
    ErrorCode.SESSION_ALREADY_APPLIED: 409,
    ErrorCode.WRITE_BACK_FAILED: 502,
    ErrorCode.INTERNAL_ERROR: 500,
}

DEFAULT_ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.VALIDATION_ERROR: "Request validation failed",
    ErrorCode.MISSING_AUTH: "A GitHub token is required for this operation",
    ErrorCode.PAYLOAD_TOO_LARGE: "Request payload exceeds maximum allowed size",
    ErrorCode.SESSION_NOT_FOUND: "Review session not found",
    ErrorCode.SESSION_EXPIRED: "Review session has expired",
    ErrorCode.SESSION_NOT_APPROVED: "Review session must be approved before applying",
    ErrorCode.SESSION_ALREADY_APPLIED: "Review session has already been applied",
    ErrorCode.WRITE_BACK_FAILED: "Writing patches to the target repository failed",
    ErrorCode.INTERNAL_ERROR: "An internal error occurred",
}


class PatchgateError(Exception):
    """Base class for every error with a stable, caller-visible code."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retryable: bool = False

    def __init__(self, message: str | None = None, details: dict | None = None):
        self.message = message or DEFAULT_ERROR_MESSAGES[self.code]
        self.details = details or {}
        super().__init__(self.message)

    @property
    def http_status(self) -> int:
        return ERROR_STATUS_CODES.get(self.code, 500)


class PlanValidationError(PatchgateError):
    code = ErrorCode.VALIDATION_ERROR

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Invalid change plan: " + "; ".join(errors), details={"errors": errors})


class MissingAuthError(PatchgateError):
    code = ErrorCode.MISSING_AUTH


class PayloadTooLargeError(PatchgateError):
    code = ErrorCode.PAYLOAD_TOO_LARGE


class SessionNotFoundError(PatchgateError):
    code = ErrorCode.SESSION_NOT_FOUND

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Review session not found: {session_id}", details={"sessionId": session_id})


class SessionExpiredError(PatchgateError):
    code = ErrorCode.SESSION_EXPIRED


class SessionNotApprovedError(PatchgateError):
    code = ErrorCode.SESSION_NOT_APPROVED


class SessionAlreadyAppliedError(PatchgateError):
    code = ErrorCode.SESSION_ALREADY_APPLIED


class CorruptSessionError(PatchgateError):
    """The store returned a record that does not deserialize."""

    code = ErrorCode.INTERNAL_ERROR


class WriteBackError(PatchgateError):
    """The VCS write failed. Retryable unless the target rejected the request outright."""

    code = ErrorCode.WRITE_BACK_FAILED

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        retryable: bool = True,
        details: dict | None = None,
    ):
        self.status = status
        self.retryable = retryable
        details = {**(details or {}), "retryable": retryable}
        if status is not None:
            details["upstreamStatus"] = status
        super().__init__(message, details=details)


_ERRORS_BY_CODE: dict[ErrorCode, type[PatchgateError]] = {
    ErrorCode.SESSION_EXPIRED: SessionExpiredError,
    ErrorCode.SESSION_NOT_APPROVED: SessionNotApprovedError,
    ErrorCode.SESSION_ALREADY_APPLIED: SessionAlreadyAppliedError,
}


def error_for_code(code: ErrorCode, message: str | None = None) -> PatchgateError:
    """Build the exception matching a guard refusal's error code."""
    cls = _ERRORS_BY_CODE.get(code, PatchgateError)
    return cls(message)
