"""Domain exception hierarchy for structured error responses."""

from __future__ import annotations


class AppException(Exception):
    """Base exception for all domain errors.

    Subclasses set ``code`` and ``status_code`` at the class level; callers
    provide ``message`` and an optional ``details`` list.
    """

    code: str = "APP_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: list[dict] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class NotFoundException(AppException):
    code = "NOT_FOUND"
    status_code = 404


class ConflictException(AppException):
    code = "CONFLICT"
    status_code = 409


class StateConflictException(ConflictException):
    """The dispute's stage/status forbids the action, or its version moved on.

    Callers must refetch the dispute and retry against fresh state.
    """

    code = "STATE_CONFLICT"


class ForbiddenException(AppException):
    code = "FORBIDDEN"
    status_code = 403


class UnauthorizedException(AppException):
    code = "UNAUTHORIZED"
    status_code = 401


class ValidationException(AppException):
    code = "VALIDATION_ERROR"
    status_code = 422


class EligibilityException(AppException):
    code = "NOT_ELIGIBLE"
    status_code = 422


class UpstreamUnavailableException(AppException):
    """A collaborator service could not be reached or timed out."""

    code = "UPSTREAM_UNAVAILABLE"
    status_code = 503


class LedgerException(UpstreamUnavailableException):
    """The escrow ledger could not complete the request. Safe to retry."""

    code = "LEDGER_UNAVAILABLE"
    status_code = 503


class InsufficientEscrowException(LedgerException):
    code = "INSUFFICIENT_ESCROW"
    status_code = 422
