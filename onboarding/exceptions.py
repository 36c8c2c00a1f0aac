"""
Typed exceptions for the supplier onboarding core.

Every transition failure is a ``TransitionError`` subclass carrying a
machine-readable ``reason`` code, so handlers map errors by type instead of
parsing messages:

    OnboardingError
    |
    +-- TransitionError
    |   +-- RequestNotFoundError      NOT_FOUND
    |   +-- ForbiddenRoleError        FORBIDDEN_ROLE
    |   +-- InvalidStatusError        INVALID_STATUS
    |   +-- MissingFieldError         MISSING_REQUIRED_FIELD
    |   +-- InvalidFieldError         INVALID_FIELD
    |   +-- DuplicateValueError       DUPLICATE_VALUE
    |   +-- ConflictError             CONFLICT
    |   +-- TokenInvalidError         TOKEN_INVALID
    |   +-- TokenExpiredError         TOKEN_EXPIRED
    |
    +-- AuditImmutableError
"""

from __future__ import annotations


class OnboardingError(Exception):
    """Base class for all onboarding errors."""

    code: str = "ONBOARDING_ERROR"


class TransitionError(OnboardingError):
    """A rejected lifecycle action. Nothing was written."""

    reason: str = "TRANSITION_REJECTED"
    http_status: int = 400

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field

    @property
    def code(self) -> str:  # type: ignore[override]
        return self.reason

    def to_dict(self) -> dict:
        body = {"error": self.message, "reason": self.reason}
        if self.field:
            body["field"] = self.field
        return body


class RequestNotFoundError(TransitionError):
    reason = "NOT_FOUND"
    http_status = 404


class ForbiddenRoleError(TransitionError):
    reason = "FORBIDDEN_ROLE"
    http_status = 403


class InvalidStatusError(TransitionError):
    reason = "INVALID_STATUS"
    http_status = 400


class MissingFieldError(TransitionError):
    reason = "MISSING_REQUIRED_FIELD"
    http_status = 400


class InvalidFieldError(TransitionError):
    reason = "INVALID_FIELD"
    http_status = 400


class DuplicateValueError(TransitionError):
    reason = "DUPLICATE_VALUE"
    http_status = 409


class ConflictError(TransitionError):
    """The compare-and-swap on status lost against a concurrent transition."""

    reason = "CONFLICT"
    http_status = 409


class TokenInvalidError(TransitionError):
    """Token never existed or was already consumed."""

    reason = "TOKEN_INVALID"
    http_status = 404


class TokenExpiredError(TransitionError):
    reason = "TOKEN_EXPIRED"
    http_status = 410


class AuditImmutableError(OnboardingError):
    code = "AUDIT_IMMUTABLE"
