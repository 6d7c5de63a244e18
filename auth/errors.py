"""
auth/errors.py -- Error taxonomy for NovaSanctum.

Every error that may reach the HTTP layer derives from NovaSanctumError and
carries a stable machine-readable code plus an HTTP status. Lower-layer
failures (SQLAlchemy driver errors, jose signature errors) are translated into
this taxonomy at the store / token boundary and never leak upward.

  ValidationError      400  VALIDATION_ERROR
  AuthenticationError  401  AUTHENTICATION_ERROR  (identity not established)
    InvalidTokenError
    TokenExpiredError
  AuthorizationError   403  AUTHORIZATION_ERROR   (identity established, forbidden)
  NotFoundError        404  NOT_FOUND_ERROR
  ConflictError        409  CONFLICT_ERROR
  RateLimitError       429  RATE_LIMIT_ERROR
  InternalError        500  INTERNAL_ERROR

StoreError is the generic persistence failure. It is distinct from "not
found" (stores return None for absence) and is converted to InternalError by
the orchestrator.
"""

from __future__ import annotations

from typing import Any


class NovaSanctumError(Exception):
    """Base class for all operational errors raised by the auth layer."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationError(NovaSanctumError):
    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Invalid data provided"


class AuthenticationError(NovaSanctumError):
    status_code = 401
    code = "AUTHENTICATION_ERROR"
    default_message = "Authentication failed"


class InvalidTokenError(AuthenticationError):
    default_message = "Invalid token"


class TokenExpiredError(AuthenticationError):
    default_message = "Token expired"


class AuthorizationError(NovaSanctumError):
    status_code = 403
    code = "AUTHORIZATION_ERROR"
    default_message = "Access denied"


class NotFoundError(NovaSanctumError):
    status_code = 404
    code = "NOT_FOUND_ERROR"
    default_message = "Resource not found"


class ConflictError(NovaSanctumError):
    status_code = 409
    code = "CONFLICT_ERROR"
    default_message = "Resource already exists"


class RateLimitError(NovaSanctumError):
    status_code = 429
    code = "RATE_LIMIT_ERROR"
    default_message = "Rate limit exceeded"


class InternalError(NovaSanctumError):
    pass


class StoreError(Exception):
    """A persistence call failed (driver error, lock timeout, pool exhaustion)."""
