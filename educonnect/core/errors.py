"""
Error taxonomy for the verification and two-factor workflows.

Every error carries a stable machine-checkable `kind` plus a human-readable
message. The FastAPI handler in `register_exception_handlers` turns them into
`{"kind": ..., "detail": ...}` JSON bodies with the class's HTTP status.
"""
from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from educonnect.core.logging import get_logger

logger = get_logger(__name__)


class AppError(Exception):
    status_code: int = 400
    kind: str = "validation_error"
    default_message: str = "Request could not be processed"

    def __init__(self, message: str | None = None, *, headers: dict | None = None) -> None:
        self.message = message or self.default_message
        self.headers = headers
        super().__init__(self.message)


# ── Input / lookup ────────────────────────────────────────────────────
class ValidationError(AppError):
    status_code = 400
    kind = "validation_error"
    default_message = "Invalid request"


class NotFound(AppError):
    status_code = 404
    kind = "not_found"
    default_message = "Not found"


# ── Authentication / authorization ────────────────────────────────────
class NotAuthenticated(AppError):
    status_code = 401
    kind = "not_authenticated"
    default_message = "Invalid or missing token"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"})


class InvalidCredentials(AppError):
    status_code = 401
    kind = "invalid_credentials"
    default_message = "Invalid email or password"


class InvalidToken(AppError):
    status_code = 401
    kind = "invalid_token"
    default_message = "Invalid or expired token"


class Forbidden(AppError):
    status_code = 403
    kind = "forbidden"
    default_message = "You are not authorized to perform this action"


class AccountState(AppError):
    status_code = 403
    kind = "account_state"
    default_message = "Account is not in a state that allows this action"


# ── Role request workflow ─────────────────────────────────────────────
class AlreadyProcessed(AppError):
    status_code = 409
    kind = "already_processed"
    default_message = "Request already processed"


class PersistenceFailure(AppError):
    status_code = 500
    kind = "persistence_failure"
    default_message = "Failed to create user after multiple attempts. Please try again."


class ConsistencyError(AppError):
    """Approved request and identity have diverged; needs operator reconciliation."""
    status_code = 500
    kind = "consistency_error"
    default_message = "User creation verification failed. Please contact administrator."


# ── Two-factor ────────────────────────────────────────────────────────
class InvalidCode(AppError):
    status_code = 400
    kind = "invalid_code"
    default_message = "Invalid code"


class CodeExpired(AppError):
    status_code = 400
    kind = "code_expired"
    default_message = "Code expired. Please request a new one."


class NoEnrollmentInProgress(AppError):
    status_code = 400
    kind = "no_enrollment_in_progress"
    default_message = "No two-factor setup in progress. Please start setup first."


class NotConfigured(AppError):
    status_code = 400
    kind = "not_configured"
    default_message = "SMS two-factor authentication is not configured for this account"


class NotEnabled(AppError):
    status_code = 400
    kind = "not_enabled"
    default_message = "Two-factor authentication is not enabled"


class TooManyAttempts(AppError):
    status_code = 429
    kind = "too_many_attempts"
    default_message = "Too many attempts. Please request a new code."


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "app_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            kind=exc.kind,
            message=exc.message,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"kind": exc.kind, "detail": exc.message},
            headers=exc.headers,
        )
