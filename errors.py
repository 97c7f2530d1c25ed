"""Error taxonomy shared by every procedure.

A single ``AppError`` carries an ``ErrorCode`` plus a free-form context
mapping. Anything else raised while handling a call is converted with
``coerce_error`` before it is logged or sent to a client.
"""

from __future__ import annotations

import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    OperationalError,
    SQLAlchemyError,
)


class ErrorCode(str, Enum):
    unauthorized = "UNAUTHORIZED"
    invalid_credentials = "INVALID_CREDENTIALS"
    forbidden = "FORBIDDEN"
    validation_error = "VALIDATION_ERROR"
    not_found = "NOT_FOUND"
    duplicate_entry = "DUPLICATE_ENTRY"
    database_error = "DATABASE_ERROR"
    connection_error = "CONNECTION_ERROR"
    internal_server_error = "INTERNAL_SERVER_ERROR"


HTTP_STATUS = {
    ErrorCode.unauthorized: 401,
    ErrorCode.invalid_credentials: 401,
    ErrorCode.forbidden: 403,
    ErrorCode.validation_error: 400,
    ErrorCode.not_found: 404,
    ErrorCode.duplicate_entry: 409,
    ErrorCode.database_error: 500,
    ErrorCode.connection_error: 503,
    ErrorCode.internal_server_error: 500,
}

INTERNAL_MESSAGE = "Internal server error"


class AppError(Exception):
    def __init__(
        self,
        message: str,
        code: ErrorCode,
        context: Optional[dict[str, Any]] = None,
        operational: bool = True,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = dict(context or {})
        self.operational = operational
        self.details = details
        self.timestamp = datetime.now(timezone.utc)

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.code]

    def with_context(self, **context: Any) -> "AppError":
        for key, value in context.items():
            if value is not None:
                self.context.setdefault(key, value)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "operational": self.operational,
        }

    def __repr__(self) -> str:
        return f"AppError(code={self.code.value!r}, message={self.message!r})"


def validation(message: str, details: Optional[dict] = None, **context: Any) -> AppError:
    return AppError(message, ErrorCode.validation_error, context, details=details)


def not_found(resource: str, **context: Any) -> AppError:
    return AppError(f"{resource} not found", ErrorCode.not_found, context)


def duplicate(message: str, **context: Any) -> AppError:
    return AppError(message, ErrorCode.duplicate_entry, context)


def database(message: str, **context: Any) -> AppError:
    return AppError(message, ErrorCode.database_error, context)


def authentication(message: str, **context: Any) -> AppError:
    return AppError(message, ErrorCode.unauthorized, context)


def authorization(message: str, **context: Any) -> AppError:
    return AppError(message, ErrorCode.forbidden, context)


def invalid_credentials(**context: Any) -> AppError:
    return AppError(
        "Invalid email or password", ErrorCode.invalid_credentials, context
    )


def internal(message: str, **context: Any) -> AppError:
    return AppError(message, ErrorCode.internal_server_error, context, operational=False)


def validation_tree(exc: PydanticValidationError) -> dict[str, Any]:
    """Nest pydantic error messages by location.

    Each node holds ``errors`` (messages for that node) and either
    ``properties`` (named children) or ``items`` (positional children).
    """
    root: dict[str, Any] = {"errors": []}
    for err in exc.errors():
        node = root
        for part in err.get("loc", ()):
            if isinstance(part, int):
                items = node.setdefault("items", {})
                node = items.setdefault(part, {"errors": []})
            else:
                props = node.setdefault("properties", {})
                node = props.setdefault(str(part), {"errors": []})
        node["errors"].append(err.get("msg", "Invalid value"))
    return root


def from_validation_error(exc: PydanticValidationError, **context: Any) -> AppError:
    return validation("Input validation failed", details=validation_tree(exc), **context)


UNIQUE_VIOLATION_SQLSTATE = "23505"


def is_unique_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate is not None:
        return sqlstate == UNIQUE_VIOLATION_SQLSTATE
    return "unique constraint" in str(orig).lower()


def coerce_error(exc: BaseException, **context: Any) -> AppError:
    if isinstance(exc, AppError):
        return exc.with_context(**context)
    if isinstance(exc, PydanticValidationError):
        return from_validation_error(exc, **context)
    if isinstance(exc, IntegrityError) and is_unique_violation(exc):
        err = duplicate("Duplicate entry", **context)
    elif isinstance(exc, (OperationalError, DisconnectionError)):
        err = AppError(
            "Database connection failed", ErrorCode.connection_error, context
        )
    elif isinstance(exc, SQLAlchemyError):
        err = database("Database operation failed", **context)
    else:
        err = internal(str(exc) or INTERNAL_MESSAGE, **context)
        err.context["original_error"] = type(exc).__name__
    err.__cause__ = exc
    return err


def format_error(
    err: AppError,
    path: Optional[str] = None,
    include_stack: bool = False,
) -> dict[str, Any]:
    message = err.message
    if not err.operational and not include_stack:
        message = INTERNAL_MESSAGE

    stack = None
    if include_stack:
        source = err.__cause__ or err
        stack = "".join(
            traceback.format_exception(type(source), source, source.__traceback__)
        )

    return {
        "error": {
            "code": err.code.value,
            "message": message,
            "data": {
                "httpStatus": err.http_status,
                "path": path,
                "errors": err.details if err.code == ErrorCode.validation_error else None,
                "stack": stack,
            },
        }
    }
