"""Procedure registry and the middleware chain wrapped around each handler.

A middleware is any callable ``(ctx, raw_input, next_) -> output``. Each
procedure runs the fixed chain

    log_calls -> require_user (protected only) -> validate_input -> handler

so rejected and invalid calls are still logged.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

import errors
from context import RequestContext

logger = logging.getLogger(__name__)

Next = Callable[[RequestContext, Any], Any]
Middleware = Callable[[RequestContext, Any, Next], Any]
Handler = Callable[[RequestContext, Any], Any]

REDACTED = "[REDACTED]"
SENSITIVE_KEYS = ("password", "token", "secret", "key", "auth", "credentials")


class ProcedureKind(str, Enum):
    query = "query"
    mutation = "mutation"


def is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_KEYS)


def redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTED if isinstance(key, str) and is_sensitive(key) else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


def serialize_output(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    return value


def compose(middlewares: list[Middleware], handler: Handler) -> Next:
    def dispatch(index: int, ctx: RequestContext, data: Any) -> Any:
        if index == len(middlewares):
            return handler(ctx, data)
        return middlewares[index](
            ctx, data, lambda next_ctx, next_data: dispatch(index + 1, next_ctx, next_data)
        )

    return lambda ctx, data: dispatch(0, ctx, data)


def log_calls(path: str, kind: ProcedureKind) -> Middleware:
    def middleware(ctx: RequestContext, raw_input: Any, next_: Next) -> Any:
        user_id = ctx.user_id
        logger.info(
            f"api_call_started: procedure={path} type={kind.value} "
            f"user_id={user_id} input={redact(raw_input)}"
        )
        started = time.perf_counter()
        try:
            result = next_(ctx, raw_input)
        except Exception as exc:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            err = errors.coerce_error(exc, procedure=path, user_id=user_id)
            message = (
                f"api_call_failed: procedure={path} type={kind.value} "
                f"user_id={user_id} duration_ms={duration_ms} "
                f"code={err.code.value} message={err.message!r} "
                f"context={redact(err.context)}"
            )
            if err.operational:
                logger.warning(message)
            else:
                logger.error(message, exc_info=exc)
            raise

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info(
            f"api_call_completed: procedure={path} type={kind.value} "
            f"user_id={user_id} duration_ms={duration_ms} "
            f"output={redact(serialize_output(result))}"
        )
        return result

    return middleware


def require_user(ctx: RequestContext, raw_input: Any, next_: Next) -> Any:
    if ctx.user is None:
        raise errors.authentication("You must be logged in to access this resource")
    return next_(ctx, raw_input)


def validate_input(model: Optional[type[BaseModel]]) -> Middleware:
    def middleware(ctx: RequestContext, raw_input: Any, next_: Next) -> Any:
        if model is None:
            return next_(ctx, None)
        try:
            data = model.model_validate({} if raw_input is None else raw_input)
        except PydanticValidationError as exc:
            raise errors.from_validation_error(exc) from exc
        return next_(ctx, data)

    return middleware


@dataclass(frozen=True)
class Procedure:
    path: str
    kind: ProcedureKind
    handler: Handler
    input_model: Optional[type[BaseModel]] = None
    protected: bool = False

    def middlewares(self) -> list[Middleware]:
        chain: list[Middleware] = [log_calls(self.path, self.kind)]
        if self.protected:
            chain.append(require_user)
        chain.append(validate_input(self.input_model))
        return chain

    def __call__(self, ctx: RequestContext, raw_input: Any = None) -> Any:
        return compose(self.middlewares(), self.handler)(ctx, raw_input)


class Router:
    def __init__(self, prefix: str = "") -> None:
        self.prefix = prefix
        self.procedures: dict[str, Procedure] = {}

    def _full_path(self, name: str) -> str:
        return f"{self.prefix}.{name}" if self.prefix else name

    def _register(
        self,
        kind: ProcedureKind,
        name: str,
        input_model: Optional[type[BaseModel]],
        protected: bool,
    ) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            path = self._full_path(name)
            if path in self.procedures:
                raise ValueError(f"Procedure {path} already registered")
            self.procedures[path] = Procedure(
                path=path,
                kind=kind,
                handler=handler,
                input_model=input_model,
                protected=protected,
            )
            return handler

        return decorator

    def query(
        self,
        name: str,
        input_model: Optional[type[BaseModel]] = None,
        protected: bool = False,
    ) -> Callable[[Handler], Handler]:
        return self._register(ProcedureKind.query, name, input_model, protected)

    def mutation(
        self,
        name: str,
        input_model: Optional[type[BaseModel]] = None,
        protected: bool = False,
    ) -> Callable[[Handler], Handler]:
        return self._register(ProcedureKind.mutation, name, input_model, protected)

    def include(self, router: "Router") -> None:
        for path, procedure in router.procedures.items():
            full = self._full_path(path)
            if full in self.procedures:
                raise ValueError(f"Procedure {full} already registered")
            self.procedures[full] = Procedure(
                path=full,
                kind=procedure.kind,
                handler=procedure.handler,
                input_model=procedure.input_model,
                protected=procedure.protected,
            )

    def get(self, path: str, kind: Optional[ProcedureKind] = None) -> Procedure:
        procedure = self.procedures.get(path)
        if procedure is None or (kind is not None and procedure.kind != kind):
            label = f"{kind.value} procedure" if kind else "Procedure"
            raise errors.not_found(f"{label} {path}", path=path)
        return procedure
