import json
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import errors
from auth import TokenService
from config import Settings, load_settings
from context import ContextBuilder
from database import create_db_engine, init_db, make_session_factory, session_scope
from procedures import build_app_router
from rpc import ProcedureKind, serialize_output

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    )


def get_db(request: Request):
    with session_scope(request.app.state.session_factory) as session:
        yield session


def _error_response(request: Request, err: errors.AppError, path: Optional[str]) -> JSONResponse:
    settings: Settings = request.app.state.settings
    return JSONResponse(
        status_code=err.http_status,
        content=errors.format_error(err, path, include_stack=settings.is_development),
    )


def _dispatch(
    request: Request,
    path: str,
    kind: ProcedureKind,
    raw_input: Any,
    authorization: Optional[str],
    db: Session,
):
    state = request.app.state
    try:
        procedure = state.router.get(path, kind)
    except errors.AppError as err:
        logger.warning(f"rpc_unknown_procedure: path={path} type={kind.value}")
        return _error_response(request, err, path)

    ctx = state.context_builder.build(db, authorization)
    try:
        result = procedure(ctx, raw_input)
    except Exception as exc:
        db.rollback()
        err = errors.coerce_error(exc, procedure=path, user_id=ctx.user_id)
        return _error_response(request, err, path)
    return {"result": {"data": serialize_output(result)}}


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings)

    engine = create_db_engine(settings)
    init_db(engine)
    tokens = TokenService(
        settings.jwt_secret, ttl=timedelta(hours=settings.token_ttl_hours)
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        logger.info(
            f"server_started: host={settings.host} port={settings.port} "
            f"environment={settings.environment} database={settings.database_name}"
        )
        yield
        engine.dispose()
        logger.info("server_stopped: database connection closed")

    app = FastAPI(title="Ledger API", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)
    app.state.context_builder = ContextBuilder(tokens)
    app.state.router = build_app_router()

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        err = errors.validation(
            "Malformed request",
            details={"errors": [e.get("msg", "Invalid value") for e in exc.errors()]},
        )
        return _error_response(request, err, request.path_params.get("path"))

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/rpc/{path}")
    def rpc_query(
        path: str,
        request: Request,
        input: Optional[str] = None,
        authorization: Optional[str] = Header(default=None),
        db: Session = Depends(get_db),
    ):
        raw_input = None
        if input:
            try:
                raw_input = json.loads(input)
            except ValueError:
                err = errors.validation("Input is not valid JSON", procedure=path)
                return _error_response(request, err, path)
        return _dispatch(request, path, ProcedureKind.query, raw_input, authorization, db)

    @app.post("/rpc/{path}")
    def rpc_mutation(
        path: str,
        request: Request,
        payload: Any = Body(default=None),
        authorization: Optional[str] = Header(default=None),
        db: Session = Depends(get_db),
    ):
        return _dispatch(request, path, ProcedureKind.mutation, payload, authorization, db)

    return app


def main():
    import uvicorn

    settings = load_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
