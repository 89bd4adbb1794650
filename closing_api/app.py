"""
closing_api/app.py

FastAPI application factory for the closing engine.

Every ``ClosingKernelError`` leaves the API as JSON
``{"code": ..., "message": ..., <structured fields>}`` with the HTTP status
of its code; request validation problems leave as ``VALIDATION_ERROR``/400.
"""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from closing_config import get_active_config
from closing_config.bridges import ClosingRuntime, build_runtime
from closing_kernel import __version__
from closing_kernel.exceptions import ClosingKernelError
from closing_kernel.logging_config import LogContext, configure_logging, get_logger

logger = get_logger("api")

STATUS_BY_CODE: dict[str, int] = {
    "CLOSING_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "PREREQUISITE_NOT_CLOSED": status.HTTP_409_CONFLICT,
    "LAST_DAY_NOT_CLOSED": status.HTTP_409_CONFLICT,
    "CLOSING_ORDER_VIOLATION": status.HTTP_409_CONFLICT,
    "CLOSING_INPUTS_CHANGED": status.HTTP_409_CONFLICT,
    "MONTH_CLOSED": status.HTTP_409_CONFLICT,
    "CONCURRENT_CLOSING_IN_PROGRESS": status.HTTP_409_CONFLICT,
    "OPTIMISTIC_LOCK_CONFLICT": status.HTTP_409_CONFLICT,
    "NEGATIVE_CLOSING": 422,
    "FUTURE_CLOSING_DATE": status.HTTP_400_BAD_REQUEST,
    "LEDGER_UNAVAILABLE": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def error_payload(exc: ClosingKernelError) -> dict[str, Any]:
    payload: dict[str, Any] = {"code": exc.code, "message": str(exc)}
    for key, value in vars(exc).items():
        if not key.startswith("_"):
            payload[key] = value
    return jsonable_encoder(payload)


async def _closing_error_handler(request: Request, exc: ClosingKernelError) -> JSONResponse:
    status_code = STATUS_BY_CODE.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "request_failed",
        extra={
            "path": request.url.path,
            "error_code": exc.code,
            "status_code": status_code,
        },
    )
    return JSONResponse(status_code=status_code, content=error_payload(exc))


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


def create_app(runtime: ClosingRuntime | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    ``runtime`` is built from ``get_active_config()`` when not injected.
    """
    if runtime is None:
        config = get_active_config()
        configure_logging(level=config.log_level)
        runtime = build_runtime(config)

    application = FastAPI(title="Inventory Closing API", version=__version__)
    application.state.runtime = runtime

    application.add_exception_handler(ClosingKernelError, _closing_error_handler)
    application.add_exception_handler(RequestValidationError, _validation_error_handler)

    @application.middleware("http")
    async def bind_correlation_id(request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-Id") or str(uuid4())
        with LogContext.bind(
            correlation_id=correlation_id,
            actor_id=request.headers.get("X-Actor-Id"),
        ):
            response = await call_next(request)
        response.headers["X-Correlation-Id"] = correlation_id
        return response

    from closing_api.routers import closing_router

    application.include_router(closing_router)

    @application.get("/health")
    def healthcheck() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    return application
