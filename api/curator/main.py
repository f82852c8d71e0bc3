from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.requests import Request

from curator.api.router import api_router
from curator.core.config import get_settings
from curator.core.telemetry import (
    TelemetryRuntime,
    configure_api_logging,
    setup_api_telemetry,
    shutdown_api_telemetry,
)
from curator.services.container import get_container
from curator.services.repository import get_repository

settings = get_settings()
_telemetry_runtime: TelemetryRuntime | None = None
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    try:
        yield
    finally:
        if _telemetry_runtime is not None:
            shutdown_api_telemetry(app, _telemetry_runtime)
        # Pauses in-flight migrations at their next batch boundary, then closes the store.
        if get_container.cache_info().currsize:
            await get_container().close()
        get_container.cache_clear()
        get_repository.cache_clear()


configure_api_logging()
app = FastAPI(title=settings.app_name, lifespan=lifespan)
_telemetry_runtime = setup_api_telemetry(app, settings)


@app.exception_handler(HTTPException)
async def http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    problems = [".".join(str(part) for part in error["loc"]) + ": " + error["msg"] for error in exc.errors()]
    return JSONResponse(
        status_code=422,
        content={"success": False, "message": "invalid request: " + "; ".join(problems)},
    )


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


app.include_router(api_router)
