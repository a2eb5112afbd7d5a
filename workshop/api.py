import logging
import time
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .clock import get_clock
from .config import get_settings
from .errors import AppError
from .metrics import request_duration
from .routes import routers
from .store import Store

log = structlog.get_logger()

API_PREFIX = "/api/v1"

HTTP_CODES = {400: "BAD_REQUEST", 401: "UNAUTHORIZED", 403: "FORBIDDEN", 404: "NOT_FOUND", 409: "CONFLICT"}


def configure_logging(level: str = "INFO", json: bool = False) -> None:
    logging.basicConfig(format="%(message)s", level=level.upper())
    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level.upper())),
        cache_logger_on_first_use=True,
    )


def error_body(message: str, code: str, details=None) -> dict:
    error = {"code": code}
    if details:
        error["details"] = details
    return {"success": False, "message": message, "error": error}


async def app_error_handler(request: Request, exc: AppError):
    details = getattr(exc, "details", None)
    if exc.status_code >= 500:
        log.error("request_failed", path=request.url.path, code=exc.code, message=exc.message)
    else:
        log.info("request_rejected", path=request.url.path, status=exc.status_code, code=exc.code,
                 message=exc.message)
    return JSONResponse(error_body(exc.message, exc.code, details), status_code=exc.status_code)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(part) for part in err["loc"] if part != "body"), "message": err["msg"]}
        for err in exc.errors()
    ]
    log.info("request_invalid", path=request.url.path, errors=len(details))
    return JSONResponse(error_body("Validation failed", "VALIDATION_ERROR", details), status_code=400)


async def integrity_error_handler(request: Request, exc: IntegrityError):
    log.info("request_conflict", path=request.url.path, error=str(exc.orig))
    return JSONResponse(
        error_body("The request conflicts with existing data", "CONFLICT"), status_code=409
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    code = HTTP_CODES.get(exc.status_code, "INTERNAL_ERROR" if exc.status_code >= 500 else "BAD_REQUEST")
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == 404 and message == "Not Found":
        message = f"Route {request.method} {request.url.path} not found"
    return JSONResponse(error_body(message, code), status_code=exc.status_code)


async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception("unhandled_error", path=request.url.path)
    message = str(exc) if get_settings().is_development else "Internal server error"
    return JSONResponse(error_body(message, "INTERNAL_ERROR"), status_code=500)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests install their own store before startup
    store = getattr(app.state, "store", None)
    if store is None:
        store = Store.from_settings()
        app.state.store = store
    if store.engine is None:
        await store.open()
    yield
    await store.close()


def create_app(store: Store | None = None) -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)

    app = FastAPI(title="Car Workshop API", version="1.0.0", lifespan=lifespan)
    if store is not None:
        app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.middleware("http")
    async def record_duration(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        route = request.scope.get("route")
        request_duration.labels(
            method=request.method, route=getattr(route, "path", "unmatched")
        ).observe(time.perf_counter() - start)
        return response

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    for router in routers:
        app.include_router(router, prefix=API_PREFIX)

    # Prometheus metrics
    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)

    @app.get("/health")
    async def health(request: Request):
        store: Store = request.app.state.store
        async with store.transaction() as session:
            await session.execute(text("SELECT 1"))
        return {
            "success": True,
            "message": "Car Workshop API is running",
            "data": {"environment": settings.environment, "timestamp": get_clock().now().isoformat()},
        }

    return app


app = create_app()
