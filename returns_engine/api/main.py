"""FastAPI application factory"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from returns_engine.api.dependencies import get_request_id
from returns_engine.api.middleware import MetricsMiddleware, RequestIDMiddleware
from returns_engine.api.v1 import investments, payouts, plans, rules, wallets, withdrawals
from returns_engine.config import settings
from returns_engine.domain.exceptions import (
    ConflictError,
    DomainException,
    ExternalRailError,
    InsufficientFundsError,
    NotFoundError,
    OutOfRangeMonth,
    ValidationError,
)
from returns_engine.infrastructure.database.session import create_schema
from returns_engine.infrastructure.observability.logging import setup_logging

# Setup structured logging
setup_logging(settings.log_level)

# Most specific first; subclasses inherit their parent's status
STATUS_BY_EXCEPTION = (
    (ValidationError, 400),
    (InsufficientFundsError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (OutOfRangeMonth, 422),
    (ExternalRailError, 502),
)


def status_for(exc: DomainException) -> int:
    for exc_type, status_code in STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            return status_code
    return 400


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    status_code = status_for(exc)
    log = logging.error if status_code >= 500 else logging.warning
    log(
        f"Request failed: {exc.message}",
        extra={"request_id": get_request_id(request), "code": exc.code, "path": request.url.path},
    )
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logging.exception(
        f"Unexpected error: {exc}",
        extra={"request_id": get_request_id(request), "path": request.url.path},
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "code": "INTERNAL"})


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.create_schema_on_startup:
        await create_schema()
    yield


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Investment Returns & Payout Engine",
        description="Plan rules, monthly payouts, wallets and withdrawals",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(DomainException, domain_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(rules.router, prefix="/v1", tags=["plan-rules"])
    app.include_router(plans.router, prefix="/v1", tags=["plans"])
    app.include_router(investments.router, prefix="/v1", tags=["investments"])
    app.include_router(payouts.router, prefix="/v1", tags=["payouts"])
    app.include_router(withdrawals.router, prefix="/v1", tags=["withdrawals"])
    app.include_router(wallets.router, prefix="/v1", tags=["wallets"])

    return app


app = create_app()
