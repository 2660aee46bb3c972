"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from driver_payroll import __version__
from driver_payroll.api.routes import (
    health_router,
    ledgers_router,
    mileage_router,
    payroll_router,
)
from driver_payroll.calculators.mileage import MileageResolver
from driver_payroll.database import dispose_db
from driver_payroll.errors import (
    CalculationError,
    ConflictError,
    ExternalServiceError,
    InvalidTransitionError,
    NotFoundError,
    PayrollEngineError,
    RecordLockedError,
    ValidationError,
)
from driver_payroll.logging_config import configure_logging

logger = logging.getLogger(__name__)

# Checked in order; subclasses come before their bases
ERROR_STATUS: tuple[tuple[type[PayrollEngineError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (RecordLockedError, status.HTTP_423_LOCKED),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (CalculationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY),
)


def status_for(exc: PayrollEngineError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    configure_logging()
    logger.info("Driver payroll API %s starting", __version__)
    yield
    await dispose_db()


def create_app(mileage_resolver: MileageResolver | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Driver Payroll API",
        description="Weekly payroll for owner-operator and company drivers",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.mileage_resolver = mileage_resolver or MileageResolver()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(PayrollEngineError)
    async def engine_error_handler(request: Request, exc: PayrollEngineError) -> JSONResponse:
        """Map engine errors to their HTTP status."""
        return JSONResponse(status_code=status_for(exc), content=exc.to_dict())

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(payroll_router, prefix="/api/v1")
    app.include_router(ledgers_router, prefix="/api/v1")
    app.include_router(mileage_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
