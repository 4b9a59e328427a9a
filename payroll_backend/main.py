"""Payroll service — FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from payroll_backend.common.exceptions import register_exception_handlers
from payroll_backend.common.rate_limit import limiter
from payroll_backend.config import settings
from payroll_backend.database import engine
from payroll_backend.disbursement.router import router as disbursement_router
from payroll_backend.payroll.router import router as payroll_router
from payroll_backend.payroll_cycle.router import router as payroll_cycle_router
from payroll_backend.salary.router import router as salary_router
from payroll_backend.tax.router import router as tax_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    logger.info("Payroll service starting (%s)", settings.ENVIRONMENT)
    yield
    await engine.dispose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Payroll Service",
        description="Payroll calculation, statutory compliance and salary disbursement",
        version="1.0.0",
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check (no auth)
    @app.get("/api/v1/health", tags=["system"])
    async def health_check():
        return {
            "status": "healthy",
            "version": "1.0.0",
            "environment": settings.ENVIRONMENT,
        }

    # Register routers
    app.include_router(salary_router, prefix="/api/v1/salary-structures", tags=["salary-structures"])
    app.include_router(tax_router, prefix="/api/v1/tax", tags=["tax"])
    app.include_router(payroll_router, prefix="/api/v1/payroll", tags=["payroll"])
    app.include_router(payroll_cycle_router, prefix="/api/v1/payroll-cycles", tags=["payroll-cycles"])
    app.include_router(disbursement_router, prefix="/api/v1/disbursements", tags=["disbursements"])

    return app


app = create_app()
