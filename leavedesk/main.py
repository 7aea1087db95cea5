"""LeaveDesk — FastAPI Application Factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

import leavedesk.models  # noqa: F401  (registers every ORM mapper)
from leavedesk.approvals.router import router as approvals_router
from leavedesk.common.exceptions import register_exception_handlers
from leavedesk.common.logging_config import setup_logging
from leavedesk.common.rate_limit import limiter
from leavedesk.comp_off.router import router as comp_off_router
from leavedesk.config import settings
from leavedesk.dashboard.router import router as dashboard_router
from leavedesk.database import engine
from leavedesk.leave.router import router as leave_router
from leavedesk.organizations.router import router as organizations_router
from leavedesk.settlement.router import router as settlement_router
from leavedesk.users.router import router as users_router

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    logger.info("LeaveDesk %s starting (%s)", VERSION, settings.ENVIRONMENT)
    yield
    await engine.dispose()
    logger.info("LeaveDesk stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title="LeaveDesk",
        description="Leave management: balances, approvals, comp-off and year-end settlement",
        version=VERSION,
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

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
            "version": VERSION,
            "environment": settings.ENVIRONMENT,
        }

    # Register routers; approvals before leave so /leave/approvals is not
    # captured by /leave/{leave_id}.
    app.include_router(users_router, prefix="/api/v1/users", tags=["users"])
    app.include_router(approvals_router, prefix="/api/v1/leave", tags=["approvals"])
    app.include_router(leave_router, prefix="/api/v1/leave", tags=["leave"])
    app.include_router(comp_off_router, prefix="/api/v1/comp-off", tags=["comp-off"])
    app.include_router(settlement_router, prefix="/api/v1/settlement", tags=["settlement"])
    app.include_router(
        organizations_router, prefix="/api/v1/organizations", tags=["organizations"]
    )
    app.include_router(dashboard_router, prefix="/api/v1/dashboard", tags=["dashboard"])

    return app


app = create_app()
