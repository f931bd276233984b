"""
FastAPI application entry point.
Assembles the app with lifespan handlers, exception handlers and the health endpoint.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI

from quotedesk.core.config import settings
from quotedesk.core.logging import setup_logging
from quotedesk.core.exceptions import setup_exception_handlers
from quotedesk.db import session as db_session
from quotedesk.db.init_db import create_tables
from quotedesk.deps.di_container import build_container, close_http_clients
from quotedesk.schemas.health import HealthResponse
import quotedesk.deps.di_container as di_module


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    Initializes logging, DB and the DI container; closes clients and DB on exit.
    """
    # Startup
    setup_logging()
    await db_session.init_db()
    if settings.DATABASE_CREATE_TABLES:
        await create_tables(db_session.engine)

    container = build_container()
    app.state.container = container
    di_module._container = container

    yield

    # Shutdown
    await close_http_clients(container)
    await db_session.close_db()
    di_module._container = None


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description="Quote lifecycle, totals and stock order conversion service",
        lifespan=lifespan,
    )

    @app.get("/health", response_model=HealthResponse)
    async def get_health() -> HealthResponse:
        """Health check endpoint."""
        container = di_module.get_container()
        return await container.health_service().get_health()

    setup_exception_handlers(app)

    return app


app = create_app()
