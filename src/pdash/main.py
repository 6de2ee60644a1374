"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from pdash.config import get_settings
from pdash.dashboard.router import router as dashboard_router
from pdash.health.router import router as health_router
from pdash.middleware import setup_middleware
from pdash.mutations.router import router as mutations_router
from pdash.session import close_sessions, init_sessions


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    await init_sessions(get_settings())
    yield
    await close_sessions()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Program Dashboard API",
        description="Composed program views and validated writes over the record store",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(dashboard_router)
    app.include_router(mutations_router)

    return app


app = create_app()
