from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from jobengine.api.router import api_router
from jobengine.config import get_settings
from jobengine.core.logging import get_logger, setup_logging
from jobengine.core.runner import start_loops, stop_loops

logger = get_logger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    # Startup
    setup_logging()
    if settings.loops_enabled:
        await start_loops()
    else:
        logger.info("loops_disabled_by_config")
    yield
    # Shutdown
    await stop_loops()


app = FastAPI(
    title="jobengine",
    description="Cron-driven job scheduling and execution engine",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
)

# Include API routes
app.include_router(api_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint for load balancers."""
    return {"status": "healthy"}
