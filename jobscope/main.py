from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from jobscope import __version__
from jobscope.api.router import api_router
from jobscope.config import get_settings
from jobscope.core.logging import setup_logging
from jobscope.core.scheduler import start_scheduler, stop_scheduler
from jobscope.services.lifecycle_recorder import get_recorder

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    # Startup
    setup_logging()
    await start_scheduler(recorder=get_recorder())
    yield
    # Shutdown
    await stop_scheduler()


app = FastAPI(
    title="jobscope",
    description="Background job lifecycle monitoring API",
    version=__version__,
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
