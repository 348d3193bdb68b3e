"""Pulse FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .api.routes import router as api_router
from .api.services import open_services
from .config import Settings


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure FastAPI application."""
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with open_services(settings) as services:
            app.state.services = services
            yield

    app = FastAPI(
        title="Pulse API",
        version="0.1.0",
        description="Multi-source marketing metrics aggregation",
        lifespan=lifespan,
    )

    app.include_router(api_router)

    return app


app = create_app()
