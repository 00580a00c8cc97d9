"""FastAPI application exposing the graph engine.

Consumers (dashboards, notebooks, the UI shell) drive the engine over HTTP
and push live value updates over a WebSocket.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from calcgraph.api.routes import router
from calcgraph.config import settings
from calcgraph.engine import GraphEngine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifespan - startup and shutdown."""
    logger.info("Starting calcgraph API...")
    logger.info(f"Graph source: {settings.graph_api_base_url}")

    if app.state.engine is None:
        app.state.engine = GraphEngine()

    yield

    logger.info("Shutting down calcgraph API...")
    await app.state.engine.close()


def create_app(engine: GraphEngine | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="calcgraph",
        description="Interactive engine for derivative-pricing computation graphs",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "calcgraph.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug,
    )
