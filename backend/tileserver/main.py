"""FastAPI application entrypoint and configuration.

This module provides the application factory that sets up CORS middleware,
includes the tile and replication routers, exposes a health check, and
manages the lifetime of the tileset, the connection pool and the stores
built on them.

Example:
    The application can be run with uvicorn:
        $ TILESET_PATH=tileset.json uvicorn tileserver.main:app

    Or imported and used programmatically:
        >>> from tileserver.main import create_app
        >>> app = create_app()
"""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING

import fastapi
from fastapi.middleware import cors

from tileserver.api import replication, tiles
from tileserver.core import config
from tileserver.core import logging as logging_setup
from tileserver.core import tileset as tileset_models
from tileserver.db import database
from tileserver.services import tile_store

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def lifespan(app: fastapi.FastAPI) -> AsyncIterator[None]:
    """Load the tileset and open the pool for the life of the application.

    The tileset is validated before the pool is opened, so a broken
    tileset document fails startup without touching the database.
    """
    settings = config.get_settings()
    tileset = tileset_models.load_tileset(settings.tileset_path)
    pool = database.create_pool(settings)
    app.state.tile_store = tile_store.PostgresTileStore(tileset, pool)
    app.state.header_repository = database.get_header_repository(pool)
    try:
        yield
    finally:
        logger.info("Closing connection pool")
        pool.closeall()


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Sets up logging and CORS middleware, includes the tile and replication
    routers, and adds a health check endpoint. The tileset and the database
    pool are created by the lifespan handler when the server starts.

    Returns:
        Configured FastAPI application instance ready for ASGI server.
    """
    settings = config.get_settings()
    logging_setup.configure_logging(settings.log_level)

    app = fastapi.FastAPI(title="Tile Server", version="0.1.0", lifespan=lifespan)

    app.include_router(tiles.router)
    app.include_router(replication.router)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, str]:  # type: ignore[misc]
        """Health check endpoint for monitoring and load balancers.

        Returns:
            Dictionary with status "ok" if the service is running.
        """
        return {"status": "ok"}

    return app


app = create_app()
