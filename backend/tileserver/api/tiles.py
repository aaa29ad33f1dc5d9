"""XYZ vector tile endpoints.

This module serves Mapbox Vector Tiles rendered on demand by PostGIS, and
the TileJSON document describing them. Tiles are returned as Protocol
Buffer bytes with the ``application/vnd.mapbox-vector-tile`` media type.

Status codes:
    - 200: tile with content.
    - 204: empty tile (no layer at this zoom, or no feature in the tile).
    - 404: coordinate outside the tile grid.
    - 500: tileset cannot be compiled at this zoom.
    - 503: the database failed to render the tile; safe to retry.

Example:
    Request a vector tile:
        >>> response = client.get("/tiles/10/512/384.mvt")
        >>> response.headers["content-type"]
        'application/vnd.mapbox-vector-tile'

    Use in MapLibre GL JS:
        >>> map.addSource('basemap', {
        ...     type: 'vector',
        ...     url: 'http://api/tiles.json'
        ... });
"""

from __future__ import annotations

import logging
from typing import Any

import fastapi
from fastapi import responses

from tileserver.core import config, errors
from tileserver.services import tile_store

logger = logging.getLogger(__name__)

MVT_MEDIA_TYPE = "application/vnd.mapbox-vector-tile"

router = fastapi.APIRouter(tags=["tiles"])


def _get_store(request: fastapi.Request) -> tile_store.PostgresTileStore:
    """Resolve the tile store created at application startup.

    Args:
        request: Incoming request (injected by FastAPI).

    Returns:
        The application's PostgresTileStore.
    """
    return request.app.state.tile_store  # type: ignore[no-any-return]


def build_tilejson(
    store: tile_store.PostgresTileStore, public_url: str
) -> dict[str, Any]:
    """Describe the served tileset as a TileJSON 3.0.0 document.

    Args:
        store: Tile store whose tileset is described.
        public_url: Base URL clients reach the server at.

    Returns:
        TileJSON dictionary with tile URL template and vector layers.
    """
    tileset = store.tileset
    document: dict[str, Any] = {
        "tilejson": "3.0.0",
        "name": tileset.name,
        "scheme": "xyz",
        "tiles": [f"{public_url.rstrip('/')}/tiles/{{z}}/{{x}}/{{y}}.mvt"],
        "minzoom": tileset.minzoom,
        "maxzoom": tileset.maxzoom,
        "vector_layers": [
            {
                "id": layer.name,
                "description": layer.description or "",
                "fields": layer.properties,
                "minzoom": layer.minzoom,
                "maxzoom": layer.maxzoom,
            }
            for layer in tileset.vector_layers
        ],
    }
    for key in ("description", "attribution", "bounds", "center"):
        value = getattr(tileset, key)
        if value is not None:
            document[key] = list(value) if isinstance(value, tuple) else value
    return document


@router.get("/tiles.json")
def tilejson(
    store: tile_store.PostgresTileStore = fastapi.Depends(_get_store),  # noqa: B008
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> dict[str, Any]:
    """Return the TileJSON document of the served tileset."""
    return build_tilejson(store, str(settings.public_url))


@router.get("/tiles/{z}/{x}/{y}.mvt")
def vector_tile(
    z: int,
    x: int,
    y: int,
    store: tile_store.PostgresTileStore = fastapi.Depends(_get_store),  # noqa: B008
) -> responses.Response:
    """Render an XYZ vector tile from PostGIS.

    Declared synchronous so FastAPI runs the blocking database round trip
    in its threadpool.

    Args:
        z: Zoom level.
        x: Tile X coordinate.
        y: Tile Y coordinate.
        store: Tile store (injected via FastAPI Depends).

    Returns:
        MVT bytes (200) or an empty 204 response.

    Raises:
        HTTPException: 404 for an invalid coordinate, 500 for a tileset
            that cannot be compiled, 503 when rendering fails.
    """
    try:
        data = store.read(z, x, y)
    except errors.TilesetConfigError as exc:
        logger.error("Cannot compile tileset at zoom %d: %s", z, exc)
        raise fastapi.HTTPException(
            status_code=500,
            detail="Tileset configuration error",
        ) from exc
    except errors.TileExecutionError as exc:
        logger.error("Failed to render tile %d/%d/%d: %s", z, x, y, exc)
        raise fastapi.HTTPException(
            status_code=503,
            detail=f"Tile {z}/{x}/{y} could not be rendered",
        ) from exc
    except ValueError as exc:
        raise fastapi.HTTPException(
            status_code=404,
            detail="Tile not found",
        ) from exc

    if data is None:
        return responses.Response(status_code=204)
    return responses.Response(content=data, media_type=MVT_MEDIA_TYPE)
