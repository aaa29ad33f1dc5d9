"""Tile fetch executor backed by a PostGIS connection pool.

PostgresTileStore compiles the tileset once per zoom level, binds the tile
coordinate to the compiled statement and returns the MVT bytes produced by
PostGIS. An empty tile (no layer at this zoom, or no feature in the tile)
is returned as None; any database failure is raised as TileExecutionError.

Example:
    Serve a tile:
        >>> pool = database.create_pool(settings)
        >>> store = PostgresTileStore(tileset, pool)
        >>> data = store.read(14, 8580, 5738)
        >>> data is None or data[:1]
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, NamedTuple

import psycopg2

from tileserver.core import errors
from tileserver.core import tileset as tileset_models
from tileserver.db import database
from tileserver.services import tiles_postgis

if TYPE_CHECKING:
    import psycopg2.pool

logger = logging.getLogger(__name__)


class TileCoord(NamedTuple):
    """XYZ tile coordinate."""

    z: int
    x: int
    y: int

    def is_valid(self) -> bool:
        """Check the zoom is supported and x/y lie inside the tile grid."""
        if not tileset_models.MIN_ZOOM <= self.z <= tileset_models.MAX_ZOOM:
            return False
        size = 1 << self.z
        return 0 <= self.x < size and 0 <= self.y < size


class PostgresTileStore:
    """Read-only tile store rendering tiles on demand with PostGIS.

    Attributes:
        tileset: The tileset being served.
        pool: Connection pool shared by all requests.
        statements: Per-zoom cache of compiled statements.
    """

    def __init__(
        self,
        tileset: tileset_models.Tileset,
        pool: psycopg2.pool.AbstractConnectionPool,
    ) -> None:
        self.tileset = tileset
        self.pool = pool
        self.statements = tiles_postgis.TileQueryCache(tileset)

    def read(self, z: int, x: int, y: int) -> bytes | None:
        """Render one tile.

        Args:
            z: Zoom level.
            x: Tile column.
            y: Tile row.

        Returns:
            The MVT bytes, or None when the tile has no content.

        Raises:
            ValueError: If the coordinate is outside the tile grid.
            TilesetConfigError: If the tileset cannot be compiled at z.
            TileExecutionError: If the database fails to render the tile.
        """
        if not TileCoord(z, x, y).is_valid():
            raise ValueError(f"invalid tile coordinate {z}/{x}/{y}")

        compiled = self.statements.get(z)
        if compiled.is_empty:
            return None
        return self.execute(compiled, z, x, y)

    def execute(
        self,
        compiled: tiles_postgis.CompiledTileQuery,
        z: int,
        x: int,
        y: int,
    ) -> bytes | None:
        """Run a compiled statement for a tile coordinate.

        The statement must have been compiled for zoom ``z``.

        Returns:
            The MVT bytes, or None if the query returned no row, NULL or
            an empty buffer.

        Raises:
            TileExecutionError: On any driver or pool error, including a
                statement cancelled by ``statement_timeout``.
        """
        if compiled.zoom != z:
            raise ValueError(
                f"statement compiled for zoom {compiled.zoom}, not {z}"
            )
        try:
            with database.pooled_connection(self.pool) as conn:
                with conn.cursor() as cur:
                    cur.execute(compiled.sql, compiled.bind(z, x, y))
                    row = cur.fetchone()
        except psycopg2.Error as exc:
            raise errors.TileExecutionError(
                self.tileset.name, z, x, y, f"{type(exc).__name__}: {exc}"
            ) from exc

        if row is None or row[0] is None:
            return None
        data = bytes(row[0])
        return data or None
