"""Exception taxonomy for tileset compilation, tile fetches and repositories.

Three failure families are kept distinct so callers can react to each:

- ``TilesetConfigError`` is raised while loading or compiling a tileset,
  before any database round trip.
- ``TileExecutionError`` is raised per tile fetch when the database cannot
  produce the tile (connectivity, generated SQL rejected, timeout).
- ``RepositoryError`` wraps store failures in the metadata repositories.

An empty tile is not an error and is never reported through these types.

Example:
    Distinguish an empty tile from a failure:
        >>> try:
        ...     data = store.read(10, 512, 384)
        ... except TileExecutionError as exc:
        ...     print(f"retry later: {exc}")
        ... else:
        ...     print("no content" if data is None else len(data))
"""

from __future__ import annotations


class TilesetConfigError(ValueError):
    """Raised when a tileset document or one of its queries is unusable."""


class TileExecutionError(RuntimeError):
    """Raised when the database fails to produce a tile.

    The underlying driver error is chained as ``__cause__``.

    Attributes:
        tileset: Name of the tileset being served.
        z: Zoom level of the requested tile.
        x: Tile column.
        y: Tile row.
    """

    def __init__(self, tileset: str, z: int, x: int, y: int, reason: str) -> None:
        super().__init__(f"tile {z}/{x}/{y} of tileset {tileset!r}: {reason}")
        self.tileset = tileset
        self.z = z
        self.x = x
        self.y = y


class RepositoryError(RuntimeError):
    """Raised when a repository operation fails in the underlying store."""
