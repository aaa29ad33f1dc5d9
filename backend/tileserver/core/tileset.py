"""Tileset schema models and loader.

A tileset groups named vector layers. Each layer carries a zoom range and
an ordered list of zoom-scoped source queries; each query must return the
positional columns ``(id, tags, geom)``. The models are frozen so a loaded
tileset can be shared between threads and used as read-only input to the
tile query compiler.

Input documents follow the TileJSON ``vector_layers`` layout. Layer names
may be given as ``name`` or ``id`` and layer properties as ``properties``
or ``fields``.

Example:
    Load a tileset document:
        >>> from tileserver.core.tileset import load_tileset
        >>> tileset = load_tileset(pathlib.Path("tileset.json"))
        >>> [layer.name for layer in tileset.vector_layers]
        ['roads', 'buildings']

    A minimal document:
        {
          "minzoom": 0,
          "maxzoom": 14,
          "vector_layers": [
            {
              "name": "roads",
              "minzoom": 4,
              "maxzoom": 14,
              "queries": [
                {"minzoom": 4, "maxzoom": 9,
                 "sql": "SELECT id, tags, geom FROM roads_simplified"},
                {"minzoom": 10, "maxzoom": 14,
                 "sql": "SELECT id, tags, geom FROM roads"}
              ]
            }
          ]
        }
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated, Any

import pydantic

from tileserver.core import errors

if TYPE_CHECKING:
    import pathlib

logger = logging.getLogger(__name__)

MIN_ZOOM = 0
MAX_ZOOM = 30

Zoom = Annotated[int, pydantic.Field(ge=MIN_ZOOM, le=MAX_ZOOM)]


def _check_range(minzoom: int, maxzoom: int, owner: str) -> None:
    if minzoom > maxzoom:
        raise ValueError(
            f"{owner} minzoom ({minzoom}) is greater than maxzoom ({maxzoom})"
        )


class TilesetQuery(pydantic.BaseModel):
    """One zoom-scoped source query of a layer.

    Attributes:
        minzoom: First zoom level (inclusive) served by this query.
        maxzoom: Last zoom level (inclusive) served by this query.
        sql: SELECT text returning ``(id, tags, geom)`` positionally.
    """

    model_config = pydantic.ConfigDict(frozen=True)

    minzoom: Zoom
    maxzoom: Zoom
    sql: str

    @pydantic.model_validator(mode="after")
    def _check_zoom_range(self) -> TilesetQuery:
        _check_range(self.minzoom, self.maxzoom, "query")
        return self

    def covers(self, zoom: int) -> bool:
        return self.minzoom <= zoom <= self.maxzoom


class TilesetLayer(pydantic.BaseModel):
    """A named vector layer of the tileset.

    Attributes:
        name: MVT layer name, unique within the tileset.
        description: Optional human readable description.
        properties: Opaque layer properties passed through unchanged.
        minzoom: First zoom level (inclusive) where the layer appears.
        maxzoom: Last zoom level (inclusive) where the layer appears.
        queries: Source queries in declaration order.
    """

    model_config = pydantic.ConfigDict(frozen=True)

    name: str = pydantic.Field(
        validation_alias=pydantic.AliasChoices("name", "id"),
    )
    description: str | None = None
    properties: dict[str, Any] = pydantic.Field(
        default_factory=dict,
        validation_alias=pydantic.AliasChoices("properties", "fields"),
    )
    minzoom: Zoom
    maxzoom: Zoom
    queries: tuple[TilesetQuery, ...] = ()

    @pydantic.field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("layer name must not be empty")
        if "\x00" in value:
            raise ValueError("layer name must not contain NUL characters")
        return value

    @pydantic.model_validator(mode="after")
    def _check_zoom_range(self) -> TilesetLayer:
        _check_range(self.minzoom, self.maxzoom, f"layer {self.name!r}")
        return self

    def covers(self, zoom: int) -> bool:
        return self.minzoom <= zoom <= self.maxzoom


class Tileset(pydantic.BaseModel):
    """Top level tileset schema.

    Layer order is the output layer order of every tile.

    Attributes:
        name: Tileset name, used in logs, errors and TileJSON.
        description: Optional description for TileJSON.
        attribution: Optional attribution for TileJSON.
        minzoom: Lowest zoom level served.
        maxzoom: Highest zoom level served.
        bounds: Optional (west, south, east, north) in WGS84.
        center: Optional (longitude, latitude, zoom).
        vector_layers: Layers in declaration order.
    """

    model_config = pydantic.ConfigDict(frozen=True)

    name: str = "tileset"
    description: str | None = None
    attribution: str | None = None
    minzoom: Zoom
    maxzoom: Zoom
    bounds: tuple[float, float, float, float] | None = None
    center: tuple[float, float, float] | None = None
    vector_layers: tuple[TilesetLayer, ...] = ()

    @pydantic.model_validator(mode="after")
    def _check_layers(self) -> Tileset:
        _check_range(self.minzoom, self.maxzoom, "tileset")
        seen: set[str] = set()
        for layer in self.vector_layers:
            if layer.name in seen:
                raise ValueError(f"duplicate layer name {layer.name!r}")
            seen.add(layer.name)
        return self

    def covers(self, zoom: int) -> bool:
        return self.minzoom <= zoom <= self.maxzoom


def parse_tileset(document: str | bytes) -> Tileset:
    """Parse a tileset from a JSON document.

    Args:
        document: JSON text of the tileset.

    Returns:
        The validated, immutable Tileset.

    Raises:
        TilesetConfigError: If the document is not valid JSON or does not
            describe a valid tileset.
    """
    try:
        return Tileset.model_validate_json(document)
    except pydantic.ValidationError as exc:
        raise errors.TilesetConfigError(f"invalid tileset: {exc}") from exc


def load_tileset(path: pathlib.Path) -> Tileset:
    """Read and validate a tileset document from disk.

    Args:
        path: Location of the JSON tileset document.

    Returns:
        The validated, immutable Tileset.

    Raises:
        TilesetConfigError: If the file cannot be read or is invalid.
    """
    try:
        document = path.read_bytes()
    except OSError as exc:
        raise errors.TilesetConfigError(
            f"cannot read tileset {str(path)!r}: {exc}"
        ) from exc
    tileset = parse_tileset(document)
    logger.info(
        "Loaded tileset %s from %s (%d layers, zoom %d-%d)",
        tileset.name,
        path,
        len(tileset.vector_layers),
        tileset.minzoom,
        tileset.maxzoom,
    )
    return tileset
