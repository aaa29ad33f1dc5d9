"""PostGIS MVT (Mapbox Vector Tiles) SQL query compiler.

This module turns a tileset schema and a zoom level into one PostGIS
statement that returns a complete Mapbox Vector Tile. Each layer that
applies at the zoom contributes one fragment built around the layer's
selected source query; fragments are joined with the ``bytea``
concatenation operator so the whole tile is produced in a single round
trip.

Every fragment takes six positional parameters: ``(z, x, y)`` for the
``ST_AsMVTGeom`` envelope, then ``(z, x, y)`` for the bounding box
pre-filter. Placeholders use the psycopg2 ``%s`` style, so literal ``%``
characters in embedded text are doubled.

The generated SQL expects source geometries in EPSG:3857. Source queries
must return ``(id, tags, geom)`` positionally, with ``tags`` as ``jsonb``
so the ``id`` key can be stripped from the attribute map.

Example:
    Compile and execute a tile statement:
        >>> from tileserver.services.tiles_postgis import compile_tile_query
        >>> compiled = compile_tile_query(tileset, 10)
        >>> compiled.layers
        ('roads', 'buildings')
        >>> cursor.execute(compiled.sql, compiled.bind(10, 512, 384))
        >>> mvt_data = cursor.fetchone()[0]  # Binary MVT data

    The generated SQL per layer:
     - Uses ST_TileEnvelope with a margin to pre-filter geometries
     - Clips and simplifies geometries with ST_AsMVTGeom
     - Moves the id out of the tags into the feature id
     - Returns one MVT layer via ST_AsMVT
"""

from __future__ import annotations

import dataclasses
import logging
import re
import threading
from typing import TYPE_CHECKING

from tileserver.core import errors
from tileserver.core import tileset as tileset_models

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

TILE_EXTENT = 4096
TILE_BUFFER = 64

EMPTY_TILE_SQL = "SELECT NULL::bytea AS mvtTile"

FRAGMENT_SLOTS = ("z", "x", "y", "z", "x", "y")

_DOLLAR_TAG = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)?\$")

# t1's column list renames the source columns positionally to (id, tags, geom)
_FRAGMENT_TEMPLATE = (
    "(SELECT ST_AsMVT(mvtGeom.*, {name}, {extent}, 'geom', 'id') "
    "FROM (SELECT ST_AsMVTGeom(t.geom, ST_TileEnvelope(%s, %s, %s), {extent}, "
    "{buffer}, true) AS geom, t.tags - 'id' AS tags, t.id AS id "
    "FROM (SELECT * FROM ({source}) AS t1 (id, tags, geom) "
    "WHERE t1.geom IS NOT NULL "
    "AND t1.geom && ST_TileEnvelope(%s, %s, %s, margin => ({margin}))) AS t) "
    "AS mvtGeom)"
)


def quote_literal(value: str) -> str:
    """Quote a schema-controlled string as a SQL literal.

    Single quotes are doubled for SQL and ``%`` is doubled for the driver's
    placeholder syntax.

    Args:
        value: Text to embed, such as a layer name.

    Returns:
        The single-quoted literal.

    Raises:
        TilesetConfigError: If the value is empty or contains NUL.
    """
    if not value or "\x00" in value:
        raise errors.TilesetConfigError(
            f"cannot embed {value!r} as a SQL literal"
        )
    return "'" + value.replace("'", "''").replace("%", "%%") + "'"


def _is_identifier_char(char: str) -> bool:
    return char.isalnum() or char in "_$"


def _quote_end(sql: str, start: int, quote: str, backslash: bool) -> int:
    """Return the index of the quote closing the string opened at ``start``.

    A doubled quote is an escaped quote. With ``backslash`` set (``E'...'``
    strings) a backslash escapes the character after it.
    """
    end = start + 1
    length = len(sql)
    while end < length:
        char = sql[end]
        if backslash and char == "\\":
            end += 2
        elif char == quote:
            if end + 1 < length and sql[end + 1] == quote:
                end += 2
            else:
                return end
        else:
            end += 1
    raise errors.TilesetConfigError(f"unterminated {quote} quote at offset {start}")


def _scan_sql(sql: str) -> Iterator[tuple[int, str]]:
    """Yield ``(index, char)`` for characters outside quotes and comments.

    Skips single and double quoted text, ``E'...'`` strings with backslash
    escapes, ``$tag$...$tag$`` dollar-quoted bodies, and line and block
    comments.

    Raises:
        TilesetConfigError: On an unterminated quote or block comment.
    """
    i = 0
    length = len(sql)
    while i < length:
        char = sql[i]
        after_word = i > 0 and _is_identifier_char(sql[i - 1])
        if char in ("'", '"'):
            backslash = (
                char == "'"
                and after_word
                and sql[i - 1] in "eE"
                and (i < 2 or not _is_identifier_char(sql[i - 2]))
            )
            i = _quote_end(sql, i, char, backslash) + 1
            continue
        if char == "$" and not after_word:
            match = _DOLLAR_TAG.match(sql, i)
            if match is not None:
                end = sql.find(match.group(0), match.end())
                if end == -1:
                    raise errors.TilesetConfigError(
                        f"unterminated dollar-quoted string at offset {i}"
                    )
                i = end + len(match.group(0))
                continue
        if sql.startswith("--", i):
            newline = sql.find("\n", i)
            i = length if newline == -1 else newline + 1
        elif sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            if end == -1:
                raise errors.TilesetConfigError(
                    f"unterminated comment at offset {i}"
                )
            i = end + 2
        else:
            yield i, char
            i += 1


def validate_source_sql(sql: str) -> None:
    """Check that a source query can be nested as a subquery.

    Args:
        sql: Source SELECT text from the tileset.

    Raises:
        TilesetConfigError: If the text is empty, has unbalanced
            parentheses, an unterminated quote or comment, or a statement
            terminator.
    """
    if not sql.strip():
        raise errors.TilesetConfigError("source query is empty")

    depth = 0
    for index, char in _scan_sql(sql):
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise errors.TilesetConfigError(
                    f"unbalanced ')' at offset {index} in source query"
                )
        elif char == ";":
            raise errors.TilesetConfigError(
                f"statement terminator at offset {index} in source query"
            )
    if depth != 0:
        raise errors.TilesetConfigError(
            f"{depth} unclosed '(' in source query"
        )


def select_query(
    layer: tileset_models.TilesetLayer, zoom: int
) -> tileset_models.TilesetQuery | None:
    """Pick the source query serving ``zoom`` for a layer.

    The first query in declaration order whose range contains the zoom
    wins; overlapping ranges are resolved by that order alone.

    Args:
        layer: Layer to select from.
        zoom: Requested zoom level.

    Returns:
        The selected query, or None if the layer does not apply at the
        zoom or no query covers it.
    """
    if not layer.covers(zoom):
        return None
    for query in layer.queries:
        if query.covers(zoom):
            return query
    return None


def build_layer_fragment(
    layer: tileset_models.TilesetLayer, zoom: int
) -> str | None:
    """Return the MVT sub-select for a layer at a zoom level.

    The fragment consumes the six parameters of FRAGMENT_SLOTS.

    Args:
        layer: Layer to compile.
        zoom: Requested zoom level.

    Returns:
        SQL text of the fragment, or None when the layer does not apply.

    Raises:
        TilesetConfigError: If the layer name or its selected source
            query cannot be embedded.

    Example:
        >>> build_layer_fragment(layer, 10)
        "(SELECT ST_AsMVT(mvtGeom.*, 'roads', 4096, 'geom', 'id') FROM (..."
    """
    query = select_query(layer, zoom)
    if query is None:
        return None

    try:
        validate_source_sql(query.sql)
    except errors.TilesetConfigError as exc:
        raise errors.TilesetConfigError(
            f"layer {layer.name!r} (zoom {query.minzoom}-{query.maxzoom}): {exc}"
        ) from exc

    source = query.sql.strip().replace("%", "%%")
    if "--" in source:
        # keep a trailing line comment from swallowing the closing paren
        source += "\n"

    return _FRAGMENT_TEMPLATE.format(
        name=quote_literal(layer.name),
        extent=TILE_EXTENT,
        buffer=TILE_BUFFER,
        source=source,
        margin=f"{float(TILE_BUFFER)}/{TILE_EXTENT}",
    )


@dataclasses.dataclass(frozen=True)
class CompiledTileQuery:
    """A tile statement compiled for one tileset at one zoom level.

    Attributes:
        zoom: Zoom level the statement was compiled for.
        sql: Statement returning one ``bytea`` column named ``mvtTile``.
        layers: Names of the layers present, in output order.
        param_slots: Coordinate name bound to each placeholder, in order.
    """

    zoom: int
    sql: str
    layers: tuple[str, ...] = ()
    param_slots: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.layers

    def bind(self, z: int, x: int, y: int) -> tuple[int, ...]:
        """Return the parameters for a tile, following ``param_slots``."""
        coordinate = {"z": z, "x": x, "y": y}
        return tuple(coordinate[slot] for slot in self.param_slots)


def compile_tile_query(
    tileset: tileset_models.Tileset, zoom: int
) -> CompiledTileQuery:
    """Compile the tile statement of a tileset at a zoom level.

    Layers are visited in declaration order; the ones that apply are
    concatenated with ``||`` and aliased ``mvtTile``. When none apply, or the
    zoom is outside the tileset range, the result is the empty tile
    statement, which yields a NULL tile.

    Compilation is pure: the same tileset and zoom always produce the same
    statement.

    Args:
        tileset: Tileset to compile.
        zoom: Requested zoom level.

    Returns:
        The compiled statement.

    Raises:
        ValueError: If the zoom is outside the supported 0-30 range.
        TilesetConfigError: If an applicable layer cannot be embedded.
    """
    if not tileset_models.MIN_ZOOM <= zoom <= tileset_models.MAX_ZOOM:
        raise ValueError(f"zoom {zoom} is out of range")
    if not tileset.covers(zoom):
        logger.debug("Zoom %d is outside %s", zoom, tileset.name)
        return CompiledTileQuery(zoom=zoom, sql=EMPTY_TILE_SQL)

    fragments: list[str] = []
    layers: list[str] = []
    for layer in tileset.vector_layers:
        fragment = build_layer_fragment(layer, zoom)
        if fragment is not None:
            fragments.append(fragment)
            layers.append(layer.name)

    if not fragments:
        logger.debug("No layers of %s apply at zoom %d", tileset.name, zoom)
        return CompiledTileQuery(zoom=zoom, sql=EMPTY_TILE_SQL)

    logger.debug(
        "Compiled %s at zoom %d with layers %s",
        tileset.name,
        zoom,
        ", ".join(layers),
    )
    return CompiledTileQuery(
        zoom=zoom,
        sql="SELECT " + " || ".join(fragments) + " AS mvtTile",
        layers=tuple(layers),
        param_slots=FRAGMENT_SLOTS * len(fragments),
    )


class TileQueryCache:
    """Compiled statements of one tileset, built once per zoom level.

    Safe to share between threads. Two threads racing on the same zoom may
    both compile it; the results are identical and the first one stored is
    kept.
    """

    def __init__(self, tileset: tileset_models.Tileset) -> None:
        self.tileset = tileset
        self._compiled: dict[int, CompiledTileQuery] = {}
        self._lock = threading.Lock()

    def get(self, zoom: int) -> CompiledTileQuery:
        compiled = self._compiled.get(zoom)
        if compiled is not None:
            return compiled
        compiled = compile_tile_query(self.tileset, zoom)
        with self._lock:
            return self._compiled.setdefault(zoom, compiled)

    def __len__(self) -> int:
        return len(self._compiled)
