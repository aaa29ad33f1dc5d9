"""Geometry codec for PostGIS binary exchange.

Geometries cross the database boundary as two dimensional, little-endian
extended WKB (EWKB) carrying the SRID, which is what PostGIS accepts in a
binary COPY stream and returns for ``geometry`` columns in binary mode.

Example:
    Encode a point for a bulk load:
        >>> import shapely
        >>> point = shapely.set_srid(shapely.Point(1.0, 2.0), 3857)
        >>> data = encode(point)
        >>> length(point) == len(data) + 4
        True
"""

from __future__ import annotations

import shapely

# length prefix of a field in a binary COPY row
FIELD_LENGTH_PREFIX = 4


def encode(geometry: shapely.Geometry) -> bytes:
    """Encode a geometry as 2D little-endian EWKB including its SRID."""
    return shapely.to_wkb(
        geometry,
        hex=False,
        output_dimension=2,
        byte_order=1,
        include_srid=True,
    )


def decode(data: bytes | memoryview) -> shapely.Geometry:
    """Decode (E)WKB returned by PostGIS into a geometry."""
    return shapely.from_wkb(bytes(data))


def length(geometry: shapely.Geometry) -> int:
    """Size of the geometry as a binary COPY field, prefix included."""
    return len(encode(geometry)) + FIELD_LENGTH_PREFIX
