"""Unit tests for the EWKB geometry codec.

See Also:
    - backend/tileserver/db/geometry.py for implementation.
"""

from __future__ import annotations

import struct

import shapely

from tileserver.db import geometry as geometry_codec


def test_encode_point_with_srid() -> None:
    """Test the little-endian EWKB layout of a point with SRID."""
    point = shapely.set_srid(shapely.Point(1.0, 2.0), 3857)
    data = geometry_codec.encode(point)
    # byte order, type with SRID flag, SRID, x, y
    assert data == (
        b"\x01"
        + struct.pack("<I", 0x20000001)
        + struct.pack("<I", 3857)
        + struct.pack("<dd", 1.0, 2.0)
    )


def test_encode_drops_z() -> None:
    """Test that only two dimensions are encoded."""
    point3d = shapely.Point(1.0, 2.0, 3.0)
    assert geometry_codec.encode(point3d) == geometry_codec.encode(shapely.Point(1.0, 2.0))


def test_length_includes_prefix() -> None:
    """Test that length is the COPY field size of the geometry."""
    line = shapely.set_srid(shapely.LineString([(0, 0), (1, 1), (2, 0)]), 4326)
    assert geometry_codec.length(line) == len(geometry_codec.encode(line)) + 4


def test_decode_round_trip() -> None:
    """Test decoding EWKB returned by the database."""
    polygon = shapely.set_srid(shapely.box(0, 0, 10, 10), 3857)
    decoded = geometry_codec.decode(memoryview(geometry_codec.encode(polygon)))
    assert decoded.equals(polygon)
    assert shapely.get_srid(decoded) == 3857
