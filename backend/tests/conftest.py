"""Shared fixtures: sample tilesets and an in-process fake connection pool.

The fakes mimic the small part of the psycopg2 pool/connection/cursor API
the tile store and the repositories use, and record every call so tests
can assert on statements, parameters and connection hand-back.
"""

from __future__ import annotations

import io
from typing import TYPE_CHECKING, Any

import psycopg2.pool
import pytest

from tileserver.core import tileset as tileset_models

if TYPE_CHECKING:
    import types

SOURCE_SQL = "SELECT id, tags, geom FROM table"


class FakeCursor:
    """Cursor returning canned rows and recording executed statements."""

    def __init__(self, conn: FakeConnection) -> None:
        self.conn = conn
        self.closed = False

    def __enter__(self) -> FakeCursor:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: types.TracebackType | None,
    ) -> None:
        self.closed = True

    def execute(self, query: Any, params: Any = None) -> None:
        if self.conn.error is not None:
            raise self.conn.error
        self.conn.executed.append((query, params))

    def fetchone(self) -> Any:
        return self.conn.rows.pop(0) if self.conn.rows else None

    def fetchall(self) -> list[Any]:
        rows, self.conn.rows = self.conn.rows, []
        return rows

    def copy_expert(self, query: Any, file: io.BytesIO) -> None:
        if self.conn.error is not None:
            raise self.conn.error
        self.conn.copied.append((query, file.read()))


class FakeConnection:
    """Connection handing out FakeCursors."""

    def __init__(self) -> None:
        self.closed = 0
        self.rows: list[Any] = []
        self.error: BaseException | None = None
        self.rollback_error: BaseException | None = None
        self.executed: list[tuple[Any, Any]] = []
        self.copied: list[tuple[Any, bytes]] = []
        self.commits = 0
        self.rollbacks = 0

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        if self.rollback_error is not None:
            raise self.rollback_error
        self.rollbacks += 1


class FakePool:
    """Single-connection pool recording checkouts and returns."""

    def __init__(self) -> None:
        self.conn = FakeConnection()
        self.exhausted = False
        self.checked_out = 0
        self.returned: list[tuple[FakeConnection, bool]] = []

    def getconn(self) -> FakeConnection:
        if self.exhausted:
            raise psycopg2.pool.PoolError("connection pool exhausted")
        self.checked_out += 1
        return self.conn

    def putconn(self, conn: FakeConnection, close: bool = False) -> None:
        self.checked_out -= 1
        self.returned.append((conn, close))


@pytest.fixture
def fake_pool() -> FakePool:
    return FakePool()


def _make_layer(
    name: str,
    minzoom: int = 0,
    maxzoom: int = 20,
    queries: tuple[tuple[int, int, str], ...] = ((0, 20, SOURCE_SQL),),
) -> tileset_models.TilesetLayer:
    return tileset_models.TilesetLayer(
        name=name,
        properties={},
        minzoom=minzoom,
        maxzoom=maxzoom,
        queries=tuple(
            tileset_models.TilesetQuery(minzoom=lo, maxzoom=hi, sql=sql)
            for lo, hi, sql in queries
        ),
    )


@pytest.fixture
def make_layer() -> Any:
    """Factory building a TilesetLayer from (minzoom, maxzoom, sql) tuples."""
    return _make_layer


@pytest.fixture
def two_layer_tileset() -> tileset_models.Tileset:
    """Tileset with layers ``a`` and ``b`` valid on zooms 0-20."""
    return tileset_models.Tileset(
        name="fixture",
        minzoom=0,
        maxzoom=20,
        vector_layers=(_make_layer("a"), _make_layer("b")),
    )
