"""Database helpers: the connection pool and the replication header log."""

from __future__ import annotations

import contextlib
import io
import logging
from typing import TYPE_CHECKING, Protocol

import psycopg2
import psycopg2.extensions
import psycopg2.extras
import psycopg2.pool
from psycopg2 import sql

from tileserver.core import errors
from tileserver.db import copy as copy_format
from tileserver.db import models as db_models

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence

    from tileserver.core import config

logger = logging.getLogger(__name__)


def create_pool(
    settings: config.Settings,
) -> psycopg2.pool.ThreadedConnectionPool:
    """Create the bounded, thread-safe connection pool.

    Every connection gets the configured ``statement_timeout`` so a slow
    tile query is cancelled server side and its connection freed.

    Args:
        settings: Application settings with the database URL and pool
            bounds.

    Returns:
        ThreadedConnectionPool opened with ``pool_min_size`` connections.
    """
    logger.info(
        "Opening connection pool (min=%d, max=%d, statement_timeout=%dms)",
        settings.pool_min_size,
        settings.pool_max_size,
        settings.statement_timeout_ms,
    )
    return psycopg2.pool.ThreadedConnectionPool(
        settings.pool_min_size,
        settings.pool_max_size,
        settings.database_url,
        options=f"-c statement_timeout={settings.statement_timeout_ms}",
    )


@contextlib.contextmanager
def pooled_connection(
    pool: psycopg2.pool.AbstractConnectionPool,
) -> Iterator[psycopg2.extensions.connection]:
    """Borrow a connection and give it back on every exit path.

    The open transaction is rolled back before the connection returns to
    the pool; a connection that is closed or cannot roll back is discarded
    instead of being reused.

    Raises:
        psycopg2.pool.PoolError: If the pool is exhausted or closed.
    """
    conn = pool.getconn()
    try:
        yield conn
    finally:
        broken = bool(conn.closed)
        if not broken:
            try:
                conn.rollback()
            except psycopg2.Error:
                logger.warning("Discarding connection that failed to roll back")
                broken = True
        pool.putconn(conn, close=broken)


class HeaderRepositoryProtocol(Protocol):
    """Protocol interface for the replication header log.

    Headers are keyed by replication sequence number. Writes replace an
    existing header with the same key.
    """

    def get(self, key: int) -> db_models.Header | None: ...

    def get_many(self, keys: Sequence[int]) -> list[db_models.Header | None]: ...

    def put(self, header: db_models.Header) -> None: ...

    def put_many(self, headers: Sequence[db_models.Header]) -> None: ...

    def delete(self, key: int) -> None: ...

    def delete_many(self, keys: Sequence[int]) -> None: ...

    def copy(self, headers: Sequence[db_models.Header]) -> None: ...

    def select_all(self) -> list[db_models.Header]: ...

    def select_latest(self) -> db_models.Header | None: ...


class InMemoryHeaderRepository(HeaderRepositoryProtocol):
    """Simple in-memory header log for tests and local development.

    Data is lost when the process exits.
    """

    def __init__(self) -> None:
        self._store: dict[int, db_models.Header] = {}

    def get(self, key: int) -> db_models.Header | None:
        return self._store.get(key)

    def get_many(self, keys: Sequence[int]) -> list[db_models.Header | None]:
        return [self._store.get(key) for key in keys]

    def put(self, header: db_models.Header) -> None:
        self._store[header.replication_sequence_number] = header

    def put_many(self, headers: Sequence[db_models.Header]) -> None:
        for header in headers:
            self.put(header)

    def delete(self, key: int) -> None:
        self._store.pop(key, None)

    def delete_many(self, keys: Sequence[int]) -> None:
        for key in keys:
            self.delete(key)

    def copy(self, headers: Sequence[db_models.Header]) -> None:
        """Load new headers; a key already present fails the whole load."""
        keys = [header.replication_sequence_number for header in headers]
        duplicates = sorted(
            {key for key in keys if key in self._store or keys.count(key) > 1}
        )
        if duplicates:
            raise errors.RepositoryError(
                f"duplicate replication sequence numbers: {duplicates}"
            )
        self.put_many(headers)

    def select_all(self) -> list[db_models.Header]:
        return sorted(
            self._store.values(),
            key=lambda header: header.replication_sequence_number,
            reverse=True,
        )

    def select_latest(self) -> db_models.Header | None:
        headers = self.select_all()
        return headers[0] if headers else None


class PostgresHeaderRepository(HeaderRepositoryProtocol):
    """PostgreSQL-backed header log.

    Statements are composed once from the schema and table names with
    ``psycopg2.sql`` identifiers. Every operation borrows a pooled
    connection for its duration. Driver errors are re-raised as
    RepositoryError.
    """

    COLUMNS = (
        "replication_sequence_number",
        "replication_timestamp",
        "replication_url",
        "source",
        "writing_program",
    )

    def __init__(
        self,
        pool: psycopg2.pool.AbstractConnectionPool,
        schema: str = "public",
        table: str = "osm_header",
    ) -> None:
        """Initialize the repository.

        Args:
            pool: Connection pool to borrow connections from.
            schema: Schema holding the table.
            table: Name of the header table.
        """
        self.pool = pool
        self.table = sql.Identifier(schema, table)
        key = sql.Identifier(self.COLUMNS[0])
        columns = sql.SQL(", ").join(map(sql.Identifier, self.COLUMNS))
        updates = sql.SQL(", ").join(
            sql.SQL("{0} = EXCLUDED.{0}").format(sql.Identifier(column))
            for column in self.COLUMNS[1:]
        )

        self._create = sql.SQL(
            "CREATE TABLE IF NOT EXISTS {table} ("
            "{key} bigint PRIMARY KEY, "
            "{timestamp} timestamp without time zone, "
            "{url} text, {source} text, {program} text)"
        ).format(
            table=self.table,
            key=key,
            timestamp=sql.Identifier(self.COLUMNS[1]),
            url=sql.Identifier(self.COLUMNS[2]),
            source=sql.Identifier(self.COLUMNS[3]),
            program=sql.Identifier(self.COLUMNS[4]),
        )
        self._drop = sql.SQL("DROP TABLE IF EXISTS {} CASCADE").format(self.table)
        self._truncate = sql.SQL("TRUNCATE TABLE {}").format(self.table)
        self._select_all = sql.SQL(
            "SELECT {columns} FROM {table} ORDER BY {key} DESC"
        ).format(columns=columns, table=self.table, key=key)
        self._select = sql.SQL(
            "SELECT {columns} FROM {table} WHERE {key} = %s"
        ).format(columns=columns, table=self.table, key=key)
        self._select_in = sql.SQL(
            "SELECT {columns} FROM {table} WHERE {key} = ANY(%s)"
        ).format(columns=columns, table=self.table, key=key)
        self._insert = sql.SQL(
            "INSERT INTO {table} ({columns}) VALUES (%s, %s, %s, %s, %s) "
            "ON CONFLICT ({key}) DO UPDATE SET {updates}"
        ).format(table=self.table, columns=columns, key=key, updates=updates)
        self._delete = sql.SQL("DELETE FROM {table} WHERE {key} = %s").format(
            table=self.table, key=key
        )
        self._copy = sql.SQL("COPY {table} ({columns}) FROM STDIN BINARY").format(
            table=self.table, columns=columns
        )

    @contextlib.contextmanager
    def _cursor(self) -> Iterator[psycopg2.extensions.cursor]:
        """Yield a cursor whose work is committed on success."""
        try:
            with pooled_connection(self.pool) as conn:
                with conn.cursor() as cur:
                    yield cur
                conn.commit()
        except psycopg2.Error as exc:
            raise errors.RepositoryError(
                f"header repository operation failed: {exc}"
            ) from exc

    def create(self) -> None:
        with self._cursor() as cur:
            cur.execute(self._create)

    def drop(self) -> None:
        with self._cursor() as cur:
            cur.execute(self._drop)

    def truncate(self) -> None:
        with self._cursor() as cur:
            cur.execute(self._truncate)

    def get(self, key: int) -> db_models.Header | None:
        with self._cursor() as cur:
            cur.execute(self._select, (key,))
            row = cur.fetchone()
        return None if row is None else self._from_row(row)

    def get_many(self, keys: Sequence[int]) -> list[db_models.Header | None]:
        if not keys:
            return []
        with self._cursor() as cur:
            cur.execute(self._select_in, (list(keys),))
            rows = cur.fetchall()
        found = {header.replication_sequence_number: header
                 for header in map(self._from_row, rows)}
        return [found.get(key) for key in keys]

    def put(self, header: db_models.Header) -> None:
        with self._cursor() as cur:
            cur.execute(self._insert, self._to_row(header))

    def put_many(self, headers: Sequence[db_models.Header]) -> None:
        if not headers:
            return
        with self._cursor() as cur:
            psycopg2.extras.execute_batch(
                cur, self._insert, [self._to_row(header) for header in headers]
            )

    def delete(self, key: int) -> None:
        with self._cursor() as cur:
            cur.execute(self._delete, (key,))

    def delete_many(self, keys: Sequence[int]) -> None:
        if not keys:
            return
        with self._cursor() as cur:
            psycopg2.extras.execute_batch(cur, self._delete, [(key,) for key in keys])

    def copy(self, headers: Sequence[db_models.Header]) -> None:
        """Bulk load headers with a binary COPY.

        Unlike put_many, COPY does not upsert: a duplicate key fails the
        whole load.
        """
        if not headers:
            return
        buffer = io.BytesIO()
        with copy_format.CopyWriter(buffer) as writer:
            for header in headers:
                self._write_row(writer, header)
        buffer.seek(0)
        with self._cursor() as cur:
            cur.copy_expert(self._copy, buffer)
        logger.info("Copied %d headers into %s", len(headers), self.table.strings)

    def select_all(self) -> list[db_models.Header]:
        """Return all headers, newest sequence number first."""
        with self._cursor() as cur:
            cur.execute(self._select_all)
            rows = cur.fetchall()
        return [self._from_row(row) for row in rows]

    def select_latest(self) -> db_models.Header | None:
        headers = self.select_all()
        return headers[0] if headers else None

    @staticmethod
    def _write_row(writer: copy_format.CopyWriter, header: db_models.Header) -> None:
        writer.start_row(len(PostgresHeaderRepository.COLUMNS))
        writer.write_long(header.replication_sequence_number)
        writer.write_timestamp(header.replication_timestamp)
        writer.write_text(header.replication_url)
        writer.write_text(header.source)
        writer.write_text(header.writing_program)

    @staticmethod
    def _to_row(header: db_models.Header) -> tuple[object, ...]:
        """Convert a Header to positional insert parameters."""
        return (
            header.replication_sequence_number,
            header.replication_timestamp,
            header.replication_url,
            header.source,
            header.writing_program,
        )

    @staticmethod
    def _from_row(row: Iterable[object]) -> db_models.Header:
        """Convert a positional result row to a Header."""
        sequence_number, timestamp, url, source, program = row
        return db_models.Header(
            replication_sequence_number=int(sequence_number),  # type: ignore[call-overload]
            replication_timestamp=timestamp,  # type: ignore[arg-type]
            replication_url=url,  # type: ignore[arg-type]
            source=source,  # type: ignore[arg-type]
            writing_program=program,  # type: ignore[arg-type]
        )


def get_header_repository(
    pool: psycopg2.pool.AbstractConnectionPool,
) -> HeaderRepositoryProtocol:
    """Factory function to create the header repository.

    Args:
        pool: Connection pool shared with the tile store.

    Returns:
        PostgresHeaderRepository instance for production use.
    """
    return PostgresHeaderRepository(pool)
