"""Writer for PostgreSQL binary COPY streams.

``COPY ... FROM STDIN BINARY`` expects a fixed signature header, then one
tuple per row (a 16 bit field count followed by length-prefixed fields,
with length -1 for NULL), then a 16 bit -1 trailer. All integers are
network byte order.

Example:
    Bulk load rows with psycopg2:
        >>> buffer = io.BytesIO()
        >>> with CopyWriter(buffer) as writer:
        ...     writer.start_row(2)
        ...     writer.write_long(1)
        ...     writer.write_text("hello")
        >>> buffer.seek(0)
        >>> cursor.copy_expert("COPY t (id, label) FROM STDIN BINARY", buffer)
"""

from __future__ import annotations

import datetime
import struct
from typing import TYPE_CHECKING, BinaryIO

from tileserver.db import geometry as geometry_codec

if TYPE_CHECKING:
    import types

    import shapely

SIGNATURE = b"PGCOPY\n\xff\r\n\x00"

POSTGRES_EPOCH = datetime.datetime(2000, 1, 1)

_INT16 = struct.Struct("!h")
_INT32 = struct.Struct("!i")
_INT64 = struct.Struct("!q")


class CopyWriter:
    """Serialize rows in the PostgreSQL binary COPY format."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._header_written = False

    def __enter__(self) -> CopyWriter:
        self.write_header()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: types.TracebackType | None,
    ) -> None:
        if exc_type is None:
            self.write_trailer()

    def write_header(self) -> None:
        if self._header_written:
            return
        # signature, flags, header extension length
        self._stream.write(SIGNATURE + _INT32.pack(0) + _INT32.pack(0))
        self._header_written = True

    def write_trailer(self) -> None:
        self._stream.write(_INT16.pack(-1))

    def start_row(self, fields: int) -> None:
        self._stream.write(_INT16.pack(fields))

    def write_null(self) -> None:
        self._stream.write(_INT32.pack(-1))

    def _write_field(self, payload: bytes) -> None:
        self._stream.write(_INT32.pack(len(payload)) + payload)

    def write_long(self, value: int | None) -> None:
        """Write a ``bigint`` field."""
        if value is None:
            self.write_null()
        else:
            self._write_field(_INT64.pack(value))

    def write_text(self, value: str | None) -> None:
        """Write a ``text`` field as UTF-8."""
        if value is None:
            self.write_null()
        else:
            self._write_field(value.encode("utf-8"))

    def write_timestamp(self, value: datetime.datetime | None) -> None:
        """Write a ``timestamp without time zone`` field.

        Aware datetimes are converted to UTC first.
        """
        if value is None:
            self.write_null()
            return
        if value.tzinfo is not None:
            value = value.astimezone(datetime.UTC).replace(tzinfo=None)
        delta = value - POSTGRES_EPOCH
        micros = (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds
        self._write_field(_INT64.pack(micros))

    def write_geometry(self, value: shapely.Geometry | None) -> None:
        """Write a ``geometry`` field as EWKB."""
        if value is None:
            self.write_null()
        else:
            self._write_field(geometry_codec.encode(value))
