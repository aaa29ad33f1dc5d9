"""Data models for replication metadata.

This module defines the records persisted next to the tile sources. The
Header dataclass describes one OpenStreetMap replication state: the
sequence number identifies the state, the timestamp and URL tell where it
came from, and source/writing program are passed through from the
upstream file header.

Example:
    Creating a Header for a minutely replication state:
        >>> from tileserver.db.models import Header
        >>> header = Header(
        ...     replication_sequence_number=5_812_345,
        ...     replication_timestamp=datetime.datetime(2024, 1, 1, 12, 0),
        ...     replication_url="https://planet.osm.org/replication/minute",
        ...     source="OpenStreetMap server",
        ...     writing_program="osmium/1.16.0",
        ... )
"""

from __future__ import annotations

import dataclasses
import datetime


@dataclasses.dataclass(frozen=True)
class Header:
    """Replication header of an imported OpenStreetMap data source.

    Attributes:
        replication_sequence_number: Sequence number of the replication
            state; the primary key.
        replication_timestamp: Time of the replication state, stored as a
            timestamp without time zone (UTC).
        replication_url: Base URL of the replication server.
        source: Value of the source field of the file header.
        writing_program: Program that wrote the upstream file.
    """

    replication_sequence_number: int
    replication_timestamp: datetime.datetime | None = None
    replication_url: str | None = None
    source: str | None = None
    writing_program: str | None = None
