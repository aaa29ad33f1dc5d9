"""Unit tests for tileserver.db.models domain models.

This module validates the Header structure: defaults for optional fields,
equality by value, and immutability.

See Also:
    - backend/tileserver/db/models.py for the Header implementation.
"""

from __future__ import annotations

import dataclasses
import datetime

import pytest

from tileserver.db import models as db_models


def test_header_creation() -> None:
    """Test creating a fully populated Header."""
    header = db_models.Header(
        replication_sequence_number=5_812_345,
        replication_timestamp=datetime.datetime(2024, 1, 1, 12, 0),
        replication_url="https://planet.osm.org/replication/minute",
        source="OpenStreetMap server",
        writing_program="osmium/1.16.0",
    )
    assert header.replication_sequence_number == 5_812_345
    assert header.writing_program == "osmium/1.16.0"


def test_header_optional_fields_default_to_none() -> None:
    """Test that only the sequence number is required."""
    header = db_models.Header(replication_sequence_number=1)
    assert header.replication_timestamp is None
    assert header.replication_url is None
    assert header.source is None
    assert header.writing_program is None


def test_header_equality() -> None:
    """Test that headers compare by value."""
    assert db_models.Header(1, source="a") == db_models.Header(1, source="a")
    assert db_models.Header(1, source="a") != db_models.Header(1, source="b")


def test_header_is_frozen() -> None:
    """Test that headers are immutable."""
    header = db_models.Header(replication_sequence_number=1)
    with pytest.raises(dataclasses.FrozenInstanceError):
        header.source = "other"  # type: ignore[misc]
