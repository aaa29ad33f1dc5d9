"""Replication header endpoints.

Expose the replication state the tile sources were last updated to, so
operators and update jobs can see how fresh the served data is.

Example:
    Get the latest replication state:
        >>> response = client.get("/api/replication/latest")
        >>> response.json()["replication_sequence_number"]
        5812345
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

import fastapi

from tileserver.core import errors
from tileserver.db import database

logger = logging.getLogger(__name__)

UNAVAILABLE_DETAIL = "Replication headers are unavailable"

router = fastapi.APIRouter(prefix="/api/replication", tags=["replication"])


def _get_repo(request: fastapi.Request) -> database.HeaderRepositoryProtocol:
    """Resolve the header repository created at application startup."""
    return request.app.state.header_repository  # type: ignore[no-any-return]


@router.get("/headers")
def list_headers(
    repo: database.HeaderRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> list[dict[str, Any]]:
    """List all replication headers, newest first."""
    try:
        headers = repo.select_all()
    except errors.RepositoryError as exc:
        logger.error("Failed to read replication headers: %s", exc)
        raise fastapi.HTTPException(
            status_code=503,
            detail=UNAVAILABLE_DETAIL,
        ) from exc
    return [dataclasses.asdict(header) for header in headers]


@router.get("/latest")
def latest_header(
    repo: database.HeaderRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> dict[str, Any]:
    """Return the header with the highest sequence number.

    Raises:
        HTTPException: 404 if no header has been recorded, 503 if the
            store is unavailable.
    """
    try:
        header = repo.select_latest()
    except errors.RepositoryError as exc:
        logger.error("Failed to read replication headers: %s", exc)
        raise fastapi.HTTPException(
            status_code=503,
            detail=UNAVAILABLE_DETAIL,
        ) from exc
    if header is None:
        raise fastapi.HTTPException(
            status_code=404,
            detail="No replication header recorded",
        )
    return dataclasses.asdict(header)
