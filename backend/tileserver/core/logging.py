"""Root logger configuration shared by the application entrypoints."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger.

    ``logging.basicConfig`` only installs a handler when the root logger has
    none, so repeated calls (one per application built in a process) just
    adjust the level.

    Args:
        level: Logging level name such as ``"DEBUG"`` or ``"INFO"``.
            Unknown names fall back to ``INFO``.
    """
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    logging.basicConfig(format=LOG_FORMAT)
    logging.getLogger().setLevel(resolved)
