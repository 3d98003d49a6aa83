"""Logging configuration helpers."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Loggers that emit one record per frame on the wire
SERIAL_TRAFFIC_LOGGERS = ("lord_cli.codec", "serial")


def resolve_level(level: str, default: int = logging.WARNING) -> int:
    value = logging.getLevelName(level.strip().upper())
    return value if isinstance(value, int) else default


def configure_logging(
    level: str = "WARNING", *, log_path: Optional[Path] = None, log_serial: bool = False
) -> None:
    """Configure root logging handlers.

    Console records go to stderr so packet dumps on stdout stay parseable.
    Per-frame traffic from the codec and pyserial is held at INFO unless
    ``log_serial`` is set, in which case it is logged at DEBUG regardless of
    ``level``.
    """

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    root.setLevel(resolve_level(level))
    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    traffic_level = logging.DEBUG if log_serial else max(logging.INFO, root.level)
    for name in SERIAL_TRAFFIC_LOGGERS:
        logging.getLogger(name).setLevel(traffic_level)
