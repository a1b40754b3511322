from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_LEVEL_ENV = "DESKPILOT_LOG_LEVEL"


def resolve_level(level: str | int | None) -> int:
    raw = level or os.environ.get(LOG_LEVEL_ENV) or logging.WARNING
    if isinstance(raw, int):
        return raw
    value = logging.getLevelName(str(raw).strip().upper())
    return value if isinstance(value, int) else logging.WARNING


def configure_logging(level: str | int | None = None, log_file: Path | None = None) -> None:
    """Configure root logging for the CLI: stderr, plus a rotating file when `log_file` is given."""
    formatter = logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S")

    handlers: list[logging.Handler] = []
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=5_000_000, backupCount=5, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    root = logging.getLogger()
    root.setLevel(resolve_level(level))
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
