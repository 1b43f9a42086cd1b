"""Logging setup shared by the operator scripts."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
NOISY_LOGGERS = ("httpx", "httpcore")


def configure_logging(
    level: str,
    log_dir: Optional[Path],
    *,
    filename: str = "booking_bridge.log",
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Log to stderr and, when ``log_dir`` is given, to ``log_dir/filename``."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / filename, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    # Request lines are logged by the platform client at DEBUG.
    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)
