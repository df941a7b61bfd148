"""Central logging configuration for the resolver and its CLI."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

_CONFIGURED = False

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_NOISY_LOGGERS = ("urllib3", "huggingface_hub", "filelock")


def configure_logging() -> None:
    """Configure global logging based on LOG_LEVEL and LOG_FILE.

    ``LOG_LEVEL`` 0 keeps logging silent, 1 enables INFO and 2 or more
    enables DEBUG. Records go to ``LOG_FILE`` when set, otherwise to
    stderr.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    level = _read_level(os.getenv("LOG_LEVEL", "0"))
    log_path = os.getenv("LOG_FILE", "").strip()

    if level is None or level <= 0:
        # Silent mode; keep logging disabled.
        logging.getLogger("provenance").addHandler(logging.NullHandler())
        _CONFIGURED = True
        return

    mapped = _map_level(level)
    if log_path:
        log_file = Path(log_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logging.basicConfig(
            level=mapped,
            filename=log_file,
            filemode="a",
            format=LOG_FORMAT,
        )
    else:
        logging.basicConfig(level=mapped, format=LOG_FORMAT)

    if mapped > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
    _CONFIGURED = True


def _read_level(raw: str) -> Optional[int]:
    try:
        return int(raw)
    except ValueError:
        return None


def _map_level(level: int) -> int:
    if level >= 2:
        return logging.DEBUG
    return logging.INFO
