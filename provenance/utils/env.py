from __future__ import annotations

"""Helpers for loading environment configuration."""

import logging
import os
from pathlib import Path
from typing import Mapping, Optional, Tuple, Union

_ENV_LOADED = False

_LOGGER = logging.getLogger(__name__)


def load_dotenv(dotenv_path: Union[str, Path] = ".env") -> None:
    """Load environment variables from a simple ``.env`` file if present."""
    global _ENV_LOADED
    if _ENV_LOADED:
        return

    path = Path(dotenv_path)
    if path.exists():
        for line in path.read_text().splitlines():
            parsed = _parse_line(line)
            if parsed:
                key, value = parsed
                os.environ.setdefault(key, value)
        _LOGGER.debug("Loaded environment defaults from %s", path)

    _ENV_LOADED = True


def _parse_line(line: str) -> Optional[Tuple[str, str]]:
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None

    if "=" not in stripped:
        return None

    key, value = stripped.split("=", 1)
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        value = value[1:-1]
    return (key.strip(), value)


def _truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    lowered = value.strip().lower()
    return lowered in {"1", "true", "yes", "on"}


def read_flag(
    name: str,
    default: bool,
    environ: Optional[Mapping[str, str]] = None,
) -> bool:
    """Return a boolean flag, falling back to ``default`` when unset."""
    source = os.environ if environ is None else environ
    value = source.get(name)
    if value is None or not value.strip():
        return default
    return _truthy(value)


def read_int(
    name: str,
    default: Optional[int],
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[int]:
    source = os.environ if environ is None else environ
    raw = source.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        _LOGGER.warning("Ignoring non-integer %s=%r", name, raw)
        return default
