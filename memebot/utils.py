"""Utility helpers for memebot."""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

logger = logging.getLogger("memebot.utils")

_WHITESPACE_RE = re.compile(r"\s+")


def int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer for %s=%s. Falling back to %s.", name, raw, default)
        return default


def float_from_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid float for %s=%s. Falling back to %s.", name, raw, default)
        return default


def path_from_env(name: str) -> Optional[Path]:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    return Path(value).expanduser()


def normalize_whitespace(text: str) -> str:
    """Collapse every whitespace run to a single space and trim the ends."""
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def parse_color(raw: Optional[str]) -> Optional[Tuple[int, int, int, int]]:
    """Parse ``#rgb``, ``#rrggbb`` or ``#rrggbbaa`` into an RGBA tuple."""
    if not raw:
        return None
    value = raw.strip().lstrip("#")
    if len(value) == 3:
        value = "".join(ch * 2 for ch in value)
    if len(value) == 6:
        value += "ff"
    if len(value) != 8:
        logger.warning("Ignoring invalid color %s", raw)
        return None
    try:
        r, g, b, a = (int(value[i : i + 2], 16) for i in range(0, 8, 2))
    except ValueError:
        logger.warning("Ignoring invalid color %s", raw)
        return None
    return (r, g, b, a)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


__all__ = [
    "float_from_env",
    "int_from_env",
    "normalize_whitespace",
    "parse_color",
    "path_from_env",
    "utc_now",
]
