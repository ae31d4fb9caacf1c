"""Process configuration loaded from the environment and ``.env``."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from memebot.utils import float_from_env, int_from_env, path_from_env

logger = logging.getLogger("memebot.settings")

BASE_DIR = Path(__file__).resolve().parent.parent


@dataclass(frozen=True)
class BotSettings:
    token: str
    prefix: str = "!"
    asset_root: Path = BASE_DIR / "assets"
    font_path: Optional[Path] = None
    avatar_size: int = 256
    http_timeout: float = 10.0
    commands_file: Optional[Path] = None
    keepalive_port: Optional[int] = None
    log_level: str = "INFO"


def _resolve_asset_root() -> Path:
    setting = os.getenv("MEMEBOT_ASSET_ROOT", "assets").strip() or "assets"
    root = Path(setting).expanduser()
    if not root.is_absolute():
        root = BASE_DIR / root
    return root.resolve()


def _resolve_keepalive_port() -> Optional[int]:
    for name in ("MEMEBOT_KEEPALIVE_PORT", "PORT"):
        if os.getenv(name, "").strip():
            port = int_from_env(name, 0)
            if port > 0:
                return port
    return None


def load_settings(*, dotenv: bool = True) -> BotSettings:
    """Read the bot configuration, failing fast when the token is absent."""
    if dotenv:
        load_dotenv()

    token = os.getenv("DISCORD_TOKEN", "").strip()
    if not token:
        raise RuntimeError("Missing DISCORD_TOKEN. Set it in your environment or .env file.")

    prefix = os.getenv("MEMEBOT_PREFIX", "!")
    if not prefix.strip():
        logger.warning("Empty MEMEBOT_PREFIX. Falling back to '!'.")
        prefix = "!"

    avatar_size = int_from_env("MEMEBOT_AVATAR_SIZE", 256)
    if avatar_size <= 0:
        logger.warning("MEMEBOT_AVATAR_SIZE must be positive. Falling back to 256.")
        avatar_size = 256

    return BotSettings(
        token=token,
        prefix=prefix.strip(),
        asset_root=_resolve_asset_root(),
        font_path=path_from_env("MEMEBOT_FONT"),
        avatar_size=avatar_size,
        http_timeout=max(1.0, float_from_env("MEMEBOT_HTTP_TIMEOUT", 10.0)),
        commands_file=path_from_env("MEMEBOT_COMMANDS_FILE"),
        keepalive_port=_resolve_keepalive_port(),
        log_level=os.getenv("MEMEBOT_LOG_LEVEL", "INFO").upper(),
    )


__all__ = ["BASE_DIR", "BotSettings", "load_settings"]
