"""Byte sources and the per-invocation asset loader."""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

import aiohttp
from PIL import Image, ImageSequence, UnidentifiedImageError

from memebot.errors import AssetLoadError
from memebot.models import UserRef

logger = logging.getLogger("memebot.assets")


class ByteSource(Protocol):
    async def read(self, location: str) -> bytes:
        ...


class FileByteSource:
    """Reads template assets from a directory on disk."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def resolve(self, location: str) -> Path:
        path = Path(location).expanduser()
        if not path.is_absolute():
            path = self.root / path
        return path.resolve()

    async def read(self, location: str) -> bytes:
        path = self.resolve(location)
        if not path.is_file():
            raise AssetLoadError(location, f"file not found at {path}")
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise AssetLoadError(location, str(exc)) from exc


class HttpByteSource:
    """Fetches remote assets (avatars) over HTTP."""

    def __init__(self, session: aiohttp.ClientSession, timeout: float = 10.0):
        self.session = session
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def read(self, location: str) -> bytes:
        try:
            async with self.session.get(location, timeout=self.timeout) as resp:
                if resp.status != 200:
                    raise AssetLoadError(location, f"HTTP {resp.status}")
                return await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise AssetLoadError(location, f"{type(exc).__name__}: {exc}") from exc


@dataclass(frozen=True)
class Frame:
    image: Image.Image
    duration_ms: int


def decode_image(data: bytes, location: str) -> Image.Image:
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            return img.convert("RGBA")
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise AssetLoadError(location, f"undecodable image: {exc}") from exc


def decode_frames(data: bytes, location: str = "<animation>") -> List[Frame]:
    """Split an animated image into RGBA frames with their display durations."""
    frames: List[Frame] = []
    try:
        with Image.open(io.BytesIO(data)) as img:
            default_duration = int(img.info.get("duration") or 100)
            for frame in ImageSequence.Iterator(img):
                duration = int(frame.info.get("duration") or default_duration)
                frames.append(Frame(frame.convert("RGBA"), duration))
    except (UnidentifiedImageError, OSError, ValueError, EOFError) as exc:
        raise AssetLoadError(location, f"undecodable animation: {exc}") from exc
    if not frames:
        raise AssetLoadError(location, "animation has no frames")
    return frames


def placeholder_image(size: Tuple[int, int]) -> Image.Image:
    return Image.new("RGBA", size, (0, 0, 0, 0))


class AssetLoader:
    """Decodes assets for a single invocation.

    Results are cached by source and location for the lifetime of the loader,
    so one instance must never be shared between invocations.
    """

    def __init__(self, files: ByteSource, http: Optional[ByteSource] = None):
        self.files = files
        self.http = http
        self._images: Dict[Tuple[str, str], Image.Image] = {}
        self._animations: Dict[str, List[Frame]] = {}

    def _source(self, source: str) -> ByteSource:
        if source == "file":
            return self.files
        if source == "http" and self.http is not None:
            return self.http
        raise ValueError(f"Unknown or unavailable byte source '{source}'")

    async def load_image(self, location: str, source: str = "file") -> Image.Image:
        key = (source, location)
        cached = self._images.get(key)
        if cached is not None:
            return cached
        data = await self._source(source).read(location)
        image = decode_image(data, location)
        self._images[key] = image
        return image

    async def load_animation(self, location: str) -> List[Frame]:
        cached = self._animations.get(location)
        if cached is not None:
            return cached
        data = await self.files.read(location)
        frames = decode_frames(data, location)
        logger.debug("Decoded %s frames from %s", len(frames), location)
        self._animations[location] = frames
        return frames

    async def load_avatar(self, user: UserRef, size: int = 256) -> Image.Image:
        """Return the user's avatar, or a transparent placeholder when none is set."""
        url = user.avatar_url(size)
        if not url:
            logger.debug("User %s has no avatar; using placeholder", user.id)
            return placeholder_image((size, size))
        return await self.load_image(url, source="http")


__all__ = [
    "AssetLoader",
    "ByteSource",
    "FileByteSource",
    "Frame",
    "HttpByteSource",
    "decode_frames",
    "decode_image",
    "placeholder_image",
]
