"""Dataclasses and shared type definitions for memebot."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


@dataclass(frozen=True)
class UserRef:
    id: str
    display_name: str
    tag: str
    avatar: Optional[str] = None

    def avatar_url(self, size: int = 256) -> Optional[str]:
        """Return the avatar URL with the requested size hint, if the user has one."""
        if not self.avatar:
            return None
        parts = urlsplit(self.avatar)
        query = [(key, value) for key, value in parse_qsl(parts.query) if key != "size"]
        query.append(("size", str(size)))
        return urlunsplit(parts._replace(query=urlencode(query)))


@dataclass(frozen=True)
class MessageContext:
    raw_text: str
    mentioned_users: Tuple[UserRef, ...]
    invoking_user: UserRef
    known_users_by_tag: Mapping[str, UserRef] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolvedArguments:
    target_users: Tuple[UserRef, ...]
    caption_text: str
    invoking_user: UserRef


@dataclass(frozen=True)
class ClipCircle:
    cx: float
    cy: float
    r: float


@dataclass(frozen=True)
class Placement:
    """One drawing instruction within a template layout.

    Image placements pick their picture through ``source``: ``"target"`` (the
    ``index``-th target user's avatar), ``"invoker"`` or ``"asset"`` (a file
    named by ``asset``). Text placements use ``"caption"``, ``"target_name"``,
    ``"invoker_name"`` or ``"literal"`` (the ``text`` field).
    """

    kind: str
    x: float = 0
    y: float = 0
    width: Optional[float] = None
    height: Optional[float] = None
    rotation: float = 0.0
    clip: Optional[ClipCircle] = None
    origin: Optional[Tuple[float, float]] = None
    source: str = "target"
    index: int = 0
    asset: Optional[str] = None
    text: Optional[str] = None
    font: Optional[str] = None
    font_size: int = 32
    fill_color: Optional[str] = None
    stroke_color: Optional[str] = None
    stroke_width: int = 0
    align: str = "center"

    @property
    def is_image(self) -> bool:
        return self.kind == "image"

    @property
    def is_text(self) -> bool:
        return self.kind == "text"


LayoutSpec = Tuple[Placement, ...]


@dataclass(frozen=True)
class TemplateVariant:
    variant_id: int
    kind: str
    asset_path: str
    layout: LayoutSpec = ()
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def is_animated(self) -> bool:
        return self.kind == "animated"


@dataclass(frozen=True)
class MediaResult:
    buffer: bytes
    mime_type: str
    file_name: str


@dataclass(frozen=True)
class EmbedReply:
    title: str
    url: Optional[str] = None
    color: int = 0x9B59B6
    image_url: Optional[str] = None
    timestamp: Optional[datetime] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class TextReply:
    content: str


Reply = Union[MediaResult, EmbedReply, TextReply]
Handler = Callable[[MessageContext], Awaitable[Optional[Reply]]]


@dataclass(frozen=True)
class CommandDefinition:
    token: str
    handler: Handler
    description: str = ""


def image_placements(layout: Sequence[Placement]) -> Tuple[Placement, ...]:
    return tuple(placement for placement in layout if placement.is_image)


__all__ = [
    "ClipCircle",
    "CommandDefinition",
    "EmbedReply",
    "Handler",
    "LayoutSpec",
    "MediaResult",
    "MessageContext",
    "Placement",
    "Reply",
    "ResolvedArguments",
    "TemplateVariant",
    "TextReply",
    "UserRef",
    "image_placements",
]
