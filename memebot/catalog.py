"""Declarative command catalog and command-table assembly."""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import yaml

from memebot.arguments import resolve
from memebot.engine import MediaCommand, MediaEngine
from memebot.errors import ArgumentMissingError
from memebot.models import (
    ClipCircle,
    CommandDefinition,
    EmbedReply,
    MessageContext,
    Placement,
    TemplateVariant,
    TextReply,
)
from memebot.utils import utc_now

logger = logging.getLogger("memebot.catalog")

AVATAR_EMBED_COLOR = 0x5865F2
AVATAR_EMBED_SIZE = 1024
CAPTION_FILL = "#ffffff"
CAPTION_STROKE = "#000000"
RESERVED_TOKENS = frozenset({"avatar", "help"})


def _avatar(
    x: float,
    y: float,
    size: float,
    *,
    source: str = "target",
    index: int = 0,
    circle: bool = False,
    rotation: float = 0.0,
    origin: Optional[Tuple[float, float]] = None,
) -> Placement:
    clip = ClipCircle(x + size / 2, y + size / 2, size / 2) if circle else None
    return Placement(
        kind="image",
        x=x,
        y=y,
        width=size,
        height=size,
        rotation=rotation,
        clip=clip,
        origin=origin,
        source=source,
        index=index,
    )


def _overlay(asset: str, width: float, height: float, x: float = 0, y: float = 0) -> Placement:
    return Placement(kind="image", x=x, y=y, width=width, height=height, source="asset", asset=asset)


def _text(
    y: float,
    *,
    source: str = "caption",
    index: int = 0,
    text: Optional[str] = None,
    size: int = 42,
    x: float = 0,
    align: str = "center",
    fill: str = CAPTION_FILL,
    stroke: Optional[str] = CAPTION_STROKE,
    stroke_width: int = 3,
) -> Placement:
    return Placement(
        kind="text",
        x=x,
        y=y,
        source=source,
        index=index,
        text=text,
        font_size=size,
        fill_color=fill,
        stroke_color=stroke,
        stroke_width=stroke_width if stroke else 0,
        align=align,
    )


def _static(variant_id: int, asset: str, *layout: Placement) -> TemplateVariant:
    return TemplateVariant(variant_id=variant_id, kind="static", asset_path=asset, layout=tuple(layout))


def _animated(variant_id: int, asset: str, *layout: Placement) -> TemplateVariant:
    return TemplateVariant(variant_id=variant_id, kind="animated", asset_path=asset, layout=tuple(layout))


BUILTIN_COMMANDS: Tuple[MediaCommand, ...] = (
    MediaCommand(
        token="punch",
        description="Punch someone.",
        min_targets=1,
        variants=(
            _static(0, "templates/punch_1.png", _avatar(60, 120, 160, source="invoker", circle=True), _avatar(420, 90, 180, circle=True)),
            _static(1, "templates/punch_2.png", _avatar(40, 60, 150, source="invoker", circle=True), _avatar(400, 140, 170, circle=True)),
        ),
    ),
    MediaCommand(
        token="slap",
        description="Slap someone.",
        min_targets=1,
        variants=(
            _static(0, "templates/slap.png", _avatar(350, 70, 220, source="invoker"), _avatar(580, 250, 200)),
        ),
    ),
    MediaCommand(
        token="hug",
        description="Hug someone.",
        min_targets=1,
        variants=(
            _static(0, "templates/hug_1.png", _avatar(110, 80, 140, source="invoker", circle=True), _avatar(300, 70, 140, circle=True)),
            _static(1, "templates/hug_2.png", _avatar(90, 110, 150, source="invoker", circle=True), _avatar(330, 90, 150, circle=True)),
        ),
    ),
    MediaCommand(
        token="kiss",
        description="Kiss someone.",
        min_targets=1,
        variants=(
            _static(0, "templates/kiss.png", _avatar(150, 60, 170, source="invoker", circle=True), _avatar(350, 40, 170, circle=True)),
        ),
    ),
    MediaCommand(
        token="pat",
        description="Give someone headpats.",
        min_targets=1,
        frames_per_second=16,
        variants=(
            _animated(0, "templates/pat.gif", _avatar(24, 44, 88, circle=True)),
        ),
    ),
    MediaCommand(
        token="bonk",
        description="Bonk someone.",
        min_targets=1,
        variants=(
            _static(0, "templates/bonk.png", _avatar(0, 0, 190, circle=True, rotation=-math.pi / 12, origin=(470, 250))),
        ),
    ),
    MediaCommand(
        token="trash",
        description="Throw someone in the trash.",
        min_targets=1,
        variants=(
            _static(0, "templates/trash.png", _avatar(0, 0, 180, rotation=math.pi / 8, origin=(330, 110))),
        ),
    ),
    MediaCommand(
        token="jail",
        description="Put someone behind bars.",
        min_targets=1,
        variants=(
            _static(
                0,
                "templates/jail_background.png",
                _avatar(0, 0, 400),
                _overlay("templates/jail_bars.png", 400, 400),
            ),
        ),
    ),
    MediaCommand(
        token="wanted",
        description="Print a wanted poster.",
        min_targets=1,
        variants=(
            _static(0, "templates/wanted.png", _avatar(120, 250, 380), _text(660, source="target_name", size=48, fill="#3b2412", stroke=None)),
        ),
    ),
    MediaCommand(
        token="rip",
        description="Rest in peace.",
        min_targets=1,
        variants=(
            _static(0, "templates/rip.png", _avatar(190, 230, 150, circle=True), _text(400, source="target_name", size=36)),
        ),
    ),
    MediaCommand(
        token="triggered",
        description="Someone got triggered.",
        min_targets=1,
        frames_per_second=20,
        variants=(
            _animated(0, "templates/triggered.gif", _avatar(0, 0, 256), _text(262, text="TRIGGERED", source="literal", size=40, fill="#ff0000")),
        ),
    ),
    MediaCommand(
        token="fight",
        description="Two people fight it out.",
        min_targets=2,
        variants=(
            _static(0, "templates/fight_1.png", _avatar(80, 100, 160, circle=True), _avatar(460, 100, 160, index=1, circle=True)),
            _static(1, "templates/fight_2.png", _avatar(60, 140, 170, circle=True), _avatar(480, 120, 170, index=1, circle=True)),
        ),
    ),
    MediaCommand(
        token="ship",
        description="Ship two people.",
        min_targets=2,
        variants=(
            _static(
                0,
                "templates/ship.png",
                _avatar(20, 20, 200, circle=True),
                _avatar(380, 20, 200, index=1, circle=True),
                _text(240, source="target_name", size=28, x=-180),
                _text(240, source="target_name", index=1, size=28, x=180),
            ),
        ),
    ),
    MediaCommand(
        token="come",
        description="Shout something across the room.",
        requires_caption=True,
        frames_per_second=12,
        variants=(
            _static(0, "templates/come.png", _text(20, size=48)),
            _animated(1, "templates/come.gif", _text(12, size=32)),
        ),
    ),
    MediaCommand(
        token="say",
        description="Say something with your avatar.",
        requires_caption=True,
        variants=(
            _static(
                0,
                "templates/say.png",
                _avatar(30, 30, 120, source="invoker", circle=True),
                _text(40, source="invoker_name", size=30, x=170, align="left", stroke=None),
                _text(90, size=28, x=170, align="left", fill="#1e1e1e", stroke=None),
            ),
        ),
    ),
    MediaCommand(
        token="sign",
        description="Hold up a sign.",
        requires_caption=True,
        variants=(
            _static(0, "templates/sign_1.png", _text(140, size=36, fill="#000000", stroke=None)),
            _static(1, "templates/sign_2.png", _text(180, size=36, fill="#000000", stroke=None)),
        ),
    ),
    MediaCommand(
        token="news",
        description="Breaking news headline.",
        requires_caption=True,
        variants=(
            _static(
                0,
                "templates/news.png",
                _avatar(40, 60, 300, source="invoker"),
                _text(400, size=40),
            ),
        ),
    ),
    MediaCommand(
        token="dance",
        description="Dance with someone.",
        min_targets=1,
        frames_per_second=15,
        variants=(
            _animated(0, "templates/dance.gif", _avatar(30, 30, 72, source="invoker", circle=True), _avatar(190, 30, 72, circle=True)),
        ),
    ),
)


# --- YAML overrides -------------------------------------------------------


def _clip_from_config(raw: object) -> Optional[ClipCircle]:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise ValueError(f"clip must be a mapping, got {raw!r}")
    return ClipCircle(float(raw["cx"]), float(raw["cy"]), float(raw["r"]))


def _require_mapping(raw: object, what: str) -> Mapping[str, object]:
    if not isinstance(raw, Mapping):
        raise ValueError(f"{what} must be a mapping, got {raw!r}")
    return raw


def _require_list(raw: object, what: str) -> list:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError(f"{what} must be a list, got {raw!r}")
    return raw


def _optional_int(raw: object) -> Optional[int]:
    return int(raw) if raw is not None else None  # type: ignore[call-overload]


def placement_from_config(raw: object) -> Placement:
    raw = _require_mapping(raw, "placement")
    kind = str(raw.get("kind", "image")).lower()
    if kind not in {"image", "text"}:
        raise ValueError(f"Unknown placement kind '{kind}'")
    origin = raw.get("origin")
    if origin is not None:
        origin = (float(origin[0]), float(origin[1]))  # type: ignore[index]
    rotation = float(raw.get("rotation", 0.0) or 0.0)
    if "rotation_degrees" in raw:
        rotation = math.radians(float(raw["rotation_degrees"]))  # type: ignore[arg-type]
    width = raw.get("width")
    height = raw.get("height")
    return Placement(
        kind=kind,
        x=float(raw.get("x", 0) or 0),
        y=float(raw.get("y", 0) or 0),
        width=float(width) if width is not None else None,
        height=float(height) if height is not None else None,
        rotation=rotation,
        clip=_clip_from_config(raw.get("clip")),
        origin=origin,
        source=str(raw.get("source", "target" if kind == "image" else "caption")),
        index=int(raw.get("index", 0) or 0),
        asset=raw.get("asset"),  # type: ignore[arg-type]
        text=raw.get("text"),  # type: ignore[arg-type]
        font=raw.get("font"),  # type: ignore[arg-type]
        font_size=int(raw.get("font_size", 32) or 32),
        fill_color=raw.get("fill_color"),  # type: ignore[arg-type]
        stroke_color=raw.get("stroke_color"),  # type: ignore[arg-type]
        stroke_width=int(raw.get("stroke_width", 0) or 0),
        align=str(raw.get("align", "center")),
    )


def command_from_config(raw: object) -> MediaCommand:
    raw = _require_mapping(raw, "command entry")
    token = str(raw.get("token", "")).strip().lower()
    if not token:
        raise ValueError("Command entry is missing a token")
    variants: List[TemplateVariant] = []
    for variant_id, entry in enumerate(_require_list(raw.get("variants"), f"{token}: variants")):
        entry = _require_mapping(entry, f"{token}: variant {variant_id}")
        kind = str(entry.get("kind", "static")).lower()
        if kind not in {"static", "animated"}:
            raise ValueError(f"{token}: unknown variant kind '{kind}'")
        asset = str(entry.get("asset", "")).strip()
        if not asset:
            raise ValueError(f"{token}: variant {variant_id} is missing an asset")
        variants.append(
            TemplateVariant(
                variant_id=variant_id,
                kind=kind,
                asset_path=asset,
                layout=tuple(
                    placement_from_config(item)
                    for item in _require_list(entry.get("layout"), f"{token}: layout")
                ),
                width=_optional_int(entry.get("width")),
                height=_optional_int(entry.get("height")),
            )
        )
    if not variants:
        raise ValueError(f"{token}: at least one variant is required")
    return MediaCommand(
        token=token,
        description=str(raw.get("description", "")),
        variants=tuple(variants),
        min_targets=int(raw.get("min_targets", 1 if raw.get("requires_target") else 0) or 0),
        requires_caption=bool(raw.get("requires_caption", False)),
        frames_per_second=float(raw.get("fps", 10.0) or 10.0),
        file_stem=raw.get("file_stem"),  # type: ignore[arg-type]
    )


def load_catalog_file(path: Path) -> List[MediaCommand]:
    """Parse a YAML command file; returns an empty list when it cannot be used."""
    if not path.exists():
        logger.warning("Commands file %s not found; using built-in commands only.", path)
        return []
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Failed to read commands file %s: %s", path, exc)
        return []
    entries = payload.get("commands") if isinstance(payload, Mapping) else payload
    if entries is None:
        entries = []
    if not isinstance(entries, list):
        logger.warning("Commands file %s must hold a list of commands; ignoring it.", path)
        return []
    commands: List[MediaCommand] = []
    for entry in entries:
        try:
            commands.append(command_from_config(entry))
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping invalid command in %s: %s", path, exc)
    logger.info("Loaded %s command(s) from %s", len(commands), path)
    return commands


def merge_commands(
    builtin: Sequence[MediaCommand],
    overrides: Iterable[MediaCommand],
) -> List[MediaCommand]:
    merged: Dict[str, MediaCommand] = {command.token: command for command in builtin}
    for command in overrides:
        if command.token in merged:
            logger.info("Commands file overrides built-in command %s", command.token)
        merged[command.token] = command
    return list(merged.values())


# --- metadata commands ----------------------------------------------------


async def avatar_handler(context: MessageContext) -> EmbedReply:
    args = resolve(
        context.raw_text,
        context.mentioned_users,
        context.invoking_user,
        context.known_users_by_tag,
    )
    user = args.target_users[0] if args.target_users else args.invoking_user
    url = user.avatar_url(AVATAR_EMBED_SIZE)
    if not url:
        raise ArgumentMissingError(f"{user.id} has no avatar")
    return EmbedReply(
        title=f"{user.display_name}'s avatar",
        url=url,
        color=AVATAR_EMBED_COLOR,
        image_url=url,
        timestamp=utc_now(),
    )


def help_handler_for(definitions: Sequence[CommandDefinition], prefix: str):
    lines = [f"`{prefix}{item.token}` - {item.description}" for item in definitions]
    lines.append(f"`{prefix}help` - Show this list.")
    content = "Available commands:\n" + "\n".join(lines)

    async def help_handler(_context: MessageContext) -> TextReply:
        return TextReply(content)

    return help_handler


def build_definitions(
    engine: MediaEngine,
    commands: Sequence[MediaCommand],
    prefix: str,
) -> List[CommandDefinition]:
    definitions: List[CommandDefinition] = []
    for command in commands:
        if command.token in RESERVED_TOKENS:
            logger.warning("Ignoring media command %s: token is reserved.", command.token)
            continue
        definitions.append(CommandDefinition(command.token, engine.handler_for(command), command.description))
    definitions.append(CommandDefinition("avatar", avatar_handler, "Show someone's avatar."))
    definitions.append(CommandDefinition("help", help_handler_for(list(definitions), prefix), "Show this list."))
    return definitions


__all__ = [
    "BUILTIN_COMMANDS",
    "avatar_handler",
    "build_definitions",
    "command_from_config",
    "help_handler_for",
    "load_catalog_file",
    "merge_commands",
    "placement_from_config",
]
