"""Media response engine: variant choice, asset gathering and composition."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

from PIL import Image

from memebot.animation import compose_animated
from memebot.arguments import resolve
from memebot.assets import AssetLoader, ByteSource, Frame
from memebot.compose import DrawingContext, apply_placements, compose_static
from memebot.errors import ArgumentMissingError
from memebot.models import (
    Handler,
    MediaResult,
    MessageContext,
    Placement,
    ResolvedArguments,
    TemplateVariant,
    UserRef,
    image_placements,
)
from memebot.variants import select_variant

logger = logging.getLogger("memebot.engine")

PNG_MIME = "image/png"
GIF_MIME = "image/gif"


@dataclass(frozen=True)
class MediaCommand:
    token: str
    description: str
    variants: Tuple[TemplateVariant, ...]
    min_targets: int = 0
    requires_caption: bool = False
    frames_per_second: float = 10.0
    file_stem: Optional[str] = None

    @property
    def requires_target(self) -> bool:
        return self.min_targets > 0

    @property
    def output_stem(self) -> str:
        return self.file_stem or self.token


@dataclass
class _Assets:
    """Decoded inputs for one invocation, keyed by logical role."""

    background: Optional[Image.Image]
    frames: Sequence[Frame]
    avatars: Dict[str, Image.Image]
    files: Dict[str, Image.Image]


class MediaEngine:
    """Turn a declarative ``MediaCommand`` into an encoded image or GIF."""

    def __init__(
        self,
        files: ByteSource,
        http: Optional[ByteSource] = None,
        *,
        rng: Optional[random.Random] = None,
        font_path: Optional[str] = None,
        avatar_size: int = 256,
    ):
        self.files = files
        self.http = http
        self.rng = rng
        self.font_path = font_path
        self.avatar_size = avatar_size

    def check_arguments(self, command: MediaCommand, args: ResolvedArguments) -> None:
        if len(args.target_users) < command.min_targets:
            raise ArgumentMissingError(
                f"{command.token} needs {command.min_targets} target(s), got {len(args.target_users)}"
            )
        if command.requires_caption and not args.caption_text:
            raise ArgumentMissingError(f"{command.token} needs caption text")

    def choose_variant(self, command: MediaCommand) -> TemplateVariant:
        index = select_variant(len(command.variants), self.rng)
        return command.variants[index]

    @staticmethod
    def _user_for(placement: Placement, args: ResolvedArguments) -> Optional[UserRef]:
        if placement.source == "invoker":
            return args.invoking_user
        if placement.source == "target" and 0 <= placement.index < len(args.target_users):
            return args.target_users[placement.index]
        return None

    async def gather_assets(
        self,
        loader: AssetLoader,
        variant: TemplateVariant,
        args: ResolvedArguments,
    ) -> _Assets:
        """Load the template and every referenced image concurrently."""
        users: Dict[str, UserRef] = {}
        file_paths = []
        for placement in image_placements(variant.layout):
            if placement.source == "asset":
                if placement.asset and placement.asset not in file_paths:
                    file_paths.append(placement.asset)
                continue
            user = self._user_for(placement, args)
            if user is not None:
                users.setdefault(user.id, user)

        if variant.is_animated:
            template = loader.load_animation(variant.asset_path)
        else:
            template = loader.load_image(variant.asset_path)
        user_list = list(users.values())
        tasks = [
            asyncio.ensure_future(template),
            *(asyncio.ensure_future(loader.load_avatar(user, self.avatar_size)) for user in user_list),
            *(asyncio.ensure_future(loader.load_image(path)) for path in file_paths),
        ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            # Siblings of a failed load must not outlive the invocation.
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        loaded_template = results[0]
        avatar_images = results[1 : 1 + len(user_list)]
        file_images = results[1 + len(user_list) :]
        return _Assets(
            background=None if variant.is_animated else loaded_template,
            frames=loaded_template if variant.is_animated else (),
            avatars={user.id: image for user, image in zip(user_list, avatar_images)},
            files=dict(zip(file_paths, file_images)),
        )

    def _image_resolver(self, assets: _Assets, args: ResolvedArguments):
        def resolve_image(placement: Placement) -> Optional[Image.Image]:
            if placement.source == "asset":
                return assets.files.get(placement.asset or "")
            user = self._user_for(placement, args)
            if user is None:
                return None
            return assets.avatars.get(user.id)

        return resolve_image

    @staticmethod
    def _text_resolver(args: ResolvedArguments):
        def resolve_text(placement: Placement) -> str:
            if placement.source == "caption":
                return args.caption_text
            if placement.source == "invoker_name":
                return args.invoking_user.display_name
            if placement.source == "target_name":
                if 0 <= placement.index < len(args.target_users):
                    return args.target_users[placement.index].display_name
                return ""
            return placement.text or ""

        return resolve_text

    async def render(self, command: MediaCommand, args: ResolvedArguments) -> MediaResult:
        self.check_arguments(command, args)
        variant = self.choose_variant(command)
        loader = AssetLoader(self.files, self.http)
        assets = await self.gather_assets(loader, variant, args)
        resolve_image = self._image_resolver(assets, args)
        resolve_text = self._text_resolver(args)

        if variant.is_animated:
            def draw_frame(ctx: DrawingContext, _index: int) -> None:
                apply_placements(ctx, variant.layout, resolve_image, resolve_text, self.font_path)

            buffer = compose_animated(assets.frames, draw_frame, command.frames_per_second)
            logger.info(
                "Rendered %s variant %s (%s frames) for %s",
                command.token,
                variant.variant_id,
                len(assets.frames),
                args.invoking_user.id,
            )
            return MediaResult(buffer, GIF_MIME, f"{command.output_stem}.gif")

        size = (variant.width, variant.height) if variant.width and variant.height else None
        buffer = compose_static(
            assets.background,
            variant.layout,
            resolve_image,
            resolve_text,
            size=size,
            font_path=self.font_path,
        )
        logger.info(
            "Rendered %s variant %s for %s",
            command.token,
            variant.variant_id,
            args.invoking_user.id,
        )
        return MediaResult(buffer, PNG_MIME, f"{command.output_stem}.png")

    def handler_for(self, command: MediaCommand) -> Handler:
        async def handler(context: MessageContext) -> MediaResult:
            args = resolve(
                context.raw_text,
                context.mentioned_users,
                context.invoking_user,
                context.known_users_by_tag,
            )
            return await self.render(command, args)

        handler.__name__ = f"{command.token}_handler"
        return handler


__all__ = ["GIF_MIME", "PNG_MIME", "MediaCommand", "MediaEngine"]
