"""Adapters between discord.py objects and the platform-neutral router types."""

from __future__ import annotations

import io
import logging
from typing import Dict, List, Optional

import discord

from memebot.models import EmbedReply, MediaResult, UserRef
from memebot.router import InboundMessage

logger = logging.getLogger("memebot.interactions")


def user_tag(user: discord.abc.User) -> str:
    discriminator = getattr(user, "discriminator", "0") or "0"
    if discriminator == "0":
        return user.name
    return f"{user.name}#{discriminator}"


def user_ref_from_member(user: discord.abc.User) -> UserRef:
    avatar = getattr(user, "display_avatar", None)
    avatar_url = avatar.with_format("png").url if avatar is not None else None
    return UserRef(
        id=str(user.id),
        display_name=user.display_name,
        tag=user_tag(user),
        avatar=avatar_url,
    )


def known_users_for(guild: Optional[discord.Guild]) -> Dict[str, UserRef]:
    if guild is None:
        return {}
    return {user_tag(member): user_ref_from_member(member) for member in guild.members}


def ordered_mentions(message: discord.Message) -> List[UserRef]:
    """Return mentioned users in the order they appear in the message text."""
    by_id = {member.id: member for member in message.mentions}
    ordered: List[UserRef] = []
    seen = set()
    for user_id in message.raw_mentions:
        member = by_id.get(user_id)
        if member is None or user_id in seen:
            continue
        seen.add(user_id)
        ordered.append(user_ref_from_member(member))
    return ordered


class DiscordReplyChannel:
    """Delivers router replies to the channel a message arrived in."""

    def __init__(
        self,
        channel: discord.abc.Messageable,
        reference: Optional[discord.MessageReference] = None,
    ):
        self.channel = channel
        self.reference = reference

    async def _send(self, **kwargs) -> None:
        if self.reference is not None:
            kwargs["reference"] = self.reference
            kwargs["mention_author"] = False
        kwargs["allowed_mentions"] = discord.AllowedMentions.none()
        await self.channel.send(**kwargs)

    async def send_text(self, content: str) -> None:
        await self._send(content=content)

    async def send_media(self, media: MediaResult) -> None:
        await self._send(file=discord.File(io.BytesIO(media.buffer), filename=media.file_name))

    async def send_embed(self, embed: EmbedReply) -> None:
        payload = discord.Embed(
            title=embed.title,
            url=embed.url,
            description=embed.description,
            color=embed.color,
            timestamp=embed.timestamp,
        )
        if embed.image_url:
            payload.set_image(url=embed.image_url)
        await self._send(embed=payload)

    def __repr__(self) -> str:
        return f"<DiscordReplyChannel channel={getattr(self.channel, 'id', None)}>"


def inbound_from_message(message: discord.Message) -> InboundMessage:
    return InboundMessage(
        raw_text=message.content or "",
        mentioned_users=tuple(ordered_mentions(message)),
        author=user_ref_from_member(message.author),
        channel=DiscordReplyChannel(
            message.channel,
            message.to_reference(fail_if_not_exists=False),
        ),
        tag_directory=lambda: known_users_for(message.guild),
    )


__all__ = [
    "DiscordReplyChannel",
    "inbound_from_message",
    "known_users_for",
    "ordered_mentions",
    "user_ref_from_member",
    "user_tag",
]
