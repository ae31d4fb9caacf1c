"""Prefix command routing over a read-only command table."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, Iterable, Mapping, Optional, Protocol, Tuple

from memebot.errors import ArgumentMissingError, AssetLoadError
from memebot.models import (
    CommandDefinition,
    EmbedReply,
    MediaResult,
    MessageContext,
    Reply,
    TextReply,
    UserRef,
)

logger = logging.getLogger("memebot.router")

UNRECOGNIZED_REPLY = "Command not recognized."
FAILURE_REPLY = "An error occurred while processing the command."


class ReplyChannel(Protocol):
    async def send_text(self, content: str) -> None:
        ...

    async def send_media(self, media: MediaResult) -> None:
        ...

    async def send_embed(self, embed: EmbedReply) -> None:
        ...


@dataclass(frozen=True)
class InboundMessage:
    raw_text: str
    mentioned_users: Tuple[UserRef, ...]
    author: UserRef
    channel: ReplyChannel
    known_users_by_tag: Mapping[str, UserRef] = field(default_factory=dict)
    tag_directory: Optional[Callable[[], Mapping[str, UserRef]]] = None

    def directory(self) -> Mapping[str, UserRef]:
        """Return the tag directory, building it only when a provider is set."""
        if self.tag_directory is None or self.mentioned_users:
            return self.known_users_by_tag
        return self.tag_directory()


class RouteOutcome(enum.Enum):
    IGNORED = "ignored"
    UNRECOGNIZED = "unrecognized"
    DISPATCHED = "dispatched"
    NO_OP = "no_op"
    FAILED = "failed"


def build_command_table(definitions: Iterable[CommandDefinition]) -> Mapping[str, CommandDefinition]:
    """Return a read-only token -> definition mapping; tokens are case-insensitive."""
    table: Dict[str, CommandDefinition] = {}
    for definition in definitions:
        token = definition.token.strip().lower()
        if not token or any(ch.isspace() for ch in token):
            raise ValueError(f"Invalid command token {definition.token!r}")
        if token in table:
            raise ValueError(f"Duplicate command token {token!r}")
        table[token] = definition
    return MappingProxyType(table)


def parse_token(raw_text: str, prefix: str) -> Optional[str]:
    """Return the lowercased command token, or None when the text is not a command."""
    if not prefix or not raw_text.startswith(prefix):
        return None
    body = raw_text[len(prefix):]
    if not body or body[0].isspace():
        return None
    return body.split(None, 1)[0].lower()


async def deliver(channel: ReplyChannel, reply: Reply) -> None:
    if isinstance(reply, MediaResult):
        await channel.send_media(reply)
    elif isinstance(reply, EmbedReply):
        await channel.send_embed(reply)
    elif isinstance(reply, TextReply):
        await channel.send_text(reply.content)
    else:
        raise TypeError(f"Unsupported reply type {type(reply).__name__}")


class CommandRouter:
    """Dispatch prefixed messages to handlers.

    The table is never mutated after construction, so concurrent ``route``
    calls share no mutable state.
    """

    def __init__(
        self,
        table: Mapping[str, CommandDefinition],
        prefix: str,
        self_user_id: Optional[str] = None,
    ):
        self.table = table
        self.prefix = prefix
        self.self_user_id = self_user_id

    async def _safe_reply(self, channel: ReplyChannel, reply: Reply) -> None:
        try:
            await deliver(channel, reply)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Failed to deliver %s reply", type(reply).__name__)

    async def route(self, message: InboundMessage) -> RouteOutcome:
        if self.self_user_id is not None and message.author.id == self.self_user_id:
            return RouteOutcome.IGNORED
        token = parse_token(message.raw_text, self.prefix)
        if token is None:
            return RouteOutcome.IGNORED

        definition = self.table.get(token)
        if definition is None:
            logger.debug("Unrecognized command %r from %s", token, message.author.id)
            await self._safe_reply(message.channel, TextReply(UNRECOGNIZED_REPLY))
            return RouteOutcome.UNRECOGNIZED

        context = MessageContext(
            raw_text=message.raw_text,
            mentioned_users=tuple(message.mentioned_users),
            invoking_user=message.author,
            known_users_by_tag=message.directory(),
        )
        logger.debug("Dispatching %s for %s", token, message.author.id)
        try:
            reply = await definition.handler(context)
        except ArgumentMissingError as exc:
            logger.debug("Command %s skipped: %s", token, exc)
            return RouteOutcome.NO_OP
        except AssetLoadError as exc:
            logger.error("Command %s failed to load assets: %s", token, exc)
            await self._safe_reply(message.channel, TextReply(FAILURE_REPLY))
            return RouteOutcome.FAILED
        except Exception:  # pylint: disable=broad-except
            logger.exception("Command %s failed for %s", token, message.author.id)
            await self._safe_reply(message.channel, TextReply(FAILURE_REPLY))
            return RouteOutcome.FAILED

        if reply is None:
            return RouteOutcome.NO_OP
        await self._safe_reply(message.channel, reply)
        return RouteOutcome.DISPATCHED


__all__ = [
    "FAILURE_REPLY",
    "UNRECOGNIZED_REPLY",
    "CommandRouter",
    "InboundMessage",
    "ReplyChannel",
    "RouteOutcome",
    "build_command_table",
    "deliver",
    "parse_token",
]
