"""Resolve command targets and caption text from a raw message."""

from __future__ import annotations

import re
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from memebot.models import ResolvedArguments, UserRef
from memebot.utils import normalize_whitespace

MENTION_TOKEN_RE = re.compile(r"<(@!?|@&|#)(\d+)>")


def strip_mentions(text: str) -> str:
    return MENTION_TOKEN_RE.sub(" ", text or "")


def _drop_command_token(text: str) -> str:
    parts = (text or "").strip().split(None, 1)
    if len(parts) < 2:
        return ""
    return parts[1]


def extract_caption(raw_text: str) -> str:
    """Return the message body without command token or mention syntax."""
    return normalize_whitespace(strip_mentions(_drop_command_token(raw_text)))


def _unique_in_order(users: Sequence[UserRef]) -> Tuple[UserRef, ...]:
    seen: Dict[str, UserRef] = {}
    for user in users:
        if user.id not in seen:
            seen[user.id] = user
    return tuple(seen.values())


def _lookup_tag(
    caption: str,
    invoking_user: UserRef,
    known_users_by_tag: Mapping[str, UserRef],
) -> Optional[UserRef]:
    if not caption or not known_users_by_tag:
        return None
    for token in caption.split(" "):
        user = known_users_by_tag.get(token)
        if user is not None and user.id != invoking_user.id:
            return user
    return None


def resolve(
    raw_text: str,
    mentioned_users: Sequence[UserRef],
    invoking_user: UserRef,
    known_users_by_tag: Optional[Mapping[str, UserRef]] = None,
) -> ResolvedArguments:
    """Derive targets and caption for one invocation.

    Explicit mentions win, in mention order. Without mentions, the first caption
    token that exactly matches a known tag becomes the single target. The
    invoking user only becomes a target by being mentioned.
    """
    caption = extract_caption(raw_text)
    targets: List[UserRef] = list(_unique_in_order(mentioned_users))
    if not targets:
        tagged = _lookup_tag(caption, invoking_user, known_users_by_tag or {})
        if tagged is not None:
            targets.append(tagged)
    return ResolvedArguments(
        target_users=tuple(targets),
        caption_text=caption,
        invoking_user=invoking_user,
    )


__all__ = ["MENTION_TOKEN_RE", "extract_caption", "resolve", "strip_mentions"]
