import asyncio
import unittest

from memebot.errors import ArgumentMissingError, AssetLoadError
from memebot.models import CommandDefinition, EmbedReply, MediaResult, TextReply, UserRef
from memebot.router import (
    FAILURE_REPLY,
    UNRECOGNIZED_REPLY,
    CommandRouter,
    InboundMessage,
    RouteOutcome,
    build_command_table,
    parse_token,
)

BOT = UserRef("100", "memebot", "memebot")
ALICE = UserRef("1", "Alice", "alice")
EVE = UserRef("5", "Eve", "eve")


class _RecordingChannel:
    def __init__(self):
        self.sent = []

    async def send_text(self, content):
        self.sent.append(("text", content))

    async def send_media(self, media):
        self.sent.append(("media", media))

    async def send_embed(self, embed):
        self.sent.append(("embed", embed))


class _BrokenChannel(_RecordingChannel):
    async def send_text(self, content):
        raise ConnectionError("gateway down")


def _message(text, author=ALICE, channel=None, mentions=()):
    return InboundMessage(
        raw_text=text,
        mentioned_users=tuple(mentions),
        author=author,
        channel=channel or _RecordingChannel(),
    )


class CommandTableTests(unittest.TestCase):
    def test_table_is_read_only_and_lowercased(self) -> None:
        async def handler(_ctx):
            return None

        table = build_command_table([CommandDefinition("Punch", handler)])
        self.assertIn("punch", table)
        with self.assertRaises(TypeError):
            table["slap"] = table["punch"]  # type: ignore[index]

    def test_duplicate_tokens_rejected(self) -> None:
        async def handler(_ctx):
            return None

        with self.assertRaises(ValueError):
            build_command_table([CommandDefinition("hug", handler), CommandDefinition("HUG", handler)])

    def test_parse_token(self) -> None:
        self.assertEqual(parse_token("!PuNcH <@1>", "!"), "punch")
        self.assertEqual(parse_token("!come\thello", "!"), "come")
        self.assertIsNone(parse_token("punch", "!"))
        self.assertIsNone(parse_token("!", "!"))
        self.assertIsNone(parse_token("! punch", "!"))


class CommandRouterTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.calls = []

        async def punch(ctx):
            self.calls.append(ctx)
            return MediaResult(b"png", "image/png", "punch.png")

        async def avatar(_ctx):
            return EmbedReply(title="avatar")

        async def needs_target(_ctx):
            raise ArgumentMissingError("no target")

        async def broken_asset(_ctx):
            raise AssetLoadError("templates/missing.png", "file not found")

        async def crash(_ctx):
            raise ZeroDivisionError("bad layout")

        async def silent(_ctx):
            return None

        table = build_command_table(
            [
                CommandDefinition("punch", punch),
                CommandDefinition("avatar", avatar),
                CommandDefinition("hug", needs_target),
                CommandDefinition("rip", broken_asset),
                CommandDefinition("spin", crash),
                CommandDefinition("quiet", silent),
            ]
        )
        self.router = CommandRouter(table, "!", self_user_id=BOT.id)

    async def test_non_prefixed_messages_are_ignored(self) -> None:
        channel = _RecordingChannel()
        outcome = await self.router.route(_message("punch <@1>", channel=channel))
        self.assertIs(outcome, RouteOutcome.IGNORED)
        self.assertEqual(channel.sent, [])

    async def test_tag_directory_built_only_for_dispatched_commands(self) -> None:
        builds = []

        def directory():
            builds.append(1)
            return {"alice": ALICE}

        def with_directory(text, mentions=()):
            return InboundMessage(
                raw_text=text,
                mentioned_users=tuple(mentions),
                author=EVE,
                channel=_RecordingChannel(),
                tag_directory=directory,
            )

        await self.router.route(with_directory("hello everyone"))
        await self.router.route(with_directory("!nonsense alice"))
        await self.router.route(with_directory("!punch <@1>", mentions=[ALICE]))
        self.assertEqual(builds, [])

        outcome = await self.router.route(with_directory("!punch alice"))
        self.assertIs(outcome, RouteOutcome.DISPATCHED)
        self.assertEqual(builds, [1])
        self.assertEqual(dict(self.calls[-1].known_users_by_tag), {"alice": ALICE})

    async def test_own_messages_are_ignored(self) -> None:
        channel = _RecordingChannel()
        outcome = await self.router.route(_message("!nonsense", author=BOT, channel=channel))
        self.assertIs(outcome, RouteOutcome.IGNORED)
        self.assertEqual(channel.sent, [])

    async def test_handler_invoked_once_case_insensitively(self) -> None:
        channel = _RecordingChannel()
        outcome = await self.router.route(_message("!PUNCH <@1>", channel=channel, mentions=[ALICE]))
        self.assertIs(outcome, RouteOutcome.DISPATCHED)
        self.assertEqual(len(self.calls), 1)
        self.assertEqual(self.calls[0].mentioned_users, (ALICE,))
        self.assertEqual(self.calls[0].invoking_user, ALICE)
        self.assertEqual(channel.sent, [("media", MediaResult(b"png", "image/png", "punch.png"))])

    async def test_embed_reply_is_delivered(self) -> None:
        channel = _RecordingChannel()
        await self.router.route(_message("!avatar", channel=channel))
        self.assertEqual(channel.sent, [("embed", EmbedReply(title="avatar"))])

    async def test_unknown_command_gets_single_text_reply(self) -> None:
        channel = _RecordingChannel()
        outcome = await self.router.route(_message("!dance", channel=channel))
        self.assertIs(outcome, RouteOutcome.UNRECOGNIZED)
        self.assertEqual(channel.sent, [("text", UNRECOGNIZED_REPLY)])
        self.assertEqual(self.calls, [])

    async def test_missing_arguments_are_silent(self) -> None:
        channel = _RecordingChannel()
        outcome = await self.router.route(_message("!hug", channel=channel))
        self.assertIs(outcome, RouteOutcome.NO_OP)
        self.assertEqual(channel.sent, [])

    async def test_none_reply_is_silent(self) -> None:
        channel = _RecordingChannel()
        self.assertIs(await self.router.route(_message("!quiet", channel=channel)), RouteOutcome.NO_OP)
        self.assertEqual(channel.sent, [])

    async def test_asset_failure_becomes_generic_reply(self) -> None:
        channel = _RecordingChannel()
        with self.assertLogs("memebot.router", level="ERROR"):
            outcome = await self.router.route(_message("!rip", channel=channel))
        self.assertIs(outcome, RouteOutcome.FAILED)
        self.assertEqual(channel.sent, [("text", FAILURE_REPLY)])

    async def test_unexpected_failure_becomes_generic_reply(self) -> None:
        channel = _RecordingChannel()
        with self.assertLogs("memebot.router", level="ERROR"):
            outcome = await self.router.route(_message("!spin", channel=channel))
        self.assertIs(outcome, RouteOutcome.FAILED)
        self.assertEqual(channel.sent, [("text", FAILURE_REPLY)])

    async def test_delivery_failure_does_not_propagate(self) -> None:
        with self.assertLogs("memebot.router", level="ERROR"):
            outcome = await self.router.route(_message("!dance", channel=_BrokenChannel()))
        self.assertIs(outcome, RouteOutcome.UNRECOGNIZED)

    async def test_failure_does_not_affect_concurrent_message(self) -> None:
        failing, working = _RecordingChannel(), _RecordingChannel()
        with self.assertLogs("memebot.router", level="ERROR"):
            outcomes = await asyncio.gather(
                self.router.route(_message("!rip", channel=failing)),
                self.router.route(_message("!punch", channel=working)),
            )
        self.assertEqual(outcomes, [RouteOutcome.FAILED, RouteOutcome.DISPATCHED])
        self.assertEqual(working.sent[0][0], "media")
        self.assertEqual(failing.sent, [("text", FAILURE_REPLY)])

    async def test_text_reply_from_handler(self) -> None:
        async def hello(_ctx):
            return TextReply("Hello!")

        router = CommandRouter(build_command_table([CommandDefinition("hello", hello)]), "?")
        channel = _RecordingChannel()
        await router.route(_message("?hello", channel=channel))
        self.assertEqual(channel.sent, [("text", "Hello!")])


if __name__ == "__main__":
    unittest.main()
