import asyncio
import io
import random
import unittest

from PIL import Image

from memebot.assets import decode_frames
from memebot.engine import GIF_MIME, PNG_MIME, MediaCommand, MediaEngine
from memebot.errors import ArgumentMissingError, AssetLoadError
from memebot.models import ClipCircle, MessageContext, Placement, ResolvedArguments, TemplateVariant, UserRef

ALICE = UserRef("1", "Alice", "alice", "https://cdn.example/alice.png")
BOB = UserRef("2", "Bob", "bob", "https://cdn.example/bob.png")
GHOST = UserRef("3", "Ghost", "ghost")
INVOKER = UserRef("9", "Invoker", "invoker", "https://cdn.example/invoker.png")


def _png(color, size) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGBA", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def _gif(colors, size=(40, 30)) -> bytes:
    frames = [Image.new("RGB", size, color) for color in colors]
    buffer = io.BytesIO()
    frames[0].save(buffer, format="GIF", save_all=True, append_images=frames[1:], duration=50, loop=0)
    return buffer.getvalue()


class _MemorySource:
    def __init__(self, payloads):
        self.payloads = payloads
        self.reads = []

    async def read(self, location):
        self.reads.append(location)
        try:
            return self.payloads[location]
        except KeyError:
            raise AssetLoadError(location, "missing") from None


class _FailingSource:
    async def read(self, location):
        await asyncio.sleep(0)
        raise AssetLoadError(location, "unreachable")


class _StalledSource:
    def __init__(self):
        self.started = False
        self.cancelled = False

    async def read(self, location):
        self.started = True
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return b""


def _args(targets=(), caption="", invoker=INVOKER):
    return ResolvedArguments(tuple(targets), caption, invoker)


PUNCH = MediaCommand(
    token="punch",
    description="",
    min_targets=1,
    variants=(
        TemplateVariant(
            0,
            "static",
            "punch.png",
            (
                Placement(kind="image", source="invoker", x=0, y=0, width=20, height=20),
                Placement(kind="image", source="target", x=60, y=0, width=20, height=20, clip=ClipCircle(70, 10, 10)),
            ),
        ),
    ),
)

COME = MediaCommand(
    token="come",
    description="",
    requires_caption=True,
    frames_per_second=20,
    variants=(
        TemplateVariant(0, "static", "come.png", (Placement(kind="text", source="caption", y=2, font_size=12),), 120, 90),
        TemplateVariant(1, "animated", "come.gif", (Placement(kind="text", source="caption", y=2, font_size=12),)),
    ),
)


class MediaEngineTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.files = _MemorySource(
            {
                "punch.png": _png((0, 0, 0, 255), (80, 40)),
                "come.png": _png((0, 0, 0, 255), (60, 45)),
                "come.gif": _gif([(255, 0, 0), (0, 255, 0), (0, 0, 255)]),
            }
        )
        self.http = _MemorySource(
            {
                ALICE.avatar_url(64): _png((255, 0, 0, 255), (64, 64)),
                BOB.avatar_url(64): _png((0, 0, 255, 255), (64, 64)),
                INVOKER.avatar_url(64): _png((0, 255, 0, 255), (64, 64)),
            }
        )
        self.engine = MediaEngine(self.files, self.http, rng=random.Random(3), avatar_size=64)

    async def test_static_render_places_invoker_and_target(self) -> None:
        result = await self.engine.render(PUNCH, _args([ALICE]))
        self.assertEqual(result.mime_type, PNG_MIME)
        self.assertEqual(result.file_name, "punch.png")
        with Image.open(io.BytesIO(result.buffer)) as image:
            image = image.convert("RGBA")
            self.assertEqual(image.size, (80, 40))
            self.assertEqual(image.getpixel((10, 10)), (0, 255, 0, 255))
            self.assertEqual(image.getpixel((70, 10)), (255, 0, 0, 255))
            self.assertEqual(image.getpixel((61, 1)), (0, 0, 0, 255))
            self.assertEqual(image.getpixel((40, 30)), (0, 0, 0, 255))

    async def test_missing_target_raises_argument_missing(self) -> None:
        with self.assertRaises(ArgumentMissingError):
            await self.engine.render(PUNCH, _args())
        self.assertEqual(self.files.reads, [])

    async def test_missing_caption_raises_argument_missing(self) -> None:
        with self.assertRaises(ArgumentMissingError):
            await self.engine.render(COME, _args(caption=""))

    async def test_user_without_avatar_gets_placeholder(self) -> None:
        result = await self.engine.render(PUNCH, _args([GHOST]))
        with Image.open(io.BytesIO(result.buffer)) as image:
            self.assertEqual(image.convert("RGBA").getpixel((70, 10)), (0, 0, 0, 255))

    async def test_missing_template_is_asset_error(self) -> None:
        engine = MediaEngine(_MemorySource({}), self.http, avatar_size=64)
        with self.assertRaises(AssetLoadError):
            await engine.render(PUNCH, _args([ALICE]))

    async def test_failed_load_cancels_pending_siblings(self) -> None:
        stalled = _StalledSource()
        engine = MediaEngine(_FailingSource(), stalled, avatar_size=64)
        with self.assertRaises(AssetLoadError):
            await engine.render(PUNCH, _args([ALICE]))
        self.assertTrue(stalled.started)
        self.assertTrue(stalled.cancelled)

    async def test_both_variants_render(self) -> None:
        kinds = set()
        for seed in range(20):
            engine = MediaEngine(self.files, self.http, rng=random.Random(seed), avatar_size=64)
            result = await engine.render(COME, _args(caption="hello there"))
            kinds.add(result.mime_type)
            if result.mime_type == GIF_MIME:
                self.assertEqual(result.file_name, "come.gif")
                frames = decode_frames(result.buffer)
                self.assertEqual(len(frames), 3)
                self.assertEqual(frames[0].duration_ms, 50)
                self.assertEqual(frames[0].image.size, (40, 30))
            else:
                with Image.open(io.BytesIO(result.buffer)) as image:
                    self.assertEqual(image.size, (120, 90))
        self.assertEqual(kinds, {PNG_MIME, GIF_MIME})

    async def test_handler_resolves_arguments_from_context(self) -> None:
        handler = self.engine.handler_for(PUNCH)
        context = MessageContext(
            raw_text="!punch bob",
            mentioned_users=(),
            invoking_user=INVOKER,
            known_users_by_tag={"bob": BOB},
        )
        result = await handler(context)
        with Image.open(io.BytesIO(result.buffer)) as image:
            self.assertEqual(image.convert("RGBA").getpixel((70, 10)), (0, 0, 255, 255))

    async def test_same_user_avatar_fetched_once(self) -> None:
        command = MediaCommand(
            token="twice",
            description="",
            min_targets=1,
            variants=(
                TemplateVariant(
                    0,
                    "static",
                    "punch.png",
                    (
                        Placement(kind="image", source="target", x=0, y=0, width=10, height=10),
                        Placement(kind="image", source="target", x=30, y=0, width=10, height=10),
                    ),
                ),
            ),
        )
        await self.engine.render(command, _args([ALICE]))
        self.assertEqual(self.http.reads, [ALICE.avatar_url(64)])


if __name__ == "__main__":
    unittest.main()
