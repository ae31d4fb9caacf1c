"""Frame-by-frame redraw and re-encoding of animated templates."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from PIL import Image, ImageChops, ImageOps

from memebot.assets import Frame
from memebot.compose import DrawingContext
from memebot.errors import AssetLoadError

logger = logging.getLogger("memebot.animation")

FrameDraw = Callable[[DrawingContext, int], None]

# Palette layout of every encoded frame: quantized colours in 0..253,
# the transparent slot at 254 and a copy of the anchor pixel's colour at 255.
TRANSPARENT_INDEX = 254
DUPLICATE_INDEX = 255
ALPHA_THRESHOLD = 128


@dataclass
class _PalettedFrame:
    image: Image.Image
    anchor: Optional[Tuple[int, int]]
    base_index: int


def frame_duration_ms(frames_per_second: float) -> int:
    if frames_per_second <= 0:
        raise ValueError(f"frames_per_second must be positive, got {frames_per_second}")
    return max(1, int(round(1000 / frames_per_second)))


def redraw_frames(frames: Sequence[Frame], per_frame_draw: FrameDraw) -> List[Image.Image]:
    """Run the callback on a private copy of every frame, in order."""
    if not frames:
        raise AssetLoadError("<animation>", "animation has no frames")
    rendered: List[Image.Image] = []
    for index, frame in enumerate(frames):
        canvas = frame.image.convert("RGBA") if frame.image.mode != "RGBA" else frame.image.copy()
        per_frame_draw(DrawingContext(canvas), index)
        rendered.append(canvas)
    return rendered


def _first_opaque_pixel(opaque: Image.Image) -> Optional[Tuple[int, int]]:
    bbox = opaque.getbbox()
    if bbox is None:
        return None
    left, top, right, _ = bbox
    for x in range(left, right):
        if opaque.getpixel((x, top)):
            return (x, top)
    return None


def _quantize(image: Image.Image) -> _PalettedFrame:
    """Convert one RGBA frame into a 256-entry paletted frame.

    Pixels below the alpha threshold map to the transparent slot.
    """
    rgba = image if image.mode == "RGBA" else image.convert("RGBA")
    opaque = rgba.getchannel("A").point(lambda value: 255 if value >= ALPHA_THRESHOLD else 0)
    paletted = rgba.convert("RGB").quantize(colors=TRANSPARENT_INDEX, dither=Image.Dither.NONE)

    palette = list(paletted.getpalette() or [])[: TRANSPARENT_INDEX * 3]
    palette.extend([0] * (TRANSPARENT_INDEX * 3 - len(palette)))
    palette.extend([0, 0, 0])

    if opaque.getextrema()[0] < 255:
        paletted.paste(TRANSPARENT_INDEX, (0, 0) + paletted.size, ImageOps.invert(opaque))
        paletted.info["transparency"] = TRANSPARENT_INDEX

    anchor = _first_opaque_pixel(opaque)
    base_index = TRANSPARENT_INDEX
    if anchor is not None:
        base_index = paletted.getpixel(anchor)
        palette.extend(palette[base_index * 3 : base_index * 3 + 3])
    else:
        palette.extend([0, 0, 0])
    paletted.putpalette(palette)
    return _PalettedFrame(paletted, anchor, base_index)


def _same_pixels(left: Image.Image, right: Image.Image) -> bool:
    diff = ImageChops.difference(left.convert("RGBA"), right.convert("RGBA"))
    return all(high == 0 for _, high in diff.getextrema())


def _twin(previous: _PalettedFrame) -> _PalettedFrame:
    """Return a frame that looks like ``previous`` but differs in palette indices.

    The GIF writer folds a frame into its predecessor when both carry the
    same palette and the same indices, so the anchor pixel swaps between its
    colour and the duplicate slot holding that colour.
    """
    if previous.anchor is not None:
        image = previous.image.copy()
        current = image.getpixel(previous.anchor)
        image.putpixel(
            previous.anchor,
            previous.base_index if current == DUPLICATE_INDEX else DUPLICATE_INDEX,
        )
        return _PalettedFrame(image, previous.anchor, previous.base_index)

    # Fully transparent: swap which slot is the transparent one.
    current = previous.image.info.get("transparency", TRANSPARENT_INDEX)
    target = DUPLICATE_INDEX if current == TRANSPARENT_INDEX else TRANSPARENT_INDEX
    image = Image.new("P", previous.image.size, target)
    image.putpalette(previous.image.getpalette())
    image.info["transparency"] = target
    return _PalettedFrame(image, None, previous.base_index)


def palettize_frames(images: Sequence[Image.Image]) -> List[Image.Image]:
    """Quantize frames for GIF output, keeping every frame distinct to the encoder."""
    paletted: List[_PalettedFrame] = []
    for image in images:
        current = _quantize(image)
        if paletted and _same_pixels(paletted[-1].image, current.image):
            current = _twin(paletted[-1])
        paletted.append(current)
    return [frame.image for frame in paletted]


def encode_gif(images: Sequence[Image.Image], duration_ms: int, loop: int = 0) -> bytes:
    if not images:
        raise ValueError("encode_gif needs at least one frame")
    buffer = io.BytesIO()
    paletted = palettize_frames(images)
    first, rest = paletted[0], paletted[1:]
    first.save(
        buffer,
        format="GIF",
        save_all=True,
        append_images=rest,
        duration=duration_ms,
        loop=loop,
        disposal=2,
        optimize=False,
    )
    return buffer.getvalue()


def compose_animated(
    frames: Sequence[Frame],
    per_frame_draw: FrameDraw,
    frames_per_second: float,
) -> bytes:
    """Redraw every frame and encode the sequence at a fixed playback rate.

    Source frame timing is discarded. No frame is skipped or merged, and
    transparent source pixels stay transparent.
    """
    duration = frame_duration_ms(frames_per_second)
    rendered = redraw_frames(frames, per_frame_draw)
    logger.debug("Encoding %s frames at %sms per frame", len(rendered), duration)
    return encode_gif(rendered, duration)


__all__ = [
    "FrameDraw",
    "compose_animated",
    "encode_gif",
    "frame_duration_ms",
    "palettize_frames",
    "redraw_frames",
]
