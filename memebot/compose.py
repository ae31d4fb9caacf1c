"""Canvas compositing for templated images."""

from __future__ import annotations

import io
import logging
import math
from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from PIL import Image, ImageChops, ImageDraw, ImageFont

from memebot.models import Placement
from memebot.utils import parse_color

logger = logging.getLogger("memebot.compose")

Affine = Tuple[float, float, float, float, float, float]
ImageResolver = Callable[[Placement], Optional[Image.Image]]
TextResolver = Callable[[Placement], str]

IDENTITY: Affine = (1.0, 0.0, 0.0, 0.0, 1.0, 0.0)
DEFAULT_FILL = (255, 255, 255, 255)


@lru_cache(maxsize=32)
def load_font(path: Optional[str], size: int):
    if path:
        candidate = Path(path).expanduser()
        if candidate.exists():
            try:
                return ImageFont.truetype(str(candidate), size=size)
            except OSError as exc:
                logger.warning("Failed to load font %s: %s", candidate, exc)
        else:
            logger.debug("Font candidate missing -> %s", candidate)
    return ImageFont.load_default(size=size)


class DrawingContext:
    """Drawing surface with an explicit transform and clip state.

    Every change made inside ``checkpoint()`` is undone when the block exits,
    so placements never inherit rotation or clipping from their neighbours.
    """

    def __init__(self, canvas: Image.Image):
        self.canvas = canvas
        self._matrix: Affine = IDENTITY
        self._clip: Optional[Image.Image] = None
        self._saved: List[Tuple[Affine, Optional[Image.Image]]] = []

    @property
    def size(self) -> Tuple[int, int]:
        return self.canvas.size

    @property
    def width(self) -> int:
        return self.canvas.width

    @property
    def height(self) -> int:
        return self.canvas.height

    @property
    def matrix(self) -> Affine:
        return self._matrix

    @property
    def clip_mask(self) -> Optional[Image.Image]:
        return self._clip

    @contextmanager
    def checkpoint(self) -> Iterator["DrawingContext"]:
        self._saved.append((self._matrix, self._clip))
        try:
            yield self
        finally:
            self._matrix, self._clip = self._saved.pop()

    def translate(self, dx: float, dy: float) -> None:
        a, b, c, d, e, f = self._matrix
        self._matrix = (a, b, c + a * dx + b * dy, d, e, f + d * dx + e * dy)

    def rotate(self, radians: float) -> None:
        """Rotate clockwise (screen coordinates) around the current origin."""
        if not radians:
            return
        cos, sin = math.cos(radians), math.sin(radians)
        a, b, c, d, e, f = self._matrix
        self._matrix = (
            a * cos + b * sin,
            -a * sin + b * cos,
            c,
            d * cos + e * sin,
            -d * sin + e * cos,
            f,
        )

    def to_device(self, x: float, y: float) -> Tuple[float, float]:
        a, b, c, d, e, f = self._matrix
        return a * x + b * y + c, d * x + e * y + f

    def clip_circle(self, cx: float, cy: float, r: float) -> None:
        """Intersect the drawable region with a circle in current coordinates."""
        dx, dy = self.to_device(cx, cy)
        mask = Image.new("L", self.size, 0)
        ImageDraw.Draw(mask).ellipse((dx - r, dy - r, dx + r, dy + r), fill=255)
        if self._clip is not None:
            mask = ImageChops.multiply(self._clip, mask)
        self._clip = mask

    def _is_translation(self) -> bool:
        a, b, _, d, e, _ = self._matrix
        return a == 1.0 and b == 0.0 and d == 0.0 and e == 1.0

    def _layer_for(self, image: Image.Image, x: float, y: float) -> Image.Image:
        if self._is_translation():
            left, top = self.to_device(x, y)
            layer = Image.new("RGBA", self.size, (0, 0, 0, 0))
            layer.paste(image, (int(round(left)), int(round(top))))
            return layer
        a, b, c, d, e, f = self._matrix
        det = a * e - b * d
        ia, ib, id_, ie = e / det, -b / det, -d / det, a / det
        ic = -(ia * c + ib * f)
        if_ = -(id_ * c + ie * f)
        return image.transform(
            self.size,
            Image.AFFINE,
            (ia, ib, ic - x, id_, ie, if_ - y),
            resample=Image.BICUBIC,
        )

    def draw_image(
        self,
        image: Image.Image,
        x: float,
        y: float,
        width: Optional[float] = None,
        height: Optional[float] = None,
    ) -> None:
        source = image if image.mode == "RGBA" else image.convert("RGBA")
        target = (
            max(1, int(round(width if width is not None else source.width))),
            max(1, int(round(height if height is not None else source.height))),
        )
        if target != source.size:
            source = source.resize(target, Image.LANCZOS)
        layer = self._layer_for(source, x, y)
        if self._clip is not None:
            alpha = ImageChops.multiply(layer.getchannel("A"), self._clip)
            layer.putalpha(alpha)
        self.canvas.alpha_composite(layer)

    def measure_text(self, text: str, font) -> float:
        return ImageDraw.Draw(self.canvas).textlength(text, font=font)

    def draw_text(
        self,
        text: str,
        x: float,
        y: float,
        font,
        fill: Optional[Tuple[int, int, int, int]] = None,
        stroke: Optional[Tuple[int, int, int, int]] = None,
        stroke_width: int = 0,
    ) -> None:
        """Draw text with its top-left at ``(x, y)``; stroke first, then fill."""
        if not text:
            return
        stroke_width = stroke_width if stroke is not None else 0
        left, top, right, bottom = font.getbbox(text, stroke_width=stroke_width)
        block = Image.new("RGBA", (max(1, right - left), max(1, bottom - top)), (0, 0, 0, 0))
        draw = ImageDraw.Draw(block)
        position = (-left, -top)
        if stroke is not None:
            draw.text(position, text, font=font, fill=stroke, stroke_width=stroke_width, stroke_fill=stroke)
        if fill is not None or stroke is None:
            draw.text(position, text, font=font, fill=fill or DEFAULT_FILL)
        self.draw_image(block, x + left, y + top)


def _draw_text_placement(
    ctx: DrawingContext,
    placement: Placement,
    text: str,
    font_path: Optional[str],
) -> None:
    font = load_font(placement.font or font_path, placement.font_size)
    x = placement.x
    if placement.align == "center":
        x = (ctx.width - ctx.measure_text(text, font)) / 2 + placement.x
    ctx.draw_text(
        text,
        x,
        placement.y,
        font,
        fill=parse_color(placement.fill_color),
        stroke=parse_color(placement.stroke_color),
        stroke_width=placement.stroke_width,
    )


def apply_placements(
    ctx: DrawingContext,
    placements: Sequence[Placement],
    resolve_image: ImageResolver,
    resolve_text: TextResolver,
    font_path: Optional[str] = None,
) -> None:
    """Draw each placement in order, each inside its own graphics checkpoint."""
    for placement in placements:
        with ctx.checkpoint():
            if placement.origin is not None:
                ctx.translate(*placement.origin)
            if placement.rotation:
                ctx.rotate(placement.rotation)
            if placement.clip is not None:
                ctx.clip_circle(placement.clip.cx, placement.clip.cy, placement.clip.r)
            if placement.is_image:
                image = resolve_image(placement)
                if image is None:
                    logger.debug("No image resolved for placement %s", placement)
                    continue
                ctx.draw_image(image, placement.x, placement.y, placement.width, placement.height)
            elif placement.is_text:
                _draw_text_placement(ctx, placement, resolve_text(placement), font_path)
            else:
                raise ValueError(f"Unknown placement kind '{placement.kind}'")


def new_canvas(background: Image.Image, size: Optional[Tuple[int, int]] = None) -> Image.Image:
    """Allocate a canvas and draw the background scaled to fill it."""
    size = size or background.size
    canvas = Image.new("RGBA", size, (0, 0, 0, 0))
    fitted = background.convert("RGBA")
    if fitted.size != size:
        fitted = fitted.resize(size, Image.LANCZOS)
    canvas.alpha_composite(fitted)
    return canvas


def encode_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def compose_static(
    background: Image.Image,
    placements: Sequence[Placement],
    resolve_image: ImageResolver,
    resolve_text: TextResolver,
    *,
    size: Optional[Tuple[int, int]] = None,
    font_path: Optional[str] = None,
) -> bytes:
    canvas = new_canvas(background, size)
    apply_placements(DrawingContext(canvas), placements, resolve_image, resolve_text, font_path)
    return encode_png(canvas)


__all__ = [
    "DrawingContext",
    "apply_placements",
    "compose_static",
    "encode_png",
    "load_font",
    "new_canvas",
]
