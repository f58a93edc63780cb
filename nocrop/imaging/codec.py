"""
Pillow-backed pixel operations.

Geometry comes from nocrop.geometry; this module only decodes, pads,
resizes, pastes and encodes. All functions are synchronous and CPU bound,
so async callers wrap them in asyncio.to_thread.
"""

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from nocrop.geometry import Cell, Ratio, color_to_rgb, compute_cover_fit, compute_padding
from nocrop.utils.errors import CodecError

logger = logging.getLogger(__name__)

ALLOWED_FORMATS = ("jpeg", "png")

JPEG_QUALITY = 92
LAYOUT_JPEG_QUALITY = 95
PNG_COMPRESS_LEVEL = 9


@dataclass(frozen=True)
class ImageInfo:
    width: int
    height: int
    format: str


@dataclass(frozen=True)
class CodecResult:
    data: bytes
    format: str
    width: int
    height: int


def normalize_format(fmt: Optional[str]) -> str:
    """Restrict output to jpeg/png; anything else is re-encoded as jpeg."""
    value = (fmt or "jpeg").strip().lower()
    if value == "jpg":
        value = "jpeg"
    if value not in ALLOWED_FORMATS:
        return "jpeg"
    return value


def extension_for(fmt: str) -> str:
    return "jpg" if fmt == "jpeg" else fmt


def output_filename(name_hint: Optional[str], ratio: Ratio, fmt: str) -> str:
    stem = re.sub(r"\.[^.]+$", "", name_hint) if name_hint else "image"
    return f"{stem or 'image'}_no_crop_{ratio.slug}.{extension_for(fmt)}"


def _open(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise CodecError(f"cannot decode image: {exc}") from exc
    return image


def probe(data: bytes) -> ImageInfo:
    """Oriented dimensions and source format of an encoded image."""
    image = _open(data)
    fmt = (image.format or "").lower()
    oriented = ImageOps.exif_transpose(image)
    return ImageInfo(width=oriented.width, height=oriented.height, format=fmt)


def load_rgb(data: bytes) -> Image.Image:
    """Decode, apply EXIF orientation and flatten to RGB."""
    return ImageOps.exif_transpose(_open(data)).convert("RGB")


def _has_alpha(image: Image.Image) -> bool:
    return image.mode in ("RGBA", "LA", "PA") or (image.mode == "P" and "transparency" in image.info)


def _encode(image: Image.Image, fmt: str, *, quality: int = JPEG_QUALITY) -> bytes:
    buffer = io.BytesIO()
    try:
        if fmt == "png":
            image.save(buffer, format="PNG", compress_level=PNG_COMPRESS_LEVEL)
        else:
            image.save(
                buffer,
                format="JPEG",
                quality=quality,
                subsampling="4:2:0",
                progressive=True,
                optimize=True,
            )
    except (OSError, ValueError) as exc:
        raise CodecError(f"cannot encode {fmt}: {exc}") from exc
    return buffer.getvalue()


def pad_image(
    data: bytes,
    ratio: Optional[Ratio],
    color: str,
    format_hint: Optional[str] = None,
) -> CodecResult:
    """Extend the image with a `color` border so it matches `ratio`."""
    source = _open(data)
    fmt = normalize_format(format_hint or source.format)
    oriented = ImageOps.exif_transpose(source)
    width, height = oriented.size

    if ratio is None or ratio.is_original:
        return CodecResult(data=data, format=fmt, width=width, height=height)

    padding = compute_padding(width, height, ratio)
    fill: Tuple[int, ...] = color_to_rgb(color)
    if fmt == "png" and _has_alpha(oriented):
        oriented = oriented.convert("RGBA")
        fill = fill + (255,)
    else:
        oriented = oriented.convert("RGB")

    padded = ImageOps.expand(
        oriented,
        border=(padding.left, padding.top, padding.right, padding.bottom),
        fill=fill,
    )
    out = _encode(padded, fmt)
    return CodecResult(data=out, format=fmt, width=padding.canvas_w, height=padding.canvas_h)


def fit_to_cell(image: Image.Image, cell: Cell, zoom: float, background: str) -> Image.Image:
    """Cover-resize `image` for `cell` (times zoom) and centre-crop it to the cell."""
    fit = compute_cover_fit(image.width, image.height, cell, zoom)
    try:
        resized = image.resize((fit.target_w, fit.target_h), Image.Resampling.LANCZOS)
    except (OSError, ValueError) as exc:
        raise CodecError(f"cannot resize image: {exc}") from exc
    tile = Image.new("RGB", (cell.width, cell.height), color_to_rgb(background))
    tile.paste(resized, (-fit.offset_x, -fit.offset_y))
    return tile


def compose(
    canvas_w: int,
    canvas_h: int,
    background: str,
    placements: Sequence[Tuple[Image.Image, Cell]],
) -> Image.Image:
    canvas = Image.new("RGB", (canvas_w, canvas_h), color_to_rgb(background))
    for tile, cell in placements:
        canvas.paste(tile, (cell.x, cell.y))
    return canvas


def encode_jpeg(image: Image.Image, quality: int = LAYOUT_JPEG_QUALITY) -> bytes:
    return _encode(image.convert("RGB"), "jpeg", quality=quality)
