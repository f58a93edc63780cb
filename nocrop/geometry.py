"""
Image geometry: no-crop padding and grid layouts.

Pure functions over integer pixel dimensions. Nothing here touches pixels,
files or the network; the codec consumes these results.

Padding:
    compute_padding(W, H, ratio) -> Padding

Grid layout:
    compute_cells(layout_type, canvas_w, canvas_h) -> [Cell]
    compute_canvas(requested_w, requested_h, image_dims) -> CanvasPlan
    compute_cover_fit(image_w, image_h, cell, zoom) -> CoverFit
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple, Union

from nocrop.utils.errors import ValidationError

ORIGINAL = "original"

MIN_ZOOM = 0.5
MAX_ZOOM = 3.0


@dataclass(frozen=True)
class Ratio:
    key: str
    w: int
    h: int

    @property
    def is_original(self) -> bool:
        return self.key == ORIGINAL or self.w <= 0 or self.h <= 0

    @property
    def value(self) -> float:
        if self.is_original:
            raise ValidationError("original ratio has no numeric value")
        return self.w / self.h

    @property
    def slug(self) -> str:
        """Filename-safe form, e.g. 4x5."""
        return self.key.replace(":", "x")


PRESETS: Dict[str, Ratio] = {
    ORIGINAL: Ratio(ORIGINAL, 0, 0),
    "1:1": Ratio("1:1", 1, 1),
    "4:5": Ratio("4:5", 4, 5),
    "5:4": Ratio("5:4", 5, 4),
    "16:9": Ratio("16:9", 16, 9),
    "9:16": Ratio("9:16", 9, 16),
    "3:2": Ratio("3:2", 3, 2),
    "2:3": Ratio("2:3", 2, 3),
}

_RATIO_RE = re.compile(r"^(\d+)\s*[:x]\s*(\d+)$", re.IGNORECASE)
_HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}){1,2}$")
_NAMED_COLORS = {"black": "#000000", "white": "#ffffff"}


def parse_ratio(value: object) -> Optional[Ratio]:
    """Parse a preset name or a "w:h" / "wxh" pair. Returns None if malformed."""
    key = str(value if value is not None else "").strip().lower()
    if key in PRESETS:
        return PRESETS[key]
    match = _RATIO_RE.match(key)
    if not match:
        return None
    w, h = int(match.group(1)), int(match.group(2))
    if not w or not h:
        return None
    return Ratio(f"{w}:{h}", w, h)


def require_ratio(value: object) -> Ratio:
    ratio = parse_ratio(value)
    if ratio is None:
        raise ValidationError(
            f"invalid ratio: {value!r}",
            user_message='Invalid ratio format. Use format like "4:5" or "original".',
        )
    return ratio


def parse_color(value: object) -> Optional[str]:
    """Validate a #rgb / #rrggbb colour or the names black/white."""
    text = str(value if value is not None else "").strip()
    if _HEX_COLOR_RE.match(text):
        return text
    return _NAMED_COLORS.get(text.lower())


def require_color(value: object) -> str:
    color = parse_color(value)
    if color is None:
        raise ValidationError(
            f"invalid colour: {value!r}",
            user_message='Invalid color format. Use hex color like "#000000" or "black"/"white".',
        )
    return color


def color_to_rgb(color: str) -> Tuple[int, int, int]:
    hex_part = require_color(color).lstrip("#")
    if len(hex_part) == 3:
        hex_part = "".join(ch * 2 for ch in hex_part)
    return int(hex_part[0:2], 16), int(hex_part[2:4], 16), int(hex_part[4:6], 16)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def _require_positive(**dims: float) -> None:
    for name, value in dims.items():
        if value is None or value <= 0:
            raise ValidationError(f"{name} must be positive, got {value!r}")


# ==================== PADDING ====================


@dataclass(frozen=True)
class Padding:
    canvas_w: int
    canvas_h: int
    top: int
    bottom: int
    left: int
    right: int

    @property
    def is_identity(self) -> bool:
        return not (self.top or self.bottom or self.left or self.right)


def compute_padding(width: int, height: int, ratio: Optional[Ratio]) -> Padding:
    """
    Border needed to bring a width x height image to `ratio` without scaling
    or cropping.

    The canvas always contains the source region and matches the ratio within
    one pixel of integer rounding. "original" (or a malformed ratio) is the
    identity transform, and so is an image whose height is already the
    rounded-up height for its width, which makes padding idempotent.
    """
    _require_positive(width=width, height=height)
    if ratio is None or ratio.is_original:
        return Padding(width, height, 0, 0, 0, 0)

    # integer form of r = w / h keeps ceil() exact
    w, h = ratio.w, ratio.h
    excess = w * height - width * h
    if 0 <= excess < w:
        return Padding(width, height, 0, 0, 0, 0)

    canvas_w = max(width, _ceil_div(w * height, h))
    canvas_h = _ceil_div(canvas_w * h, w)
    if canvas_h < height:
        canvas_h = height
        canvas_w = _ceil_div(w * canvas_h, h)

    left = (canvas_w - width) // 2
    right = canvas_w - width - left
    top = (canvas_h - height) // 2
    bottom = canvas_h - height - top
    return Padding(canvas_w, canvas_h, top, bottom, left, right)


# ==================== GRID LAYOUT ====================


class LayoutType(str, Enum):
    TWO_HORIZONTAL = "2-horizontal"
    TWO_VERTICAL = "2-vertical"
    THREE_ROW = "3-row"
    THREE_COLUMN = "3-column"
    THREE_LEFT = "3-left"
    THREE_RIGHT = "3-right"

    @property
    def cell_count(self) -> int:
        return 2 if self.value.startswith("2-") else 3


def parse_layout_type(value: Union[str, LayoutType]) -> LayoutType:
    try:
        return LayoutType(value)
    except ValueError:
        valid = ", ".join(item.value for item in LayoutType)
        raise ValidationError(
            f"unknown layout type: {value!r}",
            user_message=f"layoutType must be one of: {valid}",
        ) from None


@dataclass(frozen=True)
class Cell:
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class CanvasPlan:
    canvas_w: int
    canvas_h: int
    scale_factor: float


@dataclass(frozen=True)
class CoverFit:
    """Resized image size and the offset of the cell window inside it.

    Offsets are negative when a zoom below 1.0 leaves the image smaller than
    the cell; the image is then centred inside the cell.
    """

    target_w: int
    target_h: int
    offset_x: int
    offset_y: int


def compute_cells(layout_type: Union[str, LayoutType], canvas_w: float, canvas_h: float) -> List[Cell]:
    """Cell rectangles for one of the six fixed topologies, in paste order."""
    layout = parse_layout_type(layout_type)
    _require_positive(canvas_w=canvas_w, canvas_h=canvas_h)
    w = _round_half_up(canvas_w)
    h = _round_half_up(canvas_h)
    half_w, half_h = _round_half_up(w / 2), _round_half_up(h / 2)
    third_w, third_h = _round_half_up(w / 3), _round_half_up(h / 3)
    two_thirds_w, two_thirds_h = _round_half_up(2 * w / 3), _round_half_up(2 * h / 3)

    if layout is LayoutType.TWO_HORIZONTAL:
        return [Cell(0, 0, half_w, h), Cell(half_w, 0, half_w, h)]
    if layout is LayoutType.TWO_VERTICAL:
        return [Cell(0, 0, w, half_h), Cell(0, half_h, w, half_h)]
    if layout is LayoutType.THREE_ROW:
        return [
            Cell(0, 0, third_w, h),
            Cell(third_w, 0, third_w, h),
            Cell(two_thirds_w, 0, third_w, h),
        ]
    if layout is LayoutType.THREE_COLUMN:
        return [
            Cell(0, 0, w, third_h),
            Cell(0, third_h, w, third_h),
            Cell(0, two_thirds_h, w, third_h),
        ]
    if layout is LayoutType.THREE_LEFT:
        return [
            Cell(0, 0, half_w, h),
            Cell(half_w, 0, half_w, half_h),
            Cell(half_w, half_h, half_w, half_h),
        ]
    # THREE_RIGHT
    return [
        Cell(0, 0, half_w, half_h),
        Cell(0, half_h, half_w, half_h),
        Cell(half_w, 0, half_w, h),
    ]


def compute_canvas(
    requested_w: float,
    requested_h: float,
    image_dims: Sequence[Tuple[int, int]],
) -> CanvasPlan:
    """
    Scale the requested canvas so the largest source is never upsampled.

    scale_factor = max(max_w / requested_w, max_h / requested_h); the canvas
    is the requested size times that factor, rounded.
    """
    _require_positive(requested_w=requested_w, requested_h=requested_h)
    if not image_dims:
        raise ValidationError("at least one image is required to size the canvas")
    for width, height in image_dims:
        _require_positive(image_width=width, image_height=height)

    max_w = max(width for width, _ in image_dims)
    max_h = max(height for _, height in image_dims)
    scale_factor = max(max_w / requested_w, max_h / requested_h)
    return CanvasPlan(
        canvas_w=_round_half_up(requested_w * scale_factor),
        canvas_h=_round_half_up(requested_h * scale_factor),
        scale_factor=scale_factor,
    )


def validate_zoom(zoom: Optional[float]) -> float:
    if zoom is None:
        return 1.0
    try:
        value = float(zoom)
    except (TypeError, ValueError):
        raise ValidationError(f"zoom must be a number, got {zoom!r}") from None
    if not MIN_ZOOM <= value <= MAX_ZOOM:
        raise ValidationError(
            f"zoom out of range: {value}",
            user_message=f"zoom must be between {MIN_ZOOM} and {MAX_ZOOM}",
        )
    return value


def compute_cover_fit(image_w: int, image_h: int, cell: Cell, zoom: Optional[float] = 1.0) -> CoverFit:
    """Resize that covers the cell (times zoom) plus the centred crop window."""
    _require_positive(image_w=image_w, image_h=image_h, cell_w=cell.width, cell_h=cell.height)
    zoom_value = validate_zoom(zoom)
    cell_ratio = cell.width / cell.height
    image_ratio = image_w / image_h

    if image_ratio > cell_ratio:
        # wider than the cell: match height
        target_h = max(1, _round_half_up(cell.height * zoom_value))
        target_w = max(1, _round_half_up(target_h * image_ratio))
    else:
        target_w = max(1, _round_half_up(cell.width * zoom_value))
        target_h = max(1, _round_half_up(target_w / image_ratio))

    return CoverFit(
        target_w=target_w,
        target_h=target_h,
        offset_x=_round_half_up((target_w - cell.width) / 2),
        offset_y=_round_half_up((target_h - cell.height) / 2),
    )
