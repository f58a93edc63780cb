"""
Batch grid-layout job.

A LayoutJob turns 2-3 previously uploaded images into one composited JPEG:

    LOADING -> SCALING -> COMPOSITING -> ENCODING -> DONE
                        (any failure)            -> FAILED

Every input is read and decoded before any pixel work starts, so a missing
or broken image aborts the whole job with no partial output. Nothing is
written anywhere; the caller decides what to do with the encoded bytes.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from nocrop.geometry import (
    LayoutType,
    compute_canvas,
    compute_cells,
    parse_layout_type,
    require_color,
    validate_zoom,
)
from nocrop.imaging import codec
from nocrop.utils.errors import NotFoundError, ValidationError
from nocrop.utils.trace import new_trace_id

logger = logging.getLogger(__name__)

DEFAULT_BACKGROUND = "#FFFFFF"

_UPLOAD_ID_RE = re.compile(r"^[a-f0-9]{32}$")
_SAFE_FILENAME_RE = re.compile(r"^[a-zA-Z0-9_\-\.\s]+$")


class LayoutState(str, Enum):
    PENDING = "pending"
    LOADING = "loading"
    SCALING = "scaling"
    COMPOSITING = "compositing"
    ENCODING = "encoding"
    DONE = "done"
    FAILED = "failed"


def validate_upload_ref(upload_id: object, filename: object) -> Tuple[str, str]:
    """Reject upload ids that are not 32 hex chars and unsafe filenames."""
    if not upload_id or not filename:
        raise ValidationError("each image must have uploadId and filename")
    upload_id, filename = str(upload_id), str(filename)
    if not _UPLOAD_ID_RE.match(upload_id):
        logger.warning("[LAYOUT] invalid_upload_id upload_id=%s", upload_id)
        raise ValidationError(f"Invalid uploadId: {upload_id}", user_message="Invalid uploadId format")
    if ".." in filename or "/" in filename or "\\" in filename:
        logger.warning("[LAYOUT] path_traversal_filename filename=%s", filename)
        raise ValidationError(f"Invalid filename: {filename}", user_message="Invalid filename")
    if not _SAFE_FILENAME_RE.match(filename):
        logger.warning("[LAYOUT] unsafe_filename filename=%s", filename)
        raise ValidationError(f"Invalid filename format: {filename}", user_message="Invalid filename format")
    return upload_id, filename


@dataclass(frozen=True)
class LayoutImage:
    upload_id: str
    filename: str
    position: int
    zoom: float = 1.0


@dataclass(frozen=True)
class LayoutRequest:
    layout_type: LayoutType
    width: float
    height: float
    images: Tuple[LayoutImage, ...]
    background: str = DEFAULT_BACKGROUND
    ratio: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "LayoutRequest":
        """Build a validated request from a decoded JSON body."""
        layout_raw = payload.get("layoutType")
        dimensions = payload.get("dimensions")
        images_raw = payload.get("images")
        if not layout_raw or not dimensions or images_raw is None:
            raise ValidationError("layoutType, dimensions, and images are required")

        layout_type = parse_layout_type(layout_raw)

        if not isinstance(dimensions, dict) or not dimensions.get("width") or not dimensions.get("height"):
            raise ValidationError("dimensions.width and dimensions.height are required")
        try:
            width = float(dimensions["width"])
            height = float(dimensions["height"])
        except (TypeError, ValueError):
            raise ValidationError("dimensions must be numbers") from None
        if width <= 0 or height <= 0:
            raise ValidationError("dimensions must be positive")

        if not isinstance(images_raw, list) or not 2 <= len(images_raw) <= 3:
            raise ValidationError("images must be an array with 2-3 items")
        if len(images_raw) != layout_type.cell_count:
            raise ValidationError(
                f"Layout type '{layout_type.value}' requires {layout_type.cell_count} images, "
                f"got {len(images_raw)}"
            )

        images: List[LayoutImage] = []
        seen_positions = set()
        for index, item in enumerate(images_raw):
            if not isinstance(item, dict):
                raise ValidationError("each image must be an object")
            upload_id, filename = validate_upload_ref(item.get("uploadId"), item.get("filename"))
            position = item.get("position", index)
            if not isinstance(position, int) or isinstance(position, bool):
                raise ValidationError(f"position must be an integer, got {position!r}")
            if not 0 <= position < layout_type.cell_count or position in seen_positions:
                raise ValidationError(f"invalid or duplicate position: {position}")
            seen_positions.add(position)
            zoom = validate_zoom(item.get("zoom") or 1.0)
            images.append(LayoutImage(upload_id, filename, position, zoom))

        background = payload.get("backgroundColor") or DEFAULT_BACKGROUND
        return cls(
            layout_type=layout_type,
            width=width,
            height=height,
            images=tuple(images),
            background=require_color(background),
            ratio=payload.get("ratio"),
        )


class UploadSource(ABC):
    """Where layout inputs come from."""

    @abstractmethod
    async def read(self, upload_id: str, filename: str) -> bytes:
        """Return the upload's bytes or raise NotFoundError."""

    async def discard(self, upload_id: str, filename: str) -> None:
        """Forget an upload once it has been consumed."""


class DirectoryUploadSource(UploadSource):
    """Uploads stored as <root>/<uploadId>_<filename>."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def resolve(self, upload_id: str, filename: str) -> Path:
        upload_id, filename = validate_upload_ref(upload_id, filename)
        root = self.root.resolve()
        path = (self.root / f"{upload_id}_{filename}").resolve()
        if root != path.parent and root not in path.parents:
            logger.error("[LAYOUT] path_outside_upload_dir upload_id=%s filename=%s", upload_id, filename)
            raise ValidationError("Access denied")
        return path

    async def read(self, upload_id: str, filename: str) -> bytes:
        path = self.resolve(upload_id, filename)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise NotFoundError(f"Upload ID '{upload_id}' not found or has expired") from None

    async def discard(self, upload_id: str, filename: str) -> None:
        path = self.resolve(upload_id, filename)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as exc:
            logger.warning("[LAYOUT] discard_failed path=%s error=%s", path, exc)


@dataclass
class LayoutResult:
    data: bytes
    width: int
    height: int
    scale_factor: float
    filename: str
    format: str = "jpeg"
    input_sizes: List[int] = field(default_factory=list)


class LayoutJob:
    """One layout render, driven through LayoutState."""

    def __init__(
        self,
        request: LayoutRequest,
        source: UploadSource,
        *,
        trace_id: Optional[str] = None,
        on_state: Optional[Callable[[LayoutState], None]] = None,
        discard_inputs: bool = True,
    ):
        self.request = request
        self.source = source
        self.trace_id = trace_id or new_trace_id()
        self.discard_inputs = discard_inputs
        self._on_state = on_state
        self.state = LayoutState.PENDING
        self.history: List[LayoutState] = []

    def _enter(self, state: LayoutState) -> None:
        self.state = state
        self.history.append(state)
        logger.info("[LAYOUT] state=%s trace_id=%s layout=%s", state.value, self.trace_id, self.request.layout_type.value)
        if self._on_state is not None:
            self._on_state(state)

    async def _load(self) -> List[Tuple[LayoutImage, Any, int]]:
        loaded = []
        for item in self.request.images:
            data = await self.source.read(item.upload_id, item.filename)
            image = await asyncio.to_thread(codec.load_rgb, data)
            loaded.append((item, image, len(data)))
        return loaded

    async def run(self) -> LayoutResult:
        request = self.request
        try:
            self._enter(LayoutState.LOADING)
            loaded = await self._load()

            self._enter(LayoutState.SCALING)
            plan = compute_canvas(
                request.width,
                request.height,
                [(image.width, image.height) for _, image, _ in loaded],
            )
            cells = compute_cells(request.layout_type, plan.canvas_w, plan.canvas_h)
            logger.info(
                "[LAYOUT] canvas trace_id=%s requested=%sx%s scale=%.2f actual=%sx%s",
                self.trace_id,
                request.width,
                request.height,
                plan.scale_factor,
                plan.canvas_w,
                plan.canvas_h,
            )

            self._enter(LayoutState.COMPOSITING)
            placements = []
            for item, image, _ in sorted(loaded, key=lambda entry: entry[0].position):
                cell = cells[item.position]
                tile = await asyncio.to_thread(codec.fit_to_cell, image, cell, item.zoom, request.background)
                placements.append((tile, cell))
            canvas = await asyncio.to_thread(
                codec.compose, plan.canvas_w, plan.canvas_h, request.background, placements
            )

            self._enter(LayoutState.ENCODING)
            data = await asyncio.to_thread(codec.encode_jpeg, canvas)
        except Exception:
            self._enter(LayoutState.FAILED)
            raise

        self._enter(LayoutState.DONE)
        if self.discard_inputs:
            for item in request.images:
                await self.source.discard(item.upload_id, item.filename)

        return LayoutResult(
            data=data,
            width=plan.canvas_w,
            height=plan.canvas_h,
            scale_factor=plan.scale_factor,
            filename=f"layout_{request.layout_type.value}_{int(time.time() * 1000)}.jpg",
            input_sizes=[size for _, _, size in loaded],
        )


async def render_layout(
    payload: Dict[str, Any],
    source: UploadSource,
    *,
    trace_id: Optional[str] = None,
) -> LayoutResult:
    """Validate a layout payload and run the job to completion."""
    request = LayoutRequest.from_payload(payload)
    return await LayoutJob(request, source, trace_id=trace_id).run()

