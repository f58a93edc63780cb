"""
Job functions run by the per-user queue.

Every job follows the same shape:

    lock.held() -> wait message -> download -> pad -> send document
                -> (error reply) -> delete wait message -> release -> job log

Jobs receive a JobContext from the queue; ctx.reply is a ReplyChannel and
ctx.payload carries the media to process.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from nocrop.geometry import require_ratio
from nocrop.imaging.codec import output_filename, pad_image
from nocrop.imaging.layout import UploadSource, render_layout
from nocrop.locking.distributed_lock import DistributedLock
from nocrop.observability.job_metrics import JobMetricsSink
from nocrop.queue.job_queue import JobContext, JobFn
from nocrop.settings import SettingsService
from nocrop.storage.base import UserSettings
from nocrop.utils.errors import LockBusyError, PersistenceError, classify_exception

logger = logging.getLogger(__name__)

WAIT_IMAGE_TEXT = "Got your image, please wait while I process it…"
WAIT_ALBUM_TEXT = "Got your album, please wait while I process all images…"
WAIT_LAYOUT_TEXT = "Got your layout, please wait while I compose it…"


class ReplyChannel(Protocol):
    async def send_text(self, text: str) -> Optional[int]:
        ...

    async def send_document(self, data: bytes, filename: str, caption: Optional[str] = None) -> None:
        ...

    async def delete_message(self, message_id: int) -> None:
        ...

    async def send_upload_action(self) -> None:
        ...

    async def download(self, file_id: str) -> bytes:
        ...


@dataclass(frozen=True)
class MediaItem:
    file_id: str
    file_name: Optional[str] = None
    mime_type: Optional[str] = None


@dataclass
class JobServices:
    lock: DistributedLock
    settings: SettingsService
    metrics: JobMetricsSink


async def process_and_reply(
    reply: ReplyChannel,
    data: bytes,
    name_hint: Optional[str],
    settings: UserSettings,
    trace_id: str,
    format_hint: Optional[str] = None,
) -> Tuple[int, int]:
    """Pad one image and send it back as a document. Returns (bytes, ms)."""
    started = time.monotonic()
    ratio = require_ratio(settings.ratio)
    result = await asyncio.to_thread(pad_image, data, ratio, settings.color, format_hint)
    filename = output_filename(name_hint, ratio, result.format)

    logger.info(
        "[JOB] sending_file trace_id=%s filename=%s input_size=%d output_size=%d ratio=%s format=%s size=%sx%s",
        trace_id,
        filename,
        len(data),
        len(result.data),
        ratio.key,
        result.format,
        result.width,
        result.height,
    )
    await reply.send_document(result.data, filename, caption=f"{ratio.key} | {settings.color}")
    return len(result.data), int((time.monotonic() - started) * 1000)


async def _delete_quietly(reply: ReplyChannel, message_id: Optional[int]) -> None:
    if message_id is None:
        return
    try:
        await reply.delete_message(message_id)
    except Exception as exc:
        logger.debug("[JOB] wait_message_delete_failed message_id=%s error=%s", message_id, exc)


async def _upload_action(reply: ReplyChannel) -> None:
    try:
        await reply.send_upload_action()
    except Exception as exc:
        logger.debug("[JOB] chat_action_failed error=%s", exc)


async def _run_media_job(
    services: JobServices,
    ctx: JobContext,
    kind: str,
    items: Sequence[MediaItem],
    wait_text: str,
) -> None:
    reply: ReplyChannel = ctx.reply
    started = time.monotonic()
    settings = await services.settings.get(ctx.user_id)
    bytes_total = 0
    ms_total = 0
    acquired = False

    try:
        async with services.lock.held(ctx.user_id, ctx.trace_id):
            acquired = True
            wait_id = await reply.send_text(wait_text)
            try:
                for index, item in enumerate(items):
                    item_trace = f"{ctx.trace_id}_{index + 1}" if kind == "album" else ctx.trace_id
                    await _upload_action(reply)
                    data = await reply.download(item.file_id)
                    size, ms = await process_and_reply(reply, data, item.file_name, settings, item_trace)
                    bytes_total += size
                    ms_total += ms
            except Exception as exc:
                info = classify_exception(exc)
                logger.error(
                    "[JOB] %s_error user_id=%s trace_id=%s code=%s reason=%s",
                    kind,
                    ctx.user_id,
                    ctx.trace_id,
                    info.code.value,
                    info.debug_reason,
                    exc_info=True,
                )
                await reply.send_text(f"Processing error ({kind}).")
            finally:
                await _delete_quietly(reply, wait_id)
    except LockBusyError:
        # TODO: tell the user their job was dropped instead of skipping silently
        logger.warning("[JOB] lock busy, skip job user_id=%s trace_id=%s kind=%s", ctx.user_id, ctx.trace_id, kind)
        return
    except PersistenceError as exc:
        if acquired:
            raise
        logger.error("[JOB] lock_store_unavailable user_id=%s trace_id=%s error=%s", ctx.user_id, ctx.trace_id, exc)
        await reply.send_text(f"Processing error ({kind}).")
        return
    finally:
        if acquired:
            await services.metrics.record(
                ctx.trace_id,
                ctx.user_id,
                kind,
                count=len(items),
                bytes=bytes_total,
                ms=max(ms_total, int((time.monotonic() - started) * 1000)),
            )


def make_photo_job(services: JobServices) -> JobFn:
    """ctx.payload is the MediaItem of the largest photo size."""

    async def photo_job(ctx: JobContext) -> None:
        item: MediaItem = ctx.payload
        await _run_media_job(services, ctx, "photo", [item], WAIT_IMAGE_TEXT)

    return photo_job


def make_document_job(services: JobServices) -> JobFn:
    async def document_job(ctx: JobContext) -> None:
        item: MediaItem = ctx.payload
        await _run_media_job(services, ctx, "document", [item], WAIT_IMAGE_TEXT)

    return document_job


def make_album_job(services: JobServices) -> JobFn:
    """ctx.payload is the flushed list of MediaItems (album_1, album_2, ...)."""

    async def album_job(ctx: JobContext) -> None:
        items: List[MediaItem] = list(ctx.payload)
        await _run_media_job(services, ctx, "album", items, WAIT_ALBUM_TEXT)

    return album_job


def album_items(file_ids: Sequence[str]) -> List[MediaItem]:
    return [MediaItem(file_id=file_id, file_name=f"album_{index + 1}") for index, file_id in enumerate(file_ids)]


def make_layout_job(services: JobServices, source: UploadSource) -> JobFn:
    """ctx.payload is a layout request body (layoutType, dimensions, images, ...)."""

    async def layout_job(ctx: JobContext) -> None:
        reply: ReplyChannel = ctx.reply
        payload: Dict[str, Any] = ctx.payload
        started = time.monotonic()
        try:
            async with services.lock.held(ctx.user_id, ctx.trace_id):
                wait_id = await reply.send_text(WAIT_LAYOUT_TEXT)
                size = 0
                count = len(payload.get("images") or [])
                try:
                    result = await render_layout(payload, source, trace_id=ctx.trace_id)
                    size = len(result.data)
                    logger.info(
                        "[JOB] sending_layout trace_id=%s filename=%s input_sizes=%s output_size=%d size=%sx%s",
                        ctx.trace_id,
                        result.filename,
                        result.input_sizes,
                        size,
                        result.width,
                        result.height,
                    )
                    await reply.send_document(
                        result.data,
                        result.filename,
                        caption=f"{payload.get('layoutType')} | {result.width}x{result.height}",
                    )
                except Exception as exc:
                    info = classify_exception(exc)
                    logger.error(
                        "[JOB] layout_error user_id=%s trace_id=%s code=%s reason=%s",
                        ctx.user_id,
                        ctx.trace_id,
                        info.code.value,
                        info.debug_reason,
                    )
                    await reply.send_text(f"Processing error (layout). {info.user_message}")
                finally:
                    await _delete_quietly(reply, wait_id)
        except LockBusyError:
            logger.warning("[JOB] lock busy, skip job user_id=%s trace_id=%s kind=layout", ctx.user_id, ctx.trace_id)
            return
        except PersistenceError as exc:
            logger.error("[JOB] lock_store_unavailable user_id=%s trace_id=%s error=%s", ctx.user_id, ctx.trace_id, exc)
            await reply.send_text(f"Processing error (layout). {exc.user_message}")
            return
        await services.metrics.record(
            ctx.trace_id,
            ctx.user_id,
            "layout",
            count=count,
            bytes=size,
            ms=int((time.monotonic() - started) * 1000),
        )

    return layout_job
