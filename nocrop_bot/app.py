"""
Wiring: one ServiceContainer per process, handed to aiogram handlers as
the `container` workflow argument.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.client.session.aiohttp import AiohttpSession
from aiogram.client.telegram import TelegramAPIServer

from nocrop.config import Config
from nocrop.imaging.layout import DirectoryUploadSource
from nocrop.jobs import (
    JobServices,
    MediaItem,
    ReplyChannel,
    album_items,
    make_album_job,
    make_document_job,
    make_layout_job,
    make_photo_job,
)
from nocrop.locking.distributed_lock import DistributedLock
from nocrop.observability.job_metrics import JobMetricsSink
from nocrop.queue.album import AlbumAggregator
from nocrop.queue.job_queue import Job, JobFn, JobQueue
from nocrop.settings import SettingsService
from nocrop.storage.factory import Storages, create_storages
from nocrop.utils.alarm import AlarmClock

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.telegram.org"


@dataclass(frozen=True)
class AlbumEntry:
    user_id: int
    file_id: str
    reply: Any


class ServiceContainer:
    """Owns every per-process coordinator; no module-level singletons."""

    def __init__(
        self,
        config: Config,
        storages: Storages,
        *,
        clock: Optional[AlarmClock] = None,
    ):
        self.config = config
        self.storages = storages
        self.lock = DistributedLock(
            storages.locks,
            ttl_seconds=config.lock_ttl_seconds,
            retry_delay=config.lock_retry_delay_seconds,
        )
        self.settings = SettingsService(
            storages.settings,
            default_ratio=config.default_ratio,
            default_color=config.default_color,
        )
        self.metrics = JobMetricsSink(storages.metrics)
        self.queue = JobQueue()
        self.albums = AlbumAggregator(
            self._flush_album,
            delay=config.album_aggregate_seconds,
            clock=clock,
        )
        self.services = JobServices(lock=self.lock, settings=self.settings, metrics=self.metrics)
        self._photo_job = make_photo_job(self.services)
        self._document_job = make_document_job(self.services)
        self._album_job = make_album_job(self.services)
        self.uploads = DirectoryUploadSource(config.upload_dir)
        self._layout_job = make_layout_job(self.services, self.uploads)

    def _submit(self, fn: JobFn, user_id: object, reply: ReplyChannel, payload: Any) -> int:
        return self.queue.enqueue(user_id, Job.create(fn, user_id, reply=reply, payload=payload))

    def submit_photo(self, user_id: object, reply: ReplyChannel, file_id: str) -> int:
        return self._submit(self._photo_job, user_id, reply, MediaItem(file_id=file_id, file_name="photo"))

    def submit_document(
        self,
        user_id: object,
        reply: ReplyChannel,
        file_id: str,
        file_name: Optional[str],
        mime_type: Optional[str],
    ) -> int:
        item = MediaItem(file_id=file_id, file_name=file_name, mime_type=mime_type)
        return self._submit(self._document_job, user_id, reply, item)

    def submit_layout(self, user_id: object, reply: ReplyChannel, payload: dict) -> int:
        """payload is a layout request body; its images are read from UPLOAD_DIR."""
        return self._submit(self._layout_job, user_id, reply, payload)

    def add_album_item(self, user_id: object, media_group_id: str, file_id: str, reply: ReplyChannel) -> int:
        return self.albums.add_item(media_group_id, AlbumEntry(user_id=user_id, file_id=file_id, reply=reply))

    async def _flush_album(self, group_id: str, entries: List[AlbumEntry]) -> None:
        first = entries[0]
        items = album_items([entry.file_id for entry in entries])
        position = self._submit(self._album_job, first.user_id, first.reply, items)
        logger.info("[ALBUM] enqueued group_id=%s items=%d position=%d", group_id, len(items), position)

    def health(self) -> dict:
        return {
            "queue": self.queue.get_metrics(),
            "albums_pending": len(self.albums.pending_groups()),
            "jobs": self.metrics.snapshot(),
            "lock_backend": self.storages.lock_backend,
            "storage_mode": self.storages.storage_mode,
        }

    async def shutdown(self, *, drain: bool = True) -> None:
        self.albums.close()
        if drain:
            await self.queue.wait_idle()
        else:
            await self.queue.stop()
        await self.storages.close()
        logger.info("[APP] container_shutdown drain=%s", drain)


async def build_container(config: Config, *, clock: Optional[AlarmClock] = None) -> ServiceContainer:
    storages = await create_storages(config)
    return ServiceContainer(config, storages, clock=clock)


def create_bot_application(config: Config, container: ServiceContainer) -> Tuple[Bot, Dispatcher]:
    """Bot + Dispatcher with the router attached and container injected."""
    from nocrop_bot.handlers import router

    session = None
    if config.telegram_api_base and config.telegram_api_base != DEFAULT_API_BASE:
        session = AiohttpSession(api=TelegramAPIServer.from_base(config.telegram_api_base))
        logger.info("[APP] custom_api_base=%s", config.telegram_api_base)

    bot = Bot(
        token=config.telegram_bot_token,
        session=session,
        default=DefaultBotProperties(parse_mode=None),
    )
    dp = Dispatcher(container=container)
    dp.include_router(router)
    return bot, dp
