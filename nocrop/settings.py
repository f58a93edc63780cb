"""Per-user ratio and border colour."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from nocrop.geometry import Ratio, require_color, require_ratio
from nocrop.storage.base import SettingsStore, UserSettings, utcnow
from nocrop.utils.errors import PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_RATIO = "4:5"
DEFAULT_COLOR = "#000000"


class SettingsService:
    """Settings cached in memory, written through to the store when there is one."""

    def __init__(
        self,
        store: Optional[SettingsStore] = None,
        *,
        default_ratio: str = DEFAULT_RATIO,
        default_color: str = DEFAULT_COLOR,
    ):
        self.store = store
        self.default_ratio = require_ratio(default_ratio).key
        self.default_color = require_color(default_color)
        self._cache: Dict[str, UserSettings] = {}

    def _defaults(self, user_id: str) -> UserSettings:
        return UserSettings(user_id=user_id, ratio=self.default_ratio, color=self.default_color)

    async def get(self, user_id: object) -> UserSettings:
        key = str(user_id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        stored = None
        if self.store is not None:
            try:
                stored = await self.store.get_settings(key)
            except PersistenceError as exc:
                logger.warning("[SETTINGS] load_failed user_id=%s error=%s", key, exc)
                return self._defaults(key)
        settings = stored or self._defaults(key)
        self._cache[key] = settings
        return settings

    async def _save(self, settings: UserSettings) -> UserSettings:
        self._cache[settings.user_id] = settings
        if self.store is not None:
            await self.store.save_settings(settings)
        logger.info("[SETTINGS] saved user_id=%s ratio=%s color=%s", settings.user_id, settings.ratio, settings.color)
        return settings

    async def set_ratio(self, user_id: object, value: object) -> UserSettings:
        ratio = require_ratio(value)
        current = await self.get(user_id)
        return await self._save(UserSettings(current.user_id, ratio.key, current.color, utcnow()))

    async def set_color(self, user_id: object, value: object) -> UserSettings:
        color = require_color(value)
        current = await self.get(user_id)
        return await self._save(UserSettings(current.user_id, current.ratio, color, utcnow()))

    async def ratio_for(self, user_id: object) -> Ratio:
        return require_ratio((await self.get(user_id)).ratio)


def human_settings(settings: UserSettings) -> str:
    return f"Ratio: {settings.ratio}\nBorder: {settings.color}"
