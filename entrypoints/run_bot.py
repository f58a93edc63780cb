#!/usr/bin/env python3
"""
Canonical Python entry point for the No-Crop Image bot.
Builds storages and coordinators, starts the lock reaper, then polls Telegram
until SIGINT/SIGTERM.
"""

import asyncio
import logging
import os
import sys
from contextlib import suppress

project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from nocrop.config import get_config  # noqa: E402
from nocrop.tasks.cleanup import lock_reaper_loop  # noqa: E402
from nocrop.utils.errors import PersistenceError  # noqa: E402
from nocrop.utils.logging_config import setup_logging  # noqa: E402
from nocrop_bot.app import build_container, create_bot_application  # noqa: E402

logger = logging.getLogger("entrypoints.run_bot")


async def main() -> int:
    config = get_config()
    setup_logging(config.log_level, log_dir=config.log_dir, instance_id=config.instance_name)

    for problem in config.problems():
        logger.warning("[BOOT] config_problem=%s", problem)
    if not config.telegram_bot_token:
        logger.error("[BOOT] TELEGRAM_BOT_TOKEN is required to run the bot")
        return 1

    logger.info(
        "[BOOT] instance=%s token=%s storage_mode=%s lock_backend=%s",
        config.instance_name,
        config.mask_secret(config.telegram_bot_token),
        config.storage_mode,
        config.lock_backend,
    )

    try:
        container = await build_container(config)
    except PersistenceError as exc:
        logger.error("[BOOT] storage_unavailable error=%s", exc)
        return 1

    bot, dp = create_bot_application(config, container)
    reaper = asyncio.create_task(
        lock_reaper_loop(container.storages.locks, config.lock_reaper_interval_seconds),
        name="lock_reaper",
    )

    try:
        # aiogram installs its own SIGINT/SIGTERM handlers and returns on signal
        await dp.start_polling(bot, handle_signals=True)
    finally:
        reaper.cancel()
        with suppress(asyncio.CancelledError):
            await reaper
        await container.shutdown(drain=True)
        await bot.session.close()
        logger.info("[BOOT] stopped")
    return 0


if __name__ == "__main__":
    with suppress(KeyboardInterrupt):
        sys.exit(asyncio.run(main()))
