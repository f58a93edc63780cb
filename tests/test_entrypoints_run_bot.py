import logging

import pytest

from entrypoints import run_bot
from nocrop.config import reset_config


@pytest.fixture(autouse=True)
def restore_logging():
    root_logger = logging.getLogger()
    original_level = root_logger.level
    original_handlers = list(root_logger.handlers)
    reset_config()
    yield
    reset_config()
    root_logger.handlers[:] = original_handlers
    root_logger.setLevel(original_level)


@pytest.mark.asyncio
async def test_main_requires_token(monkeypatch):
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    monkeypatch.setenv("STORAGE_MODE", "memory")
    monkeypatch.setenv("LOG_DIR", "")

    assert await run_bot.main() == 1


@pytest.mark.asyncio
async def test_main_exits_when_storage_unavailable(monkeypatch):
    from nocrop.utils.errors import PersistenceError

    async def broken_container(config):
        raise PersistenceError("cannot connect")

    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123456:TEST-token")
    monkeypatch.setenv("STORAGE_MODE", "memory")
    monkeypatch.setenv("LOG_DIR", "")
    monkeypatch.setattr(run_bot, "build_container", broken_container)

    assert await run_bot.main() == 1
