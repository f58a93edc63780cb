import pytest

from nocrop.config import Config, get_config, reset_config

ENV_KEYS = [
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_API_BASE",
    "DATABASE_URL",
    "REDIS_URL",
    "STORAGE_MODE",
    "LOCK_BACKEND",
    "LOCK_TTL_SECONDS",
    "LOCK_RETRY_DELAY_SECONDS",
    "ALBUM_AGGREGATE_SECONDS",
    "DEFAULT_RATIO",
    "DEFAULT_COLOR",
    "LOG_DIR",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()


def test_defaults():
    config = Config()
    assert config.storage_mode == "auto"
    assert config.lock_backend == "auto"
    assert config.lock_ttl_seconds == 600.0
    assert config.lock_retry_delay_seconds == 0.5
    assert config.album_aggregate_seconds == 1.0
    assert config.default_ratio == "4:5"
    assert config.problems() == ["TELEGRAM_BOT_TOKEN is not set"]


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("TELEGRAM_API_BASE", "http://localhost:8081/")
    monkeypatch.setenv("LOCK_BACKEND", "Redis")
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")
    monkeypatch.setenv("LOG_DIR", "")

    config = Config()
    assert config.telegram_api_base == "http://localhost:8081"
    assert config.lock_backend == "redis"
    assert config.log_dir is None
    assert config.problems() == []


def test_float_env_clamped_and_invalid_ignored(monkeypatch):
    monkeypatch.setenv("LOCK_TTL_SECONDS", "1")
    monkeypatch.setenv("ALBUM_AGGREGATE_SECONDS", "soon")
    config = Config()
    assert config.lock_ttl_seconds == 5.0
    assert config.album_aggregate_seconds == 1.0


@pytest.mark.parametrize(
    "env",
    [
        {"STORAGE_MODE": "sqlite"},
        {"LOCK_BACKEND": "zookeeper"},
        {"STORAGE_MODE": "postgres"},
        {"LOCK_BACKEND": "redis"},
        {"DEFAULT_RATIO": "tall"},
        {"DEFAULT_COLOR": "teal"},
    ],
)
def test_invalid_config_raises(monkeypatch, env):
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    with pytest.raises(ValueError):
        Config()


def test_problems_flag_short_ttl(monkeypatch):
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "no-colon")
    monkeypatch.setenv("LOCK_TTL_SECONDS", "5")
    monkeypatch.setenv("LOCK_RETRY_DELAY_SECONDS", "10")
    problems = Config().problems()
    assert "TELEGRAM_BOT_TOKEN looks malformed" in problems
    assert "LOCK_TTL_SECONDS should be larger than LOCK_RETRY_DELAY_SECONDS" in problems


def test_mask_secret():
    config = Config()
    assert config.mask_secret("123456:ABCDEF") == "1234*********"
    assert config.mask_secret("abc") == "****"
    assert config.mask_secret(None) == "****"


def test_get_config_is_cached(monkeypatch):
    first = get_config()
    assert get_config() is first
    reset_config()
    assert get_config() is not first
