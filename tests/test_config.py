"""Tests for environment-driven Settings."""

import pytest

from tradewire.config.config import Settings, env_bool


@pytest.fixture
def clean_env(monkeypatch):
    for key in [
        "TW_API_BASE_URL",
        "TW_WS_URL",
        "TW_WS_TRANSPORTS",
        "TW_CONNECT_TIMEOUT_SEC",
        "TW_RECONNECT_INTERVAL_SEC",
        "TW_MAX_RECONNECT_ATTEMPTS",
        "TW_CONFIRMATION_WINDOW_SEC",
        "TW_NOTIFICATION_TTL_SEC",
        "TW_TOKEN_EXPIRY_BUFFER_SEC",
        "TW_HTTP_TIMEOUT",
        "TW_LOG_LEVEL",
        "TW_LOG_FILE",
        "TW_USERNAME",
        "TW_PASSWORD",
        "TW_MARKETS",
    ]:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestSettings:
    def test_defaults(self, clean_env):
        cfg = Settings.load()

        assert cfg.reconnect_interval_sec == 5.0
        assert cfg.max_reconnect_attempts == 0
        assert cfg.confirmation_window_sec == 60.0
        assert cfg.notification_ttl_sec == 4.0
        assert cfg.token_expiry_buffer_sec == 300.0
        assert cfg.ws_transports == ["websocket", "polling"]
        assert cfg.markets == []

    def test_overrides(self, clean_env):
        clean_env.setenv("TW_RECONNECT_INTERVAL_SEC", "2.5")
        clean_env.setenv("TW_MARKETS", "WTI, BRENT ,")
        clean_env.setenv("TW_LOG_LEVEL", "debug")

        cfg = Settings.load()

        assert cfg.reconnect_interval_sec == 2.5
        assert cfg.markets == ["WTI", "BRENT"]
        assert cfg.log_level == "DEBUG"

    @pytest.mark.parametrize(
        "key,value",
        [
            ("TW_RECONNECT_INTERVAL_SEC", "0"),
            ("TW_MAX_RECONNECT_ATTEMPTS", "-1"),
            ("TW_WS_TRANSPORTS", "carrier-pigeon"),
            ("TW_LOG_LEVEL", "LOUD"),
            ("TW_HTTP_TIMEOUT", "0"),
        ],
    )
    def test_invalid_values(self, clean_env, key, value):
        clean_env.setenv(key, value)
        with pytest.raises(ValueError):
            Settings.load()

    def test_dump_masks_password(self, clean_env):
        clean_env.setenv("TW_USERNAME", "alice")
        clean_env.setenv("TW_PASSWORD", "hunter2")

        dumped = Settings.load().dump()

        assert dumped["password"] == "***"
        assert dumped["username"] == "alice"

    def test_env_bool(self, clean_env):
        clean_env.setenv("TW_FLAG", "Yes")
        assert env_bool("TW_FLAG", False) is True
        assert env_bool("TW_MISSING", True) is True
