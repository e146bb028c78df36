"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List

from dotenv import load_dotenv

from tradewire.core.json_utils import dumps

load_dotenv()


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def _csv_env(key: str, default: str) -> List[str]:
    raw = os.getenv(key, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    api_base_url: str
    ws_url: str
    ws_transports: List[str]
    connect_timeout_sec: float
    # Fixed-interval auto-reconnect timer
    reconnect_interval_sec: float
    max_reconnect_attempts: int  # 0 = retry forever
    # Server-enforced confirmation window, displayed only
    confirmation_window_sec: float
    notification_ttl_sec: float
    token_expiry_buffer_sec: float
    http_timeout: float
    log_level: str
    log_file: str | None
    username: str | None
    password: str | None
    markets: List[str]

    def dump(self) -> dict:
        """Return a dict of settings for logging, with secrets masked."""
        data = self.__dict__.copy()
        if data.get("password"):
            data["password"] = "***"
        return data

    @classmethod
    def load(cls) -> "Settings":
        def _int_env(key: str, default: int) -> int:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            return int(raw)

        def _float_env(key: str, default: float) -> float:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            return float(raw)

        log_file = os.getenv("TW_LOG_FILE", "tradewire.log")
        cfg = cls(
            api_base_url=os.getenv("TW_API_BASE_URL", "http://localhost:8000/api"),
            ws_url=os.getenv("TW_WS_URL", "http://localhost:8000"),
            ws_transports=_csv_env("TW_WS_TRANSPORTS", "websocket,polling"),
            connect_timeout_sec=_float_env("TW_CONNECT_TIMEOUT_SEC", 10.0),
            reconnect_interval_sec=_float_env("TW_RECONNECT_INTERVAL_SEC", 5.0),
            max_reconnect_attempts=_int_env("TW_MAX_RECONNECT_ATTEMPTS", 0),
            confirmation_window_sec=_float_env("TW_CONFIRMATION_WINDOW_SEC", 60.0),
            notification_ttl_sec=_float_env("TW_NOTIFICATION_TTL_SEC", 4.0),
            token_expiry_buffer_sec=_float_env("TW_TOKEN_EXPIRY_BUFFER_SEC", 300.0),
            http_timeout=_float_env("TW_HTTP_TIMEOUT", 10.0),
            log_level=os.getenv("TW_LOG_LEVEL", "INFO").upper(),
            log_file=log_file or None,
            username=os.getenv("TW_USERNAME"),
            password=os.getenv("TW_PASSWORD"),
            markets=_csv_env("TW_MARKETS", ""),
        )
        cfg._validate()
        _sanity_check(cfg)
        return cfg

    def _validate(self) -> None:
        if not self.api_base_url:
            raise ValueError("TW_API_BASE_URL must be set")
        if not self.ws_url:
            raise ValueError("TW_WS_URL must be set")
        unknown = set(self.ws_transports) - {"websocket", "polling"}
        if not self.ws_transports or unknown:
            raise ValueError("TW_WS_TRANSPORTS must list websocket and/or polling")
        if self.reconnect_interval_sec <= 0:
            raise ValueError("TW_RECONNECT_INTERVAL_SEC must be > 0")
        if self.connect_timeout_sec <= 0:
            raise ValueError("TW_CONNECT_TIMEOUT_SEC must be > 0")
        if self.max_reconnect_attempts < 0:
            raise ValueError("TW_MAX_RECONNECT_ATTEMPTS must be >= 0")
        if self.confirmation_window_sec <= 0:
            raise ValueError("TW_CONFIRMATION_WINDOW_SEC must be > 0")
        if self.notification_ttl_sec < 0:
            raise ValueError("TW_NOTIFICATION_TTL_SEC must be >= 0")
        if self.token_expiry_buffer_sec < 0:
            raise ValueError("TW_TOKEN_EXPIRY_BUFFER_SEC must be >= 0")
        if self.http_timeout <= 0:
            raise ValueError("TW_HTTP_TIMEOUT must be > 0")
        if self.log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"TW_LOG_LEVEL={self.log_level} is not a logging level")

        if self.reconnect_interval_sec < 1.0:
            logging.getLogger("tradewire").warning(
                f"WARNING: TW_RECONNECT_INTERVAL_SEC={self.reconnect_interval_sec} is very short. "
                "The venue may rate-limit handshakes."
            )
        if bool(self.username) != bool(self.password):
            logging.getLogger("tradewire").warning(
                "WARNING: only one of TW_USERNAME / TW_PASSWORD is set; login will be skipped."
            )


def _sanity_check(cfg: Settings) -> None:
    """Log critical settings once at startup so overrides are obvious."""
    logger = logging.getLogger("tradewire")
    payload = {
        "event": "config_loaded",
        "api_base_url": cfg.api_base_url,
        "ws_url": cfg.ws_url,
        "ws_transports": cfg.ws_transports,
        "reconnect_interval_sec": cfg.reconnect_interval_sec,
        "max_reconnect_attempts": cfg.max_reconnect_attempts,
        "markets": cfg.markets,
    }
    logger.info(dumps(payload))
