"""
Fast JSON utilities for frame decoding and structured logging.

Usage:
    from tradewire.core.json_utils import dumps, loads

    log.info(dumps({"event": "frame_received", "name": "order:created"}))
"""

from __future__ import annotations

from typing import Any

import orjson


def dumps(obj: Any) -> str:
    """Fast JSON encode to string."""
    return orjson.dumps(obj, default=str).decode("utf-8")


def dumps_bytes(obj: Any) -> bytes:
    """Fast JSON encode to bytes (skips the utf-8 decode)."""
    return orjson.dumps(obj, default=str)


def loads(s: str | bytes) -> Any:
    """Fast JSON decode."""
    return orjson.loads(s)
