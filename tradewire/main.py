"""
Entry point: log in, hold the venue connection open and print notifications.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from tradewire.app import TradingClient
from tradewire.config.config import Settings
from tradewire.core.errors import ApiError, AuthExpiredError
from tradewire.core.json_utils import dumps
from tradewire.infra.logging_cfg import build_logger

log = logging.getLogger("tradewire")


async def main() -> None:
    cfg = Settings.load()
    build_logger("tradewire", level=getattr(logging, cfg.log_level), file_path=cfg.log_file)

    client = TradingClient(cfg)
    await client.start()

    if cfg.username and cfg.password:
        try:
            await client.login(cfg.username, cfg.password)
        except (ApiError, AuthExpiredError) as exc:
            log.error(dumps({"event": "login_failed", "username": cfg.username, "err": str(exc)}))
            await client.close()
            sys.exit(1)
    elif not client.tokens.is_authenticated:
        log.warning(dumps({"event": "no_credentials", "hint": "set TW_USERNAME and TW_PASSWORD"}))

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    # Windows doesn't support add_signal_handler, so rely on KeyboardInterrupt handling
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    try:
        await stop.wait()
    except (asyncio.CancelledError, KeyboardInterrupt):
        log.info("Shutdown signal received, cleaning up...")
    finally:
        log.info(dumps({"event": "shutdown", "stats": client.get_stats()}))
        await client.close()
        log.info("Shutdown complete")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nClient stopped by user")
    sys.exit(0)


if __name__ == "__main__":
    run()
