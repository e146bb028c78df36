"""
Infrastructure package.

Logging configuration shared by every component.
"""

from tradewire.infra.logging_cfg import build_logger, log_event

__all__ = [
    "build_logger",
    "log_event",
]
