"""
Monitoring package.
"""

from tradewire.monitoring.metrics_rich import ClientMetrics

__all__ = [
    "ClientMetrics",
]
