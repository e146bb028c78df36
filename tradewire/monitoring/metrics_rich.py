"""
Prometheus metrics for connection and protocol observability.

Organized into: connection, frames, confirmations.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge


class ClientMetrics:
    """Metrics for the trading client. Each instance owns its own registry."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()
        self.registry = reg

        # === Connection Metrics ===
        self.connection_state = Gauge(
            'connection_state',
            'Connection state (0=disconnected, 1=connecting, 2=connected)',
            registry=reg
        )
        self.connect_attempts = Counter(
            'connect_attempts_total',
            'Transport connection attempts',
            labelnames=['trigger'],
            registry=reg
        )
        self.connect_failures = Counter(
            'connect_failures_total',
            'Failed connection attempts',
            labelnames=['reason'],
            registry=reg
        )
        self.reconnects = Counter(
            'connection_restored_total',
            'Successful reconnections after a prior connection',
            registry=reg
        )

        # === Frame Metrics ===
        self.frames_received = Counter(
            'frames_received_total',
            'Inbound frames routed',
            labelnames=['frame'],
            registry=reg
        )
        self.duplicates_dropped = Counter(
            'duplicate_frames_dropped_total',
            'Idempotency-key duplicates dropped by the router',
            labelnames=['kind'],
            registry=reg
        )

        # === Confirmation Metrics ===
        self.responses_sent = Counter(
            'protocol_responses_sent_total',
            'Protocol responses transmitted',
            labelnames=['kind'],
            registry=reg
        )
        self.responses_rejected = Counter(
            'protocol_responses_rejected_total',
            'Protocol responses refused before transmission',
            labelnames=['kind', 'reason'],
            registry=reg
        )
        self.pending_confirmations = Gauge(
            'pending_confirmations',
            'Live confirmation prompts awaiting a response',
            labelnames=['kind'],
            registry=reg
        )
        self.pending_turns = Gauge(
            'pending_negotiation_turns',
            'Assets where it is currently our turn to negotiate',
            registry=reg
        )
