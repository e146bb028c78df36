"""
EventDedupCache: at-most-once delivery of confirmation prompts per Session.

The transport may redeliver the same request frame around a reconnect; the
router checks every confirmation request against this cache before anything
reaches a subscriber. Keys are namespaced by ConfirmationKind so a top-up and
a partial-fill prompt sharing a confirmation key do not shadow each other.

Entries live for the Session. A key is only released when a terminal outcome
for it is observed (discard), never by the local response.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from tradewire.core.json_utils import dumps
from tradewire.negotiation.models import ConfirmationKind

log = logging.getLogger("tradewire")

DedupKey = Tuple[ConfirmationKind, str]


class EventDedupCache:
    """
    Set of handled idempotency keys.

    Single-threaded asyncio usage only (no internal locks).
    max_keys=0 keeps every key for the Session's lifetime; a positive value
    enables FIFO eviction.
    """

    def __init__(self, max_keys: int = 0, log_event: Optional[Callable[..., None]] = None) -> None:
        self.max_keys = max_keys
        self._seen: Dict[DedupKey, bool] = {}
        self._order: List[DedupKey] = []  # For FIFO eviction
        self._log_event = log_event or self._default_log
        self._stats = {
            "added": 0,
            "duplicates": 0,
            "released": 0,
            "evictions": 0,
        }

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.debug(dumps({"event": event, **kwargs}))

    @staticmethod
    def make_key(kind: ConfirmationKind, confirmation_key: str) -> DedupKey:
        return (kind, str(confirmation_key))

    def check_and_add(self, kind: ConfirmationKind, confirmation_key: str) -> bool:
        """
        Record the key if unseen.

        Returns:
            True if the key is new and was added, False if duplicate
        """
        key = self.make_key(kind, confirmation_key)
        if key in self._seen:
            self._stats["duplicates"] += 1
            self._log_event("dedup_hit", kind=kind.value, key=confirmation_key)
            return False
        self._add_key(key)
        return True

    def _add_key(self, key: DedupKey) -> None:
        if self.max_keys > 0 and len(self._order) >= self.max_keys:
            old_key = self._order.pop(0)
            self._seen.pop(old_key, None)
            self._stats["evictions"] += 1
        self._seen[key] = True
        self._order.append(key)
        self._stats["added"] += 1

    def contains(self, kind: ConfirmationKind, confirmation_key: str) -> bool:
        return self.make_key(kind, confirmation_key) in self._seen

    def discard(self, confirmation_key: str, kind: Optional[ConfirmationKind] = None) -> int:
        """
        Release a key after its terminal outcome was observed.

        Args:
            confirmation_key: Key to release
            kind: Restrict to one kind (None = every kind)

        Returns:
            Number of entries released
        """
        kinds = [kind] if kind is not None else list(ConfirmationKind)
        released = 0
        for k in kinds:
            key = self.make_key(k, confirmation_key)
            if self._seen.pop(key, None):
                self._order.remove(key)
                released += 1
        if released:
            self._stats["released"] += released
            self._log_event("dedup_release", key=confirmation_key, released=released)
        return released

    def clear(self) -> None:
        self._seen.clear()
        self._order.clear()

    def size(self) -> int:
        return len(self._seen)

    def get_stats(self) -> dict:
        return {
            **self._stats,
            "current_size": self.size(),
            "max_size": self.max_keys,
        }
