from tradewire.events.dedup import EventDedupCache
from tradewire.events.router import EventRouter, unwrap

__all__ = ["EventDedupCache", "EventRouter", "unwrap"]
