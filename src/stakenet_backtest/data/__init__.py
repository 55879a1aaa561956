"""Historical input snapshots."""

from .snapshot import HistoricalSnapshot, load_snapshot

__all__ = ["HistoricalSnapshot", "load_snapshot"]
