"""
Time-windowed overlay caches.

Two session-scoped maps keyed by position key sit on top of the batched
reads:

- pending positions: optimistic expectations registered on transaction
  submission (valid PENDING_POSITION_VALID_SECONDS)
- updated positions: field snapshots from confirmed on-chain events
  (valid UPDATED_POSITION_VALID_SECONDS)

Every write replaces the whole mapping with a new read-only snapshot, so a
reader holding `snapshot()` never observes a half-applied update. Entries
are never mutated in place.
"""
import time
from types import MappingProxyType
from typing import Callable, Dict, Generic, Mapping, Optional, TypeVar

from perp_positions.domain.models import PendingPosition, UpdatedPosition
from perp_positions.monitoring.logger import get_logger

logger = get_logger(__name__)

EntryT = TypeVar("EntryT", PendingPosition, UpdatedPosition)


def is_within_window(updated_at: Optional[float], valid_seconds: float, now: float) -> bool:
    """Strict validity: an entry exactly at its boundary is expired."""
    return updated_at is not None and updated_at + valid_seconds > now


class ExpiringOverlay(Generic[EntryT]):
    """Last-writer-wins map with a validity window per entry."""

    def __init__(self, name: str, valid_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.valid_seconds = valid_seconds
        self._clock = clock
        self._entries: Mapping[str, EntryT] = MappingProxyType({})

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def now(self) -> float:
        return self._clock()

    def snapshot(self) -> Mapping[str, EntryT]:
        """Current read-only mapping (includes expired entries)."""
        return self._entries

    def put(self, key: str, entry: EntryT) -> None:
        entries: Dict[str, EntryT] = dict(self._entries)
        entries[key] = entry
        self._entries = MappingProxyType(entries)
        logger.debug("OVERLAY_PUT", overlay=self.name, key=key, updated_at=entry.updated_at)

    def get(self, key: str) -> Optional[EntryT]:
        return self._entries.get(key)

    def get_active(self, key: str, now: Optional[float] = None) -> Optional[EntryT]:
        """Entry for `key` if it is still within its window, else None."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if now is None:
            now = self._clock()
        if not is_within_window(entry.updated_at, self.valid_seconds, now):
            return None
        return entry

    def prune(self, now: Optional[float] = None) -> int:
        """Drop expired entries; returns how many were removed."""
        if now is None:
            now = self._clock()
        kept = {
            key: entry
            for key, entry in self._entries.items()
            if is_within_window(entry.updated_at, self.valid_seconds, now)
        }
        removed = len(self._entries) - len(kept)
        if removed:
            self._entries = MappingProxyType(kept)
            logger.debug("OVERLAY_PRUNED", overlay=self.name, removed=removed, remaining=len(kept))
        return removed

    def clear(self) -> None:
        self._entries = MappingProxyType({})
