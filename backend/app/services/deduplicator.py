"""
Deduplication / rate window.

Suppresses repeat detections of the same category from the same camera
within a category-tiered window. Windows are scoped per (organization,
camera, category): a fire and a person on the same camera at the same
instant are independent.

The check and the record are split so the pipeline can record only after
the detection has been persisted. Callers serialize the check-persist-record
sequence per key with `lock_for()`.

If the window store raises, the detection is not suppressed.
"""
import asyncio
import logging
import weakref
from datetime import datetime
from typing import Dict, Optional, Protocol, Tuple

from app.core.config import settings

logger = logging.getLogger(__name__)

DedupKey = Tuple[str, str, str]

SHORT_WINDOW_CATEGORIES = ("motion", "person", "vehicle", "object")
STANDARD_WINDOW_CATEGORIES = ("face", "intrusion")
LONG_WINDOW_CATEGORIES = ("fire", "fall", "theft")


def default_windows() -> Dict[str, float]:
    """Category -> window in seconds, from settings."""
    windows: Dict[str, float] = {}
    for category in SHORT_WINDOW_CATEGORIES:
        windows[category] = settings.DEDUP_WINDOW_SHORT_SECONDS
    for category in STANDARD_WINDOW_CATEGORIES:
        windows[category] = settings.DEDUP_WINDOW_STANDARD_SECONDS
    for category in LONG_WINDOW_CATEGORIES:
        windows[category] = settings.DEDUP_WINDOW_LONG_SECONDS
    return windows


class WindowStore(Protocol):
    """Last-accepted timestamp store. A shared cache can implement this for multi-instance deployments."""

    def get_last(self, key: DedupKey) -> Optional[float]:
        ...

    def set_last(self, key: DedupKey, timestamp: float) -> None:
        ...


class InMemoryWindowStore:
    """Process-local window store."""

    def __init__(self):
        self._last: Dict[DedupKey, float] = {}

    def get_last(self, key: DedupKey) -> Optional[float]:
        return self._last.get(key)

    def set_last(self, key: DedupKey, timestamp: float) -> None:
        current = self._last.get(key)
        if current is None or timestamp > current:
            self._last[key] = timestamp

    def prune(self, cutoff: float) -> int:
        """Drop keys whose last accepted detection is older than cutoff. Returns the number dropped."""
        expired = [key for key, last in self._last.items() if last < cutoff]
        for key in expired:
            del self._last[key]
        return len(expired)

    def clear(self) -> None:
        self._last.clear()


class Deduplicator:
    """
    Tiered dedup window with per-key locking.

    Attributes:
        store: Window state store
        windows: Category -> window seconds
    """

    def __init__(
        self,
        store: Optional[WindowStore] = None,
        windows: Optional[Dict[str, float]] = None,
    ):
        self.store = store or InMemoryWindowStore()
        self.windows = windows if windows is not None else default_windows()
        self._locks: "weakref.WeakValueDictionary[DedupKey, asyncio.Lock]" = weakref.WeakValueDictionary()
        self.stats = {"suppressed": 0, "passed": 0, "store_errors": 0}

    @staticmethod
    def make_key(organization_id: str, camera_id: str, category: str) -> DedupKey:
        return (organization_id, camera_id, category)

    def window_for(self, category: str) -> float:
        return self.windows.get(category, settings.DEDUP_WINDOW_STANDARD_SECONDS)

    def lock_for(self, organization_id: str, camera_id: str, category: str) -> asyncio.Lock:
        """
        Lock serializing check-persist-record for one key.

        Locks are held weakly and disappear once no detection holds or waits on them.
        """
        key = self.make_key(organization_id, camera_id, category)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def should_suppress(
        self,
        organization_id: str,
        camera_id: str,
        category: str,
        now: datetime,
    ) -> bool:
        """
        Check whether a detection falls inside the window of the last accepted one.

        Returns:
            True to suppress. False when the store is unavailable.
        """
        key = self.make_key(organization_id, camera_id, category)
        try:
            last = self.store.get_last(key)
        except Exception as e:
            self.stats["store_errors"] += 1
            logger.warning(
                f"Dedup window store unavailable, not suppressing: {e}",
                extra={
                    "event_type": "dedup_store_error",
                    "organization_id": organization_id,
                    "camera_id": camera_id,
                    "category": category,
                    "error_type": type(e).__name__,
                }
            )
            return False

        if last is None:
            self.stats["passed"] += 1
            return False

        window = self.window_for(category)
        elapsed = now.timestamp() - last
        # Out-of-order arrivals count against the window too
        if abs(elapsed) < window:
            self.stats["suppressed"] += 1
            logger.debug(
                f"Suppressing {category} on camera {camera_id}: {elapsed:.1f}s since last accepted (window {window}s)",
                extra={
                    "event_type": "detection_deduplicated",
                    "organization_id": organization_id,
                    "camera_id": camera_id,
                    "category": category,
                    "elapsed_seconds": elapsed,
                    "window_seconds": window,
                }
            )
            return True

        self.stats["passed"] += 1
        return False

    def record_accepted(
        self,
        organization_id: str,
        camera_id: str,
        category: str,
        now: datetime,
    ) -> None:
        """Record an accepted (persisted) detection. Store failures are logged, not raised."""
        key = self.make_key(organization_id, camera_id, category)
        try:
            self.store.set_last(key, now.timestamp())
        except Exception as e:
            self.stats["store_errors"] += 1
            logger.warning(
                f"Failed to record dedup window: {e}",
                extra={
                    "event_type": "dedup_store_error",
                    "organization_id": organization_id,
                    "camera_id": camera_id,
                    "category": category,
                    "error_type": type(e).__name__,
                }
            )

    def prune_expired(self, now: datetime) -> int:
        """
        Drop window state that can no longer suppress anything.

        Keys are kept for twice the longest window so late, out-of-order
        detections are still caught. Stores without `prune` are left alone.
        """
        prune = getattr(self.store, "prune", None)
        if prune is None:
            return 0
        longest = max(self.windows.values(), default=settings.DEDUP_WINDOW_LONG_SECONDS)
        removed = prune(now.timestamp() - 2 * longest)
        if removed:
            logger.debug(f"Pruned {removed} expired dedup window(s)", extra={"pruned": removed})
        return removed
