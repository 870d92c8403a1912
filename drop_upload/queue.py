"""Round-robin upload queue for Drop Uploader.

Files we know about are tracked in a round-robin loop.  Each one is
uploaded in turn; if an attempt fails for any reason the file goes to the
end of the line and the next one is tried.  Files with transient failures
are eventually uploaded, and files with permanent failures never block
the rest.

The queue also holds the "currently uploading" marker.  Both are guarded
by one lock, so the scan thread can reconcile while the dispatch thread
dequeues without either seeing a half-updated state.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

logger = logging.getLogger(__name__)


class UploadQueue:
    """Ordered set of pending absolute paths plus the in-flight path."""

    def __init__(self, paths: Iterable[str] = ()):
        self._items: list[str] = []
        self._in_flight: str | None = None
        self._lock = threading.Lock()
        for path in paths:
            if path not in self._items:
                self._items.append(path)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    @property
    def in_flight(self) -> str | None:
        """Return the path being uploaded right now, if any."""
        with self._lock:
            return self._in_flight

    def snapshot(self) -> list[str]:
        """Return a copy of the pending paths in queue order."""
        with self._lock:
            return list(self._items)

    def reconcile(self, scan_result: Iterable[str]) -> tuple[list[str], list[str]]:
        """
        Bring the queue in line with the latest directory scan.

        Queued paths missing from *scan_result* are dropped; unseen paths
        are appended in sorted order.  The in-flight path is neither
        dropped nor re-added.  Returns ``(added, removed)``.
        """
        current = set(scan_result)
        with self._lock:
            removed = [p for p in self._items if p not in current]
            if removed:
                self._items = [p for p in self._items if p in current]
            known = set(self._items)
            added = [
                p for p in sorted(current)
                if p not in known and p != self._in_flight
            ]
            self._items.extend(added)

        for path in removed:
            logger.info("file went away: %s", path)
        for path in added:
            logger.info("saw new file: %s", path)
        return added, removed

    def begin(self) -> str | None:
        """
        Take the head of the queue and mark it in flight.

        Returns None when the queue is empty or an upload is already in
        flight; there is never more than one.
        """
        with self._lock:
            if self._in_flight is not None or not self._items:
                return None
            self._in_flight = self._items.pop(0)
            return self._in_flight

    def complete(self, requeue: bool) -> str | None:
        """
        Clear the in-flight marker, optionally putting the path at the tail.

        Returns the path that was in flight.
        """
        with self._lock:
            path = self._in_flight
            self._in_flight = None
            if requeue and path is not None and path not in self._items:
                self._items.append(path)
            return path
