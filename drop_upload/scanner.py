"""Watch-folder scanning for Drop Uploader.

``DirectoryScanner`` is the authoritative, periodic listing of eligible
files.  ``ScanTrigger`` is a watchdog handler that wakes the scan loop
early when a matching file appears, so new files do not have to wait a
whole scan interval.
"""

from __future__ import annotations

import logging
import os
import re
import stat
import threading
import time
from collections.abc import Iterable

from watchdog.events import FileSystemEvent, FileSystemEventHandler

from drop_upload.errors import ScanError

logger = logging.getLogger(__name__)


def name_matches(name: str, patterns: Iterable[re.Pattern[str]]) -> bool:
    """Return True if *name* matches at least one pattern (search semantics)."""
    return any(p.search(name) for p in patterns)


class DirectoryScanner:
    """Lists regular files directly under *watch_folder* whose names match.

    Parameters
    ----------
    watch_folder : str
        Directory to list (not recursive).
    patterns : list of compiled regular expressions
        A file is eligible when its name matches any of them.
    stable_seconds : float
        Only report files whose mtime is at least this old.  0 = off.
    """

    def __init__(
        self,
        watch_folder: str,
        patterns: list[re.Pattern[str]],
        stable_seconds: float = 0.0,
    ):
        self.watch_folder = os.path.abspath(watch_folder)
        self._patterns = list(patterns)
        self._stable_seconds = stable_seconds

    def matches(self, name: str) -> bool:
        return name_matches(name, self._patterns)

    def scan(self) -> set[str]:
        """
        Return the absolute paths of eligible files.

        Raises ScanError if the folder cannot be listed or a matching
        entry cannot be stat-ed; the caller skips this cycle.
        """
        try:
            names = os.listdir(self.watch_folder)
        except OSError as exc:
            raise ScanError(f"cannot list {self.watch_folder}: {exc}") from exc

        now = time.time()
        found = set()
        for name in names:
            if not self.matches(name):
                continue
            path = os.path.join(self.watch_folder, name)
            try:
                st = os.lstat(path)
            except OSError as exc:
                raise ScanError(f"cannot stat {path}: {exc}") from exc
            if not stat.S_ISREG(st.st_mode):
                continue
            if self._stable_seconds and now - st.st_mtime < self._stable_seconds:
                logger.debug("Not yet stable: %s", path)
                continue
            found.add(path)
        return found


class ScanTrigger(FileSystemEventHandler):
    """Watchdog handler that sets *wake* when a matching file changes."""

    def __init__(self, scanner: DirectoryScanner, wake: threading.Event):
        super().__init__()
        self._scanner = scanner
        self._wake = wake

    def _poke(self, path: str | bytes) -> None:
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        if not path:
            return
        if self._scanner.matches(os.path.basename(path)):
            logger.debug("Filesystem event for %s; waking scanner", path)
            self._wake.set()

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._poke(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._poke(event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._poke(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._poke(event.src_path)
            self._poke(getattr(event, "dest_path", ""))
