"""Single-instance lock for Drop Uploader.

Holds a listening socket on a reserved loopback port for the lifetime of
the process.  Only one process can bind the port, so a second daemon
configured with the same ``lock_port`` fails to start instead of racing
the first one for uploads and deletions.  The OS drops the socket when
the process dies, so a crash never leaves a stale lock behind.
"""

from __future__ import annotations

import enum
import logging
import socket
import threading

from drop_upload.errors import LockError

logger = logging.getLogger(__name__)

_LOCK_HOST = "127.0.0.1"


class LockStatus(enum.Enum):
    """Outcome of an acquisition attempt."""

    GRANTED = "granted"
    RETRY_EXHAUSTED = "retry_exhausted"


class InstanceLock:
    """Port-based mutual exclusion keyed by *port*.

    Usage:
        lock = InstanceLock(port, retries=2, retry_delay=1.0)
        if lock.acquire() is LockStatus.RETRY_EXHAUSTED:
            ...abort...
        ...
        lock.release()

    or, raising LockError when the port stays busy:
        with InstanceLock(port):
            ...
    """

    def __init__(self, port: int, retries: int = 0, retry_delay: float = 1.0):
        self.port = port
        self._retries = max(0, retries)
        self._retry_delay = retry_delay
        self._sock: socket.socket | None = None
        self._wait = threading.Event()

    @property
    def held(self) -> bool:
        return self._sock is not None

    def acquire(self) -> LockStatus:
        """Try to bind the lock port, retrying up to the configured budget."""
        if self._sock is not None:
            return LockStatus.GRANTED

        attempts = 1 + self._retries
        for attempt in range(1, attempts + 1):
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            try:
                sock.bind((_LOCK_HOST, self.port))
                sock.listen(1)
            except OSError as exc:
                sock.close()
                logger.warning(
                    "Port lock %d busy (attempt %d/%d): %s",
                    self.port, attempt, attempts, exc,
                )
                if attempt < attempts:
                    self._wait.wait(self._retry_delay)
                continue
            self._sock = sock
            logger.info("Acquired port lock %d", self.port)
            return LockStatus.GRANTED

        return LockStatus.RETRY_EXHAUSTED

    def release(self) -> None:
        """Give the port back.  Safe to call when not held."""
        if self._sock is None:
            return
        try:
            self._sock.close()
        finally:
            self._sock = None
        logger.info("Released port lock %d", self.port)

    def __enter__(self) -> "InstanceLock":
        if self.acquire() is LockStatus.RETRY_EXHAUSTED:
            raise LockError(f"port lock {self.port} is held by another instance")
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
