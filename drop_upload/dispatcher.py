"""
Upload dispatcher for Drop Uploader.

Pulls one path at a time from the round-robin queue and drives it to a
terminal outcome:

  UPLOADED           put accepted                    -> delete local file
  CONFLICT_MATCH     key existed with equal content  -> delete local file
  CONFLICT_MISMATCH  key existed with other content  -> requeue at tail
  FAILED             read error or remote error      -> requeue at tail

Only one attempt is ever in flight; the queue's in-flight marker enforces
this even if ``step()`` were called from several threads.
"""

import enum
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from drop_upload.conflict import ConflictOutcome, ConflictResolver
from drop_upload.errors import FatalRemoteError
from drop_upload.queue import UploadQueue
from drop_upload.remote import PutStatus, RemoteStore, remote_name_for

logger = logging.getLogger(__name__)

_HISTORY_LIMIT = 1000


class UploadOutcome(enum.Enum):
    UPLOADED = "uploaded"
    CONFLICT_MATCH = "conflict_match"
    CONFLICT_MISMATCH = "conflict_mismatch"
    FAILED = "failed"

    @property
    def removes_local(self) -> bool:
        """True when the remote copy is known good and the local file can go."""
        return self in (UploadOutcome.UPLOADED, UploadOutcome.CONFLICT_MATCH)


class DispatchState(enum.Enum):
    IDLE = "idle"
    UPLOADING = "uploading"


@dataclass
class UploadRecord:
    """Record of a single upload attempt."""
    source: str
    remote_name: str
    size_bytes: int = 0
    started: float = 0.0
    finished: float = 0.0
    outcome: UploadOutcome = UploadOutcome.FAILED
    deleted: bool = False
    error: str = ""

    @property
    def duration(self) -> float:
        if self.finished and self.started:
            return self.finished - self.started
        return 0.0


@dataclass
class UploadStats:
    """Aggregated upload statistics for this run."""
    total_uploaded: int = 0
    total_matched: int = 0
    total_mismatched: int = 0
    total_failed: int = 0
    total_bytes: int = 0
    last_uploaded_file: str = ""
    history: list[UploadRecord] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(self, rec: UploadRecord) -> None:
        with self._lock:
            self.history.append(rec)
            if rec.outcome is UploadOutcome.UPLOADED:
                self.total_uploaded += 1
                self.total_bytes += rec.size_bytes
                self.last_uploaded_file = rec.remote_name
            elif rec.outcome is UploadOutcome.CONFLICT_MATCH:
                self.total_matched += 1
            elif rec.outcome is UploadOutcome.CONFLICT_MISMATCH:
                self.total_mismatched += 1
            else:
                self.total_failed += 1
            if len(self.history) > _HISTORY_LIMIT:
                self.history = self.history[-_HISTORY_LIMIT:]


class Dispatcher:
    """
    Serialized upload state machine.

    Parameters
    ----------
    queue : UploadQueue
        Shared with the scan loop.
    store : RemoteStore
        Remote collaborator (put / info).
    remote_prefix : str
        Key prefix uploads are placed under.
    resolver : ConflictResolver, optional
        Defaults to a resolver over *store*.
    cooldown : float
        Seconds to wait after each terminal outcome before the next dequeue.
    on_upload_complete : callable, optional
        Invoked with the UploadRecord after every attempt.
    """

    def __init__(
        self,
        queue: UploadQueue,
        store: RemoteStore,
        remote_prefix: str = "",
        resolver: ConflictResolver | None = None,
        cooldown: float = 1.0,
        on_upload_complete: Callable[[UploadRecord], None] | None = None,
    ):
        self._queue = queue
        self._store = store
        self._remote_prefix = remote_prefix
        self._resolver = resolver or ConflictResolver(store)
        self._cooldown = cooldown
        self._on_upload_complete = on_upload_complete
        self.stats = UploadStats()

    @property
    def state(self) -> DispatchState:
        if self._queue.in_flight is None:
            return DispatchState.IDLE
        return DispatchState.UPLOADING

    @property
    def uploading(self) -> str | None:
        return self._queue.in_flight

    # ---- one attempt ----

    def step(self) -> UploadOutcome | None:
        """
        Upload the head of the queue, if any, and apply the outcome.

        Returns None when there was nothing to do.  Any other error from
        the store or the resolver counts as FAILED for this file.
        FatalRemoteError is re-raised after the path has been put back on
        the queue.
        """
        path = self._queue.begin()
        if path is None:
            return None

        rec = UploadRecord(
            source=path,
            remote_name=remote_name_for(self._remote_prefix, os.path.basename(path)),
            started=time.time(),
        )
        try:
            rec.outcome = self._attempt(path, rec)
        except FatalRemoteError as exc:
            rec.outcome = UploadOutcome.FAILED
            rec.error = str(exc)
            self._finish(path, rec)
            raise
        except Exception as exc:
            logger.exception("unexpected upload error (%s)", path)
            rec.outcome = UploadOutcome.FAILED
            rec.error = f"{type(exc).__name__}: {exc}"
        self._finish(path, rec)
        return rec.outcome

    def _attempt(self, path: str, rec: UploadRecord) -> UploadOutcome:
        logger.info("uploading: %s -> %s", path, rec.remote_name)
        try:
            rec.size_bytes = os.path.getsize(path)
            with open(path, "rb") as fh:
                result = self._store.put(rec.remote_name, fh, only_if_absent=True)
        except OSError as exc:
            rec.error = str(exc)
            logger.error("file read error (%s): %s", path, exc)
            return UploadOutcome.FAILED

        if result.status is PutStatus.OK:
            logger.info("uploaded: %s (%d bytes)", rec.remote_name, rec.size_bytes)
            return UploadOutcome.UPLOADED

        if result.status is PutStatus.PRECONDITION_FAILED:
            logger.info("file exists: %s", rec.remote_name)
            if self._resolver.resolve(path, rec.remote_name) is ConflictOutcome.MATCH:
                return UploadOutcome.CONFLICT_MATCH
            rec.error = "remote object exists with different content"
            return UploadOutcome.CONFLICT_MISMATCH

        rec.error = result.error
        logger.error("upload error (%s): %s", path, result.error)
        return UploadOutcome.FAILED

    def _finish(self, path: str, rec: UploadRecord) -> None:
        """Apply the outcome, then release the in-flight slot."""
        if rec.outcome.removes_local:
            logger.info("delete: %s", path)
            try:
                os.unlink(path)
                rec.deleted = True
            except OSError as exc:
                # Remote copy is durable; a leftover local file is only a cleanup miss.
                logger.error("delete error (%s): %s", path, exc)
        self._queue.complete(requeue=not rec.outcome.removes_local)
        rec.finished = time.time()

        self.stats.record(rec)
        if self._on_upload_complete:
            try:
                self._on_upload_complete(rec)
            except Exception:
                logger.exception("Error in on_upload_complete callback")

    # ---- dispatch loop ----

    def run(
        self,
        stop: threading.Event,
        wake: threading.Event,
        idle_poll: float = 1.0,
    ) -> None:
        """
        Dispatch until *stop* is set.

        After each attempt wait the cooldown; when idle, sleep until the
        scan loop sets *wake* (or *idle_poll* elapses).
        """
        while not stop.is_set():
            wake.clear()
            outcome = self.step()
            if outcome is None:
                wake.wait(idle_poll)
            else:
                stop.wait(self._cooldown)
