"""
Headless daemon for Drop Uploader.

Wires the pieces together and runs two independent lanes:

  scan lane      list the watch folder every ``scan_interval_seconds``
                 (sooner when watchdog reports a matching file) and
                 reconcile the result into the queue
  dispatch lane  upload the queue head whenever idle, pausing
                 ``upload_cooldown_seconds`` after every attempt

Usage:
    python -m drop_upload start [CONFIG_PATH]   Run in the foreground (Ctrl-C to stop)
    python -m drop_upload check [CONFIG_PATH]   Validate the configuration and exit
"""

import logging
import logging.handlers
import signal
import sys
import threading
from pathlib import Path
from typing import Any

from watchdog.observers import Observer

from drop_upload import __app_name__, __version__
from drop_upload.config import Config, get_log_path
from drop_upload.conflict import ConflictResolver
from drop_upload.dispatcher import Dispatcher, UploadRecord
from drop_upload.errors import ConfigError, FatalRemoteError, LockError, ScanError
from drop_upload.lock import InstanceLock, LockStatus
from drop_upload.queue import UploadQueue
from drop_upload.remote import RemoteStore, S3RemoteStore
from drop_upload.scanner import DirectoryScanner, ScanTrigger

logger = logging.getLogger(__name__)


def setup_logging(cfg: Config, log_path: Path | None = None) -> None:
    """Configure rotating file log and stderr handler."""
    log_path = log_path or get_log_path()
    level = getattr(logging, cfg.log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    # Rotating file handler
    max_bytes = cfg.max_log_size_mb * 1024 * 1024
    fh = logging.handlers.RotatingFileHandler(
        str(log_path),
        maxBytes=max_bytes,
        backupCount=cfg.log_backup_count,
        encoding="utf-8",
    )
    fh.setLevel(level)
    fh.setFormatter(fmt)
    root_logger.addHandler(fh)

    # Stderr handler (supervisors capture this)
    sh = logging.StreamHandler(sys.stderr)
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root_logger.addHandler(sh)

    # botocore is chatty at DEBUG
    logging.getLogger("botocore").setLevel(max(level, logging.INFO))


class UploadService:
    """
    Owns every piece of daemon state: lock, store, queue, both lanes.

    Parameters
    ----------
    cfg : Config
        Validated configuration.
    store : RemoteStore, optional
        Remote collaborator; built from *cfg* (S3) when omitted.
    """

    def __init__(self, cfg: Config, store: RemoteStore | None = None):
        self.config = cfg
        self.queue = UploadQueue()
        self.scanner = DirectoryScanner(
            cfg.watch_folder,
            cfg.compiled_patterns(),
            stable_seconds=cfg.stable_time,
        )
        self.lock = InstanceLock(
            cfg.lock_port,
            retries=cfg.lock_retries,
            retry_delay=cfg.lock_retry_delay,
        )
        self._store = store
        self.dispatcher: Dispatcher | None = None

        self._stop = threading.Event()
        self._scan_wake = threading.Event()
        self._dispatch_wake = threading.Event()
        self._threads: list[threading.Thread] = []
        self._observer: Any | None = None
        self._exit_status = 0

    # ---- lifecycle ----

    def start(self) -> None:
        """Take the instance lock and start both lanes.

        Raises LockError when another instance holds the lock.
        """
        if self.lock.acquire() is LockStatus.RETRY_EXHAUSTED:
            logger.error(
                "could not get port lock (port %d); aborting!", self.config.lock_port
            )
            raise LockError(f"port lock {self.config.lock_port} is held by another instance")

        logger.info("ok, starting up (watching %s)", self.scanner.watch_folder)
        try:
            if self._store is None:
                self._store = S3RemoteStore.from_config(self.config)
            self.dispatcher = Dispatcher(
                self.queue,
                self._store,
                remote_prefix=self.config.remote_prefix,
                resolver=ConflictResolver(self._store),
                cooldown=self.config.upload_cooldown,
                on_upload_complete=self._on_upload_complete,
            )
            if self.config.watch_events:
                self._start_observer()
        except Exception:
            self.lock.release()
            raise

        self._stop.clear()
        self._threads = [
            threading.Thread(target=self._scan_loop, daemon=True, name="ScanLane"),
            threading.Thread(target=self._dispatch_loop, daemon=True, name="DispatchLane"),
        ]
        for thread in self._threads:
            thread.start()

    def request_stop(self) -> None:
        """Ask both lanes to finish; safe to call from a signal handler."""
        self._stop.set()
        self._scan_wake.set()
        self._dispatch_wake.set()

    def stop(self) -> None:
        """Stop both lanes (an in-flight upload runs to completion) and release the lock."""
        self.request_stop()
        for thread in self._threads:
            if thread is not threading.current_thread():
                thread.join()
        self._threads = []
        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
        self.lock.release()
        logger.info("Service stopped.")

    def wait(self, timeout: float | None = None) -> int:
        """Block until the service stops; return the process exit status."""
        self._stop.wait(timeout)
        return self._exit_status

    @property
    def is_running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    # ---- lanes ----

    def scan_once(self) -> bool:
        """Run one scan + reconcile cycle.  Returns False if the scan failed."""
        try:
            found = self.scanner.scan()
        except ScanError as exc:
            logger.error("error listing local files: %s", exc)
            return False
        self.queue.reconcile(found)
        self._dispatch_wake.set()
        return True

    def _scan_loop(self) -> None:
        try:
            while not self._stop.is_set():
                self._scan_wake.clear()
                self.scan_once()
                self._scan_wake.wait(self.config.scan_interval)
        except Exception:
            logger.critical("scan lane stopped unexpectedly", exc_info=True)
            self._abort()

    def _dispatch_loop(self) -> None:
        assert self.dispatcher is not None
        try:
            self.dispatcher.run(self._stop, self._dispatch_wake)
        except FatalRemoteError as exc:
            logger.critical("REMOTE STORE ERROR: %s", exc)
            self._abort()
        except Exception:
            logger.critical("dispatch lane stopped unexpectedly", exc_info=True)
            self._abort()

    def _abort(self) -> None:
        """A lane cannot continue: stop the whole service with status 1."""
        self._exit_status = 1
        self.request_stop()

    def _start_observer(self) -> None:
        observer = Observer()
        try:
            observer.schedule(
                ScanTrigger(self.scanner, self._scan_wake),
                self.scanner.watch_folder,
                recursive=False,
            )
            observer.start()
        except OSError as exc:
            # Periodic scans still run and report the folder problem each cycle.
            logger.warning("Filesystem events unavailable (%s); polling only.", exc)
            return
        self._observer = observer

    # ---- status ----

    def _on_upload_complete(self, rec: UploadRecord) -> None:
        logger.debug(
            "attempt finished: %s %s in %.1fs", rec.source, rec.outcome.value, rec.duration
        )

    def summary(self) -> str:
        """Return a short human-readable status line."""
        parts = [f"{len(self.queue)} queued"]
        if self.queue.in_flight:
            parts.append(f"uploading {self.queue.in_flight}")
        if self.dispatcher:
            s = self.dispatcher.stats
            parts.append(
                f"{s.total_uploaded} uploaded, {s.total_matched} matched, "
                f"{s.total_mismatched} mismatched, {s.total_failed} failed"
            )
        return "; ".join(parts)


# ======================================================================
# Foreground runner
# ======================================================================

def run_foreground(config_path: str | None = None) -> int:
    """Run the daemon until SIGINT/SIGTERM or a fatal error; return exit status."""
    try:
        cfg = Config(config_path)
        cfg.validate()
    except ConfigError as exc:
        print(f"ERROR: loading config file: {exc}", file=sys.stderr)
        return 1

    setup_logging(cfg)
    logger.info("%s %s starting.", __app_name__, __version__)

    service = UploadService(cfg)
    try:
        service.start()
    except LockError:
        return 1
    except FatalRemoteError as exc:
        logger.critical("REMOTE STORE ERROR: %s", exc)
        return 1

    def _handler(sig, frame):
        logger.info("Signal %d received; shutting down.", sig)
        service.request_stop()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)

    status = service.wait()
    logger.info("Final status: %s", service.summary())
    service.stop()
    return status


def check_config(config_path: str | None = None) -> int:
    """Validate the configuration and report problems."""
    try:
        cfg = Config(config_path)
        cfg.validate()
    except ConfigError as exc:
        print(f"Configuration invalid: {exc}", file=sys.stderr)
        return 1
    print(f"Configuration OK: {cfg.path}")
    return 0


# ======================================================================
# CLI entry
# ======================================================================

def main(argv: list[str] | None = None) -> int:
    """Entry point for daemon control."""
    args = list(sys.argv[1:] if argv is None else argv)
    cmd = args.pop(0) if args and args[0] in ("start", "check") else "start"
    config_path = args[0] if args else None
    if len(args) > 1:
        _show_help()
        return 2

    if cmd == "check":
        return check_config(config_path)
    return run_foreground(config_path)


def _show_help() -> None:
    print(f"{__app_name__}: background service")
    print()
    print("Usage:")
    print("  python -m drop_upload start [CONFIG_PATH]   Run in foreground (Ctrl-C to stop)")
    print("  python -m drop_upload check [CONFIG_PATH]   Validate the configuration")


if __name__ == "__main__":
    sys.exit(main())
