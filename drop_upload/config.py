"""Configuration management for Drop Uploader.

Stores and retrieves daemon settings from a JSON config file in the
platform-appropriate application data directory (or an explicit path).
"""

import json
import logging
import math
import re
from pathlib import Path
from typing import Any

from drop_upload.errors import ConfigError
from drop_upload.platform_utils import expand_home
from drop_upload.platform_utils import get_config_dir as _platform_config_dir
from drop_upload.platform_utils import get_log_path as _platform_log_path

logger = logging.getLogger(__name__)

DEFAULT_S3_CONFIG: dict[str, Any] = {
    "region": "us-east-1",
    "endpoint_url": "",  # blank = AWS; set for S3-compatible stores
    "profile": "",  # blank = default credential chain
    "connect_timeout_seconds": 2,
    "max_attempts": 3,
}

DEFAULT_CONFIG: dict[str, Any] = {
    "watch_folder": "",
    "remote_bucket": "",
    "remote_prefix": "",
    "match_patterns": [],  # regular expressions, e.g. ["\\.log$"]
    "lock_port": 0,
    "lock_retries": 0,  # extra attempts after the first (0 = give up at once)
    "lock_retry_delay_seconds": 1,
    "scan_interval_seconds": 10,
    "upload_cooldown_seconds": 1,
    "stable_time_seconds": 0,  # 0 = upload as soon as the file is seen
    "watch_events": True,  # wake the scanner on filesystem events
    "s3": dict(DEFAULT_S3_CONFIG),
    "log_level": "INFO",
    # ---- log rotation ----
    "max_log_size_mb": 10,
    "log_backup_count": 3,
}

# Keys checked by validate(); each numeric key is read through its property.
_STRING_KEYS = ("watch_folder", "remote_bucket", "remote_prefix", "log_level")
_S3_STRING_KEYS = ("region", "endpoint_url", "profile")
_NUMBER_KEYS = (
    ("lock_retries", "lock_retries"),
    ("lock_retry_delay_seconds", "lock_retry_delay"),
    ("scan_interval_seconds", "scan_interval"),
    ("upload_cooldown_seconds", "upload_cooldown"),
    ("stable_time_seconds", "stable_time"),
    ("max_log_size_mb", "max_log_size_mb"),
    ("log_backup_count", "log_backup_count"),
    ("s3.connect_timeout_seconds", "s3_connect_timeout"),
    ("s3.max_attempts", "s3_max_attempts"),
)


def get_config_dir() -> Path:
    """Return the platform-appropriate application config directory."""
    return _platform_config_dir()


def get_config_path() -> Path:
    """Return the path to the default configuration file."""
    return get_config_dir() / "config.json"


def get_log_path() -> Path:
    """Return the path to the log file."""
    return _platform_log_path()


class Config:
    """Configuration backed by a JSON file.

    Read-mostly: the daemon loads it once at startup.  Missing keys fall
    back to ``DEFAULT_CONFIG``; ``validate()`` must pass before the
    service is started.
    """

    def __init__(self, path: Path | str | None = None):
        """Load config from *path*, falling back to the platform default."""
        self._path = Path(path) if path else get_config_path()
        self._data: dict[str, Any] = _defaults()
        self.load()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Build a config from an in-memory mapping (no file involved)."""
        cfg = cls.__new__(cls)
        cfg._path = None
        cfg._data = _merge(data)
        return cfg

    # ---- persistence ----

    @property
    def path(self) -> Path | None:
        return self._path

    def load(self) -> None:
        """Load configuration from disk, applying defaults for missing keys."""
        if self._path.exists():
            try:
                with open(self._path, encoding="utf-8") as fh:
                    stored = json.load(fh)
            except (json.JSONDecodeError, OSError) as exc:
                raise ConfigError(f"Could not read config {self._path}: {exc}") from exc
            if not isinstance(stored, dict):
                raise ConfigError(f"Config must be a JSON object: {self._path}")
            self._data = _merge(stored)
            logger.info("Configuration loaded from %s", self._path)
        else:
            self._data = _defaults()
            self.save()
            logger.info("Created default configuration at %s", self._path)

    def save(self) -> None:
        """Persist the current configuration to disk."""
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2)
        except OSError as exc:
            logger.error("Failed to save configuration: %s", exc)

    # ---- accessors ----

    @property
    def watch_folder(self) -> str:
        """Return the watched folder, with ``~/`` expanded."""
        return expand_home(self._data["watch_folder"])

    @property
    def remote_bucket(self) -> str:
        return self._data["remote_bucket"]

    @property
    def remote_prefix(self) -> str:
        """Return the key prefix that uploaded names are placed under."""
        return self._data["remote_prefix"].strip("/")

    @property
    def match_patterns(self) -> list[str]:
        """Return the raw filename regular expressions, in configured order."""
        return list(self._data["match_patterns"])

    def compiled_patterns(self) -> list[re.Pattern[str]]:
        """Return the filename patterns compiled (raises ConfigError on bad regex)."""
        compiled = []
        for pattern in self.match_patterns:
            try:
                compiled.append(re.compile(pattern))
            except re.error as exc:
                raise ConfigError(f"Bad match pattern {pattern!r}: {exc}") from exc
        return compiled

    @property
    def lock_port(self) -> int:
        return int(self._data["lock_port"])

    @property
    def lock_retries(self) -> int:
        """Return how many extra lock attempts are made (minimum 0)."""
        return max(0, int(self._data["lock_retries"]))

    @property
    def lock_retry_delay(self) -> float:
        return max(0.0, float(self._data["lock_retry_delay_seconds"]))

    @property
    def scan_interval(self) -> float:
        """Return the scan period in seconds (minimum 1 s)."""
        return max(1.0, float(self._data["scan_interval_seconds"]))

    @property
    def upload_cooldown(self) -> float:
        """Return the pause after each finished upload attempt."""
        return max(0.0, float(self._data["upload_cooldown_seconds"]))

    @property
    def stable_time(self) -> float:
        """Return the minimum file age before upload (0 = off)."""
        return max(0.0, float(self._data["stable_time_seconds"]))

    @property
    def watch_events(self) -> bool:
        return bool(self._data["watch_events"])

    # ---- s3 ----

    @property
    def s3_region(self) -> str:
        return self._data["s3"]["region"]

    @property
    def s3_endpoint_url(self) -> str | None:
        return self._data["s3"]["endpoint_url"] or None

    @property
    def s3_profile(self) -> str | None:
        return self._data["s3"]["profile"] or None

    @property
    def s3_connect_timeout(self) -> float:
        return float(self._data["s3"]["connect_timeout_seconds"])

    @property
    def s3_max_attempts(self) -> int:
        return max(1, int(self._data["s3"]["max_attempts"]))

    # ---- logging ----

    @property
    def log_level(self) -> str:
        """Return the current logging level name."""
        return self._data.get("log_level", "INFO")

    @property
    def max_log_size_mb(self) -> int:
        """Return the maximum log file size in MB before rotation."""
        return max(1, int(self._data.get("max_log_size_mb", 10)))

    @property
    def log_backup_count(self) -> int:
        """Return the number of rotated log backups to keep."""
        return max(0, int(self._data.get("log_backup_count", 3)))

    # ---- validation ----

    def validate(self) -> None:
        """
        Check that the daemon can run with this configuration.

        Raises ConfigError naming every problem found, not just the first.
        """
        problems = []
        for key in _STRING_KEYS:
            if not isinstance(self._data[key], str):
                problems.append(f'"{key}" must be a string')
        for key in _S3_STRING_KEYS:
            if not isinstance(self._data["s3"][key], str):
                problems.append(f'"s3.{key}" must be a string')
        for key, prop in _NUMBER_KEYS:
            try:
                value = getattr(self, prop)
            except (TypeError, ValueError, OverflowError):
                problems.append(f'"{key}" must be a number')
                continue
            if not math.isfinite(value):
                problems.append(f'"{key}" must be a finite number')

        if not self._data["watch_folder"]:
            problems.append('config needs "watch_folder"')
        if not self.remote_bucket:
            problems.append('config needs "remote_bucket"')
        patterns = self._data["match_patterns"]
        if not isinstance(patterns, list) or not patterns:
            problems.append('config needs "match_patterns" (a list of regular expressions)')
        elif not all(isinstance(p, str) for p in patterns):
            problems.append('"match_patterns" must contain only strings')
        else:
            try:
                self.compiled_patterns()
            except ConfigError as exc:
                problems.append(str(exc))
        try:
            port = self.lock_port
        except (TypeError, ValueError, OverflowError):
            port = 0
        if not 0 < port < 65536:
            problems.append('config needs "lock_port" (1-65535)')
        if problems:
            raise ConfigError("; ".join(problems))

    def is_configured(self) -> bool:
        """Return True when the configuration passes validation."""
        try:
            self.validate()
        except ConfigError:
            return False
        return True


def _defaults() -> dict[str, Any]:
    data = dict(DEFAULT_CONFIG)
    data["s3"] = dict(DEFAULT_S3_CONFIG)
    return data


def _merge(stored: dict[str, Any]) -> dict[str, Any]:
    """Merge stored values over defaults so new keys get defaults."""
    data = {**_defaults(), **stored}
    s3 = stored.get("s3") or {}
    if not isinstance(s3, dict):
        raise ConfigError('"s3" must be a JSON object')
    data["s3"] = {**DEFAULT_S3_CONFIG, **s3}
    return data
