"""Shared fixtures for Drop Uploader tests."""

from __future__ import annotations

import hashlib
import os
import re
import threading
from collections.abc import Callable
from pathlib import Path

import pytest

from drop_upload.errors import RemoteStoreError
from drop_upload.remote import ObjectInfo, PutResult


class FakeStore:
    """In-memory RemoteStore honouring the only-if-absent precondition.

    ``fail_next`` holds scripted PutResults (or exceptions) consumed one per
    put before normal behaviour applies.  ``put_hook`` runs inside put,
    while the upload is "in flight".
    """

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.puts: list[str] = []
        self.infos: list[str] = []
        self.fail_next: list[PutResult | Exception] = []
        self.info_error: Exception | None = None
        self.put_hook: Callable[[str], None] | None = None
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def put(self, remote_name, stream, only_if_absent=True):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            self.puts.append(remote_name)
            data = stream.read()
            if self.put_hook:
                self.put_hook(remote_name)
            if self.fail_next:
                scripted = self.fail_next.pop(0)
                if isinstance(scripted, Exception):
                    raise scripted
                return scripted
            if only_if_absent and remote_name in self.objects:
                return PutResult.precondition_failed()
            self.objects[remote_name] = data
            return PutResult.ok()
        finally:
            with self._lock:
                self.active -= 1

    def info(self, remote_name):
        self.infos.append(remote_name)
        if self.info_error:
            raise self.info_error
        if remote_name not in self.objects:
            raise RemoteStoreError(f"no such object: {remote_name}")
        digest = hashlib.sha256(self.objects[remote_name]).hexdigest()
        return ObjectInfo(remote_name, "sha256", digest, len(self.objects[remote_name]))


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def watch_dir(tmp_path: Path) -> Path:
    d = tmp_path / "outgoing"
    d.mkdir()
    return d


@pytest.fixture
def log_patterns() -> list[re.Pattern[str]]:
    return [re.compile(r"\.log$")]


def write_file(directory: Path, name: str, data: bytes = b"payload") -> str:
    """Create *name* under *directory* and return its absolute path."""
    path = directory / name
    path.write_bytes(data)
    return os.path.abspath(path)
