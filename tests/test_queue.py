"""Tests for the round-robin upload queue."""

from __future__ import annotations

import threading

from drop_upload.queue import UploadQueue


class TestReconcile:
    def test_new_files_appended_sorted(self) -> None:
        q = UploadQueue()
        added, removed = q.reconcile({"/w/b.log", "/w/a.log"})
        assert added == ["/w/a.log", "/w/b.log"]
        assert removed == []
        assert q.snapshot() == ["/w/a.log", "/w/b.log"]

    def test_vanished_files_removed(self) -> None:
        q = UploadQueue(["/w/a.log", "/w/b.log", "/w/c.log"])
        added, removed = q.reconcile({"/w/a.log", "/w/c.log"})
        assert removed == ["/w/b.log"]
        assert added == []
        assert q.snapshot() == ["/w/a.log", "/w/c.log"]

    def test_adjacent_vanished_files_all_removed(self) -> None:
        q = UploadQueue(["/w/a.log", "/w/b.log", "/w/c.log", "/w/d.log"])
        q.reconcile({"/w/d.log"})
        assert q.snapshot() == ["/w/d.log"]

    def test_existing_order_preserved(self) -> None:
        q = UploadQueue(["/w/c.log", "/w/a.log"])
        q.reconcile({"/w/a.log", "/w/b.log", "/w/c.log"})
        assert q.snapshot() == ["/w/c.log", "/w/a.log", "/w/b.log"]

    def test_idempotent(self) -> None:
        q = UploadQueue()
        scan = {"/w/a.log", "/w/b.log"}
        q.reconcile(scan)
        first = q.snapshot()
        added, removed = q.reconcile(scan)
        assert (added, removed) == ([], [])
        assert q.snapshot() == first

    def test_in_flight_not_readded(self) -> None:
        q = UploadQueue(["/w/a.log"])
        assert q.begin() == "/w/a.log"
        q.reconcile({"/w/a.log", "/w/b.log"})
        assert q.snapshot() == ["/w/b.log"]

    def test_in_flight_exempt_from_removal(self) -> None:
        q = UploadQueue(["/w/a.log"])
        q.begin()
        q.reconcile(set())
        assert q.in_flight == "/w/a.log"
        # A failed attempt still brings it back; the next scan then drops it.
        assert q.complete(requeue=True) == "/w/a.log"
        assert q.snapshot() == ["/w/a.log"]
        q.reconcile(set())
        assert len(q) == 0


class TestBeginComplete:
    def test_begin_empty(self) -> None:
        assert UploadQueue().begin() is None

    def test_single_slot(self) -> None:
        q = UploadQueue(["/w/a.log", "/w/b.log"])
        assert q.begin() == "/w/a.log"
        assert q.begin() is None
        q.complete(requeue=False)
        assert q.begin() == "/w/b.log"

    def test_requeue_goes_to_tail(self) -> None:
        q = UploadQueue(["/w/a.log", "/w/b.log", "/w/c.log"])
        q.begin()
        q.complete(requeue=True)
        assert q.snapshot() == ["/w/b.log", "/w/c.log", "/w/a.log"]
        assert q.in_flight is None

    def test_success_discards(self) -> None:
        q = UploadQueue(["/w/a.log"])
        q.begin()
        q.complete(requeue=False)
        assert q.snapshot() == []

    def test_complete_when_idle(self) -> None:
        assert UploadQueue().complete(requeue=True) is None

    def test_round_robin_rotation(self) -> None:
        q = UploadQueue(["/w/a.log", "/w/b.log", "/w/c.log"])
        order = []
        for _ in range(6):
            order.append(q.begin())
            q.complete(requeue=True)
        assert order == ["/w/a.log", "/w/b.log", "/w/c.log"] * 2


class TestConcurrency:
    def test_concurrent_reconciles_do_not_duplicate(self) -> None:
        paths = {f"/w/{i:03d}.log" for i in range(50)}
        q = UploadQueue()

        def scanner() -> None:
            for _ in range(100):
                q.reconcile(paths)

        threads = [threading.Thread(target=scanner) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert sorted(q.snapshot()) == sorted(paths)

    def test_every_path_taken_once(self) -> None:
        paths = [f"/w/{i:03d}.log" for i in range(100)]
        q = UploadQueue(paths)
        taken: list[str] = []
        taken_lock = threading.Lock()

        def worker() -> None:
            while True:
                path = q.begin()
                if path is None:
                    if not len(q) and q.in_flight is None:
                        return
                    continue
                with taken_lock:
                    taken.append(path)
                q.complete(requeue=False)

        threads = [threading.Thread(target=worker) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert sorted(taken) == paths
