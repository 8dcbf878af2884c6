from __future__ import annotations

import time

from services.modsec import BatchResult, ModsecProcessor, ModsecWorker
from tests.fixtures.modsec_transactions import direct_envelope


class _FakeProcessor:
    def __init__(self, backlog: int = 0, *, fail: bool = False) -> None:
        self.backlog = backlog
        self.fail = fail
        self.batches = []

    def count_unprocessed(self) -> int:
        if self.fail:
            raise RuntimeError("db down")
        return self.backlog

    def process_all(self, organization_id=None, batch_size=100):
        self.batches.append((organization_id, batch_size))
        n = min(self.backlog, batch_size)
        self.backlog -= n
        return BatchResult(processed=n)


def test_idle_iteration_waits_poll_interval():
    worker = ModsecWorker(_FakeProcessor(0), poll_seconds=3)
    assert worker.run_iteration() == 3
    assert worker.iterations == 1


def test_full_batch_polls_again_immediately():
    processor = _FakeProcessor(10)
    worker = ModsecWorker(processor, batch_size=5, poll_seconds=3, organization_id="org-1")
    assert worker.run_iteration() == 0
    assert processor.batches == [("org-1", 5)]


def test_partial_batch_waits():
    worker = ModsecWorker(_FakeProcessor(2), batch_size=5, poll_seconds=3)
    assert worker.run_iteration() == 3


def test_error_backs_off():
    worker = ModsecWorker(_FakeProcessor(fail=True), poll_seconds=2)
    assert worker.run_iteration() == 4


def test_stop_interrupts_wait():
    worker = ModsecWorker(_FakeProcessor(0), poll_seconds=60)
    worker.start()
    time.sleep(0.05)
    started = time.monotonic()
    worker.stop(timeout=5)
    assert time.monotonic() - started < 5
    assert worker.stopped is True


def test_worker_drains_real_backlog(add_landing):
    for _ in range(3):
        add_landing(direct_envelope())
    processor = ModsecProcessor()
    worker = ModsecWorker(processor, batch_size=2, poll_seconds=1)

    worker.run_iteration()

    assert processor.count_unprocessed() == 0
