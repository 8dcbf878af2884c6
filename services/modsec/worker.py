from __future__ import annotations

import logging
import threading
from typing import Optional

from api.config.env import ProcessingSettings
from services.modsec.processor import ModsecProcessor

log = logging.getLogger("edgeguard.modsec.worker")


class ModsecWorker:
    """
    Continuous landing migration for deployments that run without the cron.

    Waits use a threading.Event, so stop() returns the loop immediately
    instead of after the current poll interval.
    """

    def __init__(
        self,
        processor: ModsecProcessor,
        *,
        batch_size: int = 50,
        poll_seconds: float = 5.0,
        organization_id: Optional[str] = None,
    ) -> None:
        self._processor = processor
        self._batch_size = max(1, int(batch_size))
        self._poll_seconds = max(0.01, float(poll_seconds))
        self._organization_id = organization_id
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.iterations = 0

    @classmethod
    def from_settings(
        cls, processor: ModsecProcessor, settings: ProcessingSettings
    ) -> "ModsecWorker":
        return cls(
            processor,
            batch_size=settings.worker_batch_size,
            poll_seconds=settings.worker_poll_seconds,
            organization_id=settings.default_organization_id,
        )

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run_iteration(self) -> float:
        """One poll. Returns how long to wait before the next one."""
        self.iterations += 1
        try:
            unprocessed = self._processor.count_unprocessed()
            if unprocessed == 0:
                return self._poll_seconds

            log.info("modsec.worker found unprocessed=%s", unprocessed)
            result = self._processor.process_all(self._organization_id, self._batch_size)
            log.info(
                "modsec.worker processed=%s failed=%s skipped=%s",
                result.processed,
                result.failed,
                result.skipped,
            )
            for err in result.errors[:5]:
                log.warning("modsec.worker error id=%s err=%s", err["id"], err["error"])

            # a full batch means there is probably more waiting
            if result.processed >= self._batch_size:
                return 0.0
            return self._poll_seconds
        except Exception:
            log.exception("modsec.worker iteration failed")
            return self._poll_seconds * 2

    def run_forever(self) -> None:
        log.info(
            "modsec.worker started batch_size=%s poll_seconds=%s org=%s",
            self._batch_size,
            self._poll_seconds,
            self._organization_id or "none",
        )
        while not self._stop.is_set():
            delay = self.run_iteration()
            if delay > 0:
                self._stop.wait(delay)
        log.info("modsec.worker stopped")

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self.run_forever, name="modsec-worker", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
