"""
Cron orchestration for the ModSec landing migration.

One scheduler object is built at process startup and handed to whatever
needs its status (the API keeps it on app.state). A tick that fires while
the previous run is still in flight is skipped, never queued.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from api.config.env import ProcessingSettings
from api.metrics import MODSEC_CRON_RUNS
from services.modsec.processor import BatchResult, ModsecProcessor

log = logging.getLogger("edgeguard.modsec.cron")

JOB_ID = "modsec-landing-migration"
_MAX_LOGGED_ERRORS = 10


class ModsecCronScheduler:
    def __init__(
        self,
        processor: ModsecProcessor,
        settings: Optional[ProcessingSettings] = None,
    ) -> None:
        self._processor = processor
        self._settings = settings or ProcessingSettings.from_env()
        self._scheduler: Optional[BackgroundScheduler] = None
        self._lock = threading.Lock()
        self._in_flight = False

    @property
    def settings(self) -> ProcessingSettings:
        return self._settings

    def start(self) -> bool:
        """Install the timer. Returns False when disabled or misconfigured."""
        if not self._settings.cron_enabled:
            log.info("modsec.cron disabled (EG_MODSEC_CRON_ENABLED=false)")
            return False
        if self._scheduler is not None:
            return True

        # unknown time zones surface as KeyError subclasses
        try:
            trigger = CronTrigger.from_crontab(
                self._settings.cron_schedule, timezone=self._settings.cron_timezone
            )
            scheduler = BackgroundScheduler(timezone=self._settings.cron_timezone)
        except (ValueError, LookupError) as exc:
            log.error(
                "modsec.cron invalid schedule=%r tz=%s err=%s",
                self._settings.cron_schedule,
                self._settings.cron_timezone,
                exc,
            )
            return False

        # overlap is decided by run_once(), so APScheduler must not drop ticks itself
        scheduler.add_job(
            self.run_once,
            trigger=trigger,
            id=JOB_ID,
            max_instances=2,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        log.info(
            "modsec.cron started schedule=%r tz=%s",
            self._settings.cron_schedule,
            self._settings.cron_timezone,
        )
        return True

    def stop(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        log.info("modsec.cron stopped")

    def is_processing(self) -> bool:
        with self._lock:
            return self._in_flight

    def status(self) -> Dict[str, Any]:
        return {
            "enabled": self._settings.cron_enabled,
            "schedule": self._settings.cron_schedule,
            "timezone": self._settings.cron_timezone,
            "running": self._scheduler is not None,
            "is_processing": self.is_processing(),
        }

    def _try_enter(self) -> bool:
        with self._lock:
            if self._in_flight:
                return False
            self._in_flight = True
            return True

    def _leave(self) -> None:
        with self._lock:
            self._in_flight = False

    def run_once(self) -> Optional[BatchResult]:
        if not self._try_enter():
            MODSEC_CRON_RUNS.labels(result="skipped").inc()
            log.info("modsec.cron run already in progress, skipping tick")
            return None

        started = time.monotonic()
        try:
            unprocessed = self._processor.count_unprocessed()
            if unprocessed == 0:
                MODSEC_CRON_RUNS.labels(result="idle").inc()
                log.info("modsec.cron no records to process")
                return BatchResult()

            log.info(
                "modsec.cron run start unprocessed=%s batch_size=%s",
                unprocessed,
                self._settings.batch_size,
            )
            result = self._processor.process_all(
                self._settings.default_organization_id, self._settings.batch_size
            )
            self._log_result(result, time.monotonic() - started)
            MODSEC_CRON_RUNS.labels(result="completed").inc()
            return result
        except Exception:
            MODSEC_CRON_RUNS.labels(result="error").inc()
            log.exception(
                "modsec.cron run error duration_ms=%d",
                int((time.monotonic() - started) * 1000),
            )
            return None
        finally:
            self._leave()

    @staticmethod
    def _log_result(result: BatchResult, duration_s: float) -> None:
        log.info(
            "modsec.cron run done processed=%s failed=%s skipped=%s duration_ms=%d",
            result.processed,
            result.failed,
            result.skipped,
            int(duration_s * 1000),
        )
        if not result.errors:
            return
        if len(result.errors) > _MAX_LOGGED_ERRORS:
            log.warning("modsec.cron %s errors (too many to display)", len(result.errors))
            return
        for err in result.errors:
            log.warning("modsec.cron error id=%s err=%s", err["id"], err["error"][:100])
