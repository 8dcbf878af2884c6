"""
ModSec landing -> Log batch processor.

Per record: fetch -> normalize -> sanitize -> project -> claim -> insert log.
The claim (conditional processed=false -> true flip) and the log insert are
committed together, so a record is either fully migrated or left untouched
for a later run, and two concurrent callers can never both write a log for
the same landing row.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.db import get_sessionmaker
from api.db_models import LogRecord, ModsecLanding
from api.metrics import MODSEC_BATCH_SECONDS, MODSEC_RECORDS
from services.modsec.errors import (
    LandingRecordAlreadyProcessed,
    LandingRecordNotFound,
    ModsecProcessingError,
    SanitizationError,
)
from services.modsec.normalizer import normalize_payload
from services.modsec.projector import project_log_entry
from services.modsec.sanitizer import sanitize_json

log = logging.getLogger("edgeguard.modsec.processor")

SessionFactory = Callable[[], Session]
LandingId = Union[int, str]

_DIAGNOSTIC_FIELDS = ("headers", "response_header", "rule", "message", "user_agent")


@dataclass
class RecordOutcome:
    success: bool
    log_id: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success}
        if self.log_id is not None:
            out["log_id"] = self.log_id
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass
class BatchResult:
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


def _coerce_id(landing_id: LandingId) -> int:
    if isinstance(landing_id, bool):
        raise LandingRecordNotFound(landing_id)
    try:
        return int(str(landing_id).strip())
    except ValueError:
        raise LandingRecordNotFound(landing_id) from None


def _diagnostic_dump(entry: Dict[str, Any]) -> str:
    try:
        return json.dumps(
            {k: entry.get(k) for k in _DIAGNOSTIC_FIELDS},
            default=str,
            ensure_ascii=True,
        )
    except (TypeError, ValueError):
        return "<unserializable>"


class ModsecProcessor:
    def __init__(self, session_factory: Optional[SessionFactory] = None) -> None:
        self._session_factory = session_factory

    def _session(self) -> Session:
        factory = self._session_factory or get_sessionmaker()
        return factory()

    # ------------------------------------------------------------------
    # single record
    # ------------------------------------------------------------------

    def process_record(
        self, landing_id: LandingId, organization_id: Optional[str] = None
    ) -> RecordOutcome:
        try:
            log_id = self._process_record(_coerce_id(landing_id), organization_id)
        except LandingRecordAlreadyProcessed as exc:
            MODSEC_RECORDS.labels(outcome="skipped").inc()
            return RecordOutcome(success=False, error=str(exc), skipped=True)
        except ModsecProcessingError as exc:
            MODSEC_RECORDS.labels(outcome="failed").inc()
            log.warning("modsec.record_failed id=%s err=%s", landing_id, exc)
            return RecordOutcome(success=False, error=str(exc))
        except SQLAlchemyError as exc:
            MODSEC_RECORDS.labels(outcome="failed").inc()
            log.error("modsec.record_db_error id=%s err=%s", landing_id, exc)
            return RecordOutcome(success=False, error=str(exc))
        except Exception as exc:
            MODSEC_RECORDS.labels(outcome="failed").inc()
            log.exception("modsec.record_unexpected id=%s", landing_id)
            return RecordOutcome(success=False, error=str(exc) or type(exc).__name__)

        MODSEC_RECORDS.labels(outcome="processed").inc()
        return RecordOutcome(success=True, log_id=log_id)

    def _process_record(self, landing_id: int, organization_id: Optional[str]) -> str:
        with self._session() as db:
            landing = db.get(ModsecLanding, landing_id)
            if landing is None:
                raise LandingRecordNotFound(landing_id)
            if landing.processed:
                raise LandingRecordAlreadyProcessed(landing_id)

            doc = normalize_payload(landing.data)
            sanitized = sanitize_json(doc)
            if not isinstance(sanitized, dict) or not sanitized.get("transaction"):
                raise SanitizationError("Failed to sanitize transaction data")

            entry = project_log_entry(sanitized, organization_id)

            try:
                claimed = db.execute(
                    update(ModsecLanding)
                    .where(
                        ModsecLanding.id == landing_id,
                        ModsecLanding.processed.is_(False),
                    )
                    .values(processed=True)
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount != 1:
                    db.rollback()
                    raise LandingRecordAlreadyProcessed(landing_id)

                record = LogRecord(**entry)
                db.add(record)
                db.flush()
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                log.error(
                    "modsec.log_insert_failed id=%s fields=%s",
                    landing_id,
                    _diagnostic_dump(entry),
                )
                raise

            return record.id

    # ------------------------------------------------------------------
    # backlog
    # ------------------------------------------------------------------

    def _fetch_page(self, *, limit: int, offset: int) -> List[int]:
        with self._session() as db:
            stmt = (
                select(ModsecLanding.id)
                .where(ModsecLanding.processed.is_(False))
                .order_by(ModsecLanding.time.asc(), ModsecLanding.id.asc())
                .limit(limit)
                .offset(offset)
            )
            return [int(row) for row in db.execute(stmt).scalars().all()]

    def process_all(
        self, organization_id: Optional[str] = None, batch_size: int = 100
    ) -> BatchResult:
        """
        Drain every unprocessed landing record, oldest first.

        The page offset only advances past rows this run left unprocessed
        (failures); migrated rows drop out of the processed=false filter on
        their own. A short page ends the scan.
        """
        batch_size = max(1, int(batch_size))
        result = BatchResult()
        offset = 0
        started = time.perf_counter()

        try:
            while True:
                ids = self._fetch_page(limit=batch_size, offset=offset)
                if not ids:
                    break

                for landing_id in ids:
                    outcome = self.process_record(landing_id, organization_id)
                    if outcome.success:
                        result.processed += 1
                    elif outcome.skipped:
                        result.skipped += 1
                    else:
                        result.failed += 1
                        offset += 1
                        result.errors.append(
                            {"id": str(landing_id), "error": outcome.error or "Unknown error"}
                        )

                if len(ids) < batch_size:
                    break
        finally:
            MODSEC_BATCH_SECONDS.observe(time.perf_counter() - started)

        log.info(
            "modsec.batch_done processed=%s failed=%s skipped=%s batch_size=%s org=%s",
            result.processed,
            result.failed,
            result.skipped,
            batch_size,
            organization_id,
        )
        return result

    # ------------------------------------------------------------------
    # read side
    # ------------------------------------------------------------------

    def count_unprocessed(self) -> int:
        with self._session() as db:
            stmt = select(func.count()).select_from(ModsecLanding).where(
                ModsecLanding.processed.is_(False)
            )
            return int(db.execute(stmt).scalar_one())

    def stats(self) -> Dict[str, Any]:
        with self._session() as db:
            total = int(
                db.execute(select(func.count()).select_from(ModsecLanding)).scalar_one()
            )
            processed = int(
                db.execute(
                    select(func.count())
                    .select_from(ModsecLanding)
                    .where(ModsecLanding.processed.is_(True))
                ).scalar_one()
            )
        rate = f"{(processed / total) * 100:.2f}" if total > 0 else "0"
        return {
            "total": total,
            "processed": processed,
            "unprocessed": total - processed,
            "processing_rate": rate,
        }
