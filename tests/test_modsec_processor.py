from __future__ import annotations

import json

from sqlalchemy import func, select, update

from api.db import get_sessionmaker
from api.db_models import LogRecord, ModsecLanding
from services.modsec import ModsecProcessor
from tests.fixtures.modsec_transactions import direct_envelope, make_transaction


def _landing(landing_id: int) -> ModsecLanding:
    with get_sessionmaker()() as db:
        return db.get(ModsecLanding, landing_id)


def _log_count() -> int:
    with get_sessionmaker()() as db:
        return int(db.execute(select(func.count()).select_from(LogRecord)).scalar_one())


def _log(log_id: str) -> LogRecord:
    with get_sessionmaker()() as db:
        return db.get(LogRecord, log_id)


def test_process_record_migrates_920350(add_landing):
    landing_id = add_landing(direct_envelope(http_code=200, severity="4", rule_id="920350"))

    outcome = ModsecProcessor().process_record(landing_id, "org-1")

    assert outcome.success is True
    assert outcome.log_id
    row = _log(outcome.log_id)
    assert row.action == "warning"
    assert row.severity == "MEDIUM"
    assert row.host == "196.188.250.141"
    assert row.rule_id == "920350"
    assert row.organization_id == "org-1"
    assert _landing(landing_id).processed is True


def test_raw_string_envelope_with_403_is_blocked(add_landing):
    raw = json.dumps({"transaction": make_transaction(http_code=403, severity="0")})
    landing_id = add_landing({"raw": raw})

    outcome = ModsecProcessor().process_record(landing_id)

    assert outcome.success is True
    assert _log(outcome.log_id).action == "blocked"


def test_process_record_accepts_string_id(add_landing):
    landing_id = add_landing(direct_envelope())
    outcome = ModsecProcessor().process_record(str(landing_id))
    assert outcome.success is True


def test_missing_record_fails(sqlite_db):
    outcome = ModsecProcessor().process_record(999)
    assert outcome.success is False
    assert outcome.error == "ModsecLanding record not found"


def test_already_processed_is_rejected_without_new_log(add_landing):
    landing_id = add_landing(direct_envelope(), processed=True)

    outcome = ModsecProcessor().process_record(landing_id)

    assert outcome.success is False
    assert outcome.skipped is True
    assert outcome.error == "Record already processed"
    assert _log_count() == 0


def test_second_call_on_same_record_is_rejected(add_landing):
    landing_id = add_landing(direct_envelope())
    processor = ModsecProcessor()

    assert processor.process_record(landing_id).success is True
    again = processor.process_record(landing_id)

    assert again.success is False
    assert again.error == "Record already processed"
    assert _log_count() == 1


def test_parse_failure_leaves_record_unprocessed(add_landing):
    landing_id = add_landing({"raw": "{definitely not json"})

    outcome = ModsecProcessor().process_record(landing_id)

    assert outcome.success is False
    assert "Failed to parse transaction data" in outcome.error
    assert _landing(landing_id).processed is False
    assert _log_count() == 0


def test_process_all_drains_backlog_in_small_pages(add_landing):
    ids = [add_landing(direct_envelope()) for _ in range(5)]

    result = ModsecProcessor().process_all(batch_size=2)

    assert result.processed == 5
    assert result.failed == 0
    assert result.errors == []
    assert all(_landing(i).processed for i in ids)
    assert _log_count() == 5


def test_process_all_continues_past_failures(add_landing):
    good = [add_landing(direct_envelope()) for _ in range(2)]
    bad = add_landing({"transaction": {}})
    good.append(add_landing(direct_envelope()))
    good.append(add_landing(direct_envelope()))

    result = ModsecProcessor().process_all("org-x", batch_size=2)

    assert result.processed == 4
    assert result.failed == 1
    assert result.errors[0]["id"] == str(bad)
    assert "missing transaction" in result.errors[0]["error"]
    assert all(_landing(i).processed for i in good)
    assert _landing(bad).processed is False


def test_failed_records_are_retried_on_next_run(add_landing):
    bad = add_landing({"raw": "{broken"})
    processor = ModsecProcessor()

    first = processor.process_all(batch_size=10)
    second = processor.process_all(batch_size=10)

    assert first.failed == 1
    assert second.failed == 1
    assert second.errors[0]["id"] == str(bad)


def test_process_all_skips_already_processed_rows(add_landing):
    add_landing(direct_envelope(), processed=True)
    pending = add_landing(direct_envelope())

    result = ModsecProcessor().process_all(batch_size=10)

    assert result.processed == 1
    assert _landing(pending).processed is True
    assert _log_count() == 1


def test_process_all_empty_backlog(sqlite_db):
    result = ModsecProcessor().process_all()
    assert result.to_dict() == {"processed": 0, "failed": 0, "skipped": 0, "errors": []}


def test_stats_and_count(add_landing):
    processor = ModsecProcessor()
    assert processor.stats()["processing_rate"] == "0"

    add_landing(direct_envelope(), processed=True)
    add_landing(direct_envelope())
    add_landing(direct_envelope())

    assert processor.count_unprocessed() == 2
    stats = processor.stats()
    assert stats == {
        "total": 3,
        "processed": 1,
        "unprocessed": 2,
        "processing_rate": "33.33",
    }


def test_infinite_severity_in_raw_text_is_low_not_a_failure(add_landing):
    raw = json.dumps({"transaction": make_transaction(severity="4")})
    raw = raw.replace('"severity": "4"', '"severity": Infinity')
    assert "Infinity" in raw
    landing_id = add_landing({"raw": raw})

    outcome = ModsecProcessor().process_record(landing_id)

    assert outcome.success is True
    row = _log(outcome.log_id)
    assert row.severity == "LOW"
    assert row.action == "warning"
    assert _landing(landing_id).processed is True


def _racing_session_factory(claimed_ids: set):
    """
    Sessions whose first landing fetch lets a competing caller flip the row
    to processed before this caller's claim runs.
    """
    maker = get_sessionmaker()

    def _factory():
        db = maker()
        real_get = db.get

        def _get(model, ident, **kw):
            obj = real_get(model, ident, **kw)
            if model is ModsecLanding and ident not in claimed_ids:
                claimed_ids.add(ident)
                with maker() as other:
                    other.execute(
                        update(ModsecLanding)
                        .where(ModsecLanding.id == ident)
                        .values(processed=True)
                    )
                    other.commit()
            return obj

        db.get = _get
        return db

    return _factory


def test_record_claimed_by_concurrent_caller_is_skipped(add_landing):
    landing_id = add_landing(direct_envelope())
    claimed: set = set()

    result = ModsecProcessor(_racing_session_factory(claimed)).process_all(batch_size=10)

    assert claimed == {landing_id}
    assert result.skipped == 1
    assert result.processed == 0
    assert result.failed == 0
    assert result.errors == []
    assert _log_count() == 0
    assert _landing(landing_id).processed is True


def test_lost_claim_single_record_reports_already_processed(add_landing):
    landing_id = add_landing(direct_envelope())

    outcome = ModsecProcessor(_racing_session_factory(set())).process_record(landing_id)

    assert outcome.success is False
    assert outcome.skipped is True
    assert outcome.error == "Record already processed"
    assert _log_count() == 0
