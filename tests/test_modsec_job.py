"""
Tests for the one-shot ModSec migration job.

Tests verify:
- Backlog is drained with env-configured batch size and organization
- Run summary is written to the state file
- Empty backlog still writes a summary
"""

import asyncio
import json

from sqlalchemy import select

from api.db import get_sessionmaker
from api.db_models import LogRecord
from jobs.modsec_process import job as job_module
from tests.fixtures.modsec_transactions import direct_envelope


class TestModsecProcessJob:
    """Tests for jobs.modsec_process.job."""

    def test_drains_backlog_and_writes_summary(self, add_landing, tmp_path, monkeypatch):
        """Every pending record is migrated and counted."""
        state_file = tmp_path / "modsec_process_status.json"
        monkeypatch.setattr(job_module, "MODSEC_STATE_FILE", state_file)
        monkeypatch.setenv("EG_BATCH_SIZE", "2")
        monkeypatch.setenv("EG_DEFAULT_ORGANIZATION_ID", "org-job")
        for _ in range(3):
            add_landing(direct_envelope())
        add_landing({"transaction": {}})

        asyncio.run(job_module.job())

        summary = json.loads(state_file.read_text())
        assert summary["status"] == "ok"
        assert summary["processed"] == 3
        assert summary["failed"] == 1
        assert len(summary["errors"]) == 1
        with get_sessionmaker()() as db:
            orgs = db.execute(select(LogRecord.organization_id)).scalars().all()
        assert orgs == ["org-job"] * 3

    def test_empty_backlog(self, sqlite_db, tmp_path, monkeypatch):
        """No pending records still produces a zero summary."""
        state_file = tmp_path / "modsec_process_status.json"
        monkeypatch.setattr(job_module, "MODSEC_STATE_FILE", state_file)

        asyncio.run(job_module.job())

        summary = json.loads(state_file.read_text())
        assert summary["processed"] == 0
        assert summary["failed"] == 0
