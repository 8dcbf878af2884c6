from __future__ import annotations

import pytest

from api.config.env import ProcessingSettings, WafAgentSettings, resolve_env
from api.db import get_database_url


def test_db_url_prefers_explicit_sqlite_path(monkeypatch):
    monkeypatch.setenv("EG_DB_URL", "postgresql://u:p@db/eg")
    assert get_database_url("/tmp/x.db") == "sqlite:////tmp/x.db"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("postgres://u:p@db/eg", "postgresql+psycopg://u:p@db/eg"),
        ("postgresql://u:p@db/eg", "postgresql+psycopg://u:p@db/eg"),
        ("postgresql+psycopg://u:p@db/eg", "postgresql+psycopg://u:p@db/eg"),
    ],
)
def test_db_url_postgres_driver_is_normalized(monkeypatch, raw, expected):
    monkeypatch.setenv("EG_DB_URL", raw)
    assert get_database_url() == expected


def test_db_url_falls_back_to_sqlite_path(monkeypatch):
    monkeypatch.delenv("EG_DB_URL", raising=False)
    monkeypatch.setenv("EG_SQLITE_PATH", "/tmp/eg/a.db")
    assert get_database_url() == "sqlite:////tmp/eg/a.db"


def test_processing_defaults(monkeypatch):
    for name in (
        "EG_BATCH_SIZE",
        "EG_MODSEC_CRON_ENABLED",
        "EG_MODSEC_CRON_SCHEDULE",
        "EG_MODSEC_CRON_TIMEZONE",
        "EG_DEFAULT_ORGANIZATION_ID",
        "EG_WORKER_BATCH_SIZE",
        "EG_WORKER_POLL_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
    assert ProcessingSettings.from_env() == ProcessingSettings()


def test_bad_numbers_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("EG_BATCH_SIZE", "lots")
    monkeypatch.setenv("EG_WORKER_POLL_SECONDS", "soon")
    settings = ProcessingSettings.from_env()
    assert settings.batch_size == 100
    assert settings.worker_poll_seconds == 5.0


def test_waf_agent_settings(monkeypatch):
    monkeypatch.setenv("EG_WAF_AGENT_URL", "'https://agent.example:8443/'")
    monkeypatch.setenv("EG_WAF_AGENT_AUTH_TOKEN", "tok")
    monkeypatch.setenv("EG_WAF_AGENT_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("EG_WAF_AGENT_ALLOW_INSECURE_HTTP", "yes")
    settings = WafAgentSettings.from_env()
    assert settings.url == "https://agent.example:8443"
    assert settings.auth_token == "tok"
    assert settings.timeout_seconds == 2.5
    assert settings.allow_insecure_http is True


def test_invalid_env_name_is_rejected(monkeypatch):
    monkeypatch.setenv("EG_ENV", "qa")
    with pytest.raises(RuntimeError):
        resolve_env()
