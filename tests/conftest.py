from __future__ import annotations

import os

# Set deterministic, writable defaults before importing modules that may touch DB paths.
os.environ.setdefault("EG_ENV", "test")
os.environ.setdefault("EG_SQLITE_PATH", "/tmp/edgeguard/eg-conftest.db")
os.environ.setdefault("EG_MODSEC_CRON_ENABLED", "0")

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from api.db import get_sessionmaker, init_db, reset_engine_cache
from api.db_models import ModsecLanding

_BASE_TIME = datetime(2025, 12, 24, 4, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _restore_env():
    before = dict(os.environ)
    yield
    os.environ.clear()
    os.environ.update(before)


@pytest.fixture()
def sqlite_db(tmp_path, monkeypatch: pytest.MonkeyPatch) -> str:
    """Fresh schema per test; the engine cache is reset on both sides."""
    db_path = str(tmp_path / "eg-test.db")
    monkeypatch.setenv("EG_SQLITE_PATH", db_path)
    monkeypatch.delenv("EG_DB_URL", raising=False)
    reset_engine_cache()
    init_db(sqlite_path=db_path)
    yield db_path
    reset_engine_cache()


@pytest.fixture()
def add_landing(sqlite_db):
    """
    Insert landing rows with strictly increasing receive times so ordering
    in tests does not depend on the database clock.
    """
    counter = {"n": 0}

    def _add(data: Any, *, processed: bool = False, tag: Optional[str] = "modsec") -> int:
        counter["n"] += 1
        with get_sessionmaker()() as db:
            row = ModsecLanding(
                tag=tag,
                time=_BASE_TIME + timedelta(seconds=counter["n"]),
                data=data,
                processed=processed,
            )
            db.add(row)
            db.commit()
            return int(row.id)

    return _add


@pytest.fixture(scope="session")
def rsa_keypair() -> tuple[str, str]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    return private_pem, public_pem
