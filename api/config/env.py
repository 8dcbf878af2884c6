from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

VALID_EG_ENVS = {"dev", "test", "staging", "prod", "production"}

DEFAULT_CRON_SCHEDULE = "*/5 * * * *"
DEFAULT_AGENT_URL = "https://localhost:8443"


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _strip_quotes(value: str) -> str:
    # .env loaders sometimes keep the surrounding quotes
    v = value.strip()
    if len(v) >= 2 and v[0] == v[-1] and v[0] in {'"', "'"}:
        v = v[1:-1]
    return v.strip()


def eg_env(*, require_explicit: bool = False) -> str:
    raw = os.getenv("EG_ENV")
    if raw is None or not str(raw).strip():
        if require_explicit:
            raise RuntimeError(
                "EG_ENV must be set to one of: dev, test, staging, prod."
            )
        return "dev"

    env = str(raw).strip().lower()
    if env not in VALID_EG_ENVS:
        raise RuntimeError("EG_ENV must be set to one of: dev, test, staging, prod.")

    return "prod" if env == "production" else env


def resolve_env() -> str:
    return eg_env(require_explicit=_env_bool("EG_REQUIRE_STRICT_ENV", False))


@dataclass(frozen=True)
class ProcessingSettings:
    batch_size: int = 100
    cron_enabled: bool = True
    cron_schedule: str = DEFAULT_CRON_SCHEDULE
    cron_timezone: str = "UTC"
    default_organization_id: Optional[str] = None
    worker_batch_size: int = 50
    worker_poll_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> "ProcessingSettings":
        return cls(
            batch_size=max(1, _env_int("EG_BATCH_SIZE", 100)),
            cron_enabled=_env_bool("EG_MODSEC_CRON_ENABLED", True),
            cron_schedule=_strip_quotes(
                _env_str("EG_MODSEC_CRON_SCHEDULE", DEFAULT_CRON_SCHEDULE)
            ),
            cron_timezone=_env_str("EG_MODSEC_CRON_TIMEZONE", "UTC"),
            default_organization_id=_env_str("EG_DEFAULT_ORGANIZATION_ID") or None,
            worker_batch_size=max(1, _env_int("EG_WORKER_BATCH_SIZE", 50)),
            worker_poll_seconds=max(
                0.01, _env_float("EG_WORKER_POLL_SECONDS", 5.0) or 5.0
            ),
        )


@dataclass(frozen=True)
class WafAgentSettings:
    url: str = DEFAULT_AGENT_URL
    private_key_pem: str = ""
    auth_token: str = ""
    timeout_seconds: Optional[float] = None
    allow_insecure_http: bool = False

    @classmethod
    def from_env(cls) -> "WafAgentSettings":
        return cls(
            url=_strip_quotes(_env_str("EG_WAF_AGENT_URL", DEFAULT_AGENT_URL)).rstrip(
                "/"
            ),
            private_key_pem=_strip_quotes(_env_str("EG_WAF_AGENT_PRIVATE_KEY")),
            auth_token=_strip_quotes(_env_str("EG_WAF_AGENT_AUTH_TOKEN")),
            timeout_seconds=_env_float("EG_WAF_AGENT_TIMEOUT_SECONDS", None),
            allow_insecure_http=_env_bool("EG_WAF_AGENT_ALLOW_INSECURE_HTTP", False),
        )
