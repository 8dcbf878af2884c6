"""
Prometheus metrics for EdgeGuard Core.

Covers:
- ModSec landing migration (per-record outcomes, batch duration)
- Cron orchestration (completed / skipped / errored ticks)
- WAF agent toggles (ok / failed by error code)
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# =============================================================================
# Landing migration
# =============================================================================

# processed / failed / skipped (claimed by another caller or already done)
MODSEC_RECORDS = Counter(
    "edgeguard_modsec_records_total",
    "ModSec landing records handled by the batch processor",
    ["outcome"],
)

MODSEC_BATCH_SECONDS = Histogram(
    "edgeguard_modsec_batch_seconds",
    "Duration of a full process_all run in seconds",
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0],
)

# =============================================================================
# Cron
# =============================================================================

MODSEC_CRON_RUNS = Counter(
    "edgeguard_modsec_cron_runs_total",
    "Cron ticks by result",
    ["result"],  # completed, skipped, idle, error
)

# =============================================================================
# WAF agent
# =============================================================================

WAF_TOGGLE_REQUESTS = Counter(
    "edgeguard_waf_toggle_requests_total",
    "Signed toggle commands sent to the WAF agent",
    ["result"],  # ok or the WafAgentError code
)
