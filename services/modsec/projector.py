from __future__ import annotations

import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from dateutil import parser as date_parser

from services.modsec.sanitizer import sanitize_json, sanitize_string

log = logging.getLogger("edgeguard.modsec.projector")

ACTION_BLOCKED = "blocked"
ACTION_WARNING = "warning"

SEVERITY_CRITICAL = "CRITICAL"
SEVERITY_HIGH = "HIGH"
SEVERITY_MEDIUM = "MEDIUM"
SEVERITY_LOW = "LOW"

BLOCKING_RESPONSE_CODES = frozenset({403, 406})
BLOCKING_SEVERITY_SCORE = 6

# Non-nullable log columns and the value written when the payload has none.
REQUIRED_DEFAULTS: Dict[str, str] = {
    "client_ip": "0.0.0.0",
    "host": "unknown",
    "method": "GET",
    "request_url": "/",
    "action": ACTION_WARNING,
    "severity": SEVERITY_LOW,
}

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def parse_int(value: Any) -> Optional[int]:
    """Leading-integer parse: 4 -> 4, "4" -> 4, "4.7" -> 4, "x" -> None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    m = _LEADING_INT.match(str(value))
    return int(m.group(1)) if m else None


def map_severity(score: Any) -> str:
    s = parse_int(score)
    if s is None:
        return SEVERITY_LOW
    if s >= 8:
        return SEVERITY_CRITICAL
    if s >= 6:
        return SEVERITY_HIGH
    if s >= 4:
        return SEVERITY_MEDIUM
    return SEVERITY_LOW


def determine_action(response_code: Any, score: Any) -> str:
    if parse_int(response_code) in BLOCKING_RESPONSE_CODES:
        return ACTION_BLOCKED
    s = parse_int(score)
    if s is not None and s >= BLOCKING_SEVERITY_SCORE:
        return ACTION_BLOCKED
    return ACTION_WARNING


def parse_timestamp(value: Any, now: Optional[datetime] = None) -> datetime:
    """
    Best-effort parse of ModSecurity's time_stamp ("Wed Dec 24 04:41:16 2025").

    Naive results are taken as UTC. Unparseable input yields the processing
    time, not the event time.
    """
    fallback = now or datetime.now(timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return fallback
    try:
        parsed = date_parser.parse(value)
    except (ValueError, OverflowError) as exc:
        log.debug("modsec.parse_timestamp fallback value=%r err=%s", value, exc)
        return fallback
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _header(headers: Mapping[str, Any], name: str) -> Any:
    wanted = name.lower()
    for key, value in headers.items():
        if str(key).lower() == wanted:
            return value
    return None


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def resolve_host(request: Mapping[str, Any]) -> str:
    hostname = request.get("hostname")
    if hostname:
        return str(hostname)
    host_header = _header(_as_dict(request.get("headers")), "Host")
    if host_header:
        host = str(host_header).split(":")[0]
        if host:
            return host
    return REQUIRED_DEFAULTS["host"]


def project_log_entry(
    transaction_doc: Mapping[str, Any],
    organization_id: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Map a sanitized {"transaction": {...}} document onto LogRecord columns.

    Classification only looks at the first entry of transaction.messages.
    """
    tx = _as_dict(transaction_doc.get("transaction"))
    request = _as_dict(tx.get("request"))
    response = _as_dict(tx.get("response"))
    headers = _as_dict(request.get("headers"))

    messages = tx.get("messages")
    first = messages[0] if isinstance(messages, list) and messages else {}
    first = _as_dict(first)
    details = _as_dict(first.get("details"))

    score = details.get("severity")
    response_code = parse_int(response.get("http_code"))
    response_headers = response.get("headers")

    entry: Dict[str, Any] = {
        "organization_id": organization_id or None,
        "action": determine_action(response_code, score),
        "severity": map_severity(score),
        "timestamp": parse_timestamp(tx.get("time_stamp"), now=now),
        "client_ip": sanitize_string(tx.get("client_ip")),
        "client_port": parse_int(tx.get("client_port")) or None,
        "host": sanitize_string(resolve_host(request)),
        "method": sanitize_string(request.get("method")),
        "request_url": sanitize_string(request.get("uri")),
        "http_version": sanitize_string(request.get("http_version")),
        "rule": sanitize_string(first.get("message")),
        "rule_id": sanitize_string(details.get("ruleId")),
        "message": sanitize_string(first.get("message")),
        "maturity": parse_int(details.get("maturity")),
        "user_agent": sanitize_string(_header(headers, "User-Agent")),
        "headers": sanitize_json(headers) if headers else None,
        "response_header": sanitize_json(response_headers) if response_headers else None,
        "response_code": response_code or None,
    }

    for column, default in REQUIRED_DEFAULTS.items():
        if not entry.get(column):
            entry[column] = default
    for column in ("rule", "rule_id", "message", "user_agent", "http_version"):
        if not entry[column]:
            entry[column] = None
    return entry
