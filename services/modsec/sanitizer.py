"""
ModSecurity field sanitizer.

Audit documents routinely carry NUL bytes, ``\\u0000`` escapes and half
escaped backslash runs (mostly inside header values and matched payloads).
PostgreSQL rejects all of these in TEXT and JSONB columns, so every string
headed for storage goes through here first.

INVARIANT: sanitize_json(sanitize_json(v)) == sanitize_json(v) for every JSON
value v, and nothing in this module raises.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Union

log = logging.getLogger("edgeguard.modsec.sanitizer")

JsonScalar = Union[str, int, float, bool, None]
JsonValue = Union[JsonScalar, List["JsonValue"], Dict[str, "JsonValue"]]

_NUL_ESCAPE = re.compile(r"\\u0000", re.IGNORECASE)
_UNICODE_ESCAPE = re.compile(r"\\u([0-9a-fA-F]{4})")
_STRAY_BACKSLASH = re.compile(r'\\(?!["\\/bfnrtu0-9x])')
_BACKSLASH_RUN = re.compile(r"\\{3,}")
_BAD_UNICODE_PREFIX = re.compile(r"\\u[^0-9a-fA-F]")
_SHORT_UNICODE_ESCAPE = re.compile(r"\\u[0-9a-fA-F]{0,3}(?![0-9a-fA-F])")

_KEEP_CONTROL = {0x09, 0x0A, 0x0D}


def _resolve_escape(match: re.Match) -> str:
    code = int(match.group(1), 16)
    if code == 0:
        return ""
    if 0x20 <= code <= 0x7E or code in _KEEP_CONTROL:
        return chr(code)
    return ""


def _clean_once(text: str) -> str:
    out = text.replace("\x00", "")
    out = _NUL_ESCAPE.sub("", out)
    out = _UNICODE_ESCAPE.sub(_resolve_escape, out)
    out = out.replace("\x00", "")
    out = _STRAY_BACKSLASH.sub("", out)
    out = _BACKSLASH_RUN.sub(r"\\\\", out)
    out = _BAD_UNICODE_PREFIX.sub("", out)
    out = _SHORT_UNICODE_ESCAPE.sub("", out)
    return out


def sanitize_string(value: Any) -> Optional[str]:
    """
    Strip unsafe byte sequences from a single value.

    Non-strings are stringified first. Passes repeat until the text is
    stable; every pass that changes anything also shortens the text, so the
    loop is bounded by the input length.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        try:
            value = str(value)
        except Exception:
            return None

    current = value
    while True:
        cleaned = _clean_once(current)
        if cleaned == current:
            return cleaned
        current = cleaned


def _clean_value(value: JsonValue) -> JsonValue:
    if value is None:
        return None
    if isinstance(value, str):
        cleaned = sanitize_string(value)
        return cleaned if cleaned else None
    if isinstance(value, list):
        items = [_clean_value(v) for v in value]
        return [v for v in items if v is not None]
    if isinstance(value, dict):
        out: Dict[str, JsonValue] = {}
        for key, raw in value.items():
            cleaned = _clean_value(raw)
            if cleaned is not None:
                out[key] = cleaned
        return out
    # bool / int / float
    return value


def _as_json_value(value: Any) -> JsonValue:
    if value is None or isinstance(value, (str, int, float, bool, list, dict)):
        return value
    return json.loads(json.dumps(value))


def sanitize_json(value: Any) -> JsonValue:
    """
    Structural clean of a JSON value.

    Strings are cleaned (empty results become None), arrays are compacted,
    object entries whose value cleans to None are dropped. Anything that
    cannot be represented as JSON comes back as None.
    """
    try:
        return _clean_value(_as_json_value(value))
    except Exception as exc:
        log.warning("modsec.sanitize_json failed type=%s err=%s", type(value).__name__, exc)
        return None


def sanitize_json_text(text: Any) -> JsonValue:
    """Parse a JSON document and clean it; unparseable input gives None."""
    if text is None:
        return None
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError) as exc:
        log.debug("modsec.sanitize_json_text unparseable err=%s", exc)
        return None
    return sanitize_json(parsed)
