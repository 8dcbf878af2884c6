"""
Envelope normalization for landing documents.

The ingestion agents (Fluent Bit outputs, the nginx connector, ad hoc
shippers) wrap the ModSecurity audit JSON in different ways:

  {"raw": "{\\"transaction\\": {...}}"}      JSON text under "raw"
  {"data": "{\\"transaction\\": {...}}"}     JSON text under "data"
  "{\\"transaction\\": {...}}"               the payload is the text itself
  {"transaction": {...}}                    already structured
  {"data": {"transaction": {...}}}          structured, one level down
  {...}                                     bare transaction body

Each shape is an EnvelopeVariant; the first one that matches wins.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from services.modsec.errors import TransactionParseError

log = logging.getLogger("edgeguard.modsec.normalizer")

TransactionDoc = Dict[str, Any]


def _unescape(text: str) -> str:
    s = text
    if len(s) >= 2 and s[0] == s[-1] and s[0] in {'"', "'"}:
        s = s[1:-1]
    return s.replace('\\"', '"').replace("\\\\", "\\")


def parse_json_text(text: str, *, variant: str) -> Any:
    """json.loads with one unescape retry for double-encoded documents."""
    try:
        return json.loads(text)
    except ValueError as first:
        try:
            return json.loads(_unescape(text))
        except ValueError as second:
            raise TransactionParseError(
                f"Failed to parse transaction data ({variant}): {second}"
            ) from first


def wrap_transaction(candidate: Any) -> TransactionDoc:
    if isinstance(candidate, dict) and "transaction" in candidate:
        return {"transaction": candidate["transaction"]}
    return {"transaction": candidate}


def _get(payload: Any, key: str) -> Any:
    return payload.get(key) if isinstance(payload, dict) else None


@dataclass(frozen=True)
class EnvelopeVariant:
    name: str
    matches: Callable[[Any], bool]
    extract: Callable[[Any], Any]


ENVELOPE_VARIANTS: Tuple[EnvelopeVariant, ...] = (
    EnvelopeVariant(
        name="raw_string_field",
        matches=lambda p: isinstance(_get(p, "raw"), str),
        extract=lambda p: parse_json_text(p["raw"], variant="raw_string_field"),
    ),
    EnvelopeVariant(
        name="data_string_field",
        matches=lambda p: isinstance(_get(p, "data"), str),
        extract=lambda p: parse_json_text(p["data"], variant="data_string_field"),
    ),
    EnvelopeVariant(
        name="string_payload",
        matches=lambda p: isinstance(p, str),
        extract=lambda p: parse_json_text(p, variant="string_payload"),
    ),
    EnvelopeVariant(
        name="direct_transaction",
        matches=lambda p: isinstance(p, dict) and "transaction" in p,
        extract=lambda p: {"transaction": p["transaction"]},
    ),
    EnvelopeVariant(
        name="nested_data_object",
        matches=lambda p: isinstance(_get(p, "data"), dict),
        extract=lambda p: p["data"],
    ),
    EnvelopeVariant(
        name="fallback_wrap",
        matches=lambda p: isinstance(p, dict),
        extract=lambda p: p,
    ),
)


def match_variant(payload: Any) -> Optional[EnvelopeVariant]:
    for variant in ENVELOPE_VARIANTS:
        if variant.matches(payload):
            return variant
    return None


def normalize_payload(payload: Any) -> TransactionDoc:
    """
    Resolve a landing payload into {"transaction": {...}}.

    Raises TransactionParseError when no variant applies, when embedded JSON
    text cannot be parsed, or when the resolved transaction is empty.
    """
    variant = match_variant(payload)
    if variant is None:
        raise TransactionParseError(
            f"Failed to parse transaction data: unsupported payload type {type(payload).__name__}"
        )

    doc = wrap_transaction(variant.extract(payload))
    transaction = doc.get("transaction")
    if not transaction:
        raise TransactionParseError(
            "Invalid transaction data structure - missing transaction"
        )
    if not isinstance(transaction, dict):
        raise TransactionParseError(
            f"Invalid transaction data structure - transaction is {type(transaction).__name__}"
        )

    log.debug("modsec.normalize variant=%s", variant.name)
    return doc
