from __future__ import annotations

import json

import pytest

from services.modsec.errors import TransactionParseError
from services.modsec.normalizer import match_variant, normalize_payload
from tests.fixtures.modsec_transactions import (
    data_string_envelope,
    direct_envelope,
    make_transaction,
    nested_data_envelope,
    raw_envelope,
)


@pytest.mark.parametrize(
    "payload, variant",
    [
        (raw_envelope(), "raw_string_field"),
        (data_string_envelope(), "data_string_field"),
        (json.dumps({"transaction": make_transaction()}), "string_payload"),
        (direct_envelope(), "direct_transaction"),
        (nested_data_envelope(), "nested_data_object"),
        (make_transaction(), "fallback_wrap"),
    ],
)
def test_every_envelope_resolves_to_the_same_transaction(payload, variant):
    assert match_variant(payload).name == variant
    assert normalize_payload(payload) == {"transaction": make_transaction()}


def test_raw_string_takes_precedence_over_data():
    payload = {"raw": json.dumps(direct_envelope(http_code=403)), "data": {"transaction": {"x": 1}}}
    doc = normalize_payload(payload)
    assert doc["transaction"]["response"]["http_code"] == 403


def test_double_encoded_raw_is_unescaped_once():
    inner = json.dumps(direct_envelope())
    escaped = '"' + inner.replace("\\", "\\\\").replace('"', '\\"') + '"'
    doc = normalize_payload({"raw": escaped[1:-1]})
    assert doc["transaction"]["client_ip"] == "10.0.0.7"


def test_unparseable_raw_raises():
    with pytest.raises(TransactionParseError) as exc:
        normalize_payload({"raw": "{not json at all"})
    assert "Failed to parse transaction data" in str(exc.value)


def test_empty_transaction_is_rejected():
    with pytest.raises(TransactionParseError) as exc:
        normalize_payload({"transaction": {}})
    assert "missing transaction" in str(exc.value)


def test_null_transaction_is_rejected():
    with pytest.raises(TransactionParseError):
        normalize_payload({"transaction": None})


def test_non_object_transaction_is_rejected():
    with pytest.raises(TransactionParseError):
        normalize_payload({"transaction": [1, 2, 3]})


@pytest.mark.parametrize("payload", [None, 42, [1, 2]])
def test_unsupported_payload_types_raise(payload):
    with pytest.raises(TransactionParseError):
        normalize_payload(payload)
