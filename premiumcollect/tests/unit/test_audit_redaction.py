from __future__ import annotations

from datetime import date
from decimal import Decimal

from premiumcollect.services.audit import sanitize_metadata, to_jsonable


def test_audit_redacts_keys_and_credentials() -> None:
    payload = {
        "authorization": "Bearer pct_abc",
        "x-api-key": "pct_secret",
        "client_secret": "super-secret",
        "nested": {"session_token": "jwt", "policy_number": "POL-1"},
        "items": [{"password": "pw", "amount": 10}],
        "content-type": "application/json",
    }
    sanitized = sanitize_metadata(payload)
    assert sanitized["authorization"] == "[REDACTED]"
    assert sanitized["x-api-key"] == "[REDACTED]"
    assert sanitized["client_secret"] == "[REDACTED]"
    assert sanitized["nested"]["session_token"] == "[REDACTED]"
    assert sanitized["nested"]["policy_number"] == "POL-1"
    assert sanitized["items"][0]["password"] == "[REDACTED]"
    assert sanitized["items"][0]["amount"] == 10
    assert sanitized["content-type"] == "application/json"


def test_redaction_is_case_insensitive() -> None:
    sanitized = sanitize_metadata({"Authorization": "Bearer x", "Cookie": "sid=1"})
    assert sanitized == {"Authorization": "[REDACTED]", "Cookie": "[REDACTED]"}


def test_snapshot_values_become_json_safe() -> None:
    value = to_jsonable({"amount": Decimal("1500.50"), "on": date(2024, 1, 15), "tags": ("a", "b")})
    assert value == {"amount": 1500.5, "on": "2024-01-15", "tags": ["a", "b"]}
