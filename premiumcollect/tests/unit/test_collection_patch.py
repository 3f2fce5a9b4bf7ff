from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from premiumcollect.core.errors import InvalidRequestError
from premiumcollect.domain.models import Collection
from premiumcollect.services.collections import (
    apply_patch,
    generate_collection_reference,
    parse_amount,
    validate_patch,
)


def _code(payload, **kwargs) -> str:
    with pytest.raises(InvalidRequestError) as excinfo:
        validate_patch(payload, **kwargs)
    return excinfo.value.code


def test_missing_identifier_is_reported_first() -> None:
    # Identifier check precedes status validation even when both are wrong.
    assert _code({"status": "bogus"}) == "MISSING_IDENTIFIER"
    assert _code({"policy_number": "   ", "status": "successful"}) == "MISSING_IDENTIFIER"


def test_invalid_status_precedes_empty_update() -> None:
    assert _code({"policy_number": "POL-1", "status": "settled"}) == "INVALID_STATUS"


def test_identifier_alone_is_not_an_update() -> None:
    assert _code({"collection_reference": "COL-1"}) == "NO_UPDATE_FIELDS"
    # Reconciliation-only fields do not count as collection updates.
    assert _code({"policy_number": "POL-1", "bank_reference": "BR-1"}) == "NO_UPDATE_FIELDS"


def test_null_values_are_treated_as_absent() -> None:
    assert _code({"policy_number": "POL-1", "status": None, "amount": None}) == "NO_UPDATE_FIELDS"


def test_non_mapping_payload_is_rejected() -> None:
    assert _code(["POL-1"]) == "INVALID_ITEM"


def test_path_addressed_updates_skip_identifier() -> None:
    patch = validate_patch({"status": "submitted"}, require_identifier=False)
    assert patch.fields == {"status": "submitted"}
    assert patch.collection_reference is None


def test_valid_patch_parses_dates_and_amounts() -> None:
    patch = validate_patch(
        {
            "policy_number": " POL-1 ",
            "collection_date": "2024-01-15",
            "status": "successful",
            "amount": "1500.456",
            "bank_reference": "BR-9",
            "transaction_date": "2024-01-16T08:00:00Z",
        }
    )
    assert patch.policy_number == "POL-1"
    assert patch.collection_date == date(2024, 1, 15)
    assert patch.transaction_date == date(2024, 1, 16)
    assert patch.fields["amount"] == Decimal("1500.46")
    assert patch.bank_reference == "BR-9"


def test_bad_date_is_rejected() -> None:
    assert _code({"policy_number": "POL-1", "status": "failed", "collection_date": "15/01/2024"}) == "INVALID_DATE"


@pytest.mark.parametrize("value", ["abc", -1, True, "NaN"])
def test_parse_amount_rejects_invalid_values(value) -> None:
    with pytest.raises(InvalidRequestError) as excinfo:
        parse_amount(value)
    assert excinfo.value.code == "INVALID_AMOUNT"


def test_collection_reference_format() -> None:
    moment = datetime(2024, 1, 15, tzinfo=timezone.utc)
    reference = generate_collection_reference(moment)
    prefix, millis, suffix = reference.split("-")
    assert prefix == "COL"
    assert int(millis) == int(moment.timestamp() * 1000)
    assert len(suffix) == 6


def test_processed_at_is_set_once() -> None:
    collection = Collection(status="submitted", processed_at=None)
    first = datetime(2024, 1, 15, 10, tzinfo=timezone.utc)
    apply_patch(collection, validate_patch({"status": "successful"}, require_identifier=False), first)
    assert collection.status == "successful"
    assert collection.processed_at == first

    later = first + timedelta(hours=2)
    apply_patch(collection, validate_patch({"status": "failed"}, require_identifier=False), later)
    assert collection.status == "failed"
    assert collection.processed_at == first
    assert collection.updated_at == later


def test_non_terminal_status_leaves_processed_at_unset() -> None:
    collection = Collection(status="pending", processed_at=None)
    apply_patch(
        collection,
        validate_patch({"status": "submitted"}, require_identifier=False),
        datetime(2024, 1, 15, tzinfo=timezone.utc),
    )
    assert collection.processed_at is None
