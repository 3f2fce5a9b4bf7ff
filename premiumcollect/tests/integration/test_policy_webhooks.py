from __future__ import annotations

import pytest
from sqlalchemy import select

from premiumcollect.domain.models import AuditTrailEntry, Policy, WebhookLog
from premiumcollect.persistence.db import SessionLocal
from premiumcollect.tests.utils.auth import create_test_api_key
from premiumcollect.tests.utils.data import create_test_captive, create_test_policy


NEW_POLICY = {
    "policy_number": "POL-100",
    "client_name": "Thabo Nkosi",
    "client_email": "thabo@example.test",
    "premium_amount": 850.5,
    "frequency": "monthly",
    "bank_account_number": "62000000001",
    "bank_branch_code": "250655",
}


async def _setup(code: str = "ALPHA001"):
    captive = await create_test_captive(code=code)
    _raw, headers, _key_id = await create_test_api_key(cell_captive_id=captive.id)
    return captive, headers


@pytest.mark.asyncio
async def test_policy_upsert_creates_then_updates(client) -> None:
    captive, headers = await _setup()

    created = await client.post("/v1/webhooks/policies/update", json=NEW_POLICY, headers=headers)
    assert created.status_code == 201
    data = created.json()["data"]
    assert data["created"] is True
    assert data["policy"]["premium_amount"] == 850.5
    assert data["policy"]["status"] == "active"
    assert "bank_account_number" not in data["policy"]

    updated = await client.post(
        "/v1/webhooks/policies/update",
        json={"policy_number": "POL-100", "status": "lapsed", "grace_period_days": 14},
        headers=headers,
    )
    assert updated.status_code == 200
    policy = updated.json()["data"]["policy"]
    assert updated.json()["data"]["created"] is False
    assert policy["status"] == "lapsed"
    assert policy["grace_period_days"] == 14
    assert policy["client_name"] == "Thabo Nkosi"

    async with SessionLocal() as session:
        stored = (await session.execute(select(Policy))).scalar_one()
        entries = (
            await session.execute(
                select(AuditTrailEntry).where(AuditTrailEntry.table_name == "policies")
            )
        ).scalars().all()
    assert stored.cell_captive_id == captive.id
    assert sorted(entry.action for entry in entries) == ["INSERT", "UPDATE"]
    for entry in entries:
        assert "bank_account_number" not in (entry.new_values or {})


@pytest.mark.asyncio
async def test_new_policy_requires_name_and_premium(client) -> None:
    _captive, headers = await _setup()
    response = await client.post(
        "/v1/webhooks/policies/update", json={"policy_number": "POL-200"}, headers=headers
    )
    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "MISSING_REQUIRED_FIELDS"
    assert error["details"]["missing"] == ["client_name", "premium_amount"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("payload", "code"),
    [
        ({}, "MISSING_POLICY_NUMBER"),
        ({**NEW_POLICY, "premium_amount": 0}, "INVALID_AMOUNT"),
        ({**NEW_POLICY, "frequency": "weekly"}, "INVALID_FREQUENCY"),
        ({**NEW_POLICY, "status": "paused"}, "INVALID_POLICY_STATUS"),
        ({**NEW_POLICY, "next_collection_date": "soon"}, "INVALID_DATE"),
        ({**NEW_POLICY, "grace_period_days": -3}, "INVALID_GRACE_PERIOD"),
        ({**NEW_POLICY, "premium_amount": "abc"}, "INVALID_AMOUNT"),
        ({**NEW_POLICY, "status": 5}, "INVALID_POLICY_STATUS"),
        ({**NEW_POLICY, "frequency": ["monthly"]}, "INVALID_FREQUENCY"),
        ({**NEW_POLICY, "grace_period_days": "14"}, "INVALID_GRACE_PERIOD"),
    ],
)
async def test_policy_field_validation(client, payload, code) -> None:
    _captive, headers = await _setup()
    response = await client.post("/v1/webhooks/policies/update", json=payload, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == code
    async with SessionLocal() as session:
        log = (await session.execute(select(WebhookLog))).scalar_one()
        policies = (await session.execute(select(Policy))).scalars().all()
    assert log.response_status == 400
    assert policies == []


@pytest.mark.asyncio
async def test_policy_number_owned_by_other_captive_conflicts(client) -> None:
    alpha, _alpha_headers = await _setup("ALPHA001")
    await create_test_policy(cell_captive_id=alpha.id, policy_number="POL-100")
    _beta, beta_headers = await _setup("BETA002")

    response = await client.post("/v1/webhooks/policies/update", json=NEW_POLICY, headers=beta_headers)

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "POLICY_OWNED_BY_OTHER_CAPTIVE"
    async with SessionLocal() as session:
        stored = (await session.execute(select(Policy))).scalar_one()
    assert stored.cell_captive_id == alpha.id
    assert stored.client_name == "Jane Dlamini"


@pytest.mark.asyncio
async def test_webhook_logs_filter_by_outcome_and_endpoint(client) -> None:
    _captive, headers = await _setup()
    await client.post("/v1/webhooks/policies/update", json=NEW_POLICY, headers=headers)
    await client.post("/v1/webhooks/policies/update", json={"policy_number": "POL-9"}, headers=headers)
    await client.post(
        "/v1/webhooks/collections/update", json={"policy_number": "POL-100"}, headers=headers
    )

    everything = await client.get("/v1/webhooks/logs", headers=headers)
    assert everything.status_code == 200
    payload = everything.json()["data"]
    assert payload["pagination"]["total"] == 3

    errors = await client.get("/v1/webhooks/logs?status=error", headers=headers)
    assert {item["response_status"] for item in errors.json()["data"]["items"]} == {400}
    assert errors.json()["data"]["pagination"]["total"] == 2

    successes = await client.get("/v1/webhooks/logs?status=success", headers=headers)
    items = successes.json()["data"]["items"]
    assert [item["response_status"] for item in items] == [201]
    assert items[0]["status"] == "success"

    by_endpoint = await client.get("/v1/webhooks/logs?endpoint=collections", headers=headers)
    assert by_endpoint.json()["data"]["pagination"]["total"] == 1

    bad_filter = await client.get("/v1/webhooks/logs?status=maybe", headers=headers)
    assert bad_filter.status_code == 422


@pytest.mark.asyncio
async def test_webhook_logs_are_scoped_to_caller(client) -> None:
    _alpha, alpha_headers = await _setup("ALPHA001")
    _beta, beta_headers = await _setup("BETA002")
    await client.post("/v1/webhooks/policies/update", json=NEW_POLICY, headers=alpha_headers)

    response = await client.get("/v1/webhooks/logs", headers=beta_headers)
    assert response.json()["data"]["items"] == []
