from __future__ import annotations

from typing import Any

import pytest

from premiumcollect.services.broadcaster import broadcaster
from premiumcollect.tests.utils.auth import create_test_staff
from premiumcollect.tests.utils.data import (
    create_test_captive,
    create_test_collection,
    create_test_policy,
    create_test_reconciliation,
)


class _DashboardSocket:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def send_json(self, data: Any) -> None:
        self.sent.append(data)


async def _collection(status: str = "submitted"):
    captive = await create_test_captive(code="ALPHA001", name="Alpha Insurance Cell")
    policy = await create_test_policy(cell_captive_id=captive.id, policy_number="POL-001")
    return await create_test_collection(policy=policy, status=status, investec_reference="INV-1")


@pytest.mark.asyncio
async def test_staff_status_update_reconciles_and_is_audited(client) -> None:
    collection = await _collection()
    _token, headers, manager_id = await create_test_staff(role="manager")
    _token, admin_headers, _admin_id = await create_test_staff(role="admin")
    dashboard = _DashboardSocket()
    broadcaster.register(dashboard)
    broadcaster.authenticate(dashboard, user_id=manager_id, role="manager")

    response = await client.patch(
        f"/v1/admin/collections/{collection.id}/status",
        json={"status": "successful", "bank_reference": "BANK-55", "transaction_date": "2024-05-02"},
        headers=headers,
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["previous_status"] == "submitted"
    assert data["new_status"] == "successful"
    assert data["reconciliation_status"] == "matched"
    assert dashboard.sent[0]["type"] == "collection_status_updated"
    assert dashboard.sent[0]["data"]["cell_captive"] == "Alpha Insurance Cell"

    matched = await client.get("/v1/admin/reconciliation?status=matched", headers=headers)
    items = matched.json()["data"]["items"]
    assert len(items) == 1
    assert items[0]["collection_reference"] == collection.collection_reference
    assert items[0]["bank_reference"] == "BANK-55"
    assert items[0]["investec_reference"] == "INV-1"
    assert items[0]["transaction_date"] == "2024-05-02"

    trail = await client.get(
        f"/v1/admin/audit-trail?table_name=collections&record_id={collection.id}",
        headers=admin_headers,
    )
    assert trail.status_code == 200
    entries = trail.json()["data"]["items"]
    assert len(entries) == 1
    assert entries[0]["action"] == "UPDATE"
    assert entries[0]["changed_by"] == manager_id
    assert entries[0]["old_values"]["status"] == "submitted"
    assert entries[0]["new_values"]["status"] == "successful"

    recon_trail = await client.get(
        "/v1/admin/audit-trail?table_name=reconciliation_records&action=insert",
        headers=admin_headers,
    )
    assert recon_trail.json()["data"]["pagination"]["total"] == 1


@pytest.mark.asyncio
async def test_staff_status_update_errors(client) -> None:
    collection = await _collection()
    _token, headers, _manager_id = await create_test_staff(role="manager")
    _token, user_headers, _user_id = await create_test_staff(role="user")

    missing = await client.patch(
        "/v1/admin/collections/nope/status", json={"status": "failed"}, headers=headers
    )
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "COLLECTION_NOT_FOUND"

    invalid = await client.patch(
        f"/v1/admin/collections/{collection.id}/status", json={"status": "done"}, headers=headers
    )
    assert invalid.status_code == 400
    assert invalid.json()["error"]["code"] == "INVALID_STATUS"

    forbidden = await client.patch(
        f"/v1/admin/collections/{collection.id}/status", json={"status": "failed"}, headers=user_headers
    )
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_reconciliation_listing_filters_by_status(client) -> None:
    collection = await _collection(status="failed")
    await create_test_reconciliation(collection=collection, status="disputed")
    _token, headers, _user_id = await create_test_staff(role="user")

    disputed = await client.get("/v1/admin/reconciliation?status=disputed", headers=headers)
    assert disputed.status_code == 200
    assert [item["collection_status"] for item in disputed.json()["data"]["items"]] == ["failed"]

    matched = await client.get("/v1/admin/reconciliation?status=matched", headers=headers)
    assert matched.json()["data"]["items"] == []

    bad = await client.get("/v1/admin/reconciliation?status=weird", headers=headers)
    assert bad.status_code == 422
    assert bad.json()["error"]["code"] == "REQUEST_VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_audit_trail_is_admin_only(client) -> None:
    _token, headers, _manager_id = await create_test_staff(role="manager")
    response = await client.get("/v1/admin/audit-trail", headers=headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_staff_collection_listing_spans_captives(client) -> None:
    alpha = await create_test_captive(code="ALPHA001", name="Alpha Insurance Cell")
    beta = await create_test_captive(code="BETA002", name="Beta Life Cell")
    alpha_policy = await create_test_policy(cell_captive_id=alpha.id, client_name="Jane Dlamini")
    beta_policy = await create_test_policy(cell_captive_id=beta.id, client_name="Sipho Nkosi")
    await create_test_collection(policy=alpha_policy, status="successful")
    await create_test_collection(policy=beta_policy, status="failed")
    _token, headers, _user_id = await create_test_staff(role="user")

    everything = await client.get("/v1/admin/collections", headers=headers)
    assert everything.status_code == 200
    data = everything.json()["data"]
    assert data["pagination"]["total"] == 2
    codes = {item["cell_captive_code"] for item in data["items"]}
    assert codes == {"ALPHA001", "BETA002"}

    by_client = await client.get("/v1/admin/collections?client_name=sipho", headers=headers)
    items = by_client.json()["data"]["items"]
    assert len(items) == 1
    assert items[0]["cell_captive_name"] == "Beta Life Cell"
    assert items[0]["status"] == "failed"

    by_captive = await client.get(
        f"/v1/admin/collections?cell_captive_id={alpha.id}&status=successful", headers=headers
    )
    assert [item["policy_id"] for item in by_captive.json()["data"]["items"]] == [alpha_policy.id]

    unknown_status = await client.get("/v1/admin/collections?status=weird", headers=headers)
    assert unknown_status.json()["data"]["items"] == []


@pytest.mark.asyncio
async def test_staff_create_collection_uses_policy_defaults(client) -> None:
    captive = await create_test_captive(code="ALPHA001", name="Alpha Insurance Cell")
    policy = await create_test_policy(cell_captive_id=captive.id, premium_amount="1250.00")
    _token, headers, manager_id = await create_test_staff(role="manager")
    dashboard = _DashboardSocket()
    broadcaster.register(dashboard)
    broadcaster.authenticate(dashboard, user_id=manager_id, role="manager")

    response = await client.post(
        "/v1/admin/collections",
        json={"policy_id": policy.id, "collection_date": "2024-06-01"},
        headers=headers,
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["cell_captive_id"] == captive.id
    assert data["amount"] == 1250.0
    assert data["collection_type"] == "adhoc"
    assert data["collection_date"] == "2024-06-01"
    assert data["status"] == "pending"
    assert data["collection_reference"].startswith("COL-")
    assert dashboard.sent[0]["type"] == "collection_created"
    assert dashboard.sent[0]["data"]["created_by"] == manager_id
    assert dashboard.sent[0]["data"]["cell_captive"] == "Alpha Insurance Cell"


@pytest.mark.asyncio
async def test_staff_create_collection_errors(client) -> None:
    captive = await create_test_captive()
    lapsed = await create_test_policy(cell_captive_id=captive.id, status="lapsed")
    _token, headers, _manager_id = await create_test_staff(role="manager")
    _token, user_headers, _user_id = await create_test_staff(role="user")

    missing = await client.post("/v1/admin/collections", json={"amount": "10.00"}, headers=headers)
    assert missing.status_code == 400
    assert missing.json()["error"]["code"] == "MISSING_POLICY_ID"

    unknown = await client.post("/v1/admin/collections", json={"policy_id": "nope"}, headers=headers)
    assert unknown.status_code == 404
    assert unknown.json()["error"]["code"] == "POLICY_NOT_FOUND"

    inactive = await client.post("/v1/admin/collections", json={"policy_id": lapsed.id}, headers=headers)
    assert inactive.status_code == 400
    assert inactive.json()["error"]["code"] == "POLICY_INACTIVE"

    forbidden = await client.post(
        "/v1/admin/collections", json={"policy_id": lapsed.id}, headers=user_headers
    )
    assert forbidden.status_code == 403
    assert forbidden.json()["error"]["code"] == "AUTH_FORBIDDEN"


@pytest.mark.asyncio
async def test_staff_collection_stats(client) -> None:
    alpha = await create_test_captive(code="ALPHA001")
    beta = await create_test_captive(code="BETA002")
    alpha_policy = await create_test_policy(cell_captive_id=alpha.id, premium_amount="100.00")
    beta_policy = await create_test_policy(cell_captive_id=beta.id, premium_amount="300.00")
    await create_test_collection(policy=alpha_policy, status="successful")
    await create_test_collection(policy=alpha_policy, status="failed", collection_type="adhoc")
    await create_test_collection(policy=beta_policy, status="successful")
    _token, headers, _user_id = await create_test_staff(role="user")

    overall = await client.get("/v1/admin/collections/stats", headers=headers)
    assert overall.status_code == 200
    stats = overall.json()["data"]
    assert stats["total_collections"] == 3
    assert stats["successful_collections"] == 2
    assert stats["failed_collections"] == 1
    assert stats["adhoc_collections"] == 1
    assert stats["total_amount"] == 500.0
    assert stats["successful_amount"] == 400.0

    scoped = await client.get(f"/v1/admin/collections/stats?cell_captive_id={alpha.id}", headers=headers)
    scoped_stats = scoped.json()["data"]
    assert scoped_stats["total_collections"] == 2
    assert scoped_stats["success_rate"] == 50.0
