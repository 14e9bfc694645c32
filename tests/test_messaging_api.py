"""
Messaging and compliance HTTP API tests.

Covers routing, identity headers, the error envelope, moderator-only
compliance endpoints and the metrics/permission helper endpoints.
"""
import pytest
from httpx import AsyncClient


def _headers(empid: str, **extra) -> dict:
    headers = {"X-Employee-Id": empid}
    headers.update(extra)
    return headers


# =============================================================================
# Identity
# =============================================================================


@pytest.mark.asyncio
async def test_missing_employee_header_is_401(client: AsyncClient):
    response = await client.get("/messaging/messages", params={"company_id": 1})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_no_membership_returns_error_envelope(client: AsyncClient):
    response = await client.get(
        "/messaging/messages",
        params={"company_id": 2},
        headers=_headers("E2", **{"X-Correlation-Id": "corr-123"}),
    )
    assert response.status_code == 403
    error = response.json()["error"]
    assert error["code"] == "COMPANY_MEMBERSHIP_REQUIRED"
    assert error["correlation_id"] == "corr-123"
    assert response.headers["X-Correlation-Id"] == "corr-123"


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# =============================================================================
# Messages
# =============================================================================


@pytest.mark.asyncio
async def test_post_and_list_messages(client: AsyncClient):
    response = await client.post(
        "/messaging/messages",
        params={"company_id": 1},
        json={"body": "hello over http", "client_temp_id": "tmp-9"},
        headers=_headers("E1"),
    )
    assert response.status_code == 201
    created = response.json()
    assert created["idempotent_replay"] is False
    assert created["message"]["body"] == "hello over http"

    response = await client.get("/messaging/messages", params={"company_id": 1}, headers=_headers("E2"))
    assert response.status_code == 200
    data = response.json()
    assert [m["id"] for m in data["messages"]] == [created["message"]["id"]]
    assert data["conversations"][0]["id"] == "general"
    assert data["page_info"] == {"next_cursor": None, "has_more": False}


@pytest.mark.asyncio
async def test_idempotency_header_replays(client: AsyncClient):
    payload = {"body": "only once please"}
    first = await client.post(
        "/messaging/messages",
        params={"company_id": 1},
        json=payload,
        headers=_headers("E1", **{"Idempotency-Key": "idem-1"}),
    )
    second = await client.post(
        "/messaging/messages",
        params={"company_id": 1},
        json=payload,
        headers=_headers("E1", **{"Idempotency-Key": "idem-1"}),
    )
    assert first.status_code == 201
    assert second.status_code == 201
    assert second.json()["idempotent_replay"] is True
    assert second.json()["message"]["id"] == first.json()["message"]["id"]


@pytest.mark.asyncio
async def test_thread_edit_and_delete(client: AsyncClient):
    root = (await client.post(
        "/messaging/messages", params={"company_id": 1}, json={"body": "thread root"}, headers=_headers("E1"),
    )).json()["message"]
    reply = (await client.post(
        "/messaging/messages",
        params={"company_id": 1},
        json={"body": "thread reply", "parent_message_id": root["id"]},
        headers=_headers("E2"),
    )).json()["message"]

    response = await client.get(
        f"/messaging/messages/{root['id']}/thread", params={"company_id": 1}, headers=_headers("E3"),
    )
    assert response.status_code == 200
    assert [r["id"] for r in response.json()["replies"]] == [reply["id"]]

    response = await client.patch(
        f"/messaging/messages/{reply['id']}",
        params={"company_id": 1},
        json={"body": "thread reply, edited"},
        headers=_headers("E2"),
    )
    assert response.status_code == 200
    assert response.json()["message"]["body"] == "thread reply, edited"

    response = await client.delete(
        f"/messaging/messages/{reply['id']}", params={"company_id": 1}, headers=_headers("E3"),
    )
    assert response.status_code == 403
    assert response.json()["error"]["details"]["reason"] == "NOT_AUTHOR_OR_MODERATOR"

    response = await client.delete(
        f"/messaging/messages/{reply['id']}", params={"company_id": 1}, headers=_headers("E2"),
    )
    assert response.status_code == 200
    assert response.json()["deleted"] is True


@pytest.mark.asyncio
async def test_cross_company_message_is_404(client: AsyncClient):
    root = (await client.post(
        "/messaging/messages", params={"company_id": 1}, json={"body": "tenant one"}, headers=_headers("E1"),
    )).json()["message"]
    response = await client.delete(
        f"/messaging/messages/{root['id']}", params={"company_id": 2}, headers=_headers("E1"),
    )
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "MESSAGE_NOT_FOUND"


@pytest.mark.asyncio
async def test_content_policy_is_422(client: AsyncClient):
    response = await client.post(
        "/messaging/messages", params={"company_id": 1}, json={"body": "zzzzzzzzzzzzzzzzzz"}, headers=_headers("E1"),
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "CONTENT_POLICY_REJECTED"
    assert response.json()["error"]["details"] == {"category": "spam"}


@pytest.mark.asyncio
async def test_duplicate_body_is_429(client: AsyncClient):
    for expected in (201, 429):
        response = await client.post(
            "/messaging/messages", params={"company_id": 1}, json={"body": "echo echo"}, headers=_headers("E1"),
        )
        assert response.status_code == expected
    assert response.json()["error"]["code"] == "DUPLICATE_MESSAGE"


# =============================================================================
# Presence and Company Context
# =============================================================================


@pytest.mark.asyncio
async def test_presence_roundtrip(client: AsyncClient):
    response = await client.post(
        "/messaging/presence", params={"company_id": 1}, json={"status": "online"}, headers=_headers("E1"),
    )
    assert response.status_code == 200

    response = await client.get(
        "/messaging/presence", params={"company_id": 1, "user_ids": "E1,E2"}, headers=_headers("E2"),
    )
    assert response.status_code == 200
    users = {u["empid"]: u["status"] for u in response.json()["users"]}
    assert users == {"E1": "online", "E2": "offline"}

    await client.post(
        "/messaging/presence", params={"company_id": 1}, json={"status": "offline"}, headers=_headers("E1"),
    )


@pytest.mark.asyncio
async def test_company_context_switch(client: AsyncClient):
    response = await client.post("/messaging/company-context", params={"company_id": 2}, headers=_headers("ADM"))
    assert response.status_code == 200
    assert response.json()["membership"]["role"] == "Admin"

    response = await client.post("/messaging/company-context", params={"company_id": 2}, headers=_headers("E2"))
    assert response.status_code == 403


# =============================================================================
# Permissions and Metrics
# =============================================================================


@pytest.mark.asyncio
async def test_permission_evaluate(client: AsyncClient):
    response = await client.post(
        "/messaging/permissions/evaluate",
        json={
            "role": "Staff",
            "action": "message:delete",
            "actor": {"empid": "E1", "company_id": 1},
            "resource": {"company_id": 1},
        },
        headers=_headers("ADM"),
    )
    assert response.status_code == 200
    assert response.json()["allowed"] is False
    assert response.json()["reason"] == "ROLE_DENY"


@pytest.mark.asyncio
async def test_permission_matrix(client: AsyncClient):
    response = await client.get("/messaging/permissions/matrix", headers=_headers("E1"))
    assert response.status_code == 200
    assert "message:delete" in response.json()["Staff"]["deny"]


@pytest.mark.asyncio
async def test_metrics_endpoint(client: AsyncClient):
    await client.post(
        "/messaging/messages", params={"company_id": 1}, json={"body": "measure me"}, headers=_headers("E1"),
    )
    response = await client.get("/messaging/metrics")
    assert response.status_code == 200
    assert "messaging_message_create_latency_seconds" in response.text


# =============================================================================
# Compliance
# =============================================================================


@pytest.mark.asyncio
async def test_compliance_requires_moderator(client: AsyncClient):
    response = await client.get(
        "/messaging/compliance/retention-policies", params={"company_id": 1}, headers=_headers("E1"),
    )
    assert response.status_code == 403

    response = await client.get(
        "/messaging/compliance/retention-policies", params={"company_id": 1}, headers=_headers("ADM"),
    )
    assert response.status_code == 200
    assert len(response.json()) == 4


@pytest.mark.asyncio
async def test_retention_policy_upsert(client: AsyncClient):
    response = await client.put(
        "/messaging/compliance/retention-policies",
        params={"company_id": 1},
        json={"message_class": "general", "retention_days": 45},
        headers=_headers("MOD"),
    )
    assert response.status_code == 200
    assert response.json() == {"message_class": "general", "retention_days": 45, "is_default": False}

    response = await client.put(
        "/messaging/compliance/retention-policies",
        params={"company_id": 1},
        json={"message_class": "general", "retention_days": 0},
        headers=_headers("MOD"),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_legal_hold_endpoints(client: AsyncClient):
    response = await client.post(
        "/messaging/compliance/legal-holds",
        params={"company_id": 1},
        json={"scope": "user", "target_user_empid": "E2", "reason": "audit"},
        headers=_headers("ADM"),
    )
    assert response.status_code == 201
    hold = response.json()
    assert hold["status"] == "active"

    response = await client.get(
        "/messaging/compliance/legal-holds", params={"company_id": 1}, headers=_headers("ADM"),
    )
    assert [h["id"] for h in response.json()] == [hold["id"]]

    response = await client.post(
        f"/messaging/compliance/legal-holds/{hold['id']}/release",
        params={"company_id": 1},
        headers=_headers("ADM"),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "released"

    response = await client.post(
        f"/messaging/compliance/legal-holds/{hold['id']}/release",
        params={"company_id": 1},
        headers=_headers("ADM"),
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_purge_preview_execute_and_certificate(client: AsyncClient):
    await client.post(
        "/messaging/messages", params={"company_id": 1}, json={"body": "to be purged"}, headers=_headers("E1"),
    )
    far_future = "2100-01-01T00:00:00Z"

    response = await client.post(
        "/messaging/compliance/purge/preview",
        params={"company_id": 1},
        json={"as_of": far_future},
        headers=_headers("ADM"),
    )
    assert response.status_code == 200
    assert response.json()["summary"]["candidate_count"] == 1

    response = await client.post(
        "/messaging/compliance/purge/execute",
        params={"company_id": 1},
        json={"purge_run_id": "api-run", "approvals": ["ADM"], "dry_run": False, "as_of": far_future},
        headers=_headers("ADM"),
    )
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "APPROVAL_GATE_NOT_MET"

    response = await client.post(
        "/messaging/compliance/purge/execute",
        params={"company_id": 1},
        json={"purge_run_id": "api-run", "approvals": ["ADM", "MOD"], "dry_run": False, "as_of": far_future},
        headers=_headers("ADM"),
    )
    assert response.status_code == 200
    result = response.json()
    assert len(result["custody"]) == 1
    assert result["certificate"]["action_count"] == 1

    response = await client.get(
        "/messaging/compliance/purge/api-run/certificate", params={"company_id": 1}, headers=_headers("MOD"),
    )
    assert response.status_code == 200
    assert response.json()["certificate_digest"] == result["certificate"]["certificate_digest"]

    response = await client.get(
        "/messaging/compliance/purge/api-run/certificate", params={"company_id": 2}, headers=_headers("ADM"),
    )
    assert response.status_code == 404
