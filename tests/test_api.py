"""HTTP API tests against the ASGI app with a throwaway database."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from toolserver.api.deps import get_execution_store
from toolserver.db import get_db
from toolserver.engine.clock import utcnow
from toolserver.engine.work_queue import get_work_queue
from toolserver.main import app

from tests.factories import TICKET_SCHEMA

TENANT = {"tenant_id": "tenant-a"}


@pytest.fixture
async def client(session_factory, store, queue):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_work_queue] = lambda: queue
    app.dependency_overrides[get_execution_store] = lambda: store
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def _create_tool(client, **overrides) -> dict:
    body = {
        "name": "Create Ticket",
        "slug": "create-ticket",
        "kind": "internal",
        "category": "ticket",
        "schema": TICKET_SCHEMA,
        "config": {"action": "create_ticket"},
        "tenant_id": "tenant-a",
    }
    body.update(overrides)
    resp = await client.post("/api/v1/tools/", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _create_agent(client, tenant_id: str = "tenant-a") -> dict:
    resp = await client.post("/api/v1/agents/", json={"name": "Helpdesk bot", "tenant_id": tenant_id})
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _setup(client) -> tuple[dict, dict]:
    tool = await _create_tool(client)
    agent = await _create_agent(client)
    resp = await client.post(f"/api/v1/agents/{agent['id']}/tools/{tool['id']}", params=TENANT)
    assert resp.status_code == 201, resp.text
    return agent, tool


class TestToolAdmin:
    async def test_create_and_fetch(self, client):
        tool = await _create_tool(client)
        assert tool["schema"] == TICKET_SCHEMA
        assert tool["enabled"] is True

        resp = await client.get(f"/api/v1/tools/{tool['id']}", params=TENANT)
        assert resp.status_code == 200
        assert resp.json()["slug"] == "create-ticket"

    async def test_invalid_definition_lists_every_error(self, client):
        resp = await client.post("/api/v1/tools/", json={
            "name": "Broken",
            "slug": "broken",
            "kind": "external",
            "schema": {"inputs": [{"name": "", "type": "string"}]},
            "config": {"method": "GET"},
        })
        assert resp.status_code == 422
        errors = resp.json()["detail"]["errors"]
        assert "inputs[0] must have a non-empty 'name' string" in errors
        assert "Schema must have 'outputs' array" in errors
        assert "config.url is required for external tools" in errors

    async def test_duplicate_slug(self, client):
        await _create_tool(client)
        resp = await client.post("/api/v1/tools/", json={
            "name": "Again", "slug": "create-ticket", "kind": "internal",
            "config": {"action": "create_ticket"}, "tenant_id": "tenant-a",
        })
        assert resp.status_code == 409

    async def test_toggle(self, client):
        tool = await _create_tool(client)
        resp = await client.post(f"/api/v1/tools/{tool['id']}/toggle", params=TENANT)
        assert resp.json()["enabled"] is False

    async def test_tool_with_executions_cannot_be_deleted(self, client):
        agent, tool = await _setup(client)
        await client.post(f"/api/v1/agents/{agent['id']}/tools/create-ticket/execute", params=TENANT,
                          json={"payload": {"title": "x"}, "sync": True})

        resp = await client.delete(f"/api/v1/tools/{tool['id']}", params=TENANT)
        assert resp.status_code == 409
        assert (await client.get(f"/api/v1/tools/{tool['id']}", params=TENANT)).status_code == 200

    async def test_unused_tool_can_be_deleted(self, client):
        tool = await _create_tool(client, slug="unused", name="Unused")
        resp = await client.delete(f"/api/v1/tools/{tool['id']}", params=TENANT)
        assert resp.status_code == 204
        assert (await client.get(f"/api/v1/tools/{tool['id']}", params=TENANT)).status_code == 404

    async def test_other_tenant_cannot_see_tool(self, client):
        tool = await _create_tool(client)
        resp = await client.get(f"/api/v1/tools/{tool['id']}", params={"tenant_id": "tenant-b"})
        assert resp.status_code == 404

    async def test_cross_tenant_link_rejected(self, client):
        tool = await _create_tool(client)
        agent = await _create_agent(client, tenant_id="tenant-b")
        resp = await client.post(f"/api/v1/agents/{agent['id']}/tools/{tool['id']}", params={"tenant_id": "tenant-b"})
        assert resp.status_code == 403


class TestCatalog:
    async def test_formats(self, client):
        agent, _ = await _setup(client)
        base = f"/api/v1/agents/{agent['id']}"

        standard = (await client.get(f"{base}/tools", params=TENANT)).json()
        assert [t["slug"] for t in standard["tools"]] == ["create-ticket"]

        normalized = (await client.get(f"{base}/tools", params={**TENANT, "format": "normalized"})).json()
        assert normalized["tools"][0]["input_schema"]["required"] == ["title"]

        mcp = (await client.get(f"{base}/tools", params={**TENANT, "format": "mcp"})).json()
        assert mcp["tools"][0]["inputSchema"]["required"] == ["title"]

        single = (await client.get(f"{base}/tools/create-ticket", params={**TENANT, "format": "mcp"})).json()
        assert single["name"] == "create-ticket"

        stats = (await client.get(f"{base}/tools/stats", params=TENANT)).json()
        assert stats["total"] == 1

        by_category = (await client.get(f"{base}/tools/category/ticket", params=TENANT)).json()
        assert len(by_category["tools"]) == 1

    async def test_manifest(self, client):
        agent, _ = await _setup(client)
        resp = await client.get(f"/api/v1/agents/{agent['id']}/mcp/manifest", params=TENANT)
        manifest = resp.json()
        assert manifest["capabilities"]["multi_tenant"] is True
        assert manifest["server"]["agent_id"] == agent["id"]

    async def test_agent_of_other_tenant_is_not_found(self, client):
        agent, _ = await _setup(client)
        resp = await client.get(f"/api/v1/agents/{agent['id']}/tools", params={"tenant_id": "tenant-b"})
        assert resp.status_code == 404

    async def test_unknown_tool(self, client):
        agent, _ = await _setup(client)
        resp = await client.get(f"/api/v1/agents/{agent['id']}/tools/nope", params=TENANT)
        assert resp.status_code == 404


class TestExecution:
    async def test_sync_execution(self, client):
        agent, _ = await _setup(client)
        resp = await client.post(
            f"/api/v1/agents/{agent['id']}/tools/create-ticket/execute",
            params=TENANT,
            json={"payload": {"title": "VPN down"}, "sync": True},
        )
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["status"] == "success"
        assert body["result"]["ticket_id"].startswith("ticket_")
        assert body["tool_slug"] == "create-ticket"

    async def test_async_execution_and_history(self, client, queue):
        agent, _ = await _setup(client)
        base = f"/api/v1/agents/{agent['id']}"
        resp = await client.post(f"{base}/tools/create-ticket/execute", params=TENANT,
                                 json={"payload": {"title": "VPN down"}})
        assert resp.status_code == 202
        assert resp.json()["status"] == "accepted"
        execution_id = resp.json()["id"]

        await queue.start()
        await asyncio.wait_for(queue.join(), timeout=5)

        detail = (await client.get(f"{base}/executions/{execution_id}", params=TENANT)).json()
        assert detail["status"] == "success"

        page = (await client.get(f"{base}/executions", params={**TENANT, "status": "success"})).json()
        assert page["total"] == 1
        assert page["items"][0]["id"] == execution_id

        stats = (await client.get(f"{base}/executions/stats", params={**TENANT, "period": "1 day"})).json()
        assert stats["successful"] == 1
        assert stats["success_rate"] == 100

    async def test_schema_violation_is_422(self, client):
        agent, _ = await _setup(client)
        resp = await client.post(f"/api/v1/agents/{agent['id']}/tools/create-ticket/execute", params=TENANT,
                                 json={"payload": {"title": 1, "extra": True}})
        assert resp.status_code == 422
        assert resp.json()["detail"]["errors"] == [
            "Field title expects string but got integer",
            "Unexpected fields: extra",
        ]

    async def test_disabled_tool_is_400(self, client):
        agent, tool = await _setup(client)
        await client.post(f"/api/v1/tools/{tool['id']}/toggle", params=TENANT)
        resp = await client.post(f"/api/v1/agents/{agent['id']}/tools/create-ticket/execute", params=TENANT,
                                 json={"payload": {"title": "x"}})
        assert resp.status_code == 400
        assert resp.json()["detail"]["kind"] == "ToolDisabledError"

    async def test_cancel_then_cancel_again(self, client):
        agent, _ = await _setup(client)
        base = f"/api/v1/agents/{agent['id']}"
        created = (await client.post(f"{base}/tools/create-ticket/execute", params=TENANT,
                                     json={"payload": {"title": "x"}})).json()

        resp = await client.delete(f"{base}/executions/{created['id']}", params=TENANT)
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"

        again = await client.delete(f"{base}/executions/{created['id']}", params=TENANT)
        assert again.status_code == 409

    async def test_cancel_running_is_409(self, client, store):
        agent, _ = await _setup(client)
        base = f"/api/v1/agents/{agent['id']}"
        created = (await client.post(f"{base}/tools/create-ticket/execute", params=TENANT,
                                     json={"payload": {"title": "x"}})).json()
        assert await store.claim(created["id"], utcnow())

        resp = await client.delete(f"{base}/executions/{created['id']}", params=TENANT)
        assert resp.status_code == 409
        assert "running" in resp.json()["detail"]["message"]

        detail = (await client.get(f"{base}/executions/{created['id']}", params=TENANT)).json()
        assert detail["status"] == "running"

    async def test_retry_requires_failed(self, client):
        agent, _ = await _setup(client)
        base = f"/api/v1/agents/{agent['id']}"
        created = (await client.post(f"{base}/tools/create-ticket/execute", params=TENANT,
                                     json={"payload": {"title": "x"}})).json()

        resp = await client.post(f"{base}/executions/{created['id']}/retry", params=TENANT)
        assert resp.status_code == 409

    async def test_unknown_execution(self, client):
        agent, _ = await _setup(client)
        resp = await client.get(f"/api/v1/agents/{agent['id']}/executions/missing", params=TENANT)
        assert resp.status_code == 404


async def test_health(client):
    resp = await client.get("/health")
    assert resp.json()["status"] == "ok"
