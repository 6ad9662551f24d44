"""Tests for the tenant-scoped tool catalog."""

from __future__ import annotations

from toolserver.engine.tool_registry import ToolRegistry, build_object_schema

from tests.factories import TICKET_SCHEMA


class TestCatalogQueries:
    async def test_lists_only_enabled_linked_tools(self, db, seed):
        agent = await seed.agent()
        await seed.linked_tool(agent, "create-ticket")
        await seed.linked_tool(agent, "old-tool", enabled=False)
        await seed.tool("unlinked")

        tools = await ToolRegistry(db).list_available(agent)
        assert [t.slug for t in tools] == ["create-ticket"]

    async def test_cross_tenant_link_is_ignored(self, db, seed):
        agent = await seed.agent(tenant_id="tenant-a")
        foreign = await seed.tool("foreign", tenant_id="tenant-b")
        await seed.link(agent, foreign)

        registry = ToolRegistry(db)
        assert await registry.list_available(agent) == []
        assert await registry.find(agent, "foreign") is None
        assert await registry.can_access(agent, foreign) is False

    async def test_find_hides_disabled_unless_asked(self, db, seed):
        agent = await seed.agent()
        await seed.linked_tool(agent, "paused", enabled=False)

        registry = ToolRegistry(db)
        assert await registry.find(agent, "paused") is None
        found = await registry.find(agent, "paused", include_disabled=True)
        assert found is not None and found.enabled is False

    async def test_can_access_requires_link(self, db, seed):
        agent = await seed.agent()
        linked = await seed.linked_tool(agent, "linked")
        unlinked = await seed.tool("unlinked")

        registry = ToolRegistry(db)
        assert await registry.can_access(agent, linked) is True
        assert await registry.can_access(agent, unlinked) is False

    async def test_can_access_rejects_disabled(self, db, seed):
        agent = await seed.agent()
        tool = await seed.linked_tool(agent, "paused", enabled=False)
        assert await ToolRegistry(db).can_access(agent, tool) is False

    async def test_list_by_category(self, db, seed):
        agent = await seed.agent()
        await seed.linked_tool(agent, "create-ticket", category="ticket")
        await seed.linked_tool(agent, "lookup-order", category="crm", kind="external",
                               config={"url": "https://crm.example.com", "method": "GET"})

        tools = await ToolRegistry(db).list_by_category(agent, "crm")
        assert [t.slug for t in tools] == ["lookup-order"]

    async def test_stats(self, db, seed):
        agent = await seed.agent()
        await seed.linked_tool(agent, "create-ticket", category="ticket")
        await seed.linked_tool(agent, "close-ticket", category="ticket")
        await seed.linked_tool(agent, "lookup-order", category="crm", kind="external",
                               config={"url": "https://crm.example.com", "method": "GET"})

        stats = await ToolRegistry(db).stats(agent)
        assert stats["total"] == 3
        assert stats["internal_count"] == 2
        assert stats["external_count"] == 1
        assert sorted(stats["categories"]) == ["crm", "ticket"]


class TestNormalizeForAI:
    async def test_descriptor_shape(self, db, seed):
        agent = await seed.agent()
        tool = await seed.linked_tool(agent, "create-ticket", name="Create Ticket", schema=TICKET_SCHEMA)

        [descriptor] = ToolRegistry(db).normalize_for_ai([tool])
        assert descriptor["name"] == "create-ticket"
        assert descriptor["description"] == "Create Ticket"
        assert descriptor["kind"] == "internal"
        assert descriptor["category"] == "ticket"
        assert descriptor["input_schema"]["type"] == "object"
        assert descriptor["input_schema"]["required"] == ["title"]
        assert descriptor["input_schema"]["properties"]["customer_id"] == {"type": "integer", "description": "Customer"}
        assert descriptor["output_schema"]["required"] == ["ticket_id", "status"]

    def test_object_schema_without_required(self):
        schema = build_object_schema([{"name": "a", "type": "string", "required": True}], with_required=False)
        assert schema == {"type": "object", "properties": {"a": {"type": "string", "description": ""}}}
