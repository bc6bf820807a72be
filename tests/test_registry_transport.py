"""Agent registry cache and the conversation transport."""
from __future__ import annotations

import json

import pytest

from agentcollab.core.errors import AgentNotFoundError
from agentcollab.core.models import AgentRole
from agentcollab.core.registry import AgentRegistry, json_file_loader
from agentcollab.core.transport import AGENT_STREAMING, NEW_MESSAGE, TYPING_INDICATOR

from conftest import make_agent


def test_registry_lookups(registry) -> None:
    assert registry.has_team_roles()
    assert registry.by_role(AgentRole.BACKEND).agent_id == "backend"
    assert registry.is_user_sender("user")
    assert registry.is_user_sender("someone-else")
    assert not registry.is_user_sender("coord")

    registry.get("backend").is_active = False
    assert not registry.has_team_roles()
    assert registry.by_role(AgentRole.BACKEND) is None

    registry.remove("backend")
    assert "backend" not in registry
    with pytest.raises(AgentNotFoundError):
        registry.require("backend")


@pytest.mark.anyio
async def test_refresh_replaces_contents_and_drops_duplicate_ids(tmp_path) -> None:
    path = tmp_path / "agents.json"
    path.write_text(
        json.dumps(
            [
                {"id": "lead", "name": "Lead", "role": "Project Coordinator", "generation": {"provider": "openai", "maxTokens": 500}},
                {"id": "lead", "name": "Shadow", "role": "designer"},
                {"agentId": "ux", "name": "Una", "role": "UX Designer", "isActive": False},
            ]
        ),
        encoding="utf-8",
    )
    registry = AgentRegistry([make_agent("old", "Old", AgentRole.GENERAL)])

    count = await registry.refresh(json_file_loader(str(path)))

    assert count == 2
    assert [a.agent_id for a in registry.list()] == ["lead", "ux"]
    lead = registry.require("lead")
    assert lead.name == "Lead"
    assert lead.role is AgentRole.COORDINATOR
    assert lead.generation.provider == "openai"
    assert lead.generation.max_tokens == 500
    assert "task_coordination" in lead.capabilities
    assert [a.agent_id for a in registry.active()] == ["lead"]


@pytest.mark.anyio
async def test_subscribers_receive_published_events(transport) -> None:
    async with transport.subscribe("c1") as inbox:
        transport.publish_typing("c1", "coord", True)
        transport.publish_streaming("c1", "coord", "Hel")
        transport.publish_message("c1", "coord", "Hello", metadata={"round": 1})
        transport.publish_message("c2", "coord", "elsewhere")

        events = [inbox.get_nowait() for _ in range(inbox.qsize())]

    assert [e.type for e in events] == [TYPING_INDICATOR, AGENT_STREAMING, NEW_MESSAGE]
    assert events[2].payload["metadata"] == {"round": 1}
    assert [e.payload["content"] for e in transport.messages("c2")] == ["elsewhere"]

    # unsubscribed queues no longer receive events
    transport.publish_message("c1", "coord", "late")
    assert inbox.empty()
