"""HTTP surface exercised through FastAPI's test client."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from agentcollab.config import ProviderConfig
from agentcollab.main import app
from agentcollab.orchestration.builder import WorkflowBuilder
from agentcollab.runtime import (
    get_gateway,
    get_knowledge_store,
    get_llm_pool,
    get_orchestrator,
    get_registry,
    get_transport,
    get_workflow_builder,
)
from agentcollab.services.llm_pool import LLMPool

NODES = [
    {"id": "coord", "name": "Lead", "role": "coordinator", "capabilities": ["planning"]},
    {"id": "writer", "name": "Writer", "role": "writer", "capabilities": ["writing"]},
]

PING_PONG = {
    "nodes": NODES,
    "routingRules": [
        {"targetNode": "writer", "sourceNode": "coord", "repeat": True},
        {"targetNode": "coord", "sourceNode": "writer", "repeat": True},
    ],
    "phases": [],
}


@pytest.fixture
def client(orchestrator, registry, transport, store, gateway):
    pool = LLMPool()
    builder = WorkflowBuilder()
    pool.register(ProviderConfig(name="fake", api_key="test"))
    app.dependency_overrides.update(
        {
            get_orchestrator: lambda: orchestrator,
            get_registry: lambda: registry,
            get_transport: lambda: transport,
            get_knowledge_store: lambda: store,
            get_workflow_builder: lambda: builder,
            get_gateway: lambda: gateway,
            get_llm_pool: lambda: pool,
        }
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_agent_crud(client) -> None:
    created = client.post("/agents", json={"name": "Riley", "role": "UI/UX Designer", "agent_id": "riley"})
    assert created.status_code == 201
    assert created.json()["role"] == "designer"
    assert "ui_design" in created.json()["capabilities"]

    assert client.post("/agents", json={"name": "Riley", "agent_id": "riley"}).status_code == 409
    assert client.get("/agents/riley").json()["name"] == "Riley"

    updated = client.patch("/agents/riley", json={"is_active": False})
    assert updated.json()["is_active"] is False

    assert client.delete("/agents/riley").status_code == 204
    assert client.get("/agents/riley").status_code == 404
    assert client.delete("/agents/riley").status_code == 404


def test_posting_a_message_runs_a_pass(client, gateway) -> None:
    response = client.post("/conversations/c1/messages", json={"content": "Build me a blog", "message_id": "m1"})
    assert response.status_code == 202
    assert response.json() == {"conversation_id": "c1", "message_id": "m1"}

    messages = client.get("/conversations/c1/messages").json()
    assert [m["sender_id"] for m in messages] == ["coord", "designer", "frontend", "backend", "coord"]
    assert len(gateway.calls) == 5

    status = client.get("/conversations/c1/status").json()
    assert status["locked"] is False
    assert status["userTurns"] == 1


def test_exchange_returns_replies_inline(client, registry) -> None:
    registry.get("backend").is_active = False

    response = client.post("/conversations/c1/exchange", json={"content": "@Designer thoughts?", "message_id": "m1"})

    assert response.status_code == 200
    body = response.json()
    assert body["message_id"] == "m1"
    assert [r["sender_id"] for r in body["replies"]] == ["designer"]
    assert body["replies"][0]["content"] == "ok"


def test_workflow_attachment(client) -> None:
    assert client.post("/conversations/c1/workflow", json={"template_id": "missing"}).status_code == 404
    attached = client.post("/conversations/c1/workflow", json={"template_id": "ui-design-template"})
    assert attached.json()["templateId"] == "ui-design-template"
    assert client.get("/conversations/c1/status").json()["workflowTemplate"] == "ui-design-template"

    assert client.delete("/conversations/c1/workflow").status_code == 204
    assert client.delete("/conversations/c1/workflow").status_code == 404


def test_template_library(client) -> None:
    assert len(client.get("/workflows/templates").json()) == 4
    design = client.get("/workflows/templates", params={"category": "design"}).json()
    assert [t["id"] for t in design] == ["ui-design-template"]
    assert len(client.get("/workflows/categories").json()) == 4
    assert client.get("/workflows/templates/missing").status_code == 404

    clone = client.post("/workflows/templates/web-dev-template/clone", json={"name": "Mine"})
    assert clone.status_code == 201
    assert clone.json()["status"] == "valid"
    assert clone.json()["maxIterations"] == 15


def test_validate_and_autofix(client) -> None:
    validated = client.post("/workflows/validate", json=PING_PONG).json()
    assert validated["safe"] is False
    failing = [r["ruleId"] for r in validated["results"] if not r["passed"]]
    assert failing == ["safety-001"]

    fixed = client.post("/workflows/autofix", json=PING_PONG).json()
    assert fixed["safe"] is True
    assert len(fixed["config"]["routingRules"]) == 1


def test_publish(client) -> None:
    good = {
        "name": "Blog pipeline",
        "maxIterations": 6,
        "config": {
            "nodes": NODES,
            "routingRules": [
                {"targetNode": "coord", "phase": "requirements"},
                {"targetNode": "writer", "phase": "writing"},
            ],
            "phases": [
                {"name": "requirements", "requiredAgents": ["coord"], "nextPhase": "writing"},
                {"name": "writing", "requiredAgents": ["writer"]},
            ],
        },
    }
    published = client.post("/workflows/publish", json=good)
    assert published.status_code == 201
    assert published.json()["metadata"]["maxIterations"] == 6
    assert published.json()["category"] == "custom"

    unsafe = client.post("/workflows/publish", json={"name": "Loop", "config": PING_PONG})
    assert unsafe.status_code == 409
    assert unsafe.json()["detail"]["error"] == "WORKFLOW_NOT_SAFE"

    bad_role = {"name": "Bad", "config": {"nodes": [{"id": "x", "name": "X", "role": "wizard"}]}}
    assert client.post("/workflows/publish", json=bad_role).status_code == 400


def test_memory_endpoints(client) -> None:
    assert client.get("/memory/conversation/c9").json()["conversation"]["id"] == "c9"
    assert client.get("/memory/tenant/t1").status_code == 422

    client.post("/memory/project/p1/update", json={"path": "project.goals", "value": "Launch beta", "operation": "append"})
    client.post("/memory/project/p1/merge", json={"project": {"constraints": ["GDPR"]}})

    hits = client.post("/memory/project/p1/search", json={"query": "beta"}).json()
    assert hits[0]["path"] == "project.goals[0]"
    assert client.get("/memory/project/p1").json()["project"]["constraints"] == ["GDPR"]
    assert client.get("/memory/project/p1/stats").json()["keys"] == 4

    exported = client.get("/memory/project/p1/export").text
    assert client.post("/memory/project/p2/import", json={"data": exported}).json()["project"]["goals"] == ["Launch beta"]
    assert client.post("/memory/project/p2/import", json={"data": "{oops"}).status_code == 400
    assert client.post("/memory/project/p2/update", json={"path": "..", "value": 1}).status_code == 400

    assert client.delete("/memory/project/p2").json()["project"]["goals"] == []


def test_provider_endpoints(client) -> None:
    assert client.get("/providers").json() == ["fake"]
    assert client.get("/providers/fake/health").json() == {"provider": "fake", "connected": True}
    assert client.get("/providers/other/health").status_code == 404
    assert client.get("/providers/fake/models").json() == ["fake-model"]
