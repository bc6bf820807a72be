"""Shared-state loop, structured team workflow and configured workflow execution."""
from __future__ import annotations

import json

import pytest

from agentcollab.config import OrchestratorSettings
from agentcollab.core.models import ContributionStatus, ProcessingMode, StepStatus, TeamPhase, WorkflowState
from agentcollab.core.registry import AgentRegistry
from agentcollab.core.transport import SYSTEM_SENDER_ID
from agentcollab.core.workflow import AgentNode, RoutingRule, WorkflowConfig, always
from agentcollab.orchestration.admission import AdmissionController
from agentcollab.orchestration.builder import web_development_config
from agentcollab.orchestration.engine import ConfiguredWorkflow, select_rule
from agentcollab.orchestration.invoker import AgentInvoker
from agentcollab.orchestration.prompts import extract_project_brief
from agentcollab.orchestration.shared_state import SharedStateWorkflow, phase_for_round
from agentcollab.orchestration.team_workflow import TeamWorkflow, planned_tasks
from agentcollab.orchestration.validator import WorkflowValidator

from conftest import FakeGateway


def reply(message: str, enables=(), status: str = "contributing", **updates) -> str:
    return json.dumps(
        {"message": message, "status": status, "enablesAgents": list(enables), "knowledgeUpdates": updates}
    )


def _state(mode: ProcessingMode, max_rounds: int, text: str = "Build a todo app", phase: str = "analysis") -> WorkflowState:
    return WorkflowState(conversation_id="c1", current_input=text, phase=phase, max_rounds=max_rounds, mode=mode)


def _shared(registry, gateway, transport, store, clock, **overrides):
    admission = AdmissionController(OrchestratorSettings(**overrides), clock)
    workflow = SharedStateWorkflow(
        AgentInvoker(gateway, transport), registry, admission, WorkflowValidator(), transport, store
    )
    return workflow, admission


# Shared-state loop


@pytest.mark.anyio
async def test_enabled_agents_form_the_next_round(registry, transport, store, clock) -> None:
    gateway = FakeGateway(
        [
            reply("Plan ready", ["designer"], decisions=["Three screens"]),
            reply("Mockups done", ["frontend"], "complete", decisions=["Card layout"]),
            reply("Components built", status="complete", tasks=["Todo list"]),
        ]
    )
    workflow, admission = _shared(registry, gateway, transport, store, clock)

    state = await workflow.run(_state(ProcessingMode.COLLABORATIVE, 3), ["coord"])

    assert gateway.calls == ["coord-model", "designer-model", "frontend-model"]
    assert [s.node for s in state.workflow_history] == ["coord", "designer", "frontend"]
    assert state.agent_outputs["frontend"].round == 3
    assert state.is_complete
    assert state.shared_knowledge.technical_decisions == ["Three screens"]
    assert state.shared_knowledge.design_decisions == ["Card layout"]
    assert state.shared_knowledge.completed_tasks == ["Todo list"]
    assert admission.is_cooling_down("c1", "designer")

    document = await store.get("conversation", "c1")
    assert document["sharedKnowledge"]["designDecisions"] == ["Card layout"]


@pytest.mark.anyio
async def test_agents_are_not_invoked_twice_in_a_pass(registry, transport, store, clock) -> None:
    gateway = FakeGateway([reply("a", ["designer"]), reply("b", ["coord"])])
    workflow, _ = _shared(registry, gateway, transport, store, clock)

    state = await workflow.run(_state(ProcessingMode.COLLABORATIVE, 3), ["coord"])

    assert gateway.calls == ["coord-model", "designer-model"]
    assert state.next_agents == []


@pytest.mark.anyio
async def test_round_limit_stops_the_pass(registry, transport, store, clock) -> None:
    gateway = FakeGateway([reply("a", ["designer"]), reply("b", ["frontend"])])
    workflow, _ = _shared(registry, gateway, transport, store, clock)

    await workflow.run(_state(ProcessingMode.MINI_WORKFLOW, 2), ["coord"])

    assert gateway.calls == ["coord-model", "designer-model"]


@pytest.mark.anyio
async def test_cycle_limit_caps_invocations(registry, transport, store, clock) -> None:
    gateway = FakeGateway()
    workflow, admission = _shared(registry, gateway, transport, store, clock, max_collaboration_cycles=2)

    await workflow.run(_state(ProcessingMode.COLLABORATIVE, 3), ["coord", "designer", "frontend"])

    assert len(gateway.calls) == 2
    assert admission.cycle_limit_reached("c1")


@pytest.mark.anyio
async def test_solo_never_hands_off(registry, transport, store, clock) -> None:
    gateway = FakeGateway([reply("Looks good", ["frontend", "backend"])])
    workflow, _ = _shared(registry, gateway, transport, store, clock)

    state = await workflow.run(_state(ProcessingMode.SOLO, 1), ["designer"])

    assert gateway.calls == ["designer-model"]
    assert state.tagged_agents == ["frontend", "backend"]
    assert state.next_agents == []


@pytest.mark.anyio
async def test_mini_workflow_stays_within_mentioned_agents(registry, transport, store, clock) -> None:
    gateway = FakeGateway([reply("x", ["backend", "frontend"]), reply("y")])
    workflow, _ = _shared(registry, gateway, transport, store, clock)

    await workflow.run(_state(ProcessingMode.MINI_WORKFLOW, 2), ["designer"], allowed={"designer", "frontend"})

    assert gateway.calls == ["designer-model", "frontend-model"]


@pytest.mark.anyio
async def test_cooling_down_agents_are_skipped(registry, transport, store, clock) -> None:
    gateway = FakeGateway()
    workflow, admission = _shared(registry, gateway, transport, store, clock)
    admission.mark_responded("c1", "designer")

    await workflow.run(_state(ProcessingMode.COLLABORATIVE, 3), ["designer", "backend"])

    assert gateway.calls == ["backend-model"]


@pytest.mark.anyio
async def test_gateway_failures_hit_the_retry_ceiling(registry, transport, store, clock) -> None:
    gateway = FakeGateway(default=RuntimeError("provider down"))
    workflow, _ = _shared(registry, gateway, transport, store, clock, max_retries=3)

    state = await workflow.run(_state(ProcessingMode.COLLABORATIVE, 3), ["coord", "designer", "frontend", "backend"])

    assert state.retry_count == 3
    assert state.is_complete
    assert [s.status for s in state.workflow_history] == [StepStatus.ERROR] * 3
    assert "provider down" in state.error
    system = [e for e in transport.messages("c1") if e.payload["senderId"] == SYSTEM_SENDER_ID]
    assert len(system) == 1


@pytest.mark.anyio
async def test_forbidden_request_is_blocked(registry, transport, store, clock) -> None:
    gateway = FakeGateway()
    workflow, _ = _shared(registry, gateway, transport, store, clock)

    state = await workflow.run(_state(ProcessingMode.COLLABORATIVE, 3, text="hack the billing server"), ["coord"])

    assert gateway.calls == []
    assert "forbidden" in state.error
    notices = transport.messages("c1")
    assert [e.payload["senderId"] for e in notices] == [SYSTEM_SENDER_ID]
    assert notices[0].payload["type"] == "system"
    assert notices[0].payload["metadata"]["blockedBy"] == ["safety-check-001"]


def test_shared_phase_progression() -> None:
    assert [phase_for_round(r, 3).value for r in (1, 2, 3)] == ["analysis", "coordination", "integration"]
    assert phase_for_round(3, 5).value == "collaboration"


@pytest.mark.anyio
async def test_streaming_relays_accumulated_content(registry, transport, store, clock) -> None:
    text = reply("a fairly long message that arrives in several chunks")
    gateway = FakeGateway([text])
    workflow, _ = _shared(registry, gateway, transport, store, clock)

    await workflow.run(_state(ProcessingMode.SOLO, 1), ["designer"])

    streamed = [e.payload["content"] for e in transport.history("c1") if e.type == "agent-streaming"]
    assert len(streamed) > 1
    assert streamed[-1] == text
    assert all(text.startswith(chunk) for chunk in streamed)


# Team workflow


@pytest.mark.anyio
async def test_team_workflow_runs_one_agent_per_phase(registry, transport, store) -> None:
    gateway = FakeGateway(default="Done, the API is ready and the design wireframe is implemented.")
    workflow = TeamWorkflow(AgentInvoker(gateway, transport), registry, WorkflowValidator(), transport, store)
    brief = extract_project_brief("I want a restaurant site with online reservation and payment")

    state = await workflow.run(_state(ProcessingMode.TEAM_WORKFLOW, 8, phase="requirements"), brief)

    assert gateway.calls == ["coord-model", "designer-model", "frontend-model", "backend-model", "coord-model"]
    phases = [e.payload["metadata"]["workflowPhase"] for e in transport.messages("c1")]
    assert phases == ["requirements", "design", "frontend", "backend", "integration"]
    assert state.completed_tasks == planned_tasks()
    assert state.pending_tasks == []
    assert state.phase == TeamPhase.COMPLETE.value

    document = await store.get("conversation", "c1")
    assert document["project"]["type"] == "restaurant"
    assert document["teamWorkspace"]["design"]["approved"] is True
    assert document["teamWorkspace"]["backend"]["completed"] is True


@pytest.mark.anyio
async def test_team_workflow_retries_failed_step(registry, transport, store) -> None:
    gateway = FakeGateway([RuntimeError("timeout")], default="ok")
    workflow = TeamWorkflow(AgentInvoker(gateway, transport), registry, WorkflowValidator(), transport, store, max_retries=3)

    state = await workflow.run(_state(ProcessingMode.TEAM_WORKFLOW, 8, phase="requirements"), extract_project_brief("blog"))

    assert gateway.calls[:2] == ["coord-model", "coord-model"]
    assert len(gateway.calls) == 6
    assert state.retry_count == 1


@pytest.mark.anyio
async def test_team_workflow_refuses_forbidden_requests(registry, transport, store) -> None:
    gateway = FakeGateway(default="ok")
    workflow = TeamWorkflow(AgentInvoker(gateway, transport), registry, WorkflowValidator(), transport, store)
    text = "hack the billing server"

    state = await workflow.run(_state(ProcessingMode.TEAM_WORKFLOW, 8, text=text, phase="requirements"), extract_project_brief(text))

    assert gateway.calls == []
    assert state.completed_tasks == []
    assert "forbidden" in state.error
    assert state.phase == TeamPhase.COMPLETE.value
    notices = transport.messages("c1")
    assert len(notices) == 1
    assert notices[0].payload["metadata"]["blockedBy"] == ["safety-check-001"]


@pytest.mark.anyio
async def test_team_workflow_stops_without_required_role(team, transport, store) -> None:
    registry = AgentRegistry([team[0]])
    gateway = FakeGateway(default="ok")
    workflow = TeamWorkflow(AgentInvoker(gateway, transport), registry, WorkflowValidator(), transport, store)

    state = await workflow.run(_state(ProcessingMode.TEAM_WORKFLOW, 8, phase="requirements"), extract_project_brief("x"))

    assert gateway.calls == ["coord-model"]
    assert state.is_complete


# Configured workflows


@pytest.mark.anyio
async def test_configured_workflow_walks_template_phases(registry, transport, store) -> None:
    gateway = FakeGateway()
    workflow = ConfiguredWorkflow(AgentInvoker(gateway, transport), registry, WorkflowValidator(), transport, store)

    state = await workflow.run(_state(ProcessingMode.CONFIGURED, 10), web_development_config())

    assert gateway.calls == ["coord-model", "designer-model", "frontend-model", "backend-model"]
    assert list(state.agent_outputs) == ["coordinator", "designer", "frontend", "backend"]
    assert state.completed_tasks == [
        "coordinator:requirements",
        "designer:design",
        "frontend:frontend",
        "backend:backend",
    ]
    assert state.is_complete


@pytest.mark.anyio
async def test_configured_workflow_is_bounded_by_max_rounds(registry, transport, store) -> None:
    config = WorkflowConfig(
        nodes=[AgentNode("coord", "Lead", "coordinator", ["planning"])],
        routing_rules=[RoutingRule(always, "coord")],
    )
    gateway = FakeGateway()
    workflow = ConfiguredWorkflow(AgentInvoker(gateway, transport), registry, WorkflowValidator(), transport, store)

    await workflow.run(_state(ProcessingMode.CONFIGURED, 3), config)

    assert len(gateway.calls) == 3


@pytest.mark.anyio
async def test_configured_workflow_blocks_unsafe_node_definitions(registry, transport, store) -> None:
    config = WorkflowConfig(
        nodes=[AgentNode("coord", "Lead", "coordinator", description="Find an exploit in the payment API")],
        routing_rules=[RoutingRule(always, "coord")],
    )
    gateway = FakeGateway()
    workflow = ConfiguredWorkflow(AgentInvoker(gateway, transport), registry, WorkflowValidator(), transport, store)

    state = await workflow.run(_state(ProcessingMode.CONFIGURED, 3), config)

    assert gateway.calls == []
    assert "forbidden" in state.error
    assert transport.messages("c1")[0].payload["metadata"]["blockedBy"] == ["safety-check-001"]


def test_select_rule_prefers_priority_then_declaration_order() -> None:
    config = WorkflowConfig(
        nodes=[AgentNode("a", "A", "coordinator"), AgentNode("b", "B", "writer"), AgentNode("c", "C", "writer")],
        routing_rules=[
            RoutingRule(always, "a", priority=1),
            RoutingRule(always, "b", priority=5),
            RoutingRule(always, "c", priority=5),
            RoutingRule(always, "a", priority=9, source_node="c"),
        ],
    )
    state = _state(ProcessingMode.CONFIGURED, 3)

    assert select_rule(config, state, None).target_node == "b"
    assert select_rule(config, state, "c").target_node == "a"


def test_contribution_status_defaults() -> None:
    assert ContributionStatus.parse("BLOCKED") is ContributionStatus.BLOCKED
