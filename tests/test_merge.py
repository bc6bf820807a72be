"""Knowledge merging."""
from __future__ import annotations

import pytest

from agentcollab.core.models import (
    AgentRole,
    ContributionStatus,
    KnowledgeUpdates,
    ParsedContribution,
    SharedKnowledge,
    WorkflowState,
)
from agentcollab.orchestration.merge import (
    SHARED_KNOWLEDGE_KEY,
    apply_contribution,
    contribution_delta,
    merge_all,
    merge_document,
)


def test_merge_document_rules() -> None:
    target = {"notes": ["a"], "summary": "first", "nested": {"count": 1, "tags": ["x"]}, "flag": False}
    update = {"notes": ["b"], "summary": "second", "nested": {"tags": ["y"]}, "flag": True, "extra": 3}

    merged = merge_document(target, update)

    assert merged == {
        "notes": ["a", "b"],
        "summary": "first\nsecond",
        "nested": {"count": 1, "tags": ["x", "y"]},
        "flag": True,
        "extra": 3,
    }
    assert target["notes"] == ["a"]
    assert target["nested"]["tags"] == ["x"]


def test_list_replaces_non_list_value() -> None:
    assert merge_document({"items": "text"}, {"items": ["a"]}) == {"items": ["a"]}


def test_merge_is_associative_for_like_shaped_documents() -> None:
    a = {"list": [1], "text": "a", "deep": {"list": ["x"]}}
    b = {"list": [2], "text": "b", "deep": {"list": ["y"], "n": 1}}
    c = {"list": [3], "text": "c", "deep": {"n": 2}}

    assert merge_document(merge_document(a, b), c) == merge_document(a, merge_document(b, c))


def _contribution(status: ContributionStatus = ContributionStatus.CONTRIBUTING, **updates) -> ParsedContribution:
    return ParsedContribution(agent_id="x", round=1, message="m", status=status, knowledge_updates=KnowledgeUpdates(**updates))


def test_decisions_route_by_role() -> None:
    contribution = _contribution(decisions=["Card layout"])
    assert contribution_delta(contribution, AgentRole.DESIGNER) == {"designDecisions": ["Card layout"]}
    assert contribution_delta(contribution, AgentRole.BACKEND) == {"technicalDecisions": ["Card layout"]}


def test_tasks_route_by_status() -> None:
    done = _contribution(ContributionStatus.COMPLETE, tasks=["Build API"])
    ongoing = _contribution(tasks=["Build API"])
    assert contribution_delta(done, AgentRole.BACKEND) == {"completedTasks": ["Build API"]}
    assert contribution_delta(ongoing, AgentRole.BACKEND) == {"implementationNotes": ["Build API"]}


def test_requirements_blockers_and_integration_points() -> None:
    contribution = _contribution(requirements=["Login", "Search"], blockers=["No DB"], integration_points=["/api/users"])
    assert contribution_delta(contribution, AgentRole.COORDINATOR) == {
        "projectRequirements": "Login\nSearch",
        "blockers": ["No DB"],
        "integrationPoints": ["/api/users"],
    }


def test_merge_all_folds_in_order() -> None:
    shared = merge_all(SharedKnowledge(), [{"blockers": ["a"]}, {"blockers": ["b"], "projectRequirements": "r"}])
    assert shared.blockers == ["a", "b"]
    assert shared.project_requirements == "r"


@pytest.mark.anyio
async def test_apply_contribution_updates_state_and_store(store) -> None:
    state = WorkflowState(conversation_id="c1", current_input="hi", phase="analysis", max_rounds=3)
    contribution = _contribution(decisions=["Use Postgres"])

    delta = await apply_contribution(state, contribution, AgentRole.BACKEND, store)

    assert delta == {"technicalDecisions": ["Use Postgres"]}
    assert state.shared_knowledge.technical_decisions == ["Use Postgres"]
    document = await store.get("conversation", "c1")
    assert document[SHARED_KNOWLEDGE_KEY]["technicalDecisions"] == ["Use Postgres"]


@pytest.mark.anyio
async def test_empty_delta_leaves_store_untouched(store) -> None:
    state = WorkflowState(conversation_id="c1", current_input="hi", phase="analysis", max_rounds=3)
    assert await apply_contribution(state, _contribution(), AgentRole.GENERAL, store) == {}
    assert SHARED_KNOWLEDGE_KEY not in await store.get("conversation", "c1")
