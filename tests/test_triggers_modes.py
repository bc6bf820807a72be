"""Mention, task and keyword triggers and the processing mode they select."""
from __future__ import annotations

from agentcollab.core.models import AgentRole, ProcessingMode
from agentcollab.orchestration.modes import select_mode
from agentcollab.orchestration.triggers import TriggerParser, resolve_mention

from conftest import make_agent


def test_mention_resolves_by_name_role_and_id(team) -> None:
    assert resolve_mention("Designer", team).agent_id == "designer"
    assert resolve_mention("backend-developer", team).agent_id == "backend"
    assert resolve_mention("coord", team).agent_id == "coord"
    assert resolve_mention("nobody", team) is None


def test_mention_prefers_exact_match_over_containment() -> None:
    agents = [
        make_agent("a1", "Sam Smith", AgentRole.GENERAL),
        make_agent("a2", "Sam", AgentRole.GENERAL),
    ]
    assert resolve_mention("sam", agents).agent_id == "a2"
    assert resolve_mention("sam-smith", agents).agent_id == "a1"


def test_parse_keeps_trigger_kinds_disjoint(team) -> None:
    result = TriggerParser().parse("@Designer can you design the UI and build the api?", team)

    assert result.mentions == ["designer"]
    assert "designer" not in result.triggers
    assert "backend" in result.triggers
    assert len(result.all_agents()) == len(set(result.all_agents()))


def test_task_tags_match_capabilities(registry) -> None:
    result = TriggerParser().parse("Please look at #database", registry.active())
    assert result.tasks == ["backend"]
    assert result.mentions == []


def test_unavailable_agents_are_not_triggered(team) -> None:
    result = TriggerParser().parse("We need a new api", team, is_available=lambda agent_id: agent_id != "backend")
    assert "backend" not in result.triggers
    assert "coord" in result.triggers


def test_inactive_agents_are_ignored(team) -> None:
    team[1].is_active = False
    result = TriggerParser().parse("@Designer hello", team)
    assert result.mentions == []


def test_mode_table() -> None:
    assert select_mode(1, False, True).mode is ProcessingMode.SOLO
    assert select_mode(1, False, True).max_rounds == 1
    assert select_mode(2, False, False).mode is ProcessingMode.MINI_WORKFLOW
    assert select_mode(5, False, False).max_rounds == 2
    assert select_mode(0, False, False).mode is ProcessingMode.COLLABORATIVE
    assert select_mode(0, False, False).max_rounds == 3


def test_team_workflow_only_on_first_message_with_full_team() -> None:
    decision = select_mode(2, True, True, team_max_rounds=8)
    assert decision.mode is ProcessingMode.TEAM_WORKFLOW
    assert decision.max_rounds == 8
    assert select_mode(0, True, False).mode is ProcessingMode.COLLABORATIVE
    assert select_mode(0, False, True).mode is ProcessingMode.COLLABORATIVE


def test_attached_template_wins() -> None:
    decision = select_mode(1, True, True, has_template=True, template_max_rounds=12)
    assert decision.mode is ProcessingMode.CONFIGURED
    assert decision.max_rounds == 12
