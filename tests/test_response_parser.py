"""Lenient parsing of agent replies."""
from __future__ import annotations

from loguru import logger

from agentcollab.core.models import ContributionStatus
from agentcollab.orchestration.response_parser import (
    EMPTY_PLACEHOLDER,
    FALLBACK_REASONING,
    extract_json_span,
    load_lenient,
    parse_contribution,
)


def test_json_wrapped_in_prose_with_trailing_commas(team) -> None:
    raw = (
        "Sure, here is my update:\n"
        '{"message": "Line one\nline two", "status": "complete",'
        ' "knowledgeUpdates": {"decisions": ["Use REST",]}, "enablesAgents": ["backend"],}\n'
        "Let me know."
    )
    contribution = parse_contribution("frontend", raw, 2, team)

    assert contribution.message == "Line one line two"
    assert contribution.status is ContributionStatus.COMPLETE
    assert contribution.knowledge_updates.decisions == ["Use REST"]
    assert contribution.enables_agents == ["backend"]
    assert contribution.round == 2
    assert contribution.reasoning is None


def test_braces_inside_strings_do_not_end_the_span() -> None:
    text = 'prefix {"message": "use {curly} braces }", "status": "blocked"} suffix'
    assert extract_json_span(text) == '{"message": "use {curly} braces }", "status": "blocked"}'
    assert load_lenient(text)["status"] == "blocked"


def test_field_aliases_are_accepted(team) -> None:
    raw = '{"response": "hi", "knowledge_updates": {"integration_points": ["REST"]}, "taggedAgents": ["Frankie"]}'
    contribution = parse_contribution("coord", raw, 1, team)

    assert contribution.message == "hi"
    assert contribution.knowledge_updates.integration_points == ["REST"]
    assert contribution.enables_agents == ["frontend"]
    assert contribution.data["response"] == "hi"


def test_own_id_and_unknown_agents_are_dropped(team) -> None:
    raw = '{"message": "x", "enablesAgents": ["backend", "@Designer", "ghost"], "dependsOn": ["coord"]}'
    contribution = parse_contribution("backend", raw, 1, team)

    assert contribution.enables_agents == ["designer"]
    assert contribution.depends_on == ["coord"]


def test_unknown_status_defaults_to_contributing() -> None:
    contribution = parse_contribution("a", '{"message": "x", "status": "thinking"}', 1)
    assert contribution.status is ContributionStatus.CONTRIBUTING


def test_keyword_fallback_maps_roles_to_agents(team) -> None:
    contribution = parse_contribution("coord", "I think the backend should expose this first.", 1, team)

    assert contribution.reasoning == FALLBACK_REASONING
    assert contribution.message == "I think the backend should expose this first."
    assert contribution.enables_agents == ["backend"]
    assert contribution.status is ContributionStatus.CONTRIBUTING


def test_keyword_fallback_without_registry_uses_role_names() -> None:
    contribution = parse_contribution("coord", "Hand this to the backend please", 1)
    assert contribution.enables_agents == ["backend-developer"]


def test_fallback_picks_up_mentions(team) -> None:
    contribution = parse_contribution("coord", "Looping in @Frankie on this", 1, team)
    assert contribution.enables_agents == ["frontend"]


def test_empty_reply_is_complete_placeholder() -> None:
    contribution = parse_contribution("a", "   ", 3)
    assert contribution.message == EMPTY_PLACEHOLDER
    assert contribution.status is ContributionStatus.COMPLETE
    assert contribution.enables_agents == []


def test_invalid_json_falls_back() -> None:
    contribution = parse_contribution("a", '{"message": "unterminated', 1)
    assert contribution.reasoning == FALLBACK_REASONING


def test_prose_replies_are_parsed_quietly(team) -> None:
    levels = []
    sink = logger.add(lambda message: levels.append(message.record["level"].name), level="DEBUG")
    try:
        prose = parse_contribution("designer", "Wireframes are attached.", 1, team, prose_expected=True)
        structured = parse_contribution("designer", "Wireframes are attached.", 1, team)
    finally:
        logger.remove(sink)

    assert prose.message == structured.message == "Wireframes are attached."
    assert prose.reasoning == FALLBACK_REASONING
    assert levels.count("WARNING") == 1
