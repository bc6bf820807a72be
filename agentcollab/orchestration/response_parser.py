"""Lenient parsing of structured agent responses.

Models are asked to answer with a JSON object but routinely wrap it in prose,
leave trailing commas or embed raw newlines in strings. This module recovers
what it can and falls back to a keyword scan when nothing parses.
"""
from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from agentcollab.core.models import (
    AgentDescriptor,
    AgentRole,
    ContributionStatus,
    KnowledgeUpdates,
    ParsedContribution,
)
from agentcollab.orchestration.triggers import MENTION_PATTERN, resolve_mention

FALLBACK_REASONING = "fallback parsing used"
EMPTY_PLACEHOLDER = "(no response)"

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")

_ROLE_KEYWORDS = (
    (re.compile(r"\bback-?end\b", re.IGNORECASE), AgentRole.BACKEND),
    (re.compile(r"\bfront-?end\b", re.IGNORECASE), AgentRole.FRONTEND),
    (re.compile(r"\bdesign(er)?\b", re.IGNORECASE), AgentRole.DESIGNER),
    (re.compile(r"\bcoordinat\w*", re.IGNORECASE), AgentRole.COORDINATOR),
)


def extract_json_span(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` span in ``text``, honouring string literals."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        start = text.find("{", start + 1)
    return None


def clean_json(span: str) -> str:
    """Replace control characters with spaces and drop trailing commas."""
    cleaned = _CONTROL_CHARS.sub(" ", span)
    return _TRAILING_COMMA.sub(r"\1", cleaned)


def load_lenient(text: str) -> Optional[Dict[str, Any]]:
    span = extract_json_span(text)
    if span is None:
        return None
    for candidate in (span, clean_json(span)):
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item is not None and str(item).strip()]
    return [str(value)]


def _resolve_agents(
    names: Sequence[str],
    agents: Sequence[AgentDescriptor],
    own_id: str,
) -> List[str]:
    resolved: List[str] = []
    for raw in names:
        name = raw.strip().lstrip("@")
        if not name:
            continue
        if agents:
            agent = next((a for a in agents if a.agent_id == name), None) or resolve_mention(name, agents)
            if agent is None:
                logger.debug(f"Dropping unknown agent reference '{raw}'")
                continue
            name = agent.agent_id
        if name != own_id and name not in resolved:
            resolved.append(name)
    return resolved


def _fallback_agents(text: str, agents: Sequence[AgentDescriptor], own_id: str) -> List[str]:
    found: List[str] = []
    for pattern, role in _ROLE_KEYWORDS:
        if pattern.search(text):
            agent = next((a for a in agents if a.role is role and a.is_active), None)
            found.append(agent.agent_id if agent else role.value)
    found.extend(_resolve_agents(MENTION_PATTERN.findall(text), agents, own_id))

    unique: List[str] = []
    for name in found:
        if name != own_id and name not in unique:
            unique.append(name)
    return unique


def _knowledge_updates(value: Any) -> KnowledgeUpdates:
    if not isinstance(value, dict):
        return KnowledgeUpdates()
    return KnowledgeUpdates(
        requirements=_string_list(value.get("requirements")),
        decisions=_string_list(value.get("decisions")),
        tasks=_string_list(value.get("tasks")),
        blockers=_string_list(value.get("blockers")),
        integration_points=_string_list(_first(value, "integrationPoints", "integration_points")),
    )


def parse_contribution(
    agent_id: str,
    raw: Optional[str],
    round_number: int,
    agents: Sequence[AgentDescriptor] = (),
    prose_expected: bool = False,
) -> ParsedContribution:
    """Parse model output into a contribution; never raises.

    With ``prose_expected`` the reply was asked for as free text, so a missing
    JSON object is normal and only logged at debug level.
    """
    text = (raw or "").strip()
    if not text:
        return ParsedContribution(
            agent_id=agent_id,
            round=round_number,
            message=EMPTY_PLACEHOLDER,
            status=ContributionStatus.COMPLETE,
        )

    data = load_lenient(text)
    if data is None:
        log = logger.debug if prose_expected else logger.warning
        log(f"Structured parse failed for {agent_id}; using keyword fallback")
        return ParsedContribution(
            agent_id=agent_id,
            round=round_number,
            message=text,
            enables_agents=_fallback_agents(text, agents, agent_id),
            reasoning=FALLBACK_REASONING,
        )

    message = _first(data, "message", "response", "analysis")
    status = _first(data, "status")
    reasoning = _first(data, "reasoning")
    return ParsedContribution(
        agent_id=agent_id,
        round=round_number,
        message=str(message) if message is not None else text,
        status=ContributionStatus.parse(status) if status is not None else ContributionStatus.CONTRIBUTING,
        knowledge_updates=_knowledge_updates(_first(data, "knowledgeUpdates", "knowledge_updates")),
        depends_on=_resolve_agents(_string_list(_first(data, "dependsOn", "depends_on")), agents, agent_id),
        enables_agents=_resolve_agents(
            _string_list(_first(data, "enablesAgents", "enables_agents", "taggedAgents", "tagged_agents")),
            agents,
            agent_id,
        ),
        reasoning=str(reasoning) if reasoning is not None else None,
        data=data,
    )
