"""Extraction of @mentions, #tasks and free-text collaboration triggers."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from loguru import logger

from agentcollab.core.models import AgentDescriptor, AgentRole

MENTION_PATTERN = re.compile(r"@([\w-]+)")
TASK_PATTERN = re.compile(r"#([\w-]+)")

COLLABORATION_TRIGGERS: Tuple[Tuple[re.Pattern[str], AgentRole], ...] = (
    (re.compile(r"\b(design|wireframe|ui|ux)\b", re.IGNORECASE), AgentRole.DESIGNER),
    (re.compile(r"\b(frontend|front-end|react|component|css)\b", re.IGNORECASE), AgentRole.FRONTEND),
    (re.compile(r"\b(backend|back-end|api|database|server)\b", re.IGNORECASE), AgentRole.BACKEND),
    (
        re.compile(
            r"\b(coordinate|collaborate|work together|team up|need help|plan|need|want|help)\b",
            re.IGNORECASE,
        ),
        AgentRole.COORDINATOR,
    ),
)

AvailabilityCheck = Callable[[str], bool]


@dataclass(slots=True)
class TriggerResult:
    """Agent ids selected by each trigger kind; the three lists never overlap."""

    mentions: List[str] = field(default_factory=list)
    tasks: List[str] = field(default_factory=list)
    triggers: List[str] = field(default_factory=list)

    @property
    def mention_count(self) -> int:
        return len(self.mentions)

    def all_agents(self) -> List[str]:
        return [*self.mentions, *self.tasks, *self.triggers]


def _mention_keys(agent: AgentDescriptor) -> List[str]:
    name = agent.name.lower()
    return [name, name.replace(" ", "-"), name.replace(" ", ""), agent.role.value, agent.agent_id.lower()]


def resolve_mention(token: str, agents: Sequence[AgentDescriptor]) -> Optional[AgentDescriptor]:
    """Resolve ``@token`` to an agent.

    An exact name/role/id match wins outright; otherwise the agent with the
    longest containment overlap is chosen, earlier registrations winning ties.
    """
    needle = token.lower()
    best: Optional[AgentDescriptor] = None
    best_score = 0
    for agent in agents:
        keys = _mention_keys(agent)
        if needle in keys:
            return agent
        score = max(
            (min(len(needle), len(key)) for key in keys if key and (needle in key or key in needle)),
            default=0,
        )
        if score > best_score:
            best, best_score = agent, score
    return best


class TriggerParser:
    """Stateless parser turning message text into candidate responders."""

    def parse(
        self,
        text: str,
        agents: Sequence[AgentDescriptor],
        is_available: Optional[AvailabilityCheck] = None,
    ) -> TriggerResult:
        active = [a for a in agents if a.is_active]
        available = is_available or (lambda _agent_id: True)
        result = TriggerResult()

        for token in MENTION_PATTERN.findall(text):
            agent = resolve_mention(token, active)
            if agent is None:
                logger.debug(f"Dropping unresolved mention @{token}")
                continue
            if agent.agent_id not in result.mentions:
                result.mentions.append(agent.agent_id)

        for token in TASK_PATTERN.findall(text):
            needle = token.lower()
            for agent in active:
                if agent.agent_id in result.mentions or agent.agent_id in result.tasks:
                    continue
                capabilities = [c.lower() for c in agent.capabilities]
                if any(needle in cap or cap in needle for cap in capabilities if cap):
                    result.tasks.append(agent.agent_id)

        taken = set(result.mentions) | set(result.tasks)
        for pattern, role in COLLABORATION_TRIGGERS:
            if not pattern.search(text):
                continue
            # one candidate per trigger
            candidate = next(
                (
                    a
                    for a in active
                    if a.role is role and a.agent_id not in taken and available(a.agent_id)
                ),
                None,
            )
            if candidate is not None:
                result.triggers.append(candidate.agent_id)
                taken.add(candidate.agent_id)

        return result
