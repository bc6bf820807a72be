"""Read-mostly cache of the agents available to the orchestrator."""
from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

from loguru import logger

from .errors import AgentNotFoundError
from .models import TEAM_ROLES, AgentDescriptor, AgentRole, GenerationConfig

USER_SENDER_IDS = frozenset({"user", "user-agent"})

_DEFAULT_CAPABILITIES: Dict[AgentRole, List[str]] = {
    AgentRole.COORDINATOR: [
        "project_management",
        "task_coordination",
        "team_collaboration",
        "workflow_management",
        "communication_facilitation",
    ],
    AgentRole.DESIGNER: [
        "ui_design",
        "ux_design",
        "wireframing",
        "prototyping",
        "design_systems",
        "user_research",
        "accessibility_design",
    ],
    AgentRole.FRONTEND: [
        "frontend_development",
        "react_development",
        "typescript",
        "css_styling",
        "responsive_design",
        "component_architecture",
        "api_integration",
    ],
    AgentRole.BACKEND: [
        "backend_development",
        "api_design",
        "database_design",
        "server_architecture",
        "authentication",
        "security",
        "performance_optimization",
    ],
    AgentRole.GENERAL: ["general_assistance", "communication", "problem_solving"],
}


def default_capabilities(role: AgentRole) -> List[str]:
    return list(_DEFAULT_CAPABILITIES[role])


AgentLoader = Callable[[], Awaitable[Iterable[AgentDescriptor]]]


def descriptor_from_dict(data: Mapping[str, Any]) -> AgentDescriptor:
    generation = data.get("generation") or {}
    return AgentDescriptor(
        agent_id=str(data.get("id") or data["agentId"]),
        name=str(data["name"]),
        role=AgentRole.parse(data.get("role")),
        description=str(data.get("description", "")),
        capabilities=[str(c) for c in data.get("capabilities", [])],
        is_active=bool(data.get("isActive", True)),
        generation=GenerationConfig(
            provider=generation.get("provider", "ollama"),
            model=generation.get("model", "llama3"),
            temperature=float(generation.get("temperature", 0.7)),
            max_tokens=int(generation.get("maxTokens", 1000)),
            system_prompt=generation.get("systemPrompt", ""),
        ),
    )


def json_file_loader(path: str) -> AgentLoader:
    """Loader reading a JSON array of agent definitions from ``path``."""

    async def load() -> List[AgentDescriptor]:
        with open(path, encoding="utf-8") as handle:
            entries = json.load(handle)
        return [descriptor_from_dict(entry) for entry in entries]

    return load


class AgentRegistry:
    """Agents keyed by id, in registration order."""

    def __init__(self, agents: Iterable[AgentDescriptor] = ()) -> None:
        self._agents: Dict[str, AgentDescriptor] = {}
        for agent in agents:
            self.add(agent)

    def add(self, agent: AgentDescriptor) -> AgentDescriptor:
        if not agent.capabilities:
            agent.capabilities = default_capabilities(agent.role)
        self._agents[agent.agent_id] = agent
        logger.info(f"Registered agent {agent.name} ({agent.role.value})")
        return agent

    def remove(self, agent_id: str) -> None:
        agent = self._agents.pop(agent_id, None)
        if agent is None:
            raise AgentNotFoundError(f"Agent {agent_id} not found")
        logger.info(f"Removed agent {agent.name}")

    def get(self, agent_id: str) -> Optional[AgentDescriptor]:
        return self._agents.get(agent_id)

    def require(self, agent_id: str) -> AgentDescriptor:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Agent {agent_id} not found")
        return agent

    def list(self) -> List[AgentDescriptor]:
        return list(self._agents.values())

    def active(self) -> List[AgentDescriptor]:
        return [a for a in self._agents.values() if a.is_active]

    def by_role(self, role: AgentRole) -> Optional[AgentDescriptor]:
        """First active agent holding ``role``."""
        return next((a for a in self._agents.values() if a.is_active and a.role is role), None)

    def has_team_roles(self) -> bool:
        roles = {a.role for a in self.active()}
        return all(role in roles for role in TEAM_ROLES)

    def is_user_sender(self, sender_id: str) -> bool:
        return sender_id in USER_SENDER_IDS or sender_id not in self._agents

    async def refresh(self, loader: AgentLoader) -> int:
        """Replace the cache with the loader's agents, keeping the first of duplicate ids."""
        loaded = await loader()
        unique: Dict[str, AgentDescriptor] = {}
        for agent in loaded:
            unique.setdefault(agent.agent_id, agent)
        self._agents.clear()
        for agent in unique.values():
            if not agent.capabilities:
                agent.capabilities = default_capabilities(agent.role)
            self._agents[agent.agent_id] = agent
        logger.info(f"Loaded {len(unique)} unique agents into registry")
        return len(unique)

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents
