"""Prompt construction for shared-state and team workflow agents."""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from agentcollab.core.models import (
    AgentDescriptor,
    AgentRole,
    ParsedContribution,
    ProcessingMode,
    SharedKnowledge,
    TeamPhase,
    WorkflowState,
)

RESPONSE_SCHEMA = """Respond with a JSON object containing:
{
  "message": "Your reply to the team and the user",
  "status": "contributing | complete | blocked",
  "knowledgeUpdates": {
    "requirements": [],
    "decisions": [],
    "tasks": [],
    "blockers": [],
    "integrationPoints": []
  },
  "dependsOn": [],
  "enablesAgents": [],
  "reasoning": "Why you chose the agents in enablesAgents"
}

Ensure your JSON is valid - no newlines or special characters in string values."""


_PROJECT_TYPES: Dict[str, Sequence[str]] = {
    "ecommerce": ("ecommerce", "shop", "store", "cart", "product"),
    "restaurant": ("restaurant", "menu", "reservation", "food"),
    "blog": ("blog", "content", "posts", "articles"),
    "dashboard": ("dashboard", "analytics", "admin", "metrics"),
    "portfolio": ("portfolio", "showcase", "gallery", "resume"),
}

_FEATURE_PATTERNS = (
    (re.compile(r"user (?:auth|login|registration)", re.IGNORECASE), "user auth login registration"),
    (re.compile(r"payment|checkout|stripe", re.IGNORECASE), "payment checkout stripe"),
    (re.compile(r"admin|dashboard|cms", re.IGNORECASE), "admin dashboard cms"),
    (re.compile(r"responsive|mobile", re.IGNORECASE), "responsive mobile"),
    (re.compile(r"search|filter", re.IGNORECASE), "search filter"),
    (re.compile(r"social|share|comment", re.IGNORECASE), "social share comment"),
)


@dataclass(slots=True)
class ProjectBrief:
    name: str
    type: str
    requirements: List[str] = field(default_factory=list)
    status: str = "planning"

    def to_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "type": self.type,
            "requirements": list(self.requirements),
            "status": self.status,
        }


def detect_project_type(message: str) -> str:
    lowered = message.lower()
    for project_type, keywords in _PROJECT_TYPES.items():
        if any(keyword in lowered for keyword in keywords):
            return project_type
    return "website"


def extract_key_features(message: str) -> List[str]:
    features = [label for pattern, label in _FEATURE_PATTERNS if pattern.search(message)]
    return features or ["basic functionality"]


def extract_project_brief(message: str) -> ProjectBrief:
    project_type = detect_project_type(message)
    return ProjectBrief(
        name=f"{project_type} Project",
        type=project_type,
        requirements=extract_key_features(message),
    )


_PHASE_PROMPTS: Dict[AgentRole, Dict[TeamPhase, str]] = {
    AgentRole.COORDINATOR: {
        TeamPhase.REQUIREMENTS: (
            "Analyze the user request and coordinate initial planning. Delegate specific tasks to "
            "team members. Limit response to 3-4 sentences."
        ),
        TeamPhase.DESIGN: (
            "Review design proposals and coordinate frontend planning. Make decisions and move "
            "forward. Limit response to 2-3 sentences."
        ),
        TeamPhase.FRONTEND: (
            "Monitor frontend progress and coordinate backend integration. Check for blockers. "
            "Limit response to 2-3 sentences."
        ),
        TeamPhase.BACKEND: (
            "Oversee backend development and prepare for integration testing. Limit response to "
            "2-3 sentences."
        ),
        TeamPhase.INTEGRATION: "Coordinate final integration and testing. Limit response to 2-3 sentences.",
        TeamPhase.COMPLETE: "Project complete. Provide final summary.",
    },
    AgentRole.DESIGNER: {
        TeamPhase.REQUIREMENTS: (
            "Create wireframes and design system based on requirements. Be specific and actionable. "
            "Limit response to 4-5 sentences."
        ),
        TeamPhase.DESIGN: (
            "Refine design based on feedback. Finalize component specifications. Limit response to "
            "3-4 sentences."
        ),
    },
    AgentRole.FRONTEND: {
        TeamPhase.DESIGN: (
            "Review design specifications and plan implementation. Identify technical requirements "
            "for backend. Limit response to 4-5 sentences."
        ),
        TeamPhase.FRONTEND: (
            "Implement the frontend based on approved designs. Document API requirements. Limit "
            "response to 4-5 sentences."
        ),
        TeamPhase.INTEGRATION: (
            "Complete frontend integration with backend APIs. Test functionality. Limit response to "
            "3-4 sentences."
        ),
    },
    AgentRole.BACKEND: {
        TeamPhase.FRONTEND: (
            "Design APIs and database schema based on frontend requirements. Plan implementation. "
            "Limit response to 4-5 sentences."
        ),
        TeamPhase.BACKEND: (
            "Implement backend services and APIs. Prepare for frontend integration. Limit response "
            "to 4-5 sentences."
        ),
        TeamPhase.INTEGRATION: (
            "Complete API implementation and test with frontend. Limit response to 3-4 sentences."
        ),
    },
}


def phase_prompt(role: AgentRole, phase: TeamPhase) -> str:
    prompt = _PHASE_PROMPTS.get(role, {}).get(phase)
    if prompt is None:
        return f"Continue working on {phase.value} phase. Keep response brief and actionable."
    return prompt


def team_prompt(agent: AgentDescriptor, instruction: str, context: str, workspace: Mapping[str, object]) -> str:
    return f"""{instruction}

CONTEXT:
{context}

WORKSPACE STATUS:
{json.dumps(workspace, indent=2)}

RESPONSE REQUIREMENTS:
- Keep response concise and actionable
- Focus on your specific role and phase
- Reference the workspace context
- Provide clear next steps or deliverables

Respond as {agent.name} ({agent.role.value}):"""


def render_knowledge(knowledge: SharedKnowledge) -> str:
    lines = [f"Project requirements: {knowledge.project_requirements or 'Not captured yet'}"]
    sections = (
        ("Design decisions", knowledge.design_decisions),
        ("Technical decisions", knowledge.technical_decisions),
        ("Implementation notes", knowledge.implementation_notes),
        ("Integration points", knowledge.integration_points),
        ("Completed tasks", knowledge.completed_tasks),
        ("Blockers", knowledge.blockers),
    )
    for title, items in sections:
        lines.append(f"{title}: {'; '.join(items) if items else 'none'}")
    return "\n".join(lines)


def render_contributions(outputs: Mapping[str, ParsedContribution], names: Mapping[str, str]) -> str:
    if not outputs:
        return "No contributions yet."
    rendered = []
    for agent_id, contribution in outputs.items():
        label = names.get(agent_id, agent_id)
        rendered.append(f"- {label} (round {contribution.round}, {contribution.status.value}): {contribution.message}")
    return "\n".join(rendered)


def collaboration_prompt(
    agent: AgentDescriptor,
    state: WorkflowState,
    teammates: Sequence[AgentDescriptor],
    names: Optional[Mapping[str, str]] = None,
) -> str:
    """Prompt for one agent turn in the shared-state loop."""
    names = names or {a.agent_id: a.name for a in teammates}
    roster = "\n".join(
        f'- "{a.agent_id}": {a.name} ({a.role.value})' for a in teammates if a.agent_id != agent.agent_id
    )
    parts = [
        f"You are {agent.name}, acting as {agent.role.value}.",
    ]
    if agent.description:
        parts.append(agent.description)
    parts.append(f"Your capabilities: {', '.join(agent.capabilities) or 'general assistance'}")
    parts.append(f"User request: {state.current_input}")
    parts.append(f"SHARED KNOWLEDGE:\n{render_knowledge(state.shared_knowledge)}")
    parts.append(f"TEAM CONTRIBUTIONS SO FAR:\n{render_contributions(state.agent_outputs, names)}")
    if state.mode is ProcessingMode.COLLABORATIVE:
        parts.append(
            f"This is round {state.collaboration_round} of {state.max_rounds}. Build on what the team "
            "has already said and only hand off when another teammate is genuinely needed."
        )
    if state.mode is ProcessingMode.SOLO:
        parts.append("Reply directly to the user; leave enablesAgents empty.")
    elif roster:
        parts.append(f"Teammates you may enable (use these exact ids):\n{roster}")
    parts.append(RESPONSE_SCHEMA)
    return "\n\n".join(parts)
