"""Core data models shared across orchestrator components."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

PHASE_COMPLETE = "complete"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentRole(str, Enum):
    """Closed set of roles understood by prompt templates and routing tables."""

    COORDINATOR = "coordinator"
    DESIGNER = "designer"
    FRONTEND = "frontend-developer"
    BACKEND = "backend-developer"
    GENERAL = "general"

    @classmethod
    def parse(cls, value: Optional[str]) -> AgentRole:
        """Map free-form role text to a role; unknown text maps to GENERAL."""
        if not value:
            return cls.GENERAL
        return _ROLE_ALIASES.get(value.strip().lower(), cls.GENERAL)


_ROLE_ALIASES: Dict[str, AgentRole] = {
    "coordinator": AgentRole.COORDINATOR,
    "project coordinator": AgentRole.COORDINATOR,
    "designer": AgentRole.DESIGNER,
    "ui/ux designer": AgentRole.DESIGNER,
    "ux designer": AgentRole.DESIGNER,
    "frontend-developer": AgentRole.FRONTEND,
    "frontend developer": AgentRole.FRONTEND,
    "frontend": AgentRole.FRONTEND,
    "backend-developer": AgentRole.BACKEND,
    "backend developer": AgentRole.BACKEND,
    "backend": AgentRole.BACKEND,
    "general": AgentRole.GENERAL,
}

TEAM_ROLES = (
    AgentRole.COORDINATOR,
    AgentRole.DESIGNER,
    AgentRole.FRONTEND,
    AgentRole.BACKEND,
)


class AdmissionResult(Enum):
    """Outcome of asking the admission controller to start a pass."""

    ADMITTED = "admitted"
    ALREADY_PROCESSED = "already_processed"
    CONVERSATION_BUSY = "conversation_busy"


class ProcessingMode(Enum):
    SOLO = "solo"
    MINI_WORKFLOW = "mini_workflow"
    COLLABORATIVE = "collaborative"
    TEAM_WORKFLOW = "team_workflow"
    CONFIGURED = "configured"


class ContributionStatus(str, Enum):
    PENDING = "pending"
    CONTRIBUTING = "contributing"
    COMPLETE = "complete"
    BLOCKED = "blocked"

    @classmethod
    def parse(cls, value: Any) -> ContributionStatus:
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.CONTRIBUTING


class StepStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class SharedPhase(str, Enum):
    """Phases of the shared-state collaboration loop."""

    ANALYSIS = "analysis"
    COORDINATION = "coordination"
    COLLABORATION = "collaboration"
    INTEGRATION = "integration"
    COMPLETE = PHASE_COMPLETE


class TeamPhase(str, Enum):
    """Phases of the structured team workflow."""

    REQUIREMENTS = "requirements"
    DESIGN = "design"
    FRONTEND = "frontend"
    BACKEND = "backend"
    INTEGRATION = "integration"
    COMPLETE = PHASE_COMPLETE


@dataclass(slots=True)
class GenerationConfig:
    """Provider and sampling parameters used when an agent calls a model."""

    provider: str = "ollama"
    model: str = "llama3"
    temperature: float = 0.7
    max_tokens: int = 1000
    system_prompt: str = ""


@dataclass(slots=True)
class AgentDescriptor:
    """Registry entry for a configured agent persona."""

    agent_id: str
    name: str
    role: AgentRole = AgentRole.GENERAL
    description: str = ""
    capabilities: List[str] = field(default_factory=list)
    is_active: bool = True
    generation: GenerationConfig = field(default_factory=GenerationConfig)


@dataclass(slots=True)
class ChatMessage:
    """A message entering the orchestrator from the routing layer."""

    conversation_id: str
    sender_id: str
    content: str
    message_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    type: str = "text"
    timestamp: datetime = field(default_factory=utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ProcessingLock:
    conversation_id: str
    message_id: str
    timestamp: float


@dataclass(slots=True)
class ModeDecision:
    mode: ProcessingMode
    max_rounds: int


@dataclass(slots=True)
class KnowledgeUpdates:
    """Knowledge an agent declares it is contributing to the shared document."""

    requirements: List[str] = field(default_factory=list)
    decisions: List[str] = field(default_factory=list)
    tasks: List[str] = field(default_factory=list)
    blockers: List[str] = field(default_factory=list)
    integration_points: List[str] = field(default_factory=list)


@dataclass(slots=True)
class ParsedContribution:
    """An agent's parsed output for one round."""

    agent_id: str
    round: int
    message: str
    status: ContributionStatus = ContributionStatus.CONTRIBUTING
    knowledge_updates: KnowledgeUpdates = field(default_factory=KnowledgeUpdates)
    depends_on: List[str] = field(default_factory=list)
    enables_agents: List[str] = field(default_factory=list)
    reasoning: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agentId": self.agent_id,
            "round": self.round,
            "status": self.status.value,
            "message": self.message,
            "knowledgeUpdates": {
                "requirements": list(self.knowledge_updates.requirements),
                "decisions": list(self.knowledge_updates.decisions),
                "tasks": list(self.knowledge_updates.tasks),
                "blockers": list(self.knowledge_updates.blockers),
                "integrationPoints": list(self.knowledge_updates.integration_points),
            },
            "dependsOn": list(self.depends_on),
            "enablesAgents": list(self.enables_agents),
            "reasoning": self.reasoning,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(slots=True)
class SharedKnowledge:
    """Accumulator document consumed by every agent in a pass."""

    project_requirements: str = ""
    design_decisions: List[str] = field(default_factory=list)
    technical_decisions: List[str] = field(default_factory=list)
    implementation_notes: List[str] = field(default_factory=list)
    integration_points: List[str] = field(default_factory=list)
    completed_tasks: List[str] = field(default_factory=list)
    blockers: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "projectRequirements": self.project_requirements,
            "designDecisions": list(self.design_decisions),
            "technicalDecisions": list(self.technical_decisions),
            "implementationNotes": list(self.implementation_notes),
            "integrationPoints": list(self.integration_points),
            "completedTasks": list(self.completed_tasks),
            "blockers": list(self.blockers),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SharedKnowledge:
        return cls(
            project_requirements=str(data.get("projectRequirements", "")),
            design_decisions=list(data.get("designDecisions", [])),
            technical_decisions=list(data.get("technicalDecisions", [])),
            implementation_notes=list(data.get("implementationNotes", [])),
            integration_points=list(data.get("integrationPoints", [])),
            completed_tasks=list(data.get("completedTasks", [])),
            blockers=list(data.get("blockers", [])),
        )


@dataclass(slots=True)
class WorkflowStep:
    node: str
    input: str
    output: Optional[Dict[str, Any]]
    status: StepStatus
    error: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class WorkflowState:
    """Mutable record for one in-flight orchestration pass."""

    conversation_id: str
    current_input: str
    phase: str
    max_rounds: int
    mode: ProcessingMode = ProcessingMode.COLLABORATIVE
    collaboration_round: int = 1
    agent_outputs: Dict[str, ParsedContribution] = field(default_factory=dict)
    tagged_agents: List[str] = field(default_factory=list)
    active_agents: List[str] = field(default_factory=list)
    next_agents: List[str] = field(default_factory=list)
    active_role: Optional[AgentRole] = None
    shared_knowledge: SharedKnowledge = field(default_factory=SharedKnowledge)
    completed_tasks: List[str] = field(default_factory=list)
    pending_tasks: List[str] = field(default_factory=list)
    workflow_history: List[WorkflowStep] = field(default_factory=list)
    error: Optional[str] = None
    retry_count: int = 0

    @property
    def is_complete(self) -> bool:
        return self.phase == PHASE_COMPLETE

    def record_success(self, node: str, contribution: ParsedContribution) -> WorkflowStep:
        step = WorkflowStep(
            node=node,
            input=self.current_input,
            output=contribution.to_dict(),
            status=StepStatus.SUCCESS,
        )
        self.workflow_history.append(step)
        return step

    def record_error(self, node: str, error: str) -> WorkflowStep:
        step = WorkflowStep(
            node=node,
            input=self.current_input,
            output=None,
            status=StepStatus.ERROR,
            error=error,
        )
        self.workflow_history.append(step)
        return step
