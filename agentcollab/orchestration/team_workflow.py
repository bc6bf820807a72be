"""Structured requirements -> design -> frontend -> backend -> integration team workflow."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from agentcollab.core.errors import InvocationError
from agentcollab.core.models import AgentRole, TeamPhase, WorkflowState, utcnow
from agentcollab.core.registry import AgentRegistry
from agentcollab.core.transport import ConversationTransport
from agentcollab.orchestration.invoker import AgentInvoker
from agentcollab.orchestration.merge import apply_contribution, merge_into_shared
from agentcollab.orchestration.prompts import ProjectBrief, phase_prompt, team_prompt
from agentcollab.orchestration.response_parser import parse_contribution
from agentcollab.orchestration.validator import WorkflowValidator
from agentcollab.services.knowledge_store import KnowledgeStore

WORKSPACE_KEY = "teamWorkspace"

Step = Tuple[TeamPhase, AgentRole]

TRANSITIONS: Dict[Step, Step] = {
    (TeamPhase.REQUIREMENTS, AgentRole.COORDINATOR): (TeamPhase.DESIGN, AgentRole.DESIGNER),
    (TeamPhase.DESIGN, AgentRole.DESIGNER): (TeamPhase.FRONTEND, AgentRole.FRONTEND),
    (TeamPhase.DESIGN, AgentRole.COORDINATOR): (TeamPhase.FRONTEND, AgentRole.FRONTEND),
    (TeamPhase.FRONTEND, AgentRole.FRONTEND): (TeamPhase.BACKEND, AgentRole.BACKEND),
    (TeamPhase.FRONTEND, AgentRole.COORDINATOR): (TeamPhase.BACKEND, AgentRole.BACKEND),
    (TeamPhase.BACKEND, AgentRole.BACKEND): (TeamPhase.INTEGRATION, AgentRole.COORDINATOR),
    (TeamPhase.BACKEND, AgentRole.COORDINATOR): (TeamPhase.INTEGRATION, AgentRole.FRONTEND),
    (TeamPhase.INTEGRATION, AgentRole.COORDINATOR): (TeamPhase.COMPLETE, AgentRole.COORDINATOR),
    (TeamPhase.INTEGRATION, AgentRole.FRONTEND): (TeamPhase.COMPLETE, AgentRole.COORDINATOR),
}

START: Step = (TeamPhase.REQUIREMENTS, AgentRole.COORDINATOR)


def task_label(phase: TeamPhase, role: AgentRole) -> str:
    return f"{role.value}:{phase.value}"


def planned_tasks(start: Step = START) -> List[str]:
    """Walk the transition table from ``start`` and list the steps still to run."""
    tasks: List[str] = []
    step: Optional[Step] = start
    while step is not None and step[0] is not TeamPhase.COMPLETE:
        tasks.append(task_label(*step))
        step = TRANSITIONS.get(step)
    return tasks


@dataclass(slots=True)
class TeamWorkspace:
    """Working notes the team builds up while the workflow runs."""

    project: ProjectBrief
    design_approved: bool = False
    wireframes: Optional[str] = None
    frontend_completed: bool = False
    frontend_dependencies: List[str] = field(default_factory=list)
    backend_completed: bool = False
    decisions: List[Dict[str, str]] = field(default_factory=list)

    def absorb(self, role: AgentRole, phase: TeamPhase, text: str, integration_points: List[str]) -> None:
        lowered = text.lower()
        if role is AgentRole.DESIGNER and ("wireframe" in lowered or "design" in lowered):
            self.design_approved = True
            self.wireframes = text
        elif role is AgentRole.FRONTEND:
            if "completed" in lowered or "implemented" in lowered:
                self.frontend_completed = True
            self.frontend_dependencies.extend(integration_points)
        elif role is AgentRole.BACKEND and "API" in text and "ready" in lowered:
            self.backend_completed = True

        self.decisions.append(
            {
                "decision": f"{text[:100]}...",
                "rationale": f"{role.value} in {phase.value} phase",
                "timestamp": utcnow().isoformat(),
                "decidedBy": role.value,
            }
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project": self.project.to_dict(),
            "design": {"approved": self.design_approved, "wireframes": self.wireframes},
            "frontend": {"completed": self.frontend_completed, "dependencies": list(self.frontend_dependencies)},
            "backend": {"completed": self.backend_completed},
            "decisions": list(self.decisions),
        }


def team_context(role: AgentRole, phase: TeamPhase, workspace: TeamWorkspace, state: WorkflowState) -> str:
    lines = [f"Current Project: {workspace.project.name}"]
    if role is AgentRole.COORDINATOR:
        lines.append(f"Phase: {phase.value}")
        lines.append(f"Completed: {', '.join(state.completed_tasks)}")
        lines.append(f"Pending: {', '.join(state.pending_tasks)}")
    elif role is AgentRole.DESIGNER:
        lines.append(f"Requirements: {', '.join(workspace.project.requirements)}")
        if workspace.wireframes:
            lines.append(f"Previous Design: {workspace.wireframes}")
    elif role is AgentRole.FRONTEND:
        lines.append(f"Design Status: {'Approved' if workspace.design_approved else 'Pending'}")
    elif role is AgentRole.BACKEND:
        lines.append(f"Frontend Progress: {'Ready' if workspace.frontend_completed else 'In Progress'}")
        if workspace.frontend_dependencies:
            lines.append(f"API Requirements: {', '.join(workspace.frontend_dependencies)}")
    return "\n".join(lines)


class TeamWorkflow:
    """Runs exactly one agent per round following the (phase, role) transition table."""

    def __init__(
        self,
        invoker: AgentInvoker,
        registry: AgentRegistry,
        validator: WorkflowValidator,
        transport: ConversationTransport,
        store: Optional[KnowledgeStore] = None,
        max_retries: int = 3,
    ) -> None:
        self._invoker = invoker
        self._registry = registry
        self._validator = validator
        self._transport = transport
        self._store = store
        self._max_retries = max_retries

    async def run(self, state: WorkflowState, brief: ProjectBrief) -> WorkflowState:
        conversation_id = state.conversation_id
        workspace = TeamWorkspace(project=brief)
        phase, role = START
        state.phase = phase.value
        state.active_role = role
        state.completed_tasks = []
        state.pending_tasks = planned_tasks()
        state.shared_knowledge = merge_into_shared(
            state.shared_knowledge, {"projectRequirements": ", ".join(brief.requirements)}
        )
        if self._store is not None:
            await self._store.merge("conversation", conversation_id, {"project": brief.to_dict()})
        logger.info(f"Starting team workflow for {brief.name} in {conversation_id}: {brief.requirements}")
        error_reported = False

        while state.collaboration_round <= state.max_rounds and not state.is_complete:
            report = self._validator.run_safety_checks(None, state)
            if not report.ok:
                state.error = "; ".join(r.message for r in report.blocked)
                self._transport.publish_blocked(conversation_id, [r.rule_id for r in report.blocked], state.error)
                break

            agent = self._registry.by_role(role)
            if agent is None:
                logger.warning(f"No active {role.value} agent; stopping team workflow")
                break

            logger.info(f"Round {state.collaboration_round}: {agent.name} ({role.value}) on {phase.value}")
            state.active_agents = [agent.agent_id]
            prompt = team_prompt(
                agent,
                phase_prompt(role, phase),
                team_context(role, phase, workspace, state),
                workspace.to_dict(),
            )
            try:
                result = await self._invoker.generate(agent, prompt, conversation_id)
            except InvocationError as exc:
                state.record_error(agent.agent_id, str(exc))
                state.error = str(exc)
                state.retry_count += 1
                if not error_reported:
                    self._transport.publish_system_error(conversation_id, str(exc))
                    error_reported = True
                state.collaboration_round += 1
                if state.retry_count >= self._max_retries:
                    logger.error(f"Retry ceiling reached for {conversation_id}; completing team workflow")
                    break
                continue

            self._transport.publish_message(
                conversation_id,
                agent.agent_id,
                result.content,
                metadata={
                    "model": result.model,
                    "provider": result.provider,
                    "workflowPhase": phase.value,
                    "workflowRound": state.collaboration_round,
                },
            )
            contribution = parse_contribution(
                agent.agent_id,
                result.content,
                state.collaboration_round,
                self._registry.active(),
                prose_expected=True,
            )
            state.agent_outputs[agent.agent_id] = contribution
            state.record_success(agent.agent_id, contribution)
            workspace.absorb(role, phase, result.content, contribution.knowledge_updates.integration_points)
            await apply_contribution(state, contribution, role, self._store)
            if self._store is not None:
                await self._store.apply_update("conversation", conversation_id, WORKSPACE_KEY, workspace.to_dict())

            phase, role = self._advance(state, phase, role)
            state.collaboration_round += 1

        state.active_agents = []
        state.phase = TeamPhase.COMPLETE.value
        return state

    @staticmethod
    def _advance(state: WorkflowState, phase: TeamPhase, role: AgentRole) -> Step:
        transition = TRANSITIONS.get((phase, role))
        if transition is None:
            logger.info(f"No transition from {phase.value}/{role.value}; team workflow complete")
            state.phase = TeamPhase.COMPLETE.value
            return TeamPhase.COMPLETE, role

        label = task_label(phase, role)
        state.completed_tasks.append(label)
        if label in state.pending_tasks:
            state.pending_tasks.remove(label)
        state.shared_knowledge = merge_into_shared(state.shared_knowledge, {"completedTasks": [label]})

        next_phase, next_role = transition
        logger.info(f"Transitioning from {phase.value} ({role.value}) to {next_phase.value} ({next_role.value})")
        state.phase = next_phase.value
        state.active_role = next_role
        return next_phase, next_role
