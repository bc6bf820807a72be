"""Collaboration orchestrator: the single entry point for conversation messages."""
from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Any, Dict, List, Optional

from loguru import logger

from agentcollab.config import OrchestratorSettings
from agentcollab.core.models import (
    AdmissionResult,
    AgentRole,
    ChatMessage,
    ModeDecision,
    ProcessingMode,
    SharedKnowledge,
    SharedPhase,
    TeamPhase,
    WorkflowState,
)
from agentcollab.core.registry import AgentRegistry
from agentcollab.core.transport import ConversationTransport
from agentcollab.orchestration.admission import AdmissionController, Clock
from agentcollab.orchestration.builder import WorkflowTemplate
from agentcollab.orchestration.engine import ConfiguredWorkflow
from agentcollab.orchestration.invoker import AgentInvoker
from agentcollab.orchestration.merge import SHARED_KNOWLEDGE_KEY
from agentcollab.orchestration.modes import select_mode
from agentcollab.orchestration.prompts import extract_project_brief
from agentcollab.orchestration.shared_state import SharedStateWorkflow, dedupe
from agentcollab.orchestration.team_workflow import TeamWorkflow
from agentcollab.orchestration.triggers import TriggerParser, TriggerResult
from agentcollab.orchestration.validator import WorkflowValidator
from agentcollab.services.gateway import CompletionGateway
from agentcollab.services.knowledge_store import KnowledgeStore


class CollaborationOrchestrator:
    """Admit a message, pick a processing mode and run the matching workflow."""

    def __init__(
        self,
        *,
        registry: AgentRegistry,
        gateway: CompletionGateway,
        transport: ConversationTransport,
        store: KnowledgeStore,
        settings: Optional[OrchestratorSettings] = None,
        validator: Optional[WorkflowValidator] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self._settings = settings or OrchestratorSettings()
        self._registry = registry
        self._transport = transport
        self._store = store
        self._validator = validator or WorkflowValidator()
        self._triggers = TriggerParser()
        self.admission = AdmissionController(self._settings, clock)
        invoker = AgentInvoker(gateway, transport, stream=self._settings.stream_responses)
        self._shared_state = SharedStateWorkflow(
            invoker, registry, self.admission, self._validator, transport, store
        )
        self._team = TeamWorkflow(
            invoker, registry, self._validator, transport, store, self._settings.max_retries
        )
        self._configured = ConfiguredWorkflow(
            invoker, registry, self._validator, transport, store, self._settings.max_retries
        )
        self._workflows: Dict[str, WorkflowTemplate] = {}
        self._sweeper: Optional[asyncio.Task] = None

    @property
    def registry(self) -> AgentRegistry:
        return self._registry

    # Lifecycle

    async def start(self) -> None:
        """Launch the periodic sweep reclaiming stale locks and expired cooldowns."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())
            logger.info(f"Orchestrator started; sweeping every {self._settings.sweep_interval}s")

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None
        logger.info("Orchestrator stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.sweep_interval)
            reclaimed = self.admission.sweep()
            if reclaimed:
                logger.info(f"Sweep reclaimed {reclaimed} stale processing lock(s)")

    def reset(self) -> None:
        self.admission.reset()
        self._workflows.clear()

    # Configured workflows

    def attach_workflow(self, conversation_id: str, template: WorkflowTemplate) -> None:
        self._workflows[conversation_id] = template
        logger.info(f"Attached workflow {template.name} to conversation {conversation_id}")

    def detach_workflow(self, conversation_id: str) -> bool:
        return self._workflows.pop(conversation_id, None) is not None

    def attached_workflow(self, conversation_id: str) -> Optional[WorkflowTemplate]:
        return self._workflows.get(conversation_id)

    def status(self, conversation_id: str) -> Dict[str, Any]:
        snapshot = self.admission.snapshot(conversation_id)
        template = self._workflows.get(conversation_id)
        snapshot["workflowTemplate"] = template.id if template else None
        return snapshot

    # Message processing

    async def process_message(self, message: ChatMessage) -> Optional[WorkflowState]:
        """Run one pass for ``message``; never raises and always releases its lock."""
        conversation_id = message.conversation_id
        admission = self.admission.admit(conversation_id, message.message_id)
        if admission is not AdmissionResult.ADMITTED:
            logger.debug(f"Dropping message {message.message_id}: {admission.value}")
            return None

        try:
            return await self._run_pass(message)
        except Exception as exc:  # noqa: BLE001
            logger.exception(f"Pass for message {message.message_id} in {conversation_id} failed")
            self._transport.publish_system_error(conversation_id, str(exc))
            return None
        finally:
            self.admission.release(conversation_id, message.message_id)

    async def _run_pass(self, message: ChatMessage) -> Optional[WorkflowState]:
        conversation_id = message.conversation_id
        is_user = self._registry.is_user_sender(message.sender_id)
        is_first = self.admission.start_user_turn(conversation_id) if is_user else False
        if not is_user and self.admission.cycle_limit_reached(conversation_id):
            logger.info(f"Ignoring agent message in {conversation_id}: cycle limit reached")
            return None

        triggers = self._triggers.parse(
            message.content,
            self._registry.active(),
            is_available=lambda agent_id: not self.admission.is_cooling_down(conversation_id, agent_id),
        )
        self._exclude_sender(triggers, message.sender_id)

        template = self._workflows.get(conversation_id)
        decision = select_mode(
            triggers.mention_count,
            is_first,
            self._registry.has_team_roles(),
            has_template=template is not None,
            team_max_rounds=self._settings.team_max_rounds,
            template_max_rounds=template.metadata.max_iterations if template else 10,
        )
        logger.info(
            f"Message {message.message_id} in {conversation_id}: mode={decision.mode.value} "
            f"max_rounds={decision.max_rounds} mentions={triggers.mentions}"
        )

        state = await self._initial_state(message, decision)
        if decision.mode is ProcessingMode.CONFIGURED:
            return await self._configured.run(state, template.config)
        if decision.mode is ProcessingMode.TEAM_WORKFLOW:
            return await self._team.run(state, extract_project_brief(message.content))
        if decision.mode is ProcessingMode.MINI_WORKFLOW:
            return await self._shared_state.run(state, triggers.mentions, allowed=set(triggers.mentions))
        if decision.mode is ProcessingMode.SOLO:
            return await self._shared_state.run(state, triggers.mentions)
        return await self._shared_state.run(state, self._collaborative_frontier(triggers, message.sender_id))

    async def _initial_state(self, message: ChatMessage, decision: ModeDecision) -> WorkflowState:
        if decision.mode is ProcessingMode.TEAM_WORKFLOW:
            phase = TeamPhase.REQUIREMENTS.value
        else:
            phase = SharedPhase.ANALYSIS.value
        document = await self._store.get("conversation", message.conversation_id)
        return WorkflowState(
            conversation_id=message.conversation_id,
            current_input=message.content,
            phase=phase,
            max_rounds=decision.max_rounds,
            mode=decision.mode,
            shared_knowledge=SharedKnowledge.from_dict(document.get(SHARED_KNOWLEDGE_KEY, {})),
        )

    @staticmethod
    def _exclude_sender(triggers: TriggerResult, sender_id: str) -> None:
        for agent_ids in (triggers.mentions, triggers.tasks, triggers.triggers):
            if sender_id in agent_ids:
                agent_ids.remove(sender_id)

    def _collaborative_frontier(self, triggers: TriggerResult, sender_id: str) -> List[str]:
        frontier: List[str] = []
        coordinator = self._registry.by_role(AgentRole.COORDINATOR)
        if coordinator is not None and coordinator.agent_id != sender_id:
            frontier.append(coordinator.agent_id)
        frontier.extend(triggers.tasks)
        frontier.extend(triggers.triggers)
        if not frontier:
            frontier = [a.agent_id for a in self._registry.active() if a.agent_id != sender_id]
        return dedupe(frontier)
