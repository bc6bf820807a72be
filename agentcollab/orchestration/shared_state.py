"""Shared-state collaboration loop used for solo, mini and collaborative passes."""
from __future__ import annotations

from typing import Iterable, List, Optional, Set

from loguru import logger

from agentcollab.core.errors import InvocationError
from agentcollab.core.models import PHASE_COMPLETE, ProcessingMode, SharedPhase, WorkflowState
from agentcollab.core.registry import AgentRegistry
from agentcollab.core.transport import ConversationTransport
from agentcollab.orchestration.admission import AdmissionController
from agentcollab.orchestration.invoker import AgentInvoker
from agentcollab.orchestration.merge import apply_contribution
from agentcollab.orchestration.validator import WorkflowValidator
from agentcollab.services.knowledge_store import KnowledgeStore


def dedupe(agent_ids: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    ordered: List[str] = []
    for agent_id in agent_ids:
        if agent_id not in seen:
            seen.add(agent_id)
            ordered.append(agent_id)
    return ordered


def phase_for_round(round_number: int, max_rounds: int) -> SharedPhase:
    if round_number <= 1:
        return SharedPhase.ANALYSIS
    if round_number >= max_rounds:
        return SharedPhase.INTEGRATION
    if round_number == 2:
        return SharedPhase.COORDINATION
    return SharedPhase.COLLABORATION


class SharedStateWorkflow:
    """Invokes the routing frontier one agent at a time until nothing is left to do.

    Each agent sees every earlier contribution of the pass. The frontier for the
    next round is built from the agents each contributor enables, minus anyone
    who already contributed, is queued, is running now or is cooling down.
    """

    def __init__(
        self,
        invoker: AgentInvoker,
        registry: AgentRegistry,
        admission: AdmissionController,
        validator: WorkflowValidator,
        transport: ConversationTransport,
        store: Optional[KnowledgeStore] = None,
    ) -> None:
        self._invoker = invoker
        self._registry = registry
        self._admission = admission
        self._validator = validator
        self._transport = transport
        self._store = store

    def _eligible(self, state: WorkflowState, agent_id: str, allowed: Optional[Set[str]]) -> bool:
        agent = self._registry.get(agent_id)
        if agent is None or not agent.is_active:
            return False
        if allowed is not None and agent_id not in allowed:
            return False
        if agent_id in state.agent_outputs or agent_id in state.active_agents:
            return False
        return not self._admission.is_cooling_down(state.conversation_id, agent_id)

    async def run(
        self,
        state: WorkflowState,
        frontier: Iterable[str],
        allowed: Optional[Set[str]] = None,
    ) -> WorkflowState:
        """Drive ``state`` to completion starting from ``frontier``.

        ``allowed`` restricts routing to a fixed set of agents (mini-workflow).
        """
        conversation_id = state.conversation_id
        max_retries = self._admission.settings.max_retries
        error_reported = False
        state.next_agents = [a for a in dedupe(frontier) if self._eligible(state, a, allowed)]

        while not state.is_complete:
            if state.collaboration_round > state.max_rounds or not state.next_agents:
                break

            report = self._validator.run_safety_checks(None, state)
            if not report.ok:
                state.error = "; ".join(r.message for r in report.blocked)
                self._transport.publish_blocked(conversation_id, [r.rule_id for r in report.blocked], state.error)
                break

            state.phase = phase_for_round(state.collaboration_round, state.max_rounds).value
            state.active_agents = list(state.next_agents)
            state.next_agents = []
            teammates = self._registry.active()
            enabled: List[str] = []

            for agent_id in state.active_agents:
                if self._admission.cycle_limit_reached(conversation_id):
                    logger.info(f"Cycle limit reached for {conversation_id}; no further agents this turn")
                    break
                if agent_id in state.agent_outputs or self._admission.is_cooling_down(conversation_id, agent_id):
                    continue
                agent = self._registry.get(agent_id)
                if agent is None or not agent.is_active:
                    continue

                self._admission.record_invocation(conversation_id)
                try:
                    contribution = await self._invoker.invoke(
                        agent,
                        state,
                        teammates,
                        metadata={"workflowPhase": state.phase, "workflowRound": state.collaboration_round},
                    )
                except InvocationError as exc:
                    state.record_error(agent_id, str(exc))
                    state.error = str(exc)
                    state.retry_count += 1
                    if not error_reported:
                        self._transport.publish_system_error(conversation_id, str(exc))
                        error_reported = True
                    if state.retry_count >= max_retries:
                        logger.error(f"Retry ceiling reached for {conversation_id}; completing pass")
                        state.phase = PHASE_COMPLETE
                        break
                    continue

                self._admission.mark_responded(conversation_id, agent_id)
                state.agent_outputs[agent_id] = contribution
                state.record_success(agent_id, contribution)
                await apply_contribution(state, contribution, agent.role, self._store)
                enabled.extend(contribution.enables_agents)

            state.tagged_agents = dedupe(enabled)
            if state.mode is not ProcessingMode.SOLO and not self._admission.cycle_limit_reached(conversation_id):
                state.next_agents = [a for a in state.tagged_agents if self._eligible(state, a, allowed)]
            state.collaboration_round += 1
            logger.debug(f"{conversation_id} round {state.collaboration_round - 1} done; next {state.next_agents}")

        state.active_agents = []
        state.phase = PHASE_COMPLETE
        return state
