"""Execution of published workflow templates attached to a conversation."""
from __future__ import annotations

from typing import Optional

from loguru import logger

from agentcollab.core.errors import InvocationError
from agentcollab.core.models import PHASE_COMPLETE, AgentDescriptor, AgentRole, WorkflowState
from agentcollab.core.registry import AgentRegistry
from agentcollab.core.transport import ConversationTransport
from agentcollab.core.workflow import AgentNode, RoutingRule, WorkflowConfig
from agentcollab.orchestration.invoker import AgentInvoker
from agentcollab.orchestration.merge import apply_contribution
from agentcollab.orchestration.validator import WorkflowValidator
from agentcollab.services.knowledge_store import KnowledgeStore


def select_rule(config: WorkflowConfig, state: WorkflowState, last_node: Optional[str]) -> Optional[RoutingRule]:
    """Highest-priority rule whose condition holds; declaration order breaks ties."""
    best: Optional[RoutingRule] = None
    for rule in config.routing_rules:
        if rule.phase is not None and rule.phase != state.phase:
            continue
        if rule.source_node is not None and rule.source_node != last_node:
            continue
        if not rule.condition(state):
            continue
        if best is None or rule.priority > best.priority:
            best = rule
    return best


class ConfiguredWorkflow:
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

    def agent_for(self, node: AgentNode) -> Optional[AgentDescriptor]:
        """Bind a workflow node to a registered agent: by id first, then by role."""
        agent = self._registry.get(node.id)
        if agent is not None and agent.is_active:
            return agent
        return self._registry.by_role(AgentRole.parse(node.role))

    async def run(self, state: WorkflowState, config: WorkflowConfig) -> WorkflowState:
        conversation_id = state.conversation_id
        if config.phases and state.phase not in {p.name for p in config.phases}:
            state.phase = config.phases[0].name
        last_node: Optional[str] = None
        error_reported = False
        iteration = 0

        while iteration < state.max_rounds and not state.is_complete:
            report = self._validator.run_safety_checks(config, state)
            if not report.ok:
                state.error = "; ".join(r.message for r in report.blocked)
                self._transport.publish_blocked(conversation_id, [r.rule_id for r in report.blocked], state.error)
                break

            rule = select_rule(config, state, last_node)
            if rule is None:
                logger.info(f"No routing rule applies in phase {state.phase}; workflow complete")
                break

            node = config.node(rule.target_node)
            agent = self.agent_for(node) if node is not None else None
            if agent is None:
                state.error = f"No agent available for node {rule.target_node}"
                logger.warning(state.error)
                break

            state.active_agents = [agent.agent_id]
            iteration += 1
            try:
                contribution = await self._invoker.invoke(
                    agent,
                    state,
                    self._registry.active(),
                    metadata={
                        "workflowPhase": state.phase,
                        "workflowRound": state.collaboration_round,
                        "workflowNode": rule.target_node,
                    },
                )
            except InvocationError as exc:
                state.record_error(rule.target_node, str(exc))
                state.error = str(exc)
                state.retry_count += 1
                if not error_reported:
                    self._transport.publish_system_error(conversation_id, str(exc))
                    error_reported = True
                state.collaboration_round += 1
                if state.retry_count >= self._max_retries:
                    logger.error(f"Retry ceiling reached for {conversation_id}; completing workflow")
                    break
                continue

            state.agent_outputs[rule.target_node] = contribution
            state.record_success(rule.target_node, contribution)
            state.completed_tasks.append(f"{rule.target_node}:{state.phase}")
            await apply_contribution(state, contribution, agent.role, self._store)
            last_node = rule.target_node
            self._advance_phase(config, state)
            state.collaboration_round += 1

        state.active_agents = []
        state.phase = PHASE_COMPLETE
        return state

    @staticmethod
    def _advance_phase(config: WorkflowConfig, state: WorkflowState) -> None:
        phase = next((p for p in config.phases if p.name == state.phase), None)
        if phase is None or phase.completion_criteria is None or not phase.completion_criteria(state):
            return
        next_phase = phase.next_phase or PHASE_COMPLETE
        logger.info(f"Phase {phase.name} complete; moving to {next_phase}")
        state.phase = next_phase
