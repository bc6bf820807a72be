"""Agent invocation: prompt, completion call, streaming relay and response parsing."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from agentcollab.core.errors import InvocationError
from agentcollab.core.models import AgentDescriptor, ParsedContribution, WorkflowState
from agentcollab.core.transport import ConversationTransport
from agentcollab.orchestration.prompts import collaboration_prompt
from agentcollab.orchestration.response_parser import parse_contribution
from agentcollab.services.gateway import CompletionGateway, CompletionResult


class AgentInvoker:
    """Calls the completion gateway on behalf of an agent."""

    def __init__(
        self,
        gateway: CompletionGateway,
        transport: ConversationTransport,
        *,
        stream: bool = True,
    ) -> None:
        self._gateway = gateway
        self._transport = transport
        self._stream = stream

    async def generate(self, agent: AgentDescriptor, prompt: str, conversation_id: str) -> CompletionResult:
        """Run one completion, relaying partial output; gateway failures become ``InvocationError``."""
        self._transport.publish_typing(conversation_id, agent.agent_id, True)
        try:
            if self._stream:
                received: List[str] = []

                def on_chunk(chunk: str) -> None:
                    received.append(chunk)
                    self._transport.publish_streaming(conversation_id, agent.agent_id, "".join(received))

                return await self._gateway.stream(prompt, agent.generation, on_chunk)
            return await self._gateway.complete(prompt, agent.generation)
        except InvocationError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error(f"Completion failed for {agent.name} ({agent.agent_id}): {exc}")
            raise InvocationError(agent.agent_id, exc) from exc
        finally:
            self._transport.publish_typing(conversation_id, agent.agent_id, False)

    async def invoke(
        self,
        agent: AgentDescriptor,
        state: WorkflowState,
        teammates: Sequence[AgentDescriptor],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ParsedContribution:
        prompt = collaboration_prompt(agent, state, teammates)
        result = await self.generate(agent, prompt, state.conversation_id)
        contribution = parse_contribution(agent.agent_id, result.content, state.collaboration_round, teammates)

        self._transport.publish_message(
            state.conversation_id,
            agent.agent_id,
            contribution.message,
            metadata={
                "model": result.model,
                "provider": result.provider,
                "round": state.collaboration_round,
                "mode": state.mode.value,
                "status": contribution.status.value,
                **(metadata or {}),
            },
        )
        logger.debug(
            f"{agent.name} contributed in round {state.collaboration_round}; enables {contribution.enables_agents}"
        )
        return contribution
