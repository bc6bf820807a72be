"""Shared fixtures: a scripted completion gateway, a manual clock and a small team."""
from __future__ import annotations

from typing import List, Optional, Union

import pytest

from agentcollab.config import OrchestratorSettings
from agentcollab.core.models import AgentDescriptor, AgentRole, GenerationConfig
from agentcollab.core.registry import AgentRegistry
from agentcollab.core.transport import ConversationTransport
from agentcollab.orchestration.orchestrator import CollaborationOrchestrator
from agentcollab.services.gateway import ChunkHandler, CompletionResult
from agentcollab.services.knowledge_store import KnowledgeStore

Reply = Union[str, Exception]


class FakeGateway:
    """Replays queued replies in order; falls back to ``default`` once the queue is empty."""

    def __init__(self, replies: Optional[List[Reply]] = None, default: Reply = '{"message": "ok", "status": "complete"}'):
        self.replies: List[Reply] = list(replies or [])
        self.default = default
        self.prompts: List[str] = []
        self.calls: List[str] = []

    def _next(self, prompt: str, config: GenerationConfig) -> str:
        self.prompts.append(prompt)
        self.calls.append(config.model)
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def complete(self, prompt: str, config: GenerationConfig) -> CompletionResult:
        return CompletionResult(content=self._next(prompt, config), model=config.model, provider=config.provider)

    async def stream(self, prompt: str, config: GenerationConfig, on_chunk: ChunkHandler) -> CompletionResult:
        content = self._next(prompt, config)
        for index in range(0, len(content), 16):
            on_chunk(content[index : index + 16])
        return CompletionResult(content=content, model=config.model, provider=config.provider)

    async def test_connection(self, provider: str) -> bool:
        return provider == "fake"

    async def list_models(self, provider: str) -> List[str]:
        return ["fake-model"]


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_agent(agent_id: str, name: str, role: AgentRole, **kwargs) -> AgentDescriptor:
    return AgentDescriptor(
        agent_id=agent_id,
        name=name,
        role=role,
        generation=GenerationConfig(provider="fake", model=f"{agent_id}-model"),
        **kwargs,
    )


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def team() -> List[AgentDescriptor]:
    return [
        make_agent("coord", "Alex", AgentRole.COORDINATOR),
        make_agent("designer", "Designer", AgentRole.DESIGNER),
        make_agent("frontend", "Frankie", AgentRole.FRONTEND),
        make_agent("backend", "Bea", AgentRole.BACKEND),
    ]


@pytest.fixture
def registry(team: List[AgentDescriptor]) -> AgentRegistry:
    return AgentRegistry(team)


@pytest.fixture
def transport() -> ConversationTransport:
    return ConversationTransport()


@pytest.fixture
def store() -> KnowledgeStore:
    return KnowledgeStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def settings() -> OrchestratorSettings:
    return OrchestratorSettings(max_collaboration_cycles=10)


@pytest.fixture
def orchestrator(
    registry: AgentRegistry,
    gateway: FakeGateway,
    transport: ConversationTransport,
    store: KnowledgeStore,
    settings: OrchestratorSettings,
    clock: FakeClock,
) -> CollaborationOrchestrator:
    return CollaborationOrchestrator(
        registry=registry,
        gateway=gateway,
        transport=transport,
        store=store,
        settings=settings,
        clock=clock,
    )
