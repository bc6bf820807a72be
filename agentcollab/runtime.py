"""Application runtime composition helpers."""
from __future__ import annotations

from functools import lru_cache

from agentcollab.config import config
from agentcollab.core.registry import AgentRegistry
from agentcollab.core.transport import ConversationTransport
from agentcollab.orchestration.builder import WorkflowBuilder
from agentcollab.orchestration.orchestrator import CollaborationOrchestrator
from agentcollab.orchestration.validator import WorkflowValidator
from agentcollab.services.gateway import OpenAICompletionGateway
from agentcollab.services.knowledge_store import KnowledgeStore
from agentcollab.services.llm_pool import LLMPool


@lru_cache
def get_llm_pool() -> LLMPool:
    pool = LLMPool()
    for provider in config.providers.values():
        pool.register(provider)
    return pool


@lru_cache
def get_gateway() -> OpenAICompletionGateway:
    return OpenAICompletionGateway(get_llm_pool())


@lru_cache
def get_registry() -> AgentRegistry:
    return AgentRegistry()


@lru_cache
def get_transport() -> ConversationTransport:
    return ConversationTransport()


@lru_cache
def get_knowledge_store() -> KnowledgeStore:
    return KnowledgeStore()


@lru_cache
def get_validator() -> WorkflowValidator:
    return WorkflowValidator()


@lru_cache
def get_workflow_builder() -> WorkflowBuilder:
    return WorkflowBuilder(get_validator())


@lru_cache
def get_orchestrator() -> CollaborationOrchestrator:
    return CollaborationOrchestrator(
        registry=get_registry(),
        gateway=get_gateway(),
        transport=get_transport(),
        store=get_knowledge_store(),
        settings=config.orchestrator,
        validator=get_validator(),
    )
