"""Exception hierarchy for the collaboration service."""
from __future__ import annotations

from typing import Any, Dict, Optional


class CollabError(Exception):
    """Base error carrying a machine-readable code."""

    code = "COLLAB_ERROR"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class AgentNotFoundError(CollabError):
    code = "AGENT_NOT_FOUND"


class ProviderNotConfiguredError(CollabError):
    code = "PROVIDER_NOT_CONFIGURED"


class InvocationError(CollabError):
    """The completion gateway failed while an agent was being invoked."""

    code = "INVOCATION_FAILED"

    def __init__(self, agent_id: str, cause: BaseException) -> None:
        super().__init__(f"{agent_id} error: {cause}", details={"agent_id": agent_id})
        self.agent_id = agent_id
        self.cause = cause


class WorkflowBuildError(CollabError):
    code = "WORKFLOW_BUILD_ERROR"


class WorkflowPublishError(CollabError):
    code = "WORKFLOW_NOT_SAFE"


class TemplateNotFoundError(CollabError):
    code = "TEMPLATE_NOT_FOUND"


class KnowledgeStoreError(CollabError):
    code = "KNOWLEDGE_STORE_ERROR"
