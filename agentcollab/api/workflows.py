"""Workflow authoring API: validation, auto-fix, publication and the template library."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from agentcollab.core.errors import TemplateNotFoundError, WorkflowBuildError, WorkflowPublishError
from agentcollab.core.workflow import WorkflowConfig
from agentcollab.orchestration.builder import (
    DEFAULT_MAX_ITERATIONS,
    WorkflowBuilder,
    WorkflowDraft,
    config_from_dict,
    config_to_dict,
    node_from_dict,
    phase_from_dict,
    rule_from_dict,
)
from agentcollab.runtime import get_workflow_builder

router = APIRouter(prefix="/workflows", tags=["workflows"])


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class NodeModel(_CamelModel):
    id: str
    name: str
    role: str
    capabilities: List[str] = Field(default_factory=list)
    priority: int = 0
    description: str = ""


class RoutingRuleModel(_CamelModel):
    target_node: str = Field(..., alias="targetNode")
    priority: int = 0
    phase: Optional[str] = None
    source_node: Optional[str] = Field(None, alias="sourceNode")
    repeat: bool = False


class PhaseModel(_CamelModel):
    name: str
    required_agents: List[str] = Field(default_factory=list, alias="requiredAgents")
    next_phase: Optional[str] = Field(None, alias="nextPhase")


class WorkflowConfigModel(_CamelModel):
    nodes: List[NodeModel] = Field(default_factory=list)
    routing_rules: List[RoutingRuleModel] = Field(default_factory=list, alias="routingRules")
    phases: List[PhaseModel] = Field(default_factory=list)

    def to_config(self) -> WorkflowConfig:
        try:
            return config_from_dict(self.model_dump(by_alias=True))
        except WorkflowBuildError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc


class PublishRequest(_CamelModel):
    name: str
    description: str = ""
    author: str = "anonymous"
    max_iterations: int = Field(DEFAULT_MAX_ITERATIONS, alias="maxIterations", gt=0)
    config: WorkflowConfigModel


class CloneRequest(BaseModel):
    name: str
    author: str = "anonymous"


def _draft_dict(draft: WorkflowDraft) -> Dict[str, Any]:
    return {
        "id": draft.id,
        "name": draft.name,
        "description": draft.description,
        "author": draft.author,
        "status": draft.status.value,
        "maxIterations": draft.max_iterations,
        "config": config_to_dict(draft.config),
        "validationResults": [r.to_dict() for r in draft.validation_results],
    }


@router.post("/validate")
async def validate_workflow(
    request: WorkflowConfigModel,
    builder: WorkflowBuilder = Depends(get_workflow_builder),
) -> Dict[str, Any]:
    config = request.to_config()
    validator = builder.validator
    return {
        "results": [r.to_dict() for r in validator.validate(config)],
        "safe": validator.is_safe(config),
        "complexity": validator.complexity(config),
        "suggestions": validator.suggestions(config),
    }


@router.post("/autofix")
async def autofix_workflow(
    request: WorkflowConfigModel,
    builder: WorkflowBuilder = Depends(get_workflow_builder),
) -> Dict[str, Any]:
    fixed = builder.validator.autofix(request.to_config())
    return {
        "config": config_to_dict(fixed),
        "results": [r.to_dict() for r in builder.validator.validate(fixed)],
        "safe": builder.validator.is_safe(fixed),
    }


@router.post("/publish", status_code=status.HTTP_201_CREATED)
async def publish_workflow(
    request: PublishRequest,
    builder: WorkflowBuilder = Depends(get_workflow_builder),
) -> Dict[str, Any]:
    draft = builder.create_builder(request.name, request.description, request.author)
    draft.max_iterations = request.max_iterations
    body = request.config.model_dump(by_alias=True)
    try:
        for node in body["nodes"]:
            builder.add_agent(draft, node_from_dict(node))
        for phase in body["phases"]:
            builder.add_phase(draft, phase_from_dict(phase))
        for rule in body["routingRules"]:
            builder.add_routing_rule(draft, rule_from_dict(rule))
        template = builder.publish(draft)
    except WorkflowBuildError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    except WorkflowPublishError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.to_dict()) from exc
    return template.to_dict()


@router.get("/templates")
async def list_templates(
    category: Optional[str] = None,
    builder: WorkflowBuilder = Depends(get_workflow_builder),
) -> List[Dict[str, Any]]:
    return [t.to_dict() for t in builder.templates(category)]


@router.get("/categories")
async def list_categories(builder: WorkflowBuilder = Depends(get_workflow_builder)) -> List[Dict[str, Any]]:
    return [c.to_dict() for c in builder.categories()]


@router.get("/templates/{template_id}")
async def get_template(
    template_id: str,
    builder: WorkflowBuilder = Depends(get_workflow_builder),
) -> Dict[str, Any]:
    try:
        return builder.template(template_id).to_dict()
    except TemplateNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message) from exc


@router.post("/templates/{template_id}/clone", status_code=status.HTTP_201_CREATED)
async def clone_template(
    template_id: str,
    request: CloneRequest,
    builder: WorkflowBuilder = Depends(get_workflow_builder),
) -> Dict[str, Any]:
    try:
        draft = builder.clone_template(template_id, request.name, request.author)
    except TemplateNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message) from exc
    return _draft_dict(builder.autofix_builder(draft))
