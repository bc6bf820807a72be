"""HTTP API over the agent registry."""
from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from agentcollab.core.errors import AgentNotFoundError
from agentcollab.core.models import AgentDescriptor, AgentRole, GenerationConfig
from agentcollab.core.registry import AgentRegistry
from agentcollab.runtime import get_registry

router = APIRouter(prefix="/agents", tags=["agents"])


class GenerationSettings(BaseModel):
    provider: str = "ollama"
    model: str = "llama3"
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(1000, gt=0)
    system_prompt: str = ""


class AgentCreateRequest(BaseModel):
    name: str = Field(..., description="Display name, also used for @mentions")
    role: str = Field("general", description="coordinator, designer, frontend-developer, backend-developer or general")
    agent_id: Optional[str] = Field(None, description="Explicit id; generated when omitted")
    description: str = ""
    capabilities: List[str] = Field(default_factory=list)
    is_active: bool = True
    generation: GenerationSettings = Field(default_factory=GenerationSettings)


class AgentUpdateRequest(BaseModel):
    name: Optional[str] = None
    role: Optional[str] = None
    description: Optional[str] = None
    capabilities: Optional[List[str]] = None
    is_active: Optional[bool] = None
    generation: Optional[GenerationSettings] = None


class AgentResponse(BaseModel):
    agent_id: str
    name: str
    role: str
    description: str
    capabilities: List[str]
    is_active: bool
    provider: str
    model: str

    @classmethod
    def from_descriptor(cls, descriptor: AgentDescriptor) -> "AgentResponse":
        return cls(
            agent_id=descriptor.agent_id,
            name=descriptor.name,
            role=descriptor.role.value,
            description=descriptor.description,
            capabilities=list(descriptor.capabilities),
            is_active=descriptor.is_active,
            provider=descriptor.generation.provider,
            model=descriptor.generation.model,
        )


def _generation(settings: GenerationSettings) -> GenerationConfig:
    return GenerationConfig(**settings.model_dump())


def _require(registry: AgentRegistry, agent_id: str) -> AgentDescriptor:
    try:
        return registry.require(agent_id)
    except AgentNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message) from exc


@router.post("", response_model=AgentResponse, status_code=status.HTTP_201_CREATED)
async def create_agent(
    request: AgentCreateRequest,
    registry: AgentRegistry = Depends(get_registry),
) -> AgentResponse:
    agent_id = request.agent_id or str(uuid.uuid4())
    if agent_id in registry:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Agent {agent_id} already exists")
    descriptor = registry.add(
        AgentDescriptor(
            agent_id=agent_id,
            name=request.name,
            role=AgentRole.parse(request.role),
            description=request.description,
            capabilities=list(request.capabilities),
            is_active=request.is_active,
            generation=_generation(request.generation),
        )
    )
    return AgentResponse.from_descriptor(descriptor)


@router.get("", response_model=List[AgentResponse])
async def list_agents(registry: AgentRegistry = Depends(get_registry)) -> List[AgentResponse]:
    return [AgentResponse.from_descriptor(desc) for desc in registry.list()]


@router.get("/{agent_id}", response_model=AgentResponse)
async def get_agent(agent_id: str, registry: AgentRegistry = Depends(get_registry)) -> AgentResponse:
    return AgentResponse.from_descriptor(_require(registry, agent_id))


@router.patch("/{agent_id}", response_model=AgentResponse)
async def update_agent(
    agent_id: str,
    request: AgentUpdateRequest,
    registry: AgentRegistry = Depends(get_registry),
) -> AgentResponse:
    descriptor = _require(registry, agent_id)
    if request.name is not None:
        descriptor.name = request.name
    if request.role is not None:
        descriptor.role = AgentRole.parse(request.role)
    if request.description is not None:
        descriptor.description = request.description
    if request.capabilities is not None:
        descriptor.capabilities = list(request.capabilities)
    if request.is_active is not None:
        descriptor.is_active = request.is_active
    if request.generation is not None:
        descriptor.generation = _generation(request.generation)
    return AgentResponse.from_descriptor(descriptor)


@router.delete("/{agent_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_agent(agent_id: str, registry: AgentRegistry = Depends(get_registry)) -> None:
    try:
        registry.remove(agent_id)
    except AgentNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message) from exc
