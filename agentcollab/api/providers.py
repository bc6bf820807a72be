"""Completion provider diagnostics."""
from __future__ import annotations

from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, status

from agentcollab.core.errors import ProviderNotConfiguredError
from agentcollab.runtime import get_gateway, get_llm_pool
from agentcollab.services.gateway import OpenAICompletionGateway
from agentcollab.services.llm_pool import LLMPool

router = APIRouter(prefix="/providers", tags=["providers"])


@router.get("")
async def list_providers(pool: LLMPool = Depends(get_llm_pool)) -> List[str]:
    return pool.providers()


@router.get("/{provider}/health")
async def provider_health(
    provider: str,
    pool: LLMPool = Depends(get_llm_pool),
    gateway: OpenAICompletionGateway = Depends(get_gateway),
) -> Dict[str, object]:
    if provider not in pool.providers():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown provider {provider}")
    return {"provider": provider, "connected": await gateway.test_connection(provider)}


@router.get("/{provider}/models")
async def provider_models(
    provider: str,
    gateway: OpenAICompletionGateway = Depends(get_gateway),
) -> List[str]:
    try:
        return await gateway.list_models(provider)
    except ProviderNotConfiguredError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message) from exc
