"""Project and conversation memory endpoints."""
from __future__ import annotations

from typing import Any, Dict, List, Literal

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from agentcollab.core.errors import KnowledgeStoreError
from agentcollab.services.knowledge_store import KnowledgeStore
from agentcollab.runtime import get_knowledge_store

router = APIRouter(prefix="/memory", tags=["memory"])

Scope = Literal["project", "conversation"]


class MemoryUpdateRequest(BaseModel):
    path: str = Field(..., min_length=1, description="Dotted path, e.g. conversation.summary")
    value: Any = None
    operation: Literal["set", "delete", "append", "merge"] = "set"


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)


class ImportRequest(BaseModel):
    data: str = Field(..., description="Raw JSON document")


def _bad_request(exc: KnowledgeStoreError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)


@router.get("/{scope}/{scope_id}")
async def get_memory(scope: Scope, scope_id: str, store: KnowledgeStore = Depends(get_knowledge_store)) -> Dict[str, Any]:
    return await store.get(scope, scope_id)


@router.put("/{scope}/{scope_id}")
async def put_memory(
    scope: Scope,
    scope_id: str,
    document: Dict[str, Any],
    store: KnowledgeStore = Depends(get_knowledge_store),
) -> Dict[str, Any]:
    return await store.put(scope, scope_id, document)


@router.delete("/{scope}/{scope_id}")
async def clear_memory(scope: Scope, scope_id: str, store: KnowledgeStore = Depends(get_knowledge_store)) -> Dict[str, Any]:
    return await store.clear(scope, scope_id)


@router.post("/{scope}/{scope_id}/merge")
async def merge_memory(
    scope: Scope,
    scope_id: str,
    partial: Dict[str, Any],
    store: KnowledgeStore = Depends(get_knowledge_store),
) -> Dict[str, Any]:
    return await store.merge(scope, scope_id, partial)


@router.post("/{scope}/{scope_id}/update")
async def update_memory(
    scope: Scope,
    scope_id: str,
    request: MemoryUpdateRequest,
    store: KnowledgeStore = Depends(get_knowledge_store),
) -> Dict[str, Any]:
    try:
        return await store.apply_update(scope, scope_id, request.path, request.value, request.operation)
    except KnowledgeStoreError as exc:
        raise _bad_request(exc) from exc


@router.post("/{scope}/{scope_id}/search")
async def search_memory(
    scope: Scope,
    scope_id: str,
    request: SearchRequest,
    store: KnowledgeStore = Depends(get_knowledge_store),
) -> List[Dict[str, Any]]:
    return await store.search(scope, scope_id, request.query)


@router.get("/{scope}/{scope_id}/stats")
async def memory_stats(scope: Scope, scope_id: str, store: KnowledgeStore = Depends(get_knowledge_store)) -> Dict[str, Any]:
    return await store.stats(scope, scope_id)


@router.get("/{scope}/{scope_id}/export", response_class=PlainTextResponse)
async def export_memory(scope: Scope, scope_id: str, store: KnowledgeStore = Depends(get_knowledge_store)) -> str:
    return await store.export(scope, scope_id)


@router.post("/{scope}/{scope_id}/import")
async def import_memory(
    scope: Scope,
    scope_id: str,
    request: ImportRequest,
    store: KnowledgeStore = Depends(get_knowledge_store),
) -> Dict[str, Any]:
    try:
        return await store.import_(scope, scope_id, request.data)
    except KnowledgeStoreError as exc:
        raise _bad_request(exc) from exc
