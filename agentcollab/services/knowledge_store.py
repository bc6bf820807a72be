"""In-memory JSON document store for project and conversation memory."""
from __future__ import annotations

import asyncio
import copy
import json
from collections import defaultdict
from typing import Any, Dict, List, Tuple

from loguru import logger

from agentcollab.core.errors import KnowledgeStoreError
from agentcollab.core.models import utcnow
from agentcollab.orchestration.merge import merge_document

SCOPES = ("project", "conversation")
UPDATE_OPERATIONS = ("set", "delete", "append", "merge")

Document = Dict[str, Any]


def _skeleton(scope: str, scope_id: str) -> Document:
    now = utcnow().isoformat()
    if scope == "project":
        return {
            "project": {
                "id": scope_id,
                "createdAt": now,
                "metadata": {},
                "context": {},
                "goals": [],
                "constraints": [],
            },
            "agents": {},
            "tools": {},
            "history": [],
        }
    return {
        "conversation": {
            "id": scope_id,
            "startedAt": now,
            "context": {},
            "summary": "",
            "keyPoints": [],
            "decisions": [],
            "actionItems": [],
        },
        "participants": {},
        "topics": [],
        "entities": {},
        "references": [],
    }


def _apply_update(document: Document, path: str, value: Any, operation: str) -> Document:
    keys = [part for part in path.split(".") if part]
    if not keys:
        raise KnowledgeStoreError("Update path must not be empty")
    if operation not in UPDATE_OPERATIONS:
        raise KnowledgeStoreError(f"Unknown update operation '{operation}'")

    result = copy.deepcopy(document)
    current: Any = result
    for key in keys[:-1]:
        child = current.get(key)
        if not isinstance(child, dict):
            child = {}
            current[key] = child
        current = child

    last = keys[-1]
    if operation == "set":
        current[last] = copy.deepcopy(value)
    elif operation == "delete":
        current.pop(last, None)
    elif operation == "append":
        if not isinstance(current.get(last), list):
            current[last] = []
        current[last].append(copy.deepcopy(value))
    else:
        existing = current.get(last)
        if isinstance(existing, dict) and isinstance(value, dict):
            current[last] = {**existing, **copy.deepcopy(value)}
        else:
            current[last] = copy.deepcopy(value)
    return result


def _search(value: Any, query: str, path: str = "") -> List[Dict[str, Any]]:
    hits: List[Dict[str, Any]] = []
    if not isinstance(value, dict):
        return hits
    for key, item in value.items():
        current_path = f"{path}.{key}" if path else key
        if isinstance(item, str):
            if query in item.lower():
                hits.append({"path": current_path, "key": key, "value": item, "type": "string"})
        elif isinstance(item, list):
            for index, element in enumerate(item):
                element_path = f"{current_path}[{index}]"
                if isinstance(element, str):
                    if query in element.lower():
                        hits.append(
                            {"path": element_path, "key": f"{key}[{index}]", "value": element, "type": "array-item"}
                        )
                elif isinstance(element, dict):
                    hits.extend(_search(element, query, element_path))
        elif isinstance(item, dict):
            hits.extend(_search(item, query, current_path))
    return hits


def _depth(value: Any, level: int = 0) -> int:
    if isinstance(value, dict):
        children = value.values()
    elif isinstance(value, list):
        children = value
    else:
        return level
    return max((_depth(child, level + 1) for child in children), default=level)


def _count_values(value: Any) -> int:
    if isinstance(value, dict):
        children = list(value.values())
    elif isinstance(value, list):
        children = value
    else:
        return 0
    return sum(1 + _count_values(child) for child in children)


class KnowledgeStore:
    """Documents addressed by ``(scope, scope_id)``.

    Read-then-write operations hold a lock per address so concurrent merges into
    the same document inside this process do not lose updates. Callers always
    receive deep copies.
    """

    def __init__(self) -> None:
        self._documents: Dict[Tuple[str, str], Document] = {}
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    @staticmethod
    def _key(scope: str, scope_id: str) -> Tuple[str, str]:
        if scope not in SCOPES:
            raise KnowledgeStoreError(f"Unknown memory scope '{scope}'", details={"scopes": list(SCOPES)})
        return scope, scope_id

    def _load(self, key: Tuple[str, str]) -> Document:
        if key not in self._documents:
            self._documents[key] = _skeleton(*key)
            logger.debug(f"Initialised {key[0]} memory for {key[1]}")
        return self._documents[key]

    async def get(self, scope: str, scope_id: str) -> Document:
        key = self._key(scope, scope_id)
        return copy.deepcopy(self._load(key))

    async def put(self, scope: str, scope_id: str, document: Document) -> Document:
        key = self._key(scope, scope_id)
        async with self._locks[key]:
            self._documents[key] = copy.deepcopy(document)
            return copy.deepcopy(self._documents[key])

    async def merge(self, scope: str, scope_id: str, partial: Document) -> Document:
        key = self._key(scope, scope_id)
        async with self._locks[key]:
            merged = merge_document(self._load(key), partial)
            self._documents[key] = merged
            return copy.deepcopy(merged)

    async def apply_update(self, scope: str, scope_id: str, path: str, value: Any, operation: str = "set") -> Document:
        key = self._key(scope, scope_id)
        async with self._locks[key]:
            updated = _apply_update(self._load(key), path, value, operation)
            self._documents[key] = updated
            return copy.deepcopy(updated)

    async def clear(self, scope: str, scope_id: str) -> Document:
        key = self._key(scope, scope_id)
        async with self._locks[key]:
            self._documents[key] = _skeleton(scope, scope_id)
            logger.info(f"Cleared {scope} memory for {scope_id}")
            return copy.deepcopy(self._documents[key])

    async def search(self, scope: str, scope_id: str, query: str) -> List[Dict[str, Any]]:
        key = self._key(scope, scope_id)
        return copy.deepcopy(_search(self._load(key), query.lower()))

    async def stats(self, scope: str, scope_id: str) -> Dict[str, Any]:
        document = self._load(self._key(scope, scope_id))
        size = len(json.dumps(document).encode("utf-8"))
        return {
            "sizeBytes": size,
            "sizeKB": round(size / 1024, 2),
            "keys": len(document),
            "depth": _depth(document),
            "totalValues": _count_values(document),
        }

    async def export(self, scope: str, scope_id: str) -> str:
        return json.dumps(self._load(self._key(scope, scope_id)), indent=2)

    async def import_(self, scope: str, scope_id: str, raw: str) -> Document:
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise KnowledgeStoreError(f"Invalid memory JSON: {exc.msg}") from exc
        if not isinstance(document, dict):
            raise KnowledgeStoreError("Imported memory must be a JSON object")
        return await self.put(scope, scope_id, document)

    def reset(self) -> None:
        self._documents.clear()
        self._locks.clear()
