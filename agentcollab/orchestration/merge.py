"""Folding agent contributions into shared knowledge documents."""
from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any, Dict, Iterable, Mapping, Optional

from agentcollab.core.models import AgentRole, ContributionStatus, ParsedContribution, SharedKnowledge, WorkflowState

if TYPE_CHECKING:
    from agentcollab.services.knowledge_store import KnowledgeStore

SHARED_KNOWLEDGE_KEY = "sharedKnowledge"


def merge_document(target: Mapping[str, Any], update: Mapping[str, Any]) -> Dict[str, Any]:
    """Deep-merge ``update`` into a copy of ``target``.

    Lists are concatenated, strings are newline-appended and nested mappings are
    merged key by key. Any other incoming value replaces what was there, which
    includes a list arriving over a non-list value.
    """
    result: Dict[str, Any] = copy.deepcopy(dict(target))
    for key, incoming in update.items():
        current = result.get(key)
        if isinstance(incoming, Mapping):
            base = current if isinstance(current, Mapping) else {}
            result[key] = merge_document(base, incoming)
        elif isinstance(incoming, list):
            if isinstance(current, list):
                result[key] = current + copy.deepcopy(incoming)
            else:
                result[key] = copy.deepcopy(incoming)
        elif isinstance(incoming, str) and isinstance(current, str):
            result[key] = f"{current}\n{incoming}" if current else incoming
        else:
            result[key] = copy.deepcopy(incoming)
    return result


def contribution_delta(contribution: ParsedContribution, role: AgentRole) -> Dict[str, Any]:
    """Translate a contribution's knowledge updates into a SharedKnowledge-shaped delta."""
    updates = contribution.knowledge_updates
    delta: Dict[str, Any] = {}

    if updates.requirements:
        delta["projectRequirements"] = "\n".join(updates.requirements)
    if updates.decisions:
        key = "designDecisions" if role is AgentRole.DESIGNER else "technicalDecisions"
        delta[key] = list(updates.decisions)
    if updates.tasks:
        key = "completedTasks" if contribution.status is ContributionStatus.COMPLETE else "implementationNotes"
        delta[key] = list(updates.tasks)
    if updates.blockers:
        delta["blockers"] = list(updates.blockers)
    if updates.integration_points:
        delta["integrationPoints"] = list(updates.integration_points)
    return delta


def merge_into_shared(shared: SharedKnowledge, delta: Mapping[str, Any]) -> SharedKnowledge:
    if not delta:
        return shared
    return SharedKnowledge.from_dict(merge_document(shared.to_dict(), delta))


def merge_all(shared: SharedKnowledge, deltas: Iterable[Mapping[str, Any]]) -> SharedKnowledge:
    for delta in deltas:
        shared = merge_into_shared(shared, delta)
    return shared


async def apply_contribution(
    state: WorkflowState,
    contribution: ParsedContribution,
    role: AgentRole,
    store: Optional[KnowledgeStore] = None,
) -> Dict[str, Any]:
    """Fold a contribution into the pass state and the conversation's stored knowledge."""
    delta = contribution_delta(contribution, role)
    state.shared_knowledge = merge_into_shared(state.shared_knowledge, delta)
    if delta and store is not None:
        await store.merge("conversation", state.conversation_id, {SHARED_KNOWLEDGE_KEY: delta})
    return delta
