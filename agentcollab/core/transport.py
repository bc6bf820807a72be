"""Lightweight in-memory pub/sub carrying conversation events to clients."""
from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Set

from loguru import logger

from .models import utcnow

NEW_MESSAGE = "new-message"
AGENT_STREAMING = "agent-streaming"
TYPING_INDICATOR = "typing-indicator"

SYSTEM_SENDER_ID = "system-agent"


@dataclass(slots=True)
class TransportEvent:
    """Event published on a conversation topic."""

    type: str
    conversation_id: str
    payload: Dict[str, Any] = field(default_factory=dict)


class ConversationTransport:
    """Per-conversation topic hub; publishing never waits on subscribers."""

    def __init__(self) -> None:
        self._topics: Dict[str, Set[asyncio.Queue[TransportEvent]]] = defaultdict(set)
        self._history: Dict[str, List[TransportEvent]] = defaultdict(list)
        self._history_limit = 200

    def publish(self, event: TransportEvent) -> None:
        """Fan the event out to every subscriber of its conversation."""
        history = self._history[event.conversation_id]
        history.append(event)
        if len(history) > self._history_limit:
            del history[: len(history) - self._history_limit]
        for queue in list(self._topics.get(event.conversation_id, ())):
            queue.put_nowait(event)

    def publish_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        *,
        type: str = "text",
        metadata: Dict[str, Any] | None = None,
    ) -> TransportEvent:
        event = TransportEvent(
            type=NEW_MESSAGE,
            conversation_id=conversation_id,
            payload={
                "conversationId": conversation_id,
                "senderId": sender_id,
                "content": content,
                "type": type,
                "timestamp": utcnow().isoformat(),
                "metadata": metadata or {},
            },
        )
        self.publish(event)
        return event

    def publish_streaming(self, conversation_id: str, agent_id: str, content: str) -> None:
        self.publish(
            TransportEvent(
                type=AGENT_STREAMING,
                conversation_id=conversation_id,
                payload={"agentId": agent_id, "content": content},
            )
        )

    def publish_typing(self, conversation_id: str, agent_id: str, is_typing: bool) -> None:
        self.publish(
            TransportEvent(
                type=TYPING_INDICATOR,
                conversation_id=conversation_id,
                payload={
                    "conversationId": conversation_id,
                    "agentId": agent_id,
                    "isTyping": is_typing,
                },
            )
        )

    def publish_system_error(self, conversation_id: str, detail: str) -> None:
        logger.warning(f"Surfacing error to conversation {conversation_id}: {detail}")
        self.publish_message(
            conversation_id,
            SYSTEM_SENDER_ID,
            "I encountered an error while coordinating the team's response. Please try again.",
            type="system",
            metadata={"error": detail},
        )

    def publish_blocked(self, conversation_id: str, check_ids: List[str], detail: str) -> None:
        """Tell the conversation that a safety check stopped the pass."""
        logger.warning(f"Pass for {conversation_id} blocked by {check_ids}: {detail}")
        self.publish_message(
            conversation_id,
            SYSTEM_SENDER_ID,
            f"This request was stopped by a safety check: {detail}. Please rephrase and try again.",
            type="system",
            metadata={"error": detail, "blockedBy": list(check_ids)},
        )

    def history(self, conversation_id: str) -> List[TransportEvent]:
        """Return recently published events for a conversation, oldest first."""
        return list(self._history.get(conversation_id, ()))

    def messages(self, conversation_id: str) -> List[TransportEvent]:
        return [e for e in self.history(conversation_id) if e.type == NEW_MESSAGE]

    @asynccontextmanager
    async def subscribe(self, conversation_id: str) -> AsyncIterator[asyncio.Queue[TransportEvent]]:
        """Context manager yielding a queue that receives the conversation's events."""
        queue: asyncio.Queue[TransportEvent] = asyncio.Queue()
        self._topics[conversation_id].add(queue)
        try:
            yield queue
        finally:
            subscribers = self._topics.get(conversation_id)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    self._topics.pop(conversation_id, None)
