"""Admission control: message de-duplication, per-conversation locks, cooldowns and cycle limits."""
from __future__ import annotations

import time
from collections import OrderedDict, defaultdict
from typing import Any, Callable, Dict, Optional

from loguru import logger

from agentcollab.config import OrchestratorSettings
from agentcollab.core.models import AdmissionResult, ProcessingLock

Clock = Callable[[], float]


class AdmissionController:
    """Owns every piece of mutable admission state for the orchestrator.

    All methods are synchronous, so each call is atomic with respect to other
    tasks on the event loop.
    """

    def __init__(self, settings: Optional[OrchestratorSettings] = None, clock: Clock = time.monotonic) -> None:
        self._settings = settings or OrchestratorSettings()
        self._clock = clock
        self._locks: Dict[str, ProcessingLock] = {}
        self._processed: Dict[str, OrderedDict[str, None]] = defaultdict(OrderedDict)
        self._responders: Dict[str, Dict[str, float]] = defaultdict(dict)
        self._cycles: Dict[str, int] = defaultdict(int)
        self._user_turns: Dict[str, int] = defaultdict(int)

    @property
    def settings(self) -> OrchestratorSettings:
        return self._settings

    def now(self) -> float:
        return self._clock()

    # Locks and de-duplication

    def _expired(self, lock: ProcessingLock) -> bool:
        return self._clock() - lock.timestamp > self._settings.processing_timeout

    def admit(self, conversation_id: str, message_id: str) -> AdmissionResult:
        processed = self._processed[conversation_id]
        if message_id in processed:
            logger.debug(f"Message {message_id} already processed in {conversation_id}")
            return AdmissionResult.ALREADY_PROCESSED

        lock = self._locks.get(conversation_id)
        if lock is not None and lock.message_id != message_id:
            if not self._expired(lock):
                logger.debug(f"Conversation {conversation_id} busy with {lock.message_id}")
                return AdmissionResult.CONVERSATION_BUSY
            logger.warning(f"Reclaiming stale lock on {conversation_id} held by {lock.message_id}")

        self._locks[conversation_id] = ProcessingLock(conversation_id, message_id, self._clock())
        processed[message_id] = None
        while len(processed) > self._settings.message_history_cap:
            processed.popitem(last=False)
        return AdmissionResult.ADMITTED

    def release(self, conversation_id: str, message_id: str) -> bool:
        """Drop the lock if ``message_id`` still holds it."""
        lock = self._locks.get(conversation_id)
        if lock is None or lock.message_id != message_id:
            return False
        del self._locks[conversation_id]
        return True

    def lock_for(self, conversation_id: str) -> Optional[ProcessingLock]:
        lock = self._locks.get(conversation_id)
        if lock is None or self._expired(lock):
            return None
        return lock

    def sweep(self) -> int:
        """Purge expired locks and cooldown entries; returns the number of locks reclaimed."""
        stale = [cid for cid, lock in self._locks.items() if self._expired(lock)]
        for conversation_id in stale:
            logger.warning(f"Sweeping stale processing lock for {conversation_id}")
            del self._locks[conversation_id]

        now = self._clock()
        for conversation_id, responders in list(self._responders.items()):
            for agent_id, answered_at in list(responders.items()):
                if now - answered_at >= self._settings.cooldown_period:
                    del responders[agent_id]
            if not responders:
                del self._responders[conversation_id]
        return len(stale)

    # User turns, cooldown and cycles

    def start_user_turn(self, conversation_id: str) -> bool:
        """Open a fresh cycle for a user message; returns True on the conversation's first one."""
        self._responders.pop(conversation_id, None)
        self._cycles[conversation_id] = 0
        self._user_turns[conversation_id] += 1
        return self._user_turns[conversation_id] == 1

    def mark_responded(self, conversation_id: str, agent_id: str) -> None:
        self._responders[conversation_id][agent_id] = self._clock()

    def is_cooling_down(self, conversation_id: str, agent_id: str) -> bool:
        answered_at = self._responders.get(conversation_id, {}).get(agent_id)
        if answered_at is None:
            return False
        return self._clock() - answered_at < self._settings.cooldown_period

    def record_invocation(self, conversation_id: str) -> int:
        self._cycles[conversation_id] += 1
        return self._cycles[conversation_id]

    def cycles(self, conversation_id: str) -> int:
        return self._cycles.get(conversation_id, 0)

    def cycle_limit_reached(self, conversation_id: str) -> bool:
        return self.cycles(conversation_id) >= self._settings.max_collaboration_cycles

    def can_invoke(self, conversation_id: str, agent_id: str) -> bool:
        return not self.cycle_limit_reached(conversation_id) and not self.is_cooling_down(conversation_id, agent_id)

    def snapshot(self, conversation_id: str) -> Dict[str, Any]:
        lock = self.lock_for(conversation_id)
        now = self._clock()
        return {
            "conversationId": conversation_id,
            "locked": lock is not None,
            "processingMessageId": lock.message_id if lock else None,
            "cycles": self.cycles(conversation_id),
            "maxCycles": self._settings.max_collaboration_cycles,
            "userTurns": self._user_turns.get(conversation_id, 0),
            "coolingDown": sorted(
                agent_id
                for agent_id, answered_at in self._responders.get(conversation_id, {}).items()
                if now - answered_at < self._settings.cooldown_period
            ),
        }

    def reset(self) -> None:
        self._locks.clear()
        self._processed.clear()
        self._responders.clear()
        self._cycles.clear()
        self._user_turns.clear()
        logger.info("Admission state reset")
