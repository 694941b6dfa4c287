"""
Conversation log: the append-only, ordered sequence of turns for one session.

Turns are immutable; nothing here edits or removes an entry once appended.
"""

from __future__ import annotations

import itertools
import logging
import threading
from contextlib import AbstractContextManager
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from ragchat.schemas.chat import Role, TraceStep, Turn

logger = logging.getLogger(__name__)


class ConversationLog:
    """Ordered turns, guarded by the session lock. Every append is published as a "turn" event."""

    def __init__(
        self,
        lock: AbstractContextManager | None = None,
        notify: Callable[[str, object], None] | None = None,
    ) -> None:
        self._lock = lock or threading.RLock()
        self._notify = notify
        self._turns: list[Turn] = []
        self._ids = itertools.count(1)

    def append(self, turn: Turn) -> None:
        """Append a turn built elsewhere. O(1); earlier entries are never touched."""
        with self._lock:
            self._turns.append(turn)
            if self._notify:
                self._notify("turn", turn)
        logger.info("[conversation_log:append] id=%s role=%s content_len=%d", turn.id, turn.role.value, len(turn.content))

    def record(
        self,
        role: Role,
        content: str,
        sources: Iterable[str] = (),
        trace: Iterable[TraceStep] = (),
    ) -> Turn:
        """Build a turn with the next id and a timestamp later than every earlier turn, then append it."""
        with self._lock:
            created_at = datetime.now(timezone.utc)
            if self._turns and created_at <= self._turns[-1].created_at:
                created_at = self._turns[-1].created_at + timedelta(microseconds=1)
            turn = Turn(
                id=next(self._ids),
                role=role,
                content=content,
                created_at=created_at,
                sources=tuple(sources),
                trace=tuple(trace),
            )
            self.append(turn)
        return turn

    def all(self) -> tuple[Turn, ...]:
        """Read-only snapshot in insertion order."""
        with self._lock:
            return tuple(self._turns)

    def last(self) -> Turn | None:
        with self._lock:
            return self._turns[-1] if self._turns else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._turns)
