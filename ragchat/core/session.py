"""
In-memory chat session: conversation log, active agents, and registered documents.

One lock guards all three so read-modify-write sequences from the pipeline and
from document intake never interleave. Readers (UIs) either take snapshots or
subscribe to change events; they never write.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

from ragchat.core.config import WELCOME_MESSAGE
from ragchat.schemas.chat import Role
from ragchat.services.agent_tracker import AgentRunTracker
from ragchat.services.conversation_log import ConversationLog
from ragchat.services.document_registry import DocumentRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionEvent:
    """A change notification. kind is one of: turn, agents, documents, trace."""

    kind: str
    payload: Any


Subscriber = Callable[[SessionEvent], None]


class ChatSession:
    """Owned state for one chat session. Pass it to a single PipelineController."""

    def __init__(self, welcome: str | None = WELCOME_MESSAGE) -> None:
        self.lock = threading.RLock()
        self._subscribers: list[Subscriber] = []
        self.log = ConversationLog(self.lock, self.publish)
        self.agents = AgentRunTracker(self.lock, self.publish)
        self.documents = DocumentRegistry(self.lock, self.publish)
        if welcome:
            self.log.record(Role.SYSTEM, welcome)
        logger.info("[session] created turns=%d", len(self.log))

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback for every change; returns a function that unregisters it."""
        with self.lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self.lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, kind: str, payload: Any) -> None:
        """Deliver an event to subscribers. A failing subscriber is logged and skipped."""
        event = SessionEvent(kind, payload)
        with self.lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("[session:publish] subscriber failed on kind=%s", kind)

    def snapshot(self) -> dict[str, Any]:
        """Consistent read-only view of the whole session."""
        with self.lock:
            return {
                "turns": self.log.all(),
                "active_agents": self.agents.active(),
                "documents": self.documents.list(),
            }
