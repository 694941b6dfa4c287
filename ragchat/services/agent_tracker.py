"""
Agent run tracker: which pipeline agents are shown as running right now.

This is display state. The pipeline marks all three agents at the start of a
run and clears them at the end; the order stages actually ran in lives in the
turn's trace, not here.
"""

from __future__ import annotations

import logging
import threading
from contextlib import AbstractContextManager
from typing import Callable, Iterable, NamedTuple

from ragchat.schemas.chat import PIPELINE_ORDER, AgentId

logger = logging.getLogger(__name__)


class AgentInfo(NamedTuple):
    name: str
    description: str


AGENT_CATALOG: dict[AgentId, AgentInfo] = {
    AgentId.INGESTION: AgentInfo("IngestionAgent", "Parsing & chunking documents"),
    AgentId.RETRIEVAL: AgentInfo("RetrievalAgent", "Vector search & context retrieval"),
    AgentId.RESPONSE: AgentInfo("LLMResponseAgent", "Generating final response"),
}


class AgentRunTracker:
    """The active agent set. Every mutation is published as an "agents" event."""

    def __init__(
        self,
        lock: AbstractContextManager | None = None,
        notify: Callable[[str, object], None] | None = None,
    ) -> None:
        self._lock = lock or threading.RLock()
        self._notify = notify
        self._active: frozenset[AgentId] = frozenset()

    def mark_active(self, agents: Iterable[AgentId]) -> None:
        """Replace the active set."""
        self._set(frozenset(AgentId(a) for a in agents))

    def mark_idle(self) -> None:
        self._set(frozenset())

    def is_active(self, agent: AgentId) -> bool:
        with self._lock:
            return AgentId(agent) in self._active

    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def active(self) -> frozenset[AgentId]:
        with self._lock:
            return self._active

    def status_rows(self) -> list[dict]:
        """One row per agent in pipeline order, for status panels."""
        with self._lock:
            return [
                {
                    "agent": agent.value,
                    "name": AGENT_CATALOG[agent].name,
                    "description": AGENT_CATALOG[agent].description,
                    "active": agent in self._active,
                }
                for agent in PIPELINE_ORDER
            ]

    def _set(self, agents: frozenset[AgentId]) -> None:
        with self._lock:
            self._active = agents
            if self._notify:
                self._notify("agents", agents)
        logger.info("[agent_tracker] active=%s", sorted(a.value for a in agents))
