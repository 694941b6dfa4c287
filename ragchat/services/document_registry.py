"""
Document registry: the session's accepted uploads, in the order they arrived.

No dedup: two uploads with the same name are two entries. Validation happens
in document intake before anything reaches this module.
"""

from __future__ import annotations

import logging
import threading
from contextlib import AbstractContextManager
from typing import Callable, Sequence

from ragchat.schemas.chat import Document

logger = logging.getLogger(__name__)


class DocumentRegistry:
    def __init__(
        self,
        lock: AbstractContextManager | None = None,
        notify: Callable[[str, object], None] | None = None,
    ) -> None:
        self._lock = lock or threading.RLock()
        self._notify = notify
        self._documents: list[Document] = []

    def add(self, documents: Sequence[Document]) -> None:
        """Append documents in the given order. An empty sequence changes nothing."""
        if not documents:
            return
        batch = tuple(documents)
        with self._lock:
            self._documents.extend(batch)
            total = len(self._documents)
            if self._notify:
                self._notify("documents", batch)
        logger.info("[document_registry:add] added=%d total=%d", len(batch), total)

    def list(self) -> tuple[Document, ...]:
        with self._lock:
            return tuple(self._documents)

    def names(self) -> list[str]:
        with self._lock:
            return [d.name for d in self._documents]

    def count(self) -> int:
        with self._lock:
            return len(self._documents)
