"""
Document intake: validate a raw file selection before it reaches the session.

Responsibility: Filter (filename, bytes) pairs against the extension allow-list,
register the accepted documents, and post the upload acknowledgment as a
system turn. Rejected files never reach the registry.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from ragchat.core.config import ALLOWED_EXTENSIONS, MAX_UPLOAD_FILES
from ragchat.core.errors import InvalidDocumentError
from ragchat.core.session import ChatSession
from ragchat.schemas.chat import Document, Role

logger = logging.getLogger(__name__)


@dataclass
class IntakeResult:
    """Outcome of one selection: what was registered and what was dropped."""

    accepted: list[Document] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)


def is_allowed(filename: str) -> bool:
    return bool(filename) and Path(filename).suffix.lower() in ALLOWED_EXTENSIONS


def validate_selection(items: list[tuple[str, bytes]]) -> IntakeResult:
    """
    Split a selection into accepted Documents and rejected filenames.

    Raises:
        InvalidDocumentError: If the selection is larger than MAX_UPLOAD_FILES.
    """
    if len(items) > MAX_UPLOAD_FILES:
        raise InvalidDocumentError(
            [name for name, _ in items],
            reason=f"At most {MAX_UPLOAD_FILES} files per upload, got {len(items)}",
        )
    result = IntakeResult()
    for filename, content in items:
        name = Path(filename or "").name
        if not is_allowed(name):
            result.rejected.append(filename or "")
            continue
        result.accepted.append(
            Document(
                name=name,
                size_bytes=len(content),
                extension=Path(name).suffix,
                content=content,
            )
        )
    return result


def acknowledgment(documents: list[Document]) -> str:
    names = ", ".join(d.name for d in documents)
    return (
        f"✅ Uploaded {len(documents)} file(s): {names}. "
        "Documents are being processed by the IngestionAgent."
    )


def accept_uploads(session: ChatSession, items: list[tuple[str, bytes]]) -> IntakeResult:
    """
    Validate the selection, register accepted documents, and acknowledge them in the conversation.

    Raises:
        InvalidDocumentError: If nothing in the selection is acceptable, or it is too large.
    """
    logger.info("[intake:accept_uploads] IN  files=%d", len(items))
    result = validate_selection(items)
    if not result.accepted:
        raise InvalidDocumentError(result.rejected)
    with session.lock:
        session.documents.add(result.accepted)
        session.log.record(Role.SYSTEM, acknowledgment(result.accepted))
    if result.rejected:
        logger.warning("[intake:accept_uploads] rejected=%s", result.rejected)
    logger.info("[intake:accept_uploads] OUT accepted=%d rejected=%d", len(result.accepted), len(result.rejected))
    return result
