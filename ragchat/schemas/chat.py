"""Conversation, trace, and document models shared by the session core and the API."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ragchat.core.config import ALLOWED_EXTENSIONS
from ragchat.core.errors import InvalidTransitionError


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class AgentId(str, Enum):
    """The three pipeline stages, in pipeline order."""

    INGESTION = "ingestion"
    RETRIEVAL = "retrieval"
    RESPONSE = "response"


PIPELINE_ORDER: tuple[AgentId, ...] = (AgentId.INGESTION, AgentId.RETRIEVAL, AgentId.RESPONSE)


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


# completed and error share the terminal rank: neither can follow the other
_STATUS_RANK: dict[StepStatus, int] = {
    StepStatus.PENDING: 0,
    StepStatus.RUNNING: 1,
    StepStatus.COMPLETED: 2,
    StepStatus.ERROR: 2,
}


class TraceStep(BaseModel):
    """One pipeline stage's record inside a turn's trace."""

    model_config = ConfigDict(frozen=True)

    agent: AgentId
    action: str
    status: StepStatus = StepStatus.PENDING
    details: str | None = None

    def advance(self, status: StepStatus, **changes) -> "TraceStep":
        """Return a copy moved forward to `status`. Raises InvalidTransitionError on a regression."""
        if _STATUS_RANK[status] <= _STATUS_RANK[self.status]:
            raise InvalidTransitionError(self.status, status)
        return self.model_copy(update={"status": status, **changes})


class Turn(BaseModel):
    """
    One conversation entry. Immutable once built.

    sources and trace only exist on assistant turns; an empty tuple means
    "none" and is the only value other roles may carry.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    role: Role
    content: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    sources: tuple[str, ...] = ()
    trace: tuple[TraceStep, ...] = ()

    @model_validator(mode="after")
    def _check_role_fields(self) -> "Turn":
        if self.role in (Role.USER, Role.ASSISTANT) and not self.content.strip():
            raise ValueError(f"{self.role.value} turn content must not be empty")
        if self.role is not Role.ASSISTANT and (self.sources or self.trace):
            raise ValueError("only assistant turns carry sources or a trace")
        order = [PIPELINE_ORDER.index(step.agent) for step in self.trace]
        if order != sorted(order) or len(set(order)) != len(order):
            raise ValueError("trace steps must follow pipeline order")
        return self


class Document(BaseModel):
    """An accepted upload. `content` is the raw file and is never serialized."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    size_bytes: int = Field(0, ge=0)
    extension: str
    content: bytes = Field(b"", exclude=True, repr=False)

    @field_validator("extension")
    @classmethod
    def _check_extension(cls, value: str) -> str:
        ext = value.strip().lower().lstrip(".")
        if f".{ext}" not in ALLOWED_EXTENSIONS:
            raise ValueError(f"extension {value!r} is not allowed")
        return ext

    @property
    def size_label(self) -> str:
        return f"{self.size_bytes / 1024:.1f}KB"


class Chunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_id: str
    text: str


class IngestResult(BaseModel):
    """Output of the ingestion stage: which documents were parsed and their chunks."""

    model_config = ConfigDict(frozen=True)

    documents: tuple[str, ...] = ()
    chunks: tuple[Chunk, ...] = ()


class RetrievalResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    chunks: tuple[Chunk, ...] = ()

    @property
    def sources(self) -> tuple[str, ...]:
        """Source ids in order of first appearance, without repeats."""
        return tuple(dict.fromkeys(c.source_id for c in self.chunks))


class GeneratedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
