"""Request and response bodies for the HTTP API."""

from pydantic import BaseModel, Field

from ragchat.schemas.chat import AgentId, Document, TraceStep, Turn


class QueryRequest(BaseModel):
    """Request body for POST /query."""

    question: str = Field(..., min_length=1, description="User question for the pipeline.")


class UploadResponse(BaseModel):
    """Response after document intake."""

    files_saved: int = Field(..., description="Number of documents registered.")
    documents: list[Document] = Field(default_factory=list, description="Registered documents (metadata only).")
    rejected: list[str] = Field(default_factory=list, description="Filenames dropped for a disallowed extension.")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "files_saved": 1,
                    "documents": [{"name": "policy.pdf", "size_bytes": 20480, "extension": "pdf"}],
                    "rejected": ["notes.exe"],
                }
            ]
        }
    }


class DocumentsResponse(BaseModel):
    count: int
    documents: list[Document]


class ConversationResponse(BaseModel):
    turns: list[Turn]


class AgentStatusRow(BaseModel):
    agent: AgentId
    name: str
    description: str
    active: bool


class AgentsResponse(BaseModel):
    """Active agent set plus pipeline status, for status panels."""

    active: list[AgentId]
    active_count: int
    state: str
    busy: bool
    agents: list[AgentStatusRow]


class CancelResponse(BaseModel):
    cancelled: bool = Field(..., description="False when no run was in flight.")


class StageFailureDetail(BaseModel):
    """Body of a 502 response: which stage failed, why, and the trace up to the failure."""

    agent: AgentId
    message: str
    trace: list[TraceStep]
