"""
API route aggregator: register endpoints; no logic, only delegate to handlers.
"""

import logging

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import StreamingResponse

from ragchat.agent.pipeline import PipelineController
from ragchat.api.handlers import (
    agents_status,
    event_stream,
    get_controller,
    get_session,
    handle_query,
    handle_upload,
)
from ragchat.core.session import ChatSession
from ragchat.schemas.api import (
    AgentsResponse,
    CancelResponse,
    ConversationResponse,
    DocumentsResponse,
    QueryRequest,
    UploadResponse,
)
from ragchat.schemas.chat import Turn

logger = logging.getLogger(__name__)
router = APIRouter()


# --- System ---

@router.get("/", tags=["system"])
def root():
    return {"status": "Agentic RAG chat backend running"}


@router.get("/health", tags=["system"])
def health():
    return {"ok": True}


# --- Documents ---

@router.post(
    "/upload",
    response_model=UploadResponse,
    tags=["documents"],
    summary="Upload documents into the session",
    description="Accept up to 10 .pdf, .docx, .csv, .pptx, .txt, .md files. Disallowed files are dropped; 400 if none are left.",
)
async def upload_documents(
    files: list[UploadFile] = File(..., description="One or more .pdf, .docx, .csv, .pptx, .txt, or .md files."),
    session: ChatSession = Depends(get_session),
) -> UploadResponse:
    return await handle_upload(session, files)


@router.get("/documents", response_model=DocumentsResponse, tags=["documents"], summary="List registered documents")
def list_documents(session: ChatSession = Depends(get_session)) -> DocumentsResponse:
    documents = list(session.documents.list())
    return DocumentsResponse(count=len(documents), documents=documents)


# --- Query ---

@router.post(
    "/query",
    response_model=Turn,
    tags=["query"],
    summary="Run the ingestion → retrieval → response pipeline for a question",
    description="Returns the assistant turn with sources and trace. 409 while another run is in flight; 502 when a stage fails.",
)
def post_query(body: QueryRequest, controller: PipelineController = Depends(get_controller)) -> Turn:
    logger.info("[api:post_query] IN  question=%r", body.question)
    turn = handle_query(controller, body.question)
    logger.info("[api:post_query] OUT turn=%s sources=%s", turn.id, list(turn.sources))
    return turn


@router.post("/query/cancel", response_model=CancelResponse, tags=["query"], summary="Cancel the in-flight run")
def cancel_query(controller: PipelineController = Depends(get_controller)) -> CancelResponse:
    return CancelResponse(cancelled=controller.cancel())


# --- Session state (read-only) ---

@router.get("/conversation", response_model=ConversationResponse, tags=["session"], summary="Conversation log")
def get_conversation(session: ChatSession = Depends(get_session)) -> ConversationResponse:
    return ConversationResponse(turns=list(session.log.all()))


@router.get("/agents", response_model=AgentsResponse, tags=["session"], summary="Active agents and pipeline state")
def get_agents(
    session: ChatSession = Depends(get_session),
    controller: PipelineController = Depends(get_controller),
) -> AgentsResponse:
    return agents_status(session, controller)


@router.get(
    "/events",
    tags=["session"],
    summary="Session change stream (SSE)",
    description="Server-Sent Events: turn, agents, documents, trace.",
)
def get_events(session: ChatSession = Depends(get_session)) -> StreamingResponse:
    return StreamingResponse(
        event_stream(session),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
