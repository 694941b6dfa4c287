"""
API handlers: read request data, call the session core, map results/errors to HTTP.

Responsibility: Bridge HTTP types and the core. Marshalling and exception-to-HTTP
mapping live here so the core stays free of FastAPI types.
"""

import json
import logging
import queue
from typing import Iterator

from fastapi import HTTPException, Request, UploadFile

from ragchat.agent.pipeline import PipelineController
from ragchat.core.config import EVENT_STREAM_KEEPALIVE
from ragchat.core.errors import InvalidDocumentError, PipelineBusyError, PipelineCancelled, StageFailure
from ragchat.core.session import ChatSession, SessionEvent
from ragchat.ingest.intake import accept_uploads
from ragchat.schemas.api import AgentsResponse, StageFailureDetail, UploadResponse
from ragchat.schemas.chat import Turn

logger = logging.getLogger(__name__)


def get_session(request: Request) -> ChatSession:
    return request.app.state.session


def get_controller(request: Request) -> PipelineController:
    return request.app.state.controller


async def handle_upload(session: ChatSession, files: list[UploadFile]) -> UploadResponse:
    """Read uploaded files, run document intake, map intake errors to HTTP 400."""
    if not files:
        raise HTTPException(status_code=400, detail="At least one file is required.")

    items: list[tuple[str, bytes]] = []
    for upload in files:
        items.append((upload.filename or "", await upload.read()))

    try:
        result = accept_uploads(session, items)
    except InvalidDocumentError as e:
        detail = e.reason or f"Only .pdf, .docx, .csv, .pptx, .txt, .md are allowed. Rejected: {', '.join(e.invalid)}"
        raise HTTPException(status_code=400, detail=detail) from e

    return UploadResponse(files_saved=len(result.accepted), documents=result.accepted, rejected=result.rejected)


def handle_query(controller: PipelineController, question: str) -> Turn:
    """Run one pipeline turn; busy/cancelled -> 409, stage failure -> 502 with the trace."""
    try:
        return controller.submit(question)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except PipelineBusyError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except PipelineCancelled as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except StageFailure as e:
        logger.warning("[api:handle_query] %s", e)
        body = StageFailureDetail(agent=e.agent, message=str(e.cause), trace=list(e.trace))
        raise HTTPException(status_code=502, detail=body.model_dump(mode="json")) from e


def agents_status(session: ChatSession, controller: PipelineController) -> AgentsResponse:
    with session.lock:
        active = sorted(session.agents.active(), key=lambda a: a.value)
        return AgentsResponse(
            active=active,
            active_count=len(active),
            state=controller.state.value,
            busy=controller.busy,
            agents=session.agents.status_rows(),
        )


def _event_payload(event: SessionEvent):
    """JSON-ready payload for each event kind."""
    if event.kind == "turn":
        return event.payload.model_dump(mode="json")
    if event.kind == "agents":
        return sorted(a.value for a in event.payload)
    if event.kind in ("documents", "trace"):
        return [item.model_dump(mode="json") for item in event.payload]
    return event.payload


def event_stream(
    session: ChatSession,
    keepalive: float = EVENT_STREAM_KEEPALIVE,
    max_events: int | None = None,
) -> Iterator[str]:
    """Yield Server-Sent Events for every session change until the client goes away (or max_events)."""
    events: queue.Queue[SessionEvent] = queue.Queue()
    unsubscribe = session.subscribe(events.put)
    logger.info("[api:event_stream] subscriber attached")
    sent = 0
    try:
        while max_events is None or sent < max_events:
            try:
                event = events.get(timeout=keepalive)
            except queue.Empty:
                yield ": keepalive\n\n"
                continue
            yield f"event: {event.kind}\ndata: {json.dumps(_event_payload(event))}\n\n"
            sent += 1
    finally:
        unsubscribe()
        logger.info("[api:event_stream] subscriber detached sent=%d", sent)
