# Run from project root: uvicorn ragchat.main:app --reload

import logging

from fastapi import FastAPI

from ragchat.agent.pipeline import PipelineController
from ragchat.api.routes import router
from ragchat.core.config import LOG_LEVEL
from ragchat.core.session import ChatSession

logging.basicConfig(level=LOG_LEVEL)


def create_app(session: ChatSession | None = None, controller: PipelineController | None = None) -> FastAPI:
    """Build the API around one session and the controller that drives it."""
    session = session or (controller.session if controller else ChatSession())
    application = FastAPI(title="Agentic RAG Chat")
    application.state.session = session
    application.state.controller = controller or PipelineController(session)
    application.include_router(router)
    return application


app = create_app()
