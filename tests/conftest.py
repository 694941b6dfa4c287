"""
Shared fixtures: a fresh session and in-memory stand-ins for the three stage collaborators.
"""

from typing import Callable

import pytest

from ragchat.agent.pipeline import PipelineController
from ragchat.core.session import ChatSession
from ragchat.schemas.chat import Chunk, Document, GeneratedResponse, IngestResult, RetrievalResult


class FakeIngestion:
    """One chunk per document; optionally fails or runs a hook mid-stage."""

    def __init__(self, error: Exception | None = None, hook: Callable[[], None] | None = None) -> None:
        self.error = error
        self.hook = hook
        self.calls: list[list[Document]] = []

    def ingest(self, documents):
        self.calls.append(list(documents))
        if self.hook:
            self.hook()
        if self.error:
            raise self.error
        return IngestResult(
            documents=tuple(d.name for d in documents),
            chunks=tuple(Chunk(source_id=d.name, text=f"contents of {d.name}") for d in documents),
        )


class FakeRetrieval:
    """Returns every ingested chunk."""

    def __init__(self, error: Exception | None = None, hook: Callable[[], None] | None = None) -> None:
        self.error = error
        self.hook = hook
        self.calls: list[tuple[str, IngestResult]] = []

    def retrieve(self, query, ingest_result):
        self.calls.append((query, ingest_result))
        if self.hook:
            self.hook()
        if self.error:
            raise self.error
        return RetrievalResult(chunks=ingest_result.chunks)


class FakeResponse:
    def __init__(
        self,
        error: Exception | None = None,
        text: str | None = None,
        hook: Callable[[], None] | None = None,
    ) -> None:
        self.error = error
        self.text = text
        self.hook = hook
        self.calls: list[tuple[str, list[Chunk]]] = []

    def generate(self, query, chunks):
        self.calls.append((query, list(chunks)))
        if self.hook:
            self.hook()
        if self.error:
            raise self.error
        return GeneratedResponse(text=self.text if self.text is not None else f"Answer to: {query}")


@pytest.fixture
def session() -> ChatSession:
    return ChatSession()


@pytest.fixture
def ingestion() -> FakeIngestion:
    return FakeIngestion()


@pytest.fixture
def retrieval() -> FakeRetrieval:
    return FakeRetrieval()


@pytest.fixture
def response() -> FakeResponse:
    return FakeResponse()


@pytest.fixture
def controller(session, ingestion, retrieval, response) -> PipelineController:
    return PipelineController(session, ingestion=ingestion, retrieval=retrieval, response=response)


@pytest.fixture
def policy_pdf() -> Document:
    return Document(name="policy.pdf", size_bytes=2048, extension="pdf")
