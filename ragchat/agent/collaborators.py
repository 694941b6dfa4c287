"""
Pipeline collaborators: the interfaces the pipeline calls for each stage, and
the default implementations the service runs with.

Any exception a collaborator raises is recorded as a failure of its stage.
Timeouts, if any, belong to the collaborator.
"""

import logging
import re
from typing import Protocol, Sequence

from ragchat.agent.llm import complete
from ragchat.core.config import CHUNK_OVERLAP, CHUNK_SIZE, RETRIEVAL_TOP_K
from ragchat.ingest.loader import bytes_to_text
from ragchat.schemas.chat import Chunk, Document, GeneratedResponse, IngestResult, RetrievalResult
from ragchat.services.text_processing import chunk_text, clean_text

logger = logging.getLogger(__name__)


class IngestionAgent(Protocol):
    def ingest(self, documents: Sequence[Document]) -> IngestResult: ...


class RetrievalAgent(Protocol):
    def retrieve(self, query: str, ingest_result: IngestResult) -> RetrievalResult: ...


class ResponseAgent(Protocol):
    def generate(self, query: str, chunks: Sequence[Chunk]) -> GeneratedResponse: ...


class TextIngestionAgent:
    """Parse each document by extension, clean, and chunk it. Documents without content yield no chunks."""

    def __init__(self, chunk_size: int = CHUNK_SIZE, overlap: int = CHUNK_OVERLAP) -> None:
        self.chunk_size = chunk_size
        self.overlap = overlap

    def ingest(self, documents: Sequence[Document]) -> IngestResult:
        logger.info("[ingestion:ingest] IN  documents=%d", len(documents))
        chunks: list[Chunk] = []
        for doc in documents:
            if not doc.content:
                logger.info("[ingestion:ingest] %s has no content, skipped", doc.name)
                continue
            text = clean_text(bytes_to_text(doc.content, doc.name))
            pieces = chunk_text(text, chunk_size=self.chunk_size, overlap=self.overlap)
            chunks.extend(Chunk(source_id=doc.name, text=piece) for piece in pieces)
            logger.info("[ingestion:ingest] %s -> %d chunks", doc.name, len(pieces))
        logger.info("[ingestion:ingest] OUT chunks=%d", len(chunks))
        return IngestResult(documents=tuple(d.name for d in documents), chunks=tuple(chunks))


def _query_words(query: str) -> set[str]:
    return {w for w in re.findall(r"\w+", query.lower()) if len(w) >= 2}


class KeywordRetrievalAgent:
    """
    Order ingested chunks by how many query words they contain, keep the top_k.

    When no chunk shares a word with the query, the leading chunks are used so
    the response stage still sees the documents.
    """

    def __init__(self, top_k: int = RETRIEVAL_TOP_K) -> None:
        self.top_k = top_k

    def retrieve(self, query: str, ingest_result: IngestResult) -> RetrievalResult:
        logger.info("[retrieval:retrieve] IN  query=%r candidates=%d", query, len(ingest_result.chunks))
        words = _query_words(query)

        def keyword_score(chunk: Chunk) -> int:
            text = chunk.text.lower()
            return sum(1 for w in words if w in text)

        scored = [(chunk, keyword_score(chunk)) for chunk in ingest_result.chunks]
        if any(score for _, score in scored):
            scored = [item for item in scored if item[1] > 0]
            # stable sort keeps document order among equal scores
            scored.sort(key=lambda item: -item[1])
        selected = tuple(chunk for chunk, _ in scored[: self.top_k])
        result = RetrievalResult(chunks=selected)
        logger.info("[retrieval:retrieve] OUT chunks=%d sources=%s", len(selected), list(result.sources))
        return result


def _normalize_context_for_llm(text: str) -> str:
    """Replace PDF bullet/control chars (e.g. \\x7f) with spaces so the LLM sees readable text."""
    return text.replace("\x7f", " ").replace("\x00", " ").strip()


def build_prompt(query: str, chunks: Sequence[Chunk], max_context: int = 4000) -> str:
    context = "\n\n".join(f"[{c.source_id}] {c.text}" for c in chunks)
    context_block = _normalize_context_for_llm(context[:max_context])
    return f"""
        You are a helpful assistant. Answer using ONLY the provided documents.

        - Address the question directly first, then add relevant details from the documents.
        - Do not invent or assume missing details.
        - If the answer is not present, say: "I couldn't find that information in the documents."

        User question:
        {query}

        Documents:
        {context_block or "(no documents)"}

        Answer:
        """


class LLMResponseAgent:
    """Generate the answer with the configured LLM (see ragchat.agent.llm)."""

    def generate(self, query: str, chunks: Sequence[Chunk]) -> GeneratedResponse:
        logger.info("[response:generate] IN  query=%r chunks=%d", query, len(chunks))
        text = complete(build_prompt(query, chunks))
        logger.info("[response:generate] OUT answer_len=%d", len(text))
        return GeneratedResponse(text=text)
