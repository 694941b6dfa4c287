"""
Turn pipeline: ingest → retrieve → respond, one run per user query.

The run is a LangGraph graph whose nodes call the stage collaborators in
order; a failed or cancelled stage routes straight to END, so later stages
never run. The controller owns the run state machine, the single-flight
guard, and the trace; the session owns the conversation and the active set.

All three agents are marked active for the whole run (that is what the status
panel shows). The trace is the record of what actually ran, and in what order.
"""

import logging
import threading
from enum import Enum
from typing import Any, Callable, TypedDict

from langgraph.graph import END, StateGraph

from ragchat.agent.collaborators import (
    IngestionAgent,
    KeywordRetrievalAgent,
    LLMResponseAgent,
    ResponseAgent,
    RetrievalAgent,
    TextIngestionAgent,
)
from ragchat.core.errors import InvalidTransitionError, PipelineBusyError, PipelineCancelled, StageFailure
from ragchat.core.session import ChatSession
from ragchat.schemas.chat import (
    PIPELINE_ORDER,
    AgentId,
    Document,
    GeneratedResponse,
    IngestResult,
    RetrievalResult,
    Role,
    StepStatus,
    TraceStep,
    Turn,
)
from ragchat.services.agent_tracker import AGENT_CATALOG

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = "idle"
    INGESTING = "ingesting"
    RETRIEVING = "retrieving"
    RESPONDING = "responding"
    COMPLETED = "completed"
    ERRORED = "errored"


_TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.IDLE: frozenset({PipelineState.INGESTING, PipelineState.ERRORED}),
    PipelineState.INGESTING: frozenset({PipelineState.RETRIEVING, PipelineState.ERRORED}),
    PipelineState.RETRIEVING: frozenset({PipelineState.RESPONDING, PipelineState.ERRORED}),
    PipelineState.RESPONDING: frozenset({PipelineState.COMPLETED, PipelineState.ERRORED}),
    PipelineState.COMPLETED: frozenset({PipelineState.IDLE}),
    PipelineState.ERRORED: frozenset({PipelineState.IDLE}),
}

_STAGE_STATE: dict[AgentId, PipelineState] = {
    AgentId.INGESTION: PipelineState.INGESTING,
    AgentId.RETRIEVAL: PipelineState.RETRIEVING,
    AgentId.RESPONSE: PipelineState.RESPONDING,
}

# (pending/running action, completed action, failed action)
_ACTIONS: dict[AgentId, tuple[str, str, str]] = {
    AgentId.INGESTION: ("Parsing documents", "Document parsing completed", "Document parsing failed"),
    AgentId.RETRIEVAL: ("Executing vector search", "Vector search executed", "Vector search failed"),
    AgentId.RESPONSE: ("Generating LLM response", "LLM response generated", "LLM response failed"),
}

CANCELLED_ACTION = "Run cancelled"


class RunState(TypedDict, total=False):
    query: str
    documents: tuple[Document, ...]
    ingest_result: IngestResult
    retrieval: RetrievalResult
    response: GeneratedResponse
    failed_agent: AgentId
    error: Exception
    cancelled: bool


class PipelineController:
    """
    Drives one pipeline run per submitted query against a ChatSession.

    Only one run may be in flight; a second submit raises PipelineBusyError
    and leaves the conversation untouched.
    """

    def __init__(
        self,
        session: ChatSession,
        ingestion: IngestionAgent | None = None,
        retrieval: RetrievalAgent | None = None,
        response: ResponseAgent | None = None,
    ) -> None:
        self.session = session
        self.ingestion = ingestion or TextIngestionAgent()
        self.retrieval = retrieval or KeywordRetrievalAgent()
        self.response = response or LLMResponseAgent()
        self._state = PipelineState.IDLE
        self._busy = False
        self._cancel = threading.Event()
        self._trace: list[TraceStep] = []
        self._graph = self._build_graph()

    # --- read-only views ---

    @property
    def state(self) -> PipelineState:
        with self.session.lock:
            return self._state

    @property
    def busy(self) -> bool:
        with self.session.lock:
            return self._busy

    @property
    def last_trace(self) -> tuple[TraceStep, ...]:
        """Trace of the current run, or of the last one when idle."""
        with self.session.lock:
            return tuple(self._trace)

    # --- commands ---

    def submit(self, query: str) -> Turn:
        """
        Record the user's query, run the pipeline, and return the assistant turn.

        Raises:
            ValueError: If the query is blank.
            PipelineBusyError: If a run is already in flight.
            StageFailure: If a collaborator failed; a system turn describes it.
            PipelineCancelled: If cancel() was called before the run finished.
        """
        question = (query or "").strip()
        if not question:
            raise ValueError("query is required")
        with self.session.lock:
            if self._busy:
                logger.info("[pipeline:submit] rejected, run in progress")
                raise PipelineBusyError()
            if self._state is not PipelineState.IDLE:
                self._transition(PipelineState.IDLE)
            self._busy = True
            self._cancel.clear()
            self._trace = []
            documents = self.session.documents.list()
            self.session.log.record(Role.USER, question)
            self.session.agents.mark_active(PIPELINE_ORDER)
            self._put_step(TraceStep(agent=AgentId.INGESTION, action=_ACTIONS[AgentId.INGESTION][0]))
        logger.info("[pipeline:submit] START query=%r documents=%d", question, len(documents))

        try:
            final: RunState = self._graph.invoke({"query": question, "documents": documents})
            return self._finish(final)
        except (StageFailure, PipelineCancelled):
            raise
        except BaseException:
            logger.exception("[pipeline:submit] run aborted unexpectedly")
            raise
        finally:
            with self.session.lock:
                if self._state not in (PipelineState.COMPLETED, PipelineState.ERRORED):
                    self._abort()
                self._busy = False

    def cancel(self) -> bool:
        """
        Ask the in-flight run to stop at the next stage boundary.

        Returns False when idle, or when the response stage has already started
        and the run will be answered anyway.
        """
        with self.session.lock:
            if not self._busy or self._state in (
                PipelineState.RESPONDING,
                PipelineState.COMPLETED,
                PipelineState.ERRORED,
            ):
                return False
            self._cancel.set()
        logger.info("[pipeline:cancel] cancellation requested")
        return True

    # --- graph ---

    def _build_graph(self):
        """ingest → retrieve → respond → END; any failure or cancellation routes to END."""
        graph = StateGraph(RunState)

        graph.add_node("ingest", self._ingest_node)
        graph.add_node("retrieve", self._retrieve_node)
        graph.add_node("respond", self._respond_node)

        graph.set_entry_point("ingest")
        graph.add_conditional_edges("ingest", self._continue_to("retrieve"))
        graph.add_conditional_edges("retrieve", self._continue_to("respond"))
        graph.add_edge("respond", END)

        return graph.compile()

    @staticmethod
    def _continue_to(next_node: str) -> Callable[[RunState], str]:
        def route(state: RunState) -> str:
            if state.get("failed_agent") is not None:
                logger.info("[pipeline:route] halted at %s", state["failed_agent"].value)
                return END
            return next_node

        return route

    def _ingest_node(self, state: RunState) -> dict:
        def work() -> tuple[dict, str | None]:
            result = self.ingestion.ingest(state["documents"])
            return {"ingest_result": result}, None

        return self._run_stage(AgentId.INGESTION, work)

    def _retrieve_node(self, state: RunState) -> dict:
        def work() -> tuple[dict, str | None]:
            result = self.retrieval.retrieve(state["query"], state["ingest_result"])
            return {"retrieval": result}, f"{len(result.chunks)} relevant chunks found"

        return self._run_stage(AgentId.RETRIEVAL, work)

    def _respond_node(self, state: RunState) -> dict:
        def work() -> tuple[dict, str | None]:
            result = self.response.generate(state["query"], state["retrieval"].chunks)
            if not result.text.strip():
                raise ValueError("response collaborator returned empty text")
            return {"response": result}, None

        return self._run_stage(AgentId.RESPONSE, work)

    def _run_stage(self, agent: AgentId, work: Callable[[], tuple[dict, str | None]]) -> dict:
        pending, done, failed = _ACTIONS[agent]
        with self.session.lock:
            if self._cancel.is_set():
                self._ensure_step(agent, pending)
                self._advance_step(agent, StepStatus.ERROR, action=CANCELLED_ACTION)
                logger.info("[pipeline:%s] cancelled before start", agent.value)
                return {"failed_agent": agent, "cancelled": True}
            self._transition(_STAGE_STATE[agent])
            self._ensure_step(agent, pending)
            self._advance_step(agent, StepStatus.RUNNING)
        logger.info("[pipeline:%s] IN", agent.value)
        try:
            update, details = work()
        except Exception as e:
            logger.warning("[pipeline:%s] failed: %s", agent.value, e)
            with self.session.lock:
                self._advance_step(agent, StepStatus.ERROR, action=failed, details=str(e) or type(e).__name__)
            return {"failed_agent": agent, "error": e}
        with self.session.lock:
            self._advance_step(agent, StepStatus.COMPLETED, action=done, details=details)
        logger.info("[pipeline:%s] OUT details=%s", agent.value, details)
        return update

    def _finish(self, final: RunState) -> Turn:
        failed = final.get("failed_agent")
        with self.session.lock:
            trace = tuple(self._trace)
            self.session.agents.mark_idle()
            if failed is None:
                turn = self.session.log.record(
                    Role.ASSISTANT,
                    final["response"].text,
                    sources=final["retrieval"].sources,
                    trace=trace,
                )
                self._transition(PipelineState.COMPLETED)
                logger.info("[pipeline:submit] END turn=%s sources=%s", turn.id, list(turn.sources))
                return turn
            self._transition(PipelineState.ERRORED)
            if final.get("cancelled"):
                logger.info("[pipeline:submit] END cancelled at %s", failed.value)
                raise PipelineCancelled(failed, trace)
            cause = final["error"]
            self.session.log.record(Role.SYSTEM, f"The {AGENT_CATALOG[failed].name} failed: {cause}")
        logger.info("[pipeline:submit] END failed at %s", failed.value)
        raise StageFailure(failed, cause, trace)

    # --- state machine & trace (call with the session lock held) ---

    def _abort(self) -> None:
        """Leave a run that ended outside the graph's own failure path in ERRORED, agents idle."""
        for step in self._trace:
            if step.status in (StepStatus.PENDING, StepStatus.RUNNING):
                self._advance_step(step.agent, StepStatus.ERROR, action=_ACTIONS[step.agent][2], details="run aborted")
        self.session.agents.mark_idle()
        self._state = PipelineState.ERRORED
        logger.warning("[pipeline:submit] run aborted, state reset to errored")

    def _transition(self, target: PipelineState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise InvalidTransitionError(self._state, target)
        logger.debug("[pipeline:state] %s -> %s", self._state.value, target.value)
        self._state = target

    def _ensure_step(self, agent: AgentId, action: str) -> None:
        if not any(step.agent is agent for step in self._trace):
            self._put_step(TraceStep(agent=agent, action=action))

    def _advance_step(self, agent: AgentId, status: StepStatus, **changes: Any) -> None:
        index = next(i for i, step in enumerate(self._trace) if step.agent is agent)
        self._trace[index] = self._trace[index].advance(status, **changes)
        self.session.publish("trace", tuple(self._trace))

    def _put_step(self, step: TraceStep) -> None:
        self._trace.append(step)
        self.session.publish("trace", tuple(self._trace))
