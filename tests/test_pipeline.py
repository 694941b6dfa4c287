"""
Unit tests for PipelineController: stage order, trace, failure containment,
single-flight guard, and cancellation.
"""

import pytest

from conftest import FakeIngestion, FakeResponse, FakeRetrieval
from ragchat.agent.pipeline import PipelineController, PipelineState
from ragchat.core.errors import PipelineBusyError, PipelineCancelled, StageFailure
from ragchat.core.session import ChatSession
from ragchat.schemas.chat import AgentId, Role, StepStatus


def _shape(trace):
    return [(s.agent, s.action, s.status, s.details) for s in trace]


class TestSuccessfulRun:
    """A run where all three collaborators succeed."""

    def test_produces_one_assistant_turn_with_three_completed_steps(self, controller, session, policy_pdf) -> None:
        session.documents.add([policy_pdf])
        turn = controller.submit("What is the refund policy?")

        assistants = [t for t in session.log.all() if t.role is Role.ASSISTANT]
        assert assistants == [turn]
        assert [s.agent for s in turn.trace] == [AgentId.INGESTION, AgentId.RETRIEVAL, AgentId.RESPONSE]
        assert all(s.status is StepStatus.COMPLETED for s in turn.trace)

    def test_end_to_end_refund_policy(self, controller, session, policy_pdf) -> None:
        session.documents.add([policy_pdf])
        assert session.agents.active() == frozenset()

        turn = controller.submit("What is the refund policy?")

        assert turn.role is Role.ASSISTANT
        assert turn.content == "Answer to: What is the refund policy?"
        assert turn.sources == ("policy.pdf",)
        assert len(turn.trace) == 3
        assert session.agents.active() == frozenset()
        assert controller.state is PipelineState.COMPLETED
        assert not controller.busy

    def test_trace_actions_and_details(self, controller, session, policy_pdf) -> None:
        session.documents.add([policy_pdf])
        turn = controller.submit("refund?")
        assert [s.action for s in turn.trace] == [
            "Document parsing completed",
            "Vector search executed",
            "LLM response generated",
        ]
        assert turn.trace[1].details == "1 relevant chunks found"

    def test_user_turn_precedes_assistant_turn(self, controller, session) -> None:
        controller.submit("hello there")
        roles = [t.role for t in session.log.all()]
        assert roles == [Role.SYSTEM, Role.USER, Role.ASSISTANT]
        assert session.log.all()[1].content == "hello there"

    def test_stages_receive_previous_results(self, controller, session, ingestion, retrieval, response, policy_pdf) -> None:
        session.documents.add([policy_pdf])
        controller.submit("  refund?  ")
        assert ingestion.calls == [[policy_pdf]]
        query, ingest_result = retrieval.calls[0]
        assert query == "refund?"
        assert ingest_result.documents == ("policy.pdf",)
        assert response.calls[0][1][0].source_id == "policy.pdf"

    def test_all_agents_active_during_run(self, session, retrieval, response) -> None:
        seen = []
        ingestion = FakeIngestion(hook=lambda: seen.append(session.agents.active()))
        controller = PipelineController(session, ingestion=ingestion, retrieval=retrieval, response=response)
        controller.submit("q")
        assert seen == [frozenset(AgentId)]

    def test_no_documents_gives_no_sources(self, controller) -> None:
        turn = controller.submit("anything?")
        assert turn.sources == ()

    def test_repeated_runs_give_distinct_turns_with_same_trace_shape(self, controller, session, policy_pdf) -> None:
        session.documents.add([policy_pdf])
        first = controller.submit("What is the refund policy?")
        second = controller.submit("What is the refund policy?")
        assert first.id != second.id
        assert first.created_at < second.created_at
        assert _shape(first.trace) == _shape(second.trace)


class TestStageFailure:
    """A collaborator failure halts the run at that stage."""

    def test_retrieval_failure(self, session, ingestion, response, policy_pdf) -> None:
        session.documents.add([policy_pdf])
        controller = PipelineController(
            session, ingestion=ingestion, retrieval=FakeRetrieval(error=RuntimeError("index offline")), response=response
        )
        with pytest.raises(StageFailure) as exc_info:
            controller.submit("refund?")

        err = exc_info.value
        assert err.agent is AgentId.RETRIEVAL
        assert str(err.cause) == "index offline"
        assert err.trace[-1].agent is AgentId.RETRIEVAL
        assert err.trace[-1].status is StepStatus.ERROR
        assert err.trace[-1].details == "index offline"
        assert [t for t in session.log.all() if t.role is Role.ASSISTANT] == []
        assert session.agents.active() == frozenset()
        assert response.calls == []
        assert controller.state is PipelineState.ERRORED

    def test_failure_appends_system_turn(self, session, retrieval, response) -> None:
        controller = PipelineController(
            session, ingestion=FakeIngestion(error=ValueError("corrupt pdf")), retrieval=retrieval, response=response
        )
        with pytest.raises(StageFailure):
            controller.submit("q")
        last = session.log.last()
        assert last.role is Role.SYSTEM
        assert "IngestionAgent" in last.content
        assert "corrupt pdf" in last.content

    def test_ingestion_failure_skips_later_stages(self, session, retrieval, response) -> None:
        controller = PipelineController(
            session, ingestion=FakeIngestion(error=OSError("disk")), retrieval=retrieval, response=response
        )
        with pytest.raises(StageFailure) as exc_info:
            controller.submit("q")
        assert [s.agent for s in exc_info.value.trace] == [AgentId.INGESTION]
        assert retrieval.calls == []
        assert response.calls == []

    def test_response_failure_keeps_earlier_steps_completed(self, session, ingestion, retrieval) -> None:
        controller = PipelineController(
            session, ingestion=ingestion, retrieval=retrieval, response=FakeResponse(error=TimeoutError("slow"))
        )
        with pytest.raises(StageFailure) as exc_info:
            controller.submit("q")
        statuses = [s.status for s in exc_info.value.trace]
        assert statuses == [StepStatus.COMPLETED, StepStatus.COMPLETED, StepStatus.ERROR]

    def test_empty_generated_text_is_a_response_failure(self, session, ingestion, retrieval) -> None:
        controller = PipelineController(session, ingestion=ingestion, retrieval=retrieval, response=FakeResponse(text="  "))
        with pytest.raises(StageFailure) as exc_info:
            controller.submit("q")
        assert exc_info.value.agent is AgentId.RESPONSE

    def test_session_usable_after_failure(self, session, ingestion, response) -> None:
        failing = FakeRetrieval(error=RuntimeError("boom"))
        controller = PipelineController(session, ingestion=ingestion, retrieval=failing, response=response)
        with pytest.raises(StageFailure):
            controller.submit("first")
        failing.error = None
        turn = controller.submit("second")
        assert turn.role is Role.ASSISTANT
        assert controller.state is PipelineState.COMPLETED


class TestSingleFlight:
    """Only one run may be in flight."""

    def test_second_submit_during_run_is_rejected(self, session, retrieval, response) -> None:
        outcome = {}

        def resubmit() -> None:
            before = session.log.all()
            try:
                controller.submit("second question")
            except PipelineBusyError as e:
                outcome["error"] = e
            outcome["unchanged"] = session.log.all() == before

        controller = PipelineController(
            session, ingestion=FakeIngestion(hook=resubmit), retrieval=retrieval, response=response
        )
        controller.submit("first question")

        assert isinstance(outcome["error"], PipelineBusyError)
        assert outcome["unchanged"] is True
        assert [t.content for t in session.log.all() if t.role is Role.USER] == ["first question"]

    def test_guard_released_after_run(self, controller) -> None:
        controller.submit("one")
        assert not controller.busy
        controller.submit("two")

    def test_blank_query_rejected_without_log_entry(self, controller, session) -> None:
        with pytest.raises(ValueError):
            controller.submit("   ")
        assert len(session.log) == 1

    def test_interrupted_run_releases_guard_and_resets_state(self, session, retrieval, response) -> None:
        class Interrupted(BaseException):
            pass

        ingestion = FakeIngestion(error=Interrupted())
        controller = PipelineController(session, ingestion=ingestion, retrieval=retrieval, response=response)
        with pytest.raises(Interrupted):
            controller.submit("first")

        assert controller.busy is False
        assert controller.state is PipelineState.ERRORED
        assert session.agents.active() == frozenset()
        assert [(s.agent, s.status, s.details) for s in controller.last_trace] == [
            (AgentId.INGESTION, StepStatus.ERROR, "run aborted"),
        ]

        ingestion.error = None
        turn = controller.submit("second")
        assert turn.role is Role.ASSISTANT
        assert controller.submit("third").role is Role.ASSISTANT


class TestCancellation:
    """cancel() stops the run at the next stage boundary."""

    def test_cancel_between_stages(self, session, response) -> None:
        retrieval = FakeRetrieval()
        controller = PipelineController(
            session, ingestion=FakeIngestion(hook=lambda: controller.cancel()), retrieval=retrieval, response=response
        )
        turns_before = len(session.log)
        with pytest.raises(PipelineCancelled) as exc_info:
            controller.submit("never answered")

        trace = exc_info.value.trace
        assert [(s.agent, s.status) for s in trace] == [
            (AgentId.INGESTION, StepStatus.COMPLETED),
            (AgentId.RETRIEVAL, StepStatus.ERROR),
        ]
        assert retrieval.calls == []
        assert session.agents.active() == frozenset()
        assert len(session.log) == turns_before + 1
        assert session.log.last().content == "never answered"

    def test_cancel_when_idle_returns_false(self, controller) -> None:
        assert controller.cancel() is False

    def test_cancel_during_response_is_refused(self, session, ingestion, retrieval) -> None:
        results = []
        response = FakeResponse(hook=lambda: results.append(controller.cancel()))
        controller = PipelineController(session, ingestion=ingestion, retrieval=retrieval, response=response)
        turn = controller.submit("still answered")
        assert results == [False]
        assert turn.role is Role.ASSISTANT
        assert controller.state is PipelineState.COMPLETED

    def test_cancel_during_retrieval_is_accepted(self, session, ingestion, response) -> None:
        results = []
        retrieval = FakeRetrieval(hook=lambda: results.append(controller.cancel()))
        controller = PipelineController(session, ingestion=ingestion, retrieval=retrieval, response=response)
        with pytest.raises(PipelineCancelled):
            controller.submit("stop")
        assert results == [True]
        assert response.calls == []

    def test_cancel_does_not_leak_into_next_run(self, session, retrieval, response) -> None:
        hooks = [lambda: controller.cancel()]
        ingestion = FakeIngestion(hook=lambda: hooks and hooks.pop()())
        controller = PipelineController(session, ingestion=ingestion, retrieval=retrieval, response=response)
        with pytest.raises(PipelineCancelled):
            controller.submit("first")
        turn = controller.submit("second")
        assert turn.role is Role.ASSISTANT


class TestTraceEvents:
    def test_trace_events_never_regress(self, controller, session) -> None:
        traces = []
        session.subscribe(lambda e: traces.append(e.payload) if e.kind == "trace" else None)
        controller.submit("q")

        assert traces[0][0].status is StepStatus.PENDING
        rank = {StepStatus.PENDING: 0, StepStatus.RUNNING: 1, StepStatus.COMPLETED: 2, StepStatus.ERROR: 2}
        for earlier, later in zip(traces, traces[1:]):
            for old, new in zip(earlier, later):
                assert rank[new.status] >= rank[old.status]

    def test_last_trace_matches_turn(self, controller) -> None:
        turn = controller.submit("q")
        assert controller.last_trace == turn.trace


def test_default_collaborators_are_wired() -> None:
    controller = PipelineController(ChatSession(welcome=None))
    assert type(controller.ingestion).__name__ == "TextIngestionAgent"
    assert type(controller.retrieval).__name__ == "KeywordRetrievalAgent"
    assert type(controller.response).__name__ == "LLMResponseAgent"
