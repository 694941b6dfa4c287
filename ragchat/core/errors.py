"""
Application errors for clean API error handling.

Use ServiceUnavailableError when a dependency (LLM, parser backend) is
misconfigured or unreachable; inside a pipeline run it surfaces as an ordinary
stage failure. The pipeline errors carry the trace of the run that raised them
so the API can return it to the caller.
"""


class ServiceUnavailableError(Exception):
    """Raised when a required service (e.g. the LLM API) is unavailable or misconfigured."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class PipelineBusyError(Exception):
    """Raised when a query is submitted while another pipeline run is in flight."""

    def __init__(self) -> None:
        super().__init__("A pipeline run is already in progress")


class StageFailure(Exception):
    """Raised when an external collaborator fails; the run halts at that stage."""

    def __init__(self, agent, cause: BaseException, trace: tuple = ()) -> None:
        self.agent = agent
        self.cause = cause
        self.trace = trace
        super().__init__(f"{agent.value} stage failed: {cause}")


class PipelineCancelled(Exception):
    """Raised when the caller aborted a run between two stages."""

    def __init__(self, agent, trace: tuple = ()) -> None:
        self.agent = agent
        self.trace = trace
        super().__init__(f"Run cancelled before the {agent.value} stage")


class InvalidDocumentError(Exception):
    """Raised by document intake when a selection has nothing acceptable in it."""

    def __init__(self, invalid: list[str], reason: str = "") -> None:
        self.invalid = invalid
        self.reason = reason
        super().__init__(reason or f"Rejected: {', '.join(invalid)}")


class InvalidTransitionError(Exception):
    """Raised on a pipeline state change or trace status change that is not allowed."""

    def __init__(self, current, target) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid transition {current.value} -> {target.value}")
