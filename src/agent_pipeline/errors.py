"""Exception types for the orchestration engine.

Structural problems (a stage or gate name that does not exist) are raised and
propagate to the caller. Evidence-based outcomes such as a blocked phase
transition or a failed gate are returned as result objects instead.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all orchestration errors."""


class UnknownStageError(PipelineError, KeyError):
    """A stage name is not part of the pipeline definition."""

    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"Unknown stage: {stage}")

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.args[0]


class UnknownGateError(PipelineError, KeyError):
    """No quality gate is registered for a pipeline point."""

    def __init__(self, pipeline_point: str):
        self.pipeline_point = pipeline_point
        super().__init__(f"No gate registered for pipeline point: {pipeline_point}")

    def __str__(self) -> str:
        return self.args[0]


class CircuitOpenError(PipelineError):
    """Gate evaluation rejected because the circuit breaker is open."""

    def __init__(self, retry_after_ms: Optional[float] = None, name: str = ""):
        self.retry_after_ms = retry_after_ms
        self.name = name
        label = f" for {name}" if name else ""
        message = f"Circuit breaker is OPEN{label}. Request rejected."
        if retry_after_ms is not None:
            message += f" Retry in {retry_after_ms / 1000:.1f}s."
        super().__init__(message)


class MissingEvidenceError(PipelineError):
    """Evidence a gate needs (usually a handoff) does not exist yet.

    Gates catch this and report a FAIL verdict; it never reaches the caller.
    """

    def __init__(self, what: str):
        self.what = what
        super().__init__(f"Missing evidence: {what}")


class SessionNotFoundError(PipelineError):
    """An operation needs a session document but the project has none."""

    def __init__(self, project_path: str):
        self.project_path = project_path
        super().__init__(
            f"No pipeline session found in {project_path}. Run 'agent-pipeline init' first."
        )
