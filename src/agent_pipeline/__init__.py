"""Agent Pipeline - orchestration engine for multi-stage agent workflows.

Routes free-text requests to pipeline stages, moves a project through the
planning, build and deploy phases, records stage handoffs and evaluates
quality gates at phase boundaries.
"""

from .errors import (
    CircuitOpenError,
    MissingEvidenceError,
    PipelineError,
    SessionNotFoundError,
    UnknownGateError,
    UnknownStageError,
)
from .models import (
    AgentStatus,
    DeviationType,
    Handoff,
    HandoffRequest,
    Phase,
    PipelineConfig,
    ProjectType,
    Session,
    TaskValidation,
)
from .orchestration import PipelineOrchestrator

__version__ = "0.1.0"

__all__ = [
    "AgentStatus",
    "CircuitOpenError",
    "DeviationType",
    "Handoff",
    "HandoffRequest",
    "MissingEvidenceError",
    "Phase",
    "PipelineConfig",
    "PipelineError",
    "PipelineOrchestrator",
    "ProjectType",
    "Session",
    "SessionNotFoundError",
    "TaskValidation",
    "UnknownGateError",
    "UnknownStageError",
]
