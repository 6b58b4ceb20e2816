"""Data models for the agent pipeline.

Uses Pydantic for validation. The session document and handoff records are
stored as JSON so a stray edit fails loudly at load time instead of being
silently misread.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class Phase(str, Enum):
    """Top-level pipeline segment."""
    PLANNING = "planning"
    BUILD = "build"
    DEPLOY = "deploy"


PHASE_ORDER: tuple[Phase, ...] = (Phase.PLANNING, Phase.BUILD, Phase.DEPLOY)


class ProjectType(str, Enum):
    """Project flavor. Decides which work-understanding fork stage applies."""
    GREENFIELD = "greenfield"
    BROWNFIELD = "brownfield"


class AgentStatus(str, Enum):
    """Status of a single stage within a session."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    NEEDS_REVALIDATION = "needs_revalidation"
    FAILED = "failed"


class DeviationType(str, Enum):
    """Kinds of non-linear pipeline movement a user can ask for."""
    SCOPE_CHANGE = "scope_change"        # add/remove features
    ROLLBACK = "rollback"                # go back to an earlier stage
    SKIP = "skip"                        # drop a stage
    PRIORITY_CHANGE = "priority_change"  # reorder work
    RESTART = "restart"                  # start over
    NONE = "none"


class StageSpec(BaseModel):
    """One entry of the static pipeline definition."""
    model_config = ConfigDict(frozen=True)

    name: str
    phase: Phase
    group: str
    parallel: bool = False


class AgentState(BaseModel):
    """Per-stage status inside a session."""
    status: AgentStatus = AgentStatus.PENDING
    score: Optional[float] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ModeTransition(BaseModel):
    """A phase change. Appended to the session, never rewritten."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_phase: Phase = Field(..., alias="from")
    to_phase: Phase = Field(..., alias="to")
    trigger: str = "autonomous"
    reason: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)


class HistoryEntry(BaseModel):
    """A stage-level event in the session history."""
    agent: str
    action: str  # e.g., "completed", "started", "reset_to", "skipped", "restart"
    timestamp: datetime = Field(default_factory=datetime.now)
    score: Optional[float] = None
    reason: Optional[str] = None


class BacklogEntry(BaseModel):
    """A scope or priority note recorded by a deviation."""
    type: str  # "feature", "feature_removal", "priority_change"
    description: str
    recorded_at: datetime = Field(default_factory=datetime.now)


class DeviationRecord(BaseModel):
    """Audit record for an applied deviation."""
    type: DeviationType
    details: dict[str, Any] = Field(default_factory=dict)
    applied_at: datetime = Field(default_factory=datetime.now)
    changes: list[str] = Field(default_factory=list)


class Session(BaseModel):
    """The single state document for a project.

    Transition functions take a session and return a fresh copy; only the
    session store writes it to disk.
    """
    phase: Phase = Phase.PLANNING
    project_type: ProjectType = ProjectType.GREENFIELD
    started_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    agents: dict[str, AgentState] = Field(default_factory=dict)
    completed_agents: list[str] = Field(default_factory=list)
    current_agent: str = ""
    mode_transitions: list[ModeTransition] = Field(default_factory=list)
    history: list[HistoryEntry] = Field(default_factory=list)
    deviations: list[DeviationRecord] = Field(default_factory=list)
    backlog: list[BacklogEntry] = Field(default_factory=list)

    @property
    def is_greenfield(self) -> bool:
        return self.project_type == ProjectType.GREENFIELD

    def agents_with_status(self, status: AgentStatus) -> list[str]:
        """Names of stages currently in the given status."""
        return [name for name, state in self.agents.items() if state.status == status]

    @property
    def skipped_agents(self) -> list[str]:
        return self.agents_with_status(AgentStatus.SKIPPED)


class TaskValidation(BaseModel):
    """Validation outcome a stage reports alongside its handoff."""
    valid: bool
    score: Optional[float] = None
    unmet: list[str] = Field(default_factory=list)


class HandoffRequest(BaseModel):
    """Everything a finished stage hands to the engine."""
    from_stage: str
    to_stage: Optional[str] = None
    validation: Optional[TaskValidation] = None
    outputs: list[str] = Field(default_factory=list)
    expected_outputs: list[str] = Field(
        default_factory=list,
        description="Outputs the stage declares it will produce"
    )
    criteria: list[str] = Field(
        default_factory=list,
        description="All acceptance criteria for the stage"
    )
    decisions: dict[str, str] = Field(default_factory=dict)
    summary: str = ""
    blockers: list[str] = Field(default_factory=list)


class HandoffStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"


class Handoff(BaseModel):
    """Immutable record of a stage completion.

    Written once to the handoff log. A re-run of the same stage produces a
    new record with a higher sequence number.
    """
    model_config = ConfigDict(frozen=True)

    from_stage: str
    to_stage: Optional[str] = None
    phase: Phase
    sequence: int = 0
    score: Optional[float] = None
    status: HandoffStatus = HandoffStatus.COMPLETE
    outputs: list[str] = Field(default_factory=list)
    criteria_met: list[str] = Field(default_factory=list)
    criteria_unmet: list[str] = Field(default_factory=list)
    blockers: list[str] = Field(default_factory=list)
    summary: str = ""
    decisions: dict[str, str] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.now)


class MemoryEntry(BaseModel):
    """A durable note about a stage, read from its memory file."""
    category: str
    content: str
    confidence: str = "medium"  # high, medium, low
    tags: list[str] = Field(default_factory=list)


class PipelineConfig(BaseModel):
    """Configuration for the orchestration engine.

    Loaded from .pipeline/config.json when present.
    """
    workspace_dir: str = Field(
        default=".pipeline",
        description="Directory (relative to the project) holding state, handoffs and memories"
    )

    # Phase transition thresholds
    qa_planning_threshold: float = Field(
        default=95.0,
        description="Minimum QA-planning score to move from planning to build"
    )
    qa_implementation_threshold: float = Field(
        default=90.0,
        description="Minimum QA-implementation score to move from build to deploy"
    )

    # Gate verdict thresholds
    gate_pass_threshold: float = Field(
        default=95.0,
        description="Gate score needed for PASS (with no unmet criteria)"
    )
    gate_concerns_threshold: float = Field(
        default=90.0,
        description="Gate score needed for CONCERNS"
    )

    # Circuit breaker
    breaker_failure_threshold: int = Field(
        default=3,
        description="Consecutive gate failures before the breaker opens"
    )
    breaker_reset_timeout_ms: int = Field(
        default=60_000,
        description="How long an open breaker rejects evaluations"
    )

    verbose: bool = Field(default=True, description="Print progress to the console")


def percentage(part: float, whole: float) -> int:
    """part/whole as a whole-number percentage, rounding halves up."""
    if not whole:
        return 0
    return math.floor(part / whole * 100 + 0.5)
