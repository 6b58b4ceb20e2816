"""Handoff engine: stage-to-stage transitions with context preservation.

A handoff is the durable fact that a stage finished. It is validated
before anything is written, persisted once to the handoff log, and later
read back to brief the next stage or to judge whether a rollback makes
sense.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from .agent_memory import AgentMemory
from .agent_selector import get_next_agent, require_stage
from .handoff_log import HandoffLog
from .models import Handoff, HandoffRequest, HandoffStatus, MemoryEntry
from .protocols import HandoffStore, MemoryStore
from .workspace import Workspace


CRITICAL_MARKERS = ("critical", "blocking", "cannot proceed")

# Memory confidences worth passing on to the next stage
CONTEXT_CONFIDENCES = ("high", "medium")


@dataclass
class PreconditionCheck:
    valid: bool
    issues: list[str] = field(default_factory=list)


@dataclass
class HandoffOutcome:
    """Result of execute_handoff."""
    success: bool
    handoff: Optional[Handoff] = None
    saved_path: Optional[Path] = None
    errors: list[str] = field(default_factory=list)


@dataclass
class HandoffContext:
    """What a receiving stage gets to read about a finished one."""
    stage: str
    handoff: Optional[Handoff] = None
    memories: list[MemoryEntry] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.handoff is None and not self.memories


@dataclass
class HandoffSummary:
    """One line of handoff history."""
    agent: str
    to: Optional[str]
    sequence: int
    timestamp: datetime
    status: HandoffStatus
    score: Optional[float]
    summary: str


@dataclass
class RollbackFeasibility:
    """Whether rolling back to a stage would undo anything.

    code is one of: no_history, not_found, already_most_recent, ok.
    """
    possible: bool
    code: str
    reason: str
    affected_agents: list[str] = field(default_factory=list)


def is_critical_blocker(blocker: str) -> bool:
    """A blocker that must be resolved before work can move on."""
    text = blocker.lower()
    return any(marker in text for marker in CRITICAL_MARKERS)


def validate_handoff_preconditions(request: HandoffRequest) -> PreconditionCheck:
    """Check that a stage is allowed to hand off.

    Pure; every failing check contributes an issue, in a fixed order.
    """
    issues = []

    if request.validation is None:
        issues.append("Validation results are required for handoff")
    elif not request.validation.valid:
        issues.append("Task validation must pass before handoff")

    if not request.summary.strip():
        issues.append("Handoff summary is required")

    if any(is_critical_blocker(b) for b in request.blockers):
        issues.append("Critical blockers must be resolved before handoff")

    if request.expected_outputs and not request.outputs:
        issues.append("Task declares outputs but none were provided")

    return PreconditionCheck(valid=not issues, issues=issues)


def build_handoff(request: HandoffRequest) -> Handoff:
    """Turn a validated request into an immutable record (sequence unset)."""
    spec = require_stage(request.from_stage)
    validation = request.validation
    unmet = list(validation.unmet) if validation else []
    to_stage = request.to_stage or get_next_agent(request.from_stage).next

    return Handoff(
        from_stage=request.from_stage,
        to_stage=to_stage,
        phase=spec.phase,
        score=validation.score if validation else None,
        status=HandoffStatus.COMPLETE if validation and validation.valid else HandoffStatus.PARTIAL,
        outputs=list(request.outputs or request.expected_outputs),
        criteria_met=[c for c in request.criteria if c not in set(unmet)],
        criteria_unmet=unmet,
        blockers=list(request.blockers),
        summary=request.summary.strip(),
        decisions=dict(request.decisions),
    )


def _log_for(project_dir: Path | str) -> HandoffLog:
    return HandoffLog(Workspace.open(project_dir))


def execute_handoff(
    project_dir: Path | str,
    request: HandoffRequest,
    log: Optional[HandoffStore] = None,
) -> HandoffOutcome:
    """Validate and persist a handoff.

    Nothing is written when a precondition fails.

    Raises:
        UnknownStageError: If from_stage is not in the pipeline
    """
    require_stage(request.from_stage)

    check = validate_handoff_preconditions(request)
    if not check.valid:
        return HandoffOutcome(success=False, errors=check.issues)

    log = log or _log_for(project_dir)
    handoff = build_handoff(request)
    try:
        saved, path = log.append(handoff)
    except OSError as e:
        return HandoffOutcome(
            success=False,
            handoff=handoff,
            errors=[f"Failed to save handoff: {e}"],
        )

    return HandoffOutcome(success=True, handoff=saved, saved_path=path)


def load_handoff_context(
    project_dir: Path | str,
    stage: str,
    memory: Optional[MemoryStore] = None,
    log: Optional[HandoffStore] = None,
) -> HandoffContext:
    """Gather the latest handoff and the useful notes for a stage.

    Returns an empty context when nothing has been recorded yet.
    """
    workspace = Workspace.open(project_dir)
    log = log or HandoffLog(workspace)
    memory = memory or AgentMemory(workspace)

    context = HandoffContext(stage=stage)

    handoff = log.latest_for(stage)
    if handoff is not None:
        context.handoff = handoff
        context.sources.append(f"handoff from {stage}")

    entries = [e for e in memory.read(stage) if e.confidence in CONTEXT_CONFIDENCES]
    if entries:
        context.memories = entries
        context.sources.append(f"{len(entries)} memory entries from {memory.source_label(stage)}")

    return context


def get_handoff_history(
    project_dir: Path | str,
    log: Optional[HandoffStore] = None,
) -> list[HandoffSummary]:
    """Chronological summaries of every handoff."""
    log = log or _log_for(project_dir)
    return [
        HandoffSummary(
            agent=h.from_stage,
            to=h.to_stage,
            sequence=h.sequence,
            timestamp=h.timestamp,
            status=h.status,
            score=h.score,
            summary=h.summary,
        )
        for h in log.read_all()
    ]


def check_rollback_feasibility(
    project_dir: Path | str,
    target: str,
    log: Optional[HandoffStore] = None,
) -> RollbackFeasibility:
    """Work out which stages a rollback to `target` would invalidate."""
    history = get_handoff_history(project_dir, log)

    if not history:
        return RollbackFeasibility(False, "no_history", "No handoff history available")

    positions = [i for i, h in enumerate(history) if h.agent == target]
    if not positions:
        return RollbackFeasibility(
            False, "not_found", f"Agent '{target}' has not completed any handoffs yet"
        )

    affected: list[str] = []
    for entry in history[positions[-1] + 1:]:
        if entry.agent not in affected:
            affected.append(entry.agent)

    if not affected:
        return RollbackFeasibility(
            False, "already_most_recent",
            f"Agent '{target}' is already the most recent completed agent"
        )

    return RollbackFeasibility(
        True, "ok",
        f"Rollback will undo work from {len(affected)} agent(s)",
        affected,
    )
