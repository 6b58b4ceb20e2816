"""Pipeline lifecycle management.

The phase state machine: marks stages completed, decides when a phase
boundary may be crossed, and picks the next action. Every transition takes
a Session and returns a fresh copy; the caller decides when to persist it.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from .agent_selector import (
    PIPELINE,
    applicable_stages,
    get_next_agent,
    is_qa_stage,
    require_stage,
    stage_index,
)
from .errors import UnknownStageError
from .models import (
    PHASE_ORDER,
    AgentState,
    AgentStatus,
    HistoryEntry,
    ModeTransition,
    Phase,
    PipelineConfig,
    ProjectType,
    Session,
    percentage,
)


class NextAction(str, Enum):
    """What the caller should do after a stage completes."""
    ADVANCE_PHASE = "advance_phase"
    CONTINUE = "continue"
    WAIT = "wait"
    COMPLETE = "complete"


@dataclass
class PhaseTransitionCheck:
    """Advisory answer to "may the pipeline leave its current phase?"."""
    can_advance: bool
    reason: str
    required_score: Optional[float] = None


@dataclass
class AdvanceResult:
    """Outcome of advance_pipeline."""
    session: Session
    next_action: NextAction
    next_agent: Optional[str] = None
    needs_phase_switch: bool = False
    reason: str = ""


class PipelineProgress(BaseModel):
    """Progress digest handed to status reporting."""
    phase: Phase
    progress: int = 0
    completed_agents: list[str] = Field(default_factory=list)
    current_agent: str = ""
    next_agent: Optional[str] = None


def init_pipeline(is_greenfield: bool = True, phase: Phase | str = Phase.PLANNING) -> Session:
    """Create a fresh session with every applicable stage pending.

    Only the fork stage matching the project flavor is included.
    """
    return Session(
        phase=Phase(phase),
        project_type=ProjectType.GREENFIELD if is_greenfield else ProjectType.BROWNFIELD,
        agents={name: AgentState() for name in applicable_stages(is_greenfield)},
    )


def _require_session_stage(session: Session, name: str) -> None:
    require_stage(name)
    if name not in session.agents:
        # e.g. brownfield-wu in a greenfield session
        raise UnknownStageError(name)


def _start_stage(session: Session, name: str, now: datetime) -> None:
    """Mark a stage in_progress in place, keeping it the only active one."""
    for other, state in session.agents.items():
        if other != name and state.status == AgentStatus.IN_PROGRESS:
            state.status = AgentStatus.PENDING
            state.started_at = None

    state = session.agents[name]
    state.status = AgentStatus.IN_PROGRESS
    state.started_at = now
    session.current_agent = name


def _ordered(names: set[str]) -> list[str]:
    return sorted(names, key=stage_index)


def mark_agent_in_progress(session: Session, name: str) -> Session:
    """Return a copy of the session with `name` as the active stage.

    Raises:
        UnknownStageError: If the stage is not part of this session
    """
    _require_session_stage(session, name)
    updated = session.model_copy(deep=True)
    _start_stage(updated, name, datetime.now())
    return updated


def check_phase_transition(
    session: Session,
    config: Optional[PipelineConfig] = None,
) -> PhaseTransitionCheck:
    """Check whether the session may move past its current phase.

    Never raises for "not ready yet"; the answer is in the returned reason.
    """
    config = config or PipelineConfig()
    agents = session.agents

    if session.phase == Phase.PLANNING:
        threshold = config.qa_planning_threshold
        qa_planning = agents.get("qa-planning")
        if qa_planning is None:
            return PhaseTransitionCheck(False, "QA-Planning agent not in pipeline")
        if qa_planning.status == AgentStatus.SKIPPED:
            return PhaseTransitionCheck(False, "Phase cannot advance: QA-Planning skipped", threshold)
        if qa_planning.status != AgentStatus.COMPLETED:
            return PhaseTransitionCheck(False, "QA-Planning not yet completed", threshold)
        if qa_planning.score is None or qa_planning.score < threshold:
            return PhaseTransitionCheck(
                False,
                f"QA-Planning score {qa_planning.score or 0:g} below threshold {threshold:g}",
                threshold,
            )
        return PhaseTransitionCheck(True, f"QA-Planning approved with score {qa_planning.score:g}")

    if session.phase == Phase.BUILD:
        threshold = config.qa_implementation_threshold
        dev = agents.get("dev")
        qa_impl = agents.get("qa-implementation")
        if dev is None or qa_impl is None:
            return PhaseTransitionCheck(False, "Build agents not in pipeline")
        if dev.status != AgentStatus.COMPLETED:
            return PhaseTransitionCheck(False, "Dev agent not yet completed")
        if qa_impl.status == AgentStatus.SKIPPED:
            return PhaseTransitionCheck(False, "Phase cannot advance: QA-Implementation skipped", threshold)
        if qa_impl.status != AgentStatus.COMPLETED:
            return PhaseTransitionCheck(False, "QA-Implementation not yet completed", threshold)
        if qa_impl.score is None or qa_impl.score < threshold:
            return PhaseTransitionCheck(
                False,
                f"QA-Implementation score {qa_impl.score or 0:g} below threshold {threshold:g}",
                threshold,
            )
        return PhaseTransitionCheck(True, f"QA-Implementation approved with score {qa_impl.score:g}")

    devops = agents.get("devops")
    if devops is None:
        return PhaseTransitionCheck(False, "DevOps agent not in pipeline")
    if devops.status == AgentStatus.COMPLETED:
        return PhaseTransitionCheck(True, "DevOps completed - pipeline finished")
    return PhaseTransitionCheck(False, "DevOps not yet completed")


def _first_stage_in_phase(session: Session, phase: Phase) -> Optional[str]:
    for spec in PIPELINE:
        if spec.phase != phase or spec.name not in session.agents:
            continue
        if session.agents[spec.name].status in (AgentStatus.COMPLETED, AgentStatus.SKIPPED):
            continue
        return spec.name
    return None


def _advance_or_complete(
    session: Session,
    check: PhaseTransitionCheck,
    now: datetime,
) -> AdvanceResult:
    index = PHASE_ORDER.index(session.phase)

    if index < len(PHASE_ORDER) - 1:
        next_phase = PHASE_ORDER[index + 1]
        session.mode_transitions.append(ModeTransition(
            from_phase=session.phase,
            to_phase=next_phase,
            trigger="autonomous",
            reason=check.reason,
            timestamp=now,
        ))
        session.phase = next_phase

        first = _first_stage_in_phase(session, next_phase)
        if first:
            _start_stage(session, first, now)
        else:
            session.current_agent = ""
        return AdvanceResult(session, NextAction.ADVANCE_PHASE, first, needs_phase_switch=True)

    session.completed_at = now
    session.current_agent = ""
    return AdvanceResult(session, NextAction.COMPLETE)


def advance_pipeline(
    session: Session,
    completed_stage: str,
    results: Optional[dict[str, Any]] = None,
    config: Optional[PipelineConfig] = None,
) -> AdvanceResult:
    """Record a stage completion and work out what happens next.

    Args:
        session: Current session (not modified)
        completed_stage: Stage that just finished
        results: Stage results; "score" is recorded when present
        config: Thresholds for phase transitions

    Returns:
        AdvanceResult carrying the updated session copy

    Raises:
        UnknownStageError: If the stage is not part of this session
    """
    _require_session_stage(session, completed_stage)
    results = results or {}
    score = results.get("score")
    now = datetime.now()

    updated = session.model_copy(deep=True)
    state = updated.agents[completed_stage]
    state.status = AgentStatus.COMPLETED
    state.score = score
    state.completed_at = now

    updated.completed_agents = _ordered(set(updated.completed_agents) | {completed_stage})
    updated.history.append(HistoryEntry(
        agent=completed_stage,
        action="completed",
        timestamp=now,
        score=score,
    ))

    check = check_phase_transition(updated, config)

    if is_qa_stage(completed_stage):
        if check.can_advance:
            return _advance_or_complete(updated, check, now)
        # QA below threshold: the work has to be fixed before anything moves
        return AdvanceResult(updated, NextAction.WAIT, reason=check.reason)

    if check.can_advance:
        return _advance_or_complete(updated, check, now)

    next_info = get_next_agent(completed_stage, updated.completed_agents, updated.skipped_agents)
    next_stage = next_info.next
    # Later-phase stages only start through a phase transition
    if next_stage and next_stage in updated.agents and require_stage(next_stage).phase == updated.phase:
        _start_stage(updated, next_stage, now)
        return AdvanceResult(updated, NextAction.CONTINUE, next_stage)

    if updated.current_agent == completed_stage:
        updated.current_agent = ""
    return AdvanceResult(updated, NextAction.WAIT, reason=check.reason)


def reset_pipeline_to(session: Session, target: str, reason: str = "Pipeline rollback") -> Session:
    """Roll the session back so `target` runs again.

    Every stage at or after the target (pipeline order) goes back to
    pending, the phase becomes the target's phase and the target becomes
    the active stage.

    Raises:
        UnknownStageError: If the target is not part of this session
    """
    _require_session_stage(session, target)
    target_spec = require_stage(target)
    start = stage_index(target)
    reset_names = {spec.name for spec in PIPELINE[start:]}
    now = datetime.now()

    updated = session.model_copy(deep=True)
    updated.phase = target_spec.phase
    updated.completed_at = None

    for name in reset_names:
        if name in updated.agents:
            updated.agents[name] = AgentState()

    updated.completed_agents = [
        name for name in updated.completed_agents if name not in reset_names
    ]
    _start_stage(updated, target, now)
    updated.history.append(HistoryEntry(
        agent=target,
        action="reset_to",
        timestamp=now,
        reason=reason,
    ))
    return updated


def is_pipeline_complete(session: Session) -> bool:
    return session.completed_at is not None


def get_pipeline_progress(session: Session) -> PipelineProgress:
    """Summarize progress for status reporting."""
    next_agent = None
    if session.current_agent:
        next_agent = get_next_agent(
            session.current_agent,
            session.completed_agents,
            session.skipped_agents,
        ).next

    return PipelineProgress(
        phase=session.phase,
        progress=percentage(len(session.completed_agents), len(session.agents)),
        completed_agents=list(session.completed_agents),
        current_agent=session.current_agent,
        next_agent=next_agent,
    )
