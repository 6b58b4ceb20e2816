"""Deviation handling: non-linear pipeline movement requested by the user.

Detects scope changes, rollbacks, skips, priority changes and restarts in
free text, estimates what they would disturb, and applies them to a copy
of the session. Every applied deviation is logged on the session; that log
is the only audit trail for movement outside the normal forward flow.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from .agent_selector import (
    PIPELINE,
    applicable_stages,
    fork_stage,
    get_next_agent,
    require_stage,
    stage_index,
)
from .errors import UnknownStageError
from .intent_classifier import keyword_pattern
from .models import (
    AgentState,
    AgentStatus,
    BacklogEntry,
    DeviationRecord,
    DeviationType,
    HistoryEntry,
    ModeTransition,
    Phase,
    Session,
)
from .pipeline_manager import mark_agent_in_progress, reset_pipeline_to


DEVIATION_KEYWORDS: dict[DeviationType, list[str]] = {
    DeviationType.SCOPE_CHANGE: [
        "also add", "also need", "new feature", "add feature",
        "remove", "drop", "forget about", "forgot about",
        "include", "exclude", "extend", "reduce",
    ],
    DeviationType.ROLLBACK: [
        "go back", "back to", "return to", "revert to",
        "redo the", "restart from",
    ],
    DeviationType.SKIP: [
        "skip", "don't need", "not necessary", "bypass",
        "omit", "ignore", "leave out",
    ],
    DeviationType.PRIORITY_CHANGE: [
        "do first", "more important", "prioritize",
        "instead of", "before that",
        "urgent", "higher priority", "switch order",
    ],
    DeviationType.RESTART: [
        "start over", "from scratch", "begin again",
        "fresh start", "restart project", "restart the",
        "redo everything",
    ],
}

# Winner on equal match counts, most disruptive first
TIE_PRIORITY: tuple[DeviationType, ...] = (
    DeviationType.RESTART,
    DeviationType.ROLLBACK,
    DeviationType.SKIP,
    DeviationType.SCOPE_CHANGE,
    DeviationType.PRIORITY_CHANGE,
)

# Matches needed for full confidence
FULL_CONFIDENCE_MATCHES = 3

# Alternative names users type for stages
STAGE_ALIASES: dict[str, str] = {
    "work understanding": "wu",
    "detailing": "detail",
    "architecture": "architect",
    "ux design": "ux",
    "qa planning": "qa-planning",
    "qa implementation": "qa-implementation",
    "development": "dev",
    "deployment": "devops",
}

# Scope changes after these stages invalidate the plan built on them
SCOPE_SENSITIVE_STAGES = ("detail", "architect")
SCOPE_REVALIDATE_STAGES = ["architect", "phases", "tasks"]

# Affected-stage count at which a low-impact deviation becomes medium
LARGE_CHANGE_THRESHOLD = 3


@dataclass
class DeviationDetection:
    is_deviation: bool
    type: DeviationType
    confidence: float
    target_stage: Optional[str] = None
    details: str = ""
    scores: dict[DeviationType, int] = field(default_factory=dict)


@dataclass
class DeviationImpact:
    impact: str  # low, medium, high
    affected_agents: list[str]
    recommendation: str
    requires_confirmation: bool


@dataclass
class DeviationOutcome:
    session: Session
    applied: bool
    changes: list[str] = field(default_factory=list)


_WORD_PATTERNS: dict[str, re.Pattern] = {}


def _word_present(word: str, text: str) -> bool:
    pattern = _WORD_PATTERNS.get(word)
    if pattern is None:
        pattern = _WORD_PATTERNS[word] = keyword_pattern(word)
    return pattern.search(text) is not None


def keyword_matches(keyword: str, text: str) -> bool:
    """A keyword matches when every one of its words appears in the text."""
    return all(_word_present(word, text) for word in keyword.split())


def _stage_terms() -> list[tuple[str, str]]:
    terms = []
    for spec in PIPELINE:
        terms.append((spec.name, spec.name))
        if "-" in spec.name:
            terms.append((spec.name.replace("-", " "), spec.name))
    terms.extend(STAGE_ALIASES.items())
    return terms


_STAGE_PATTERNS = [
    (re.compile(r"\b" + re.escape(term) + r"\b"), stage)
    for term, stage in _stage_terms()
]


def extract_target_stage(text: str, session: Optional[Session] = None) -> Optional[str]:
    """Find the stage a message refers to, if it names one.

    The earliest mention wins; a longer name beats a shorter one starting
    at the same place. "wu" resolves to the fork stage for the session's
    project flavor.
    """
    lowered = text.lower()
    best: Optional[tuple[int, int, str]] = None

    for pattern, stage in _STAGE_PATTERNS:
        match = pattern.search(lowered)
        if match is None:
            continue
        candidate = (match.start(), -(match.end() - match.start()), stage)
        if best is None or candidate < best:
            best = candidate

    if best is None:
        return None

    stage = best[2]
    if stage == "wu":
        return fork_stage(session.is_greenfield if session else True)
    return stage


def detect_deviation(text: str, session: Optional[Session] = None) -> DeviationDetection:
    """Classify a message as one of the deviation types, or none.

    Args:
        text: Raw user input
        session: Current session, used to resolve the fork stage

    Returns:
        DeviationDetection; is_deviation is False when nothing matched
    """
    lowered = (text or "").lower()
    scores = {
        dtype: sum(1 for kw in keywords if keyword_matches(kw, lowered))
        for dtype, keywords in DEVIATION_KEYWORDS.items()
    }

    best = max(scores.values())
    if best == 0:
        return DeviationDetection(
            is_deviation=False,
            type=DeviationType.NONE,
            confidence=0.0,
            details="No deviation indicators detected",
            scores=scores,
        )

    winner = next(dtype for dtype in TIE_PRIORITY if scores[dtype] == best)
    return DeviationDetection(
        is_deviation=True,
        type=winner,
        confidence=min(1.0, best / FULL_CONFIDENCE_MATCHES),
        target_stage=extract_target_stage(lowered, session),
        details=f"Detected {best} keyword match(es) for {winner.value}",
        scores=scores,
    )


def _session_order(session: Session) -> list[str]:
    return [name for name in applicable_stages(session.is_greenfield) if name in session.agents]


def analyze_deviation_impact(
    deviation_type: DeviationType | str,
    session: Session,
    details: Optional[dict[str, Any]] = None,
) -> DeviationImpact:
    """Estimate how disruptive a deviation would be.

    Pure; nothing is applied.
    """
    deviation_type = DeviationType(deviation_type)
    details = details or {}
    completed = list(session.completed_agents)

    if deviation_type == DeviationType.ROLLBACK:
        target = details.get("target_stage")
        if not target:
            return DeviationImpact(
                "high", [], "Target stage for rollback must be specified", True
            )
        start = stage_index(target)
        affected = [
            name for name in _session_order(session)
            if stage_index(name) > start
            and session.agents[name].status != AgentStatus.PENDING
        ]
        return DeviationImpact(
            "high", affected,
            f"Rollback to {target} will undo work from {len(affected)} agent(s)",
            True,
        )

    if deviation_type == DeviationType.RESTART:
        return DeviationImpact(
            "high", completed,
            "Restart will discard all progress and begin from initial work understanding",
            True,
        )

    if deviation_type == DeviationType.SKIP:
        stage = details.get("stage") or details.get("target_stage")
        if stage:
            affected = [stage]
        elif session.current_agent:
            upcoming = get_next_agent(session.current_agent, completed, session.skipped_agents).next
            affected = [upcoming] if upcoming else []
        else:
            affected = []
        return DeviationImpact(
            "medium", affected,
            "Skipping agents may result in incomplete planning or missing validations",
            True,
        )

    if deviation_type == DeviationType.SCOPE_CHANGE:
        affected = []
        if any(name in completed for name in SCOPE_SENSITIVE_STAGES):
            affected = list(SCOPE_REVALIDATE_STAGES)
        if len(affected) >= LARGE_CHANGE_THRESHOLD:
            return DeviationImpact(
                "medium", affected,
                "Scope changes require re-validation of architecture and task breakdown",
                True,
            )
        return DeviationImpact(
            "low", affected, "Scope changes can be integrated into current planning", False
        )

    if deviation_type == DeviationType.PRIORITY_CHANGE:
        affected = list(details.get("affected_stages", []))
        if len(affected) >= LARGE_CHANGE_THRESHOLD:
            return DeviationImpact(
                "medium", affected, "Reordering this much work needs confirmation", True
            )
        return DeviationImpact(
            "low", affected, "Priority changes within current phase are generally safe", False
        )

    return DeviationImpact("low", [], "No deviation to apply", False)


def _record_phase_change(before: Phase, session: Session, reason: str, now: datetime) -> None:
    if session.phase != before:
        session.mode_transitions.append(ModeTransition(
            from_phase=before,
            to_phase=session.phase,
            trigger="deviation",
            reason=reason,
            timestamp=now,
        ))


def _apply_scope_change(session: Session, details: dict[str, Any], now: datetime) -> list[str]:
    changes = []
    for feature in details.get("added_features", []):
        session.backlog.append(BacklogEntry(type="feature", description=feature, recorded_at=now))
        changes.append(f"Added feature: {feature}")
    for feature in details.get("removed_features", []):
        session.backlog.append(
            BacklogEntry(type="feature_removal", description=feature, recorded_at=now)
        )
        changes.append(f"Removed feature: {feature}")
    return changes


def _apply_skip(session: Session, stage: str, now: datetime) -> tuple[Session, list[str]]:
    require_stage(stage)
    if stage not in session.agents:
        raise UnknownStageError(stage)

    state = session.agents[stage]
    state.status = AgentStatus.SKIPPED
    state.score = None
    state.started_at = None
    state.completed_at = None
    session.completed_agents = [name for name in session.completed_agents if name != stage]
    session.history.append(HistoryEntry(agent=stage, action="skipped", timestamp=now))
    changes = [f"Skipped agent: {stage}"]

    if session.current_agent == stage:
        upcoming = get_next_agent(stage, session.completed_agents, session.skipped_agents).next
        if upcoming and upcoming in session.agents:
            session = mark_agent_in_progress(session, upcoming)
            changes.append(f"Current agent moved to: {upcoming}")
        else:
            session.current_agent = ""
    return session, changes


def _apply_restart(session: Session, now: datetime) -> list[str]:
    before = session.phase
    for name in session.agents:
        session.agents[name] = AgentState()
    session.completed_agents = []
    session.backlog = []
    session.current_agent = ""
    session.completed_at = None
    session.phase = Phase.PLANNING
    session.history.append(HistoryEntry(agent="pipeline", action="restart", timestamp=now))
    _record_phase_change(before, session, "Pipeline restarted", now)
    return ["Reset all agents to initial state"]


def apply_deviation(
    session: Session,
    deviation_type: DeviationType | str,
    details: Optional[dict[str, Any]] = None,
) -> DeviationOutcome:
    """Apply a deviation to a copy of the session.

    Args:
        session: Current session (not modified)
        deviation_type: What kind of deviation to apply
        details: Type-specific parameters: target_stage (rollback),
            stage (skip), added_features / removed_features (scope change),
            description (priority change)

    Returns:
        DeviationOutcome; when applied is False the session is returned
        unchanged and no deviation record is written

    Raises:
        UnknownStageError: If a named stage is not part of the session
    """
    deviation_type = DeviationType(deviation_type)
    details = dict(details or {})
    now = datetime.now()
    updated = session.model_copy(deep=True)

    if deviation_type == DeviationType.SCOPE_CHANGE:
        changes = _apply_scope_change(updated, details, now)
        if not changes:
            return DeviationOutcome(session, False, ["No features added or removed"])

    elif deviation_type == DeviationType.PRIORITY_CHANGE:
        description = details.get("description") or "Priority change requested"
        updated.backlog.append(
            BacklogEntry(type="priority_change", description=description, recorded_at=now)
        )
        changes = [f"Priority change: {description}"]

    elif deviation_type == DeviationType.ROLLBACK:
        target = details.get("target_stage")
        if not target:
            return DeviationOutcome(session, False, ["Target stage not specified"])
        before = updated.phase
        reset_names = [name for name in _session_order(updated) if stage_index(name) > stage_index(target)]
        updated = reset_pipeline_to(updated, target, reason="Deviation rollback")
        _record_phase_change(before, updated, f"Rolled back to {target}", now)
        changes = [f"Reset agent: {name}" for name in reset_names]
        changes.append(f"Rolled back to: {target}")

    elif deviation_type == DeviationType.SKIP:
        stage = details.get("stage") or details.get("target_stage")
        if not stage:
            return DeviationOutcome(session, False, ["Agent to skip not specified"])
        updated, changes = _apply_skip(updated, stage, now)

    elif deviation_type == DeviationType.RESTART:
        changes = _apply_restart(updated, now)

    else:
        return DeviationOutcome(session, False, ["No deviation to apply"])

    updated.deviations.append(DeviationRecord(
        type=deviation_type,
        details=details,
        applied_at=now,
        changes=changes,
    ))
    return DeviationOutcome(updated, True, changes)


def get_deviation_history(session: Session) -> list[DeviationRecord]:
    return list(session.deviations)
