"""Base class and verdict logic for quality gates.

Each gate follows the same template: collect evidence from the project
(handoff log, session, artifact files), score the evidence against a fixed
checklist, and map the score to a verdict. Scoring and verdict mapping are
pure functions of the evidence; only collection touches the filesystem.
"""

import dataclasses
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Optional

from ..errors import MissingEvidenceError
from ..handoff_engine import is_critical_blocker
from ..handoff_log import HandoffLog
from ..models import Handoff, PipelineConfig, Session, percentage
from ..session_store import SessionStore
from ..workspace import Workspace


class GateVerdict(str, Enum):
    PASS = "PASS"
    CONCERNS = "CONCERNS"
    FAIL = "FAIL"
    REVIEW = "REVIEW"
    WAIVED = "WAIVED"


class GateMode(str, Enum):
    """Who decides whether a gate lets the pipeline through."""
    AUTONOMOUS = "autonomous"
    HUMAN = "human-in-the-loop"


# Verdicts that let the pipeline move on
PROCEED_VERDICTS = (GateVerdict.PASS, GateVerdict.CONCERNS, GateVerdict.WAIVED)


@dataclass
class Evaluation:
    """Checklist outcome for one set of evidence."""
    criteria: list[str]
    met: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    critical_blocker: bool = False

    @property
    def unmet(self) -> list[str]:
        return [c for c in self.criteria if c not in self.met]

    @property
    def score(self) -> int:
        return percentage(len(self.met), len(self.criteria))

    def check(self, criterion: str, passed: bool, warning: Optional[str] = None) -> None:
        """Record one criterion; the warning is kept only when it failed."""
        if passed:
            self.met.append(criterion)
        elif warning:
            self.warnings.append(warning)


@dataclass
class GateResult:
    """Verdict of one gate evaluation."""
    gate_id: str
    gate_name: str
    pipeline_point: str
    verdict: GateVerdict
    score: int
    criteria_met: list[str] = field(default_factory=list)
    criteria_unmet: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    critical_blocker: bool = False
    evidence: dict[str, Any] = field(default_factory=dict)
    recommendation: str = ""
    waived_reason: Optional[str] = None

    @property
    def can_proceed(self) -> bool:
        return self.verdict in PROCEED_VERDICTS


def determine_verdict(
    score: float,
    unmet_count: int,
    critical_blocker: bool = False,
    pass_threshold: float = 95,
    concerns_threshold: float = 90,
) -> GateVerdict:
    """Map a checklist score to a verdict.

    A critical blocker fails the gate whatever the score.
    """
    if critical_blocker:
        return GateVerdict.FAIL
    if score >= pass_threshold and unmet_count == 0:
        return GateVerdict.PASS
    if score >= concerns_threshold:
        return GateVerdict.CONCERNS
    return GateVerdict.FAIL


def recommend(result: GateResult, mode: GateMode, pass_threshold: float = 95) -> str:
    """What the caller should do next with a gate result."""
    if mode == GateMode.AUTONOMOUS:
        return "continue" if result.can_proceed else "pause_for_review"

    if result.critical_blocker:
        return "Recommend review: a critical blocker is still open."
    if result.score >= pass_threshold:
        return "Recommend approval: criteria met."
    return f"Recommend review: score {result.score} below threshold {pass_threshold:g}."


def for_mode(result: GateResult, mode: GateMode | str, pass_threshold: float = 95) -> GateResult:
    """Attach the recommendation for a mode.

    In human-in-the-loop mode the verdict becomes REVIEW, which never
    proceeds on its own: a person approves it with waive().
    """
    mode = GateMode(mode)
    recommendation = recommend(result, mode, pass_threshold)
    if mode == GateMode.HUMAN:
        return dataclasses.replace(result, verdict=GateVerdict.REVIEW, recommendation=recommendation)
    return dataclasses.replace(result, recommendation=recommendation)


def waive(result: GateResult, reason: str) -> GateResult:
    """Human override: return a copy of the result marked WAIVED."""
    if not reason.strip():
        raise ValueError("A waiver needs a reason")
    return dataclasses.replace(result, verdict=GateVerdict.WAIVED, waived_reason=reason)


class EvidenceSource:
    """Read-only view of a project's workspace for evidence collection."""

    def __init__(self, project_dir: Path | str, config: Optional[PipelineConfig] = None):
        self.project_dir = Path(project_dir).resolve()
        if config is None:
            self.workspace = Workspace.open(self.project_dir)
        else:
            self.workspace = Workspace.for_config(self.project_dir, config)
        self.log = HandoffLog(self.workspace)
        self._session: Optional[Session] = None
        self._session_loaded = False

    @property
    def artifacts_dir(self) -> Path:
        return self.workspace.artifacts_dir

    @property
    def session(self) -> Optional[Session]:
        if not self._session_loaded:
            self._session = SessionStore(self.workspace).load()
            self._session_loaded = True
        return self._session

    def require_handoff(self, stage: str) -> Handoff:
        handoff = self.log.latest_for(stage)
        if handoff is None:
            raise MissingEvidenceError(f"no handoff from {stage}")
        return handoff

    def any_exists(self, *paths: Path) -> bool:
        return any(p.exists() for p in paths)

    def has_content(self, directory: Path) -> bool:
        return directory.is_dir() and any(directory.iterdir())


def handoff_evidence(handoff: Handoff) -> dict[str, Any]:
    """The parts of a handoff that gates score on."""
    return {
        "score": handoff.score,
        "status": handoff.status.value,
        "outputs": list(handoff.outputs),
        "blockers": list(handoff.blockers),
        "criteria_met": list(handoff.criteria_met),
        "criteria_unmet": list(handoff.criteria_unmet),
    }


def has_critical(blockers: Iterable[str]) -> bool:
    return any(is_critical_blocker(b) for b in blockers)


class GateBase(ABC):
    """Template for a quality gate.

    Subclasses set the identifying class attributes and implement
    collect_evidence() and score_evidence().
    """

    id: str = ""
    name: str = ""
    pipeline_point: str = ""
    stage: str = ""              # stage whose output is judged
    primary_handoff: str = ""    # handoff without which the gate fails outright
    CRITERIA: tuple[str, ...] = ()

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()

    def evaluate(
        self,
        project_dir: Path | str,
        mode: GateMode | str = GateMode.AUTONOMOUS,
    ) -> GateResult:
        """Collect evidence and judge it.

        A missing primary handoff is an expected state early in a run and
        yields a FAIL result rather than an exception. In human-in-the-loop
        mode the result is a REVIEW carrying a recommendation instead.
        """
        try:
            evidence = self.collect_evidence(EvidenceSource(project_dir, self.config))
        except MissingEvidenceError as e:
            return for_mode(self._missing_evidence_result(e), mode, self.config.gate_pass_threshold)
        return self.judge(evidence, mode)

    def judge(
        self,
        evidence: dict[str, Any],
        mode: GateMode | str = GateMode.AUTONOMOUS,
    ) -> GateResult:
        """Score evidence and map it to a verdict. Pure."""
        evaluation = self.score_evidence(evidence)
        score = evaluation.score
        verdict = determine_verdict(
            score,
            len(evaluation.unmet),
            evaluation.critical_blocker,
            pass_threshold=self.config.gate_pass_threshold,
            concerns_threshold=self.config.gate_concerns_threshold,
        )
        result = GateResult(
            gate_id=self.id,
            gate_name=self.name,
            pipeline_point=self.pipeline_point,
            verdict=verdict,
            score=score,
            criteria_met=list(evaluation.met),
            criteria_unmet=evaluation.unmet,
            warnings=list(evaluation.warnings),
            critical_blocker=evaluation.critical_blocker,
            evidence=evidence,
        )
        return for_mode(result, mode, self.config.gate_pass_threshold)

    def _missing_evidence_result(self, error: MissingEvidenceError) -> GateResult:
        return GateResult(
            gate_id=self.id,
            gate_name=self.name,
            pipeline_point=self.pipeline_point,
            verdict=GateVerdict.FAIL,
            score=0,
            criteria_unmet=list(self.CRITERIA),
            warnings=[str(error)],
            evidence={"missing": error.what},
        )

    @abstractmethod
    def collect_evidence(self, source: EvidenceSource) -> dict[str, Any]:
        """Gather evidence from the project.

        Raises:
            MissingEvidenceError: If the primary handoff does not exist
        """

    @abstractmethod
    def score_evidence(self, evidence: dict[str, Any]) -> Evaluation:
        """Check evidence against the gate's criteria. Must be pure."""
