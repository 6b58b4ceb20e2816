"""Pipeline orchestration facade.

Strings the pure pieces (classifier, selector, state machine, deviations)
together with the persistent ones (session store, handoff log, gates) so a
caller can drive a project with one object. This is the only layer that
loads and saves the session and the only one that prints.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from rich.console import Console

from ..agent_memory import AgentMemory
from ..agent_selector import AgentSelection, select_agent
from ..deviation_handler import (
    DeviationDetection,
    DeviationImpact,
    DeviationOutcome,
    analyze_deviation_impact,
    apply_deviation,
    detect_deviation,
)
from ..errors import PipelineError, SessionNotFoundError, UnknownStageError
from ..gates import GateMode, GateResult, GateRunner
from ..gates.circuit_breaker import CircuitState, monotonic_ms
from ..handoff_engine import (
    HandoffContext,
    HandoffOutcome,
    HandoffSummary,
    RollbackFeasibility,
    check_rollback_feasibility,
    execute_handoff,
    get_handoff_history,
    load_handoff_context,
)
from ..handoff_log import HandoffLog
from ..intent_classifier import IntentResult, IntentType, classify_intent
from ..models import DeviationType, HandoffRequest, PipelineConfig, Session
from ..pipeline_manager import (
    AdvanceResult,
    NextAction,
    PipelineProgress,
    advance_pipeline,
    get_pipeline_progress,
    init_pipeline,
    mark_agent_in_progress,
)
from ..protocols import MemoryStore
from ..session_store import SessionStore, SessionSummary, summarize_session
from ..workspace import Workspace


console = Console()

VERDICT_COLORS = {"PASS": "green", "CONCERNS": "yellow", "REVIEW": "magenta", "WAIVED": "cyan"}


@dataclass
class CompletionOutcome:
    """Result of completing a stage through the facade."""
    stage: str
    handoff: Optional[HandoffOutcome] = None
    advance: Optional[AdvanceResult] = None
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.advance is not None and not self.errors


@dataclass
class MessageRoute:
    """How a free-text message was interpreted."""
    message: str
    deviation: DeviationDetection
    impact: Optional[DeviationImpact] = None
    intent: Optional[IntentResult] = None
    selection: Optional[AgentSelection] = None


class PipelineOrchestrator:
    """Drives one project's pipeline.

    Dependencies can be injected for testing:
    - memory: MemoryStore used when loading handoff context
    - clock: millisecond clock for the gate circuit breakers
    """

    def __init__(
        self,
        project_path: Path | str,
        config: Optional[PipelineConfig] = None,
        memory: Optional[MemoryStore] = None,
        clock: Callable[[], float] = monotonic_ms,
    ):
        """Initialize the orchestrator.

        Args:
            project_path: Path to the project directory
            config: Engine configuration (defaults to .pipeline/config.json)
            memory: Store of per-stage notes
            clock: Clock for circuit breakers, in milliseconds
        """
        self.project_path = Path(project_path).resolve()
        base = Workspace(self.project_path)
        self.config = config or base.load_config()
        self.workspace = Workspace.for_config(self.project_path, self.config)
        self.store = SessionStore(self.workspace)
        self.log = HandoffLog(self.workspace)
        self.memory = memory or AgentMemory(self.workspace)
        self.gates = GateRunner(self.config, clock=clock)

    def _say(self, message: str) -> None:
        if self.config.verbose:
            console.print(message)

    # =========================================================================
    # Session
    # =========================================================================

    def init(self, is_greenfield: bool = True, force: bool = False) -> Session:
        """Create the workspace and a fresh session.

        Raises:
            PipelineError: If a session already exists and force is False
        """
        if self.store.exists() and not force:
            raise PipelineError(
                f"A pipeline session already exists in {self.workspace.root}"
            )

        session = init_pipeline(is_greenfield=is_greenfield)
        self.store.init_session(session)
        flavor = "greenfield" if is_greenfield else "brownfield"
        self._say(f"[green]OK[/green] Initialized {flavor} pipeline in {self.workspace.root}")
        return session

    def load(self) -> Session:
        """Load the session.

        Raises:
            SessionNotFoundError: If the project has no readable session
        """
        session = self.store.load()
        if session is None:
            raise SessionNotFoundError(str(self.project_path))
        return session

    def summary(self) -> SessionSummary:
        return summarize_session(self.load())

    def progress(self) -> PipelineProgress:
        return get_pipeline_progress(self.load())

    # =========================================================================
    # Intent and selection
    # =========================================================================

    def classify(self, message: str) -> IntentResult:
        """Classify a message in the context of the current phase, if any."""
        session = self.store.load()
        if session is None:
            return classify_intent(message)
        return classify_intent(message, session.phase, session.current_agent or None)

    def select_next(self, intent: IntentType | str = IntentType.RESUME) -> AgentSelection:
        """Pick the stage that should act next."""
        session = self.load()
        return select_agent(
            intent,
            session.phase,
            current_stage=session.current_agent or None,
            completed_stages=session.completed_agents,
            is_greenfield=session.is_greenfield,
            skipped_stages=session.skipped_agents,
        )

    def route(self, message: str) -> MessageRoute:
        """Interpret a message: a deviation request, or ordinary work.

        Nothing is applied; deviations are only detected and assessed.
        """
        session = self.load()
        detection = detect_deviation(message, session)
        if detection.is_deviation:
            details = {}
            if detection.target_stage:
                key = "stage" if detection.type == DeviationType.SKIP else "target_stage"
                details[key] = detection.target_stage
            impact = analyze_deviation_impact(detection.type, session, details)
            return MessageRoute(message, detection, impact=impact)

        intent = classify_intent(message, session.phase, session.current_agent or None)
        return MessageRoute(message, detection, intent=intent, selection=self.select_next(intent.intent))

    # =========================================================================
    # Stage lifecycle
    # =========================================================================

    def start(self, stage: str) -> Session:
        """Mark a stage as the active one and persist."""
        session = mark_agent_in_progress(self.load(), stage)
        self.store.save(session)
        self._say(f"[cyan]>[/cyan] Started [bold]{stage}[/bold]")
        return session

    def complete(
        self,
        stage: str,
        request: Optional[HandoffRequest] = None,
        score: Optional[float] = None,
    ) -> CompletionOutcome:
        """Record a stage completion, with an optional handoff.

        When a handoff request is given it must pass its preconditions;
        otherwise nothing is written and the stage stays where it was.
        """
        session = self.load()
        if stage not in session.agents:
            raise UnknownStageError(stage)
        outcome = CompletionOutcome(stage=stage)

        if request is not None:
            if request.from_stage != stage:
                request = request.model_copy(update={"from_stage": stage})
            handoff = execute_handoff(self.project_path, request, log=self.log)
            outcome.handoff = handoff
            if not handoff.success:
                outcome.errors = list(handoff.errors)
                self._say(f"[red]X[/red] Handoff from {stage} rejected:")
                for issue in handoff.errors:
                    self._say(f"  - {issue}")
                return outcome
            self._say(f"[green]OK[/green] Handoff saved: {handoff.saved_path.name}")
            if score is None and handoff.handoff is not None:
                score = handoff.handoff.score

        results: dict[str, Any] = {"score": score} if score is not None else {}
        advance = advance_pipeline(session, stage, results, self.config)
        self.store.save(advance.session)
        outcome.advance = advance
        self._report_advance(stage, advance)
        return outcome

    def _report_advance(self, stage: str, advance: AdvanceResult) -> None:
        self._say(f"[green]OK[/green] Completed [bold]{stage}[/bold]")
        if advance.next_action == NextAction.ADVANCE_PHASE:
            transition = advance.session.mode_transitions[-1]
            self._say(
                f"[bold magenta]Phase change:[/bold magenta] "
                f"{transition.from_phase.value} -> {transition.to_phase.value} ({transition.reason})"
            )
            if advance.next_agent:
                self._say(f"Next agent: [bold]{advance.next_agent}[/bold]")
        elif advance.next_action == NextAction.CONTINUE:
            self._say(f"Next agent: [bold]{advance.next_agent}[/bold]")
        elif advance.next_action == NextAction.COMPLETE:
            self._say("[bold green]Pipeline complete[/bold green]")
        else:
            self._say(f"[yellow]Waiting:[/yellow] {advance.reason or 'phase cannot advance yet'}")

    # =========================================================================
    # Deviations
    # =========================================================================

    def assess_deviation(
        self,
        deviation_type: DeviationType | str,
        details: Optional[dict[str, Any]] = None,
    ) -> DeviationImpact:
        return analyze_deviation_impact(deviation_type, self.load(), details)

    def deviate(
        self,
        deviation_type: DeviationType | str,
        details: Optional[dict[str, Any]] = None,
    ) -> DeviationOutcome:
        """Apply a deviation and persist the result if it took effect."""
        outcome = apply_deviation(self.load(), deviation_type, details)
        if outcome.applied:
            self.store.save(outcome.session)
            self._say(f"[yellow]Deviation applied:[/yellow] {DeviationType(deviation_type).value}")
            for change in outcome.changes:
                self._say(f"  - {change}")
        else:
            self._say(f"[yellow]Deviation not applied:[/yellow] {'; '.join(outcome.changes)}")
        return outcome

    # =========================================================================
    # Gates and handoffs
    # =========================================================================

    def evaluate_gate(
        self,
        pipeline_point: str,
        mode: GateMode | str = GateMode.AUTONOMOUS,
    ) -> GateResult:
        """Run the gate for a pipeline point through its circuit breaker.

        In human-in-the-loop mode the result is a REVIEW that only proceeds
        once waived.

        Raises:
            UnknownGateError: If no gate guards that point
            CircuitOpenError: If the breaker for that point is open
        """
        breaker = self.gates.breaker_for(pipeline_point)
        was_open = breaker.state == CircuitState.OPEN
        result = self.gates.run(pipeline_point, self.project_path, mode)

        color = VERDICT_COLORS.get(result.verdict.value, "red")
        self._say(
            f"[bold]{result.gate_name}[/bold] ({result.gate_id}): "
            f"[{color}]{result.verdict.value}[/{color}] score {result.score}"
        )
        if not was_open and breaker.state == CircuitState.OPEN:
            self._say(
                f"[red]Circuit breaker opened for {pipeline_point}[/red] "
                f"after {breaker.failure_threshold} consecutive failures"
            )
        return result

    def handoff_history(self) -> list[HandoffSummary]:
        return get_handoff_history(self.project_path, log=self.log)

    def handoff_context(self, stage: str) -> HandoffContext:
        return load_handoff_context(self.project_path, stage, memory=self.memory, log=self.log)

    def rollback_check(self, target: str) -> RollbackFeasibility:
        return check_rollback_feasibility(self.project_path, target, log=self.log)
