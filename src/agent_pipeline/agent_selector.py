"""Agent selection for the orchestration engine.

Holds the static pipeline definition and answers "which stage runs next"
from the completed stages and the classified intent. Everything here is
a pure function of its arguments.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional

from .errors import UnknownStageError
from .intent_classifier import IntentType
from .models import Phase, StageSpec


FORK_GROUP = "wu"
GREENFIELD_STAGE = "greenfield-wu"
BROWNFIELD_STAGE = "brownfield-wu"

# The complete pipeline in execution order
PIPELINE: tuple[StageSpec, ...] = (
    StageSpec(name="greenfield-wu", phase=Phase.PLANNING, group=FORK_GROUP),
    StageSpec(name="brownfield-wu", phase=Phase.PLANNING, group=FORK_GROUP),
    StageSpec(name="brief", phase=Phase.PLANNING, group="planning"),
    StageSpec(name="detail", phase=Phase.PLANNING, group="planning-parallel", parallel=True),
    StageSpec(name="architect", phase=Phase.PLANNING, group="planning-parallel", parallel=True),
    StageSpec(name="ux", phase=Phase.PLANNING, group="planning-parallel", parallel=True),
    StageSpec(name="phases", phase=Phase.PLANNING, group="planning"),
    StageSpec(name="tasks", phase=Phase.PLANNING, group="planning"),
    StageSpec(name="qa-planning", phase=Phase.PLANNING, group="quality"),
    StageSpec(name="dev", phase=Phase.BUILD, group="build"),
    StageSpec(name="qa-implementation", phase=Phase.BUILD, group="quality"),
    StageSpec(name="devops", phase=Phase.DEPLOY, group="deploy"),
)

STAGE_NAMES: tuple[str, ...] = tuple(spec.name for spec in PIPELINE)

_BY_NAME: dict[str, StageSpec] = {spec.name: spec for spec in PIPELINE}


@dataclass
class AgentSelection:
    """Which stage should act, and why."""
    agent: Optional[str]
    reason: str
    parallel_group: Optional[list[str]] = None


@dataclass
class NextAgent:
    """The stage following a given one."""
    next: Optional[str]
    is_parallel: bool = False
    group: list[str] = field(default_factory=list)


# =============================================================================
# Definition lookups
# =============================================================================

def get_stage(name: str) -> Optional[StageSpec]:
    """Get a stage definition by name, or None if unknown."""
    return _BY_NAME.get(name)


def require_stage(name: str) -> StageSpec:
    """Get a stage definition by name.

    Raises:
        UnknownStageError: If the name is not in the pipeline
    """
    spec = _BY_NAME.get(name)
    if spec is None:
        raise UnknownStageError(name)
    return spec


def stage_index(name: str) -> int:
    """Position of a stage in the pipeline."""
    return STAGE_NAMES.index(require_stage(name).name)


def get_phase_stages(phase: Phase | str) -> list[StageSpec]:
    """All stage definitions belonging to a phase, in pipeline order."""
    phase = Phase(phase)
    return [spec for spec in PIPELINE if spec.phase == phase]


def get_group_members(group: str) -> list[str]:
    return [spec.name for spec in PIPELINE if spec.group == group]


def fork_stage(is_greenfield: bool) -> str:
    """The work-understanding stage that applies to a project flavor."""
    return GREENFIELD_STAGE if is_greenfield else BROWNFIELD_STAGE


def applicable_stages(is_greenfield: bool) -> list[str]:
    """Stage names for a project flavor, with the other fork alternative dropped."""
    chosen = fork_stage(is_greenfield)
    return [
        spec.name for spec in PIPELINE
        if spec.group != FORK_GROUP or spec.name == chosen
    ]


def is_qa_stage(name: str) -> bool:
    return require_stage(name).group == "quality"


def is_agent_allowed_in_phase(name: str, phase: Phase | str) -> bool:
    """Check whether a stage may run in the given phase.

    Unknown names are simply not allowed.
    """
    spec = _BY_NAME.get(name)
    return spec is not None and spec.phase == Phase(phase)


def get_parallel_groups(completed_stages: Iterable[str] = ()) -> list[list[str]]:
    """Groups of stages that can run together and still have work left.

    Args:
        completed_stages: Stages already done

    Returns:
        One list of incomplete stage names per parallel group
    """
    done = set(completed_stages)
    groups: list[list[str]] = []
    seen: set[str] = set()

    for spec in PIPELINE:
        if not spec.parallel or spec.group in seen:
            continue
        seen.add(spec.group)
        remaining = [name for name in get_group_members(spec.group) if name not in done]
        if remaining:
            groups.append(remaining)

    return groups


# =============================================================================
# Selection
# =============================================================================

def get_next_agent(
    stage: str,
    completed_stages: Iterable[str] = (),
    skipped_stages: Iterable[str] = (),
) -> NextAgent:
    """Find the stage after `stage` that still needs to run.

    Walks strictly forward, passing over the work-understanding fork and
    anything already completed or skipped.

    Raises:
        UnknownStageError: If `stage` is not in the pipeline
    """
    start = stage_index(stage)
    done = set(completed_stages) | set(skipped_stages)

    for spec in PIPELINE[start + 1:]:
        if spec.group == FORK_GROUP or spec.name in done:
            continue
        return NextAgent(
            next=spec.name,
            is_parallel=spec.parallel,
            group=get_group_members(spec.group) if spec.parallel else [],
        )

    return NextAgent(next=None)


def select_agent(
    intent: IntentType | str,
    phase: Phase | str,
    current_stage: Optional[str] = None,
    completed_stages: Iterable[str] = (),
    is_greenfield: bool = True,
    skipped_stages: Iterable[str] = (),
) -> AgentSelection:
    """Select the stage that should act for a classified intent.

    Args:
        intent: Classified intent
        phase: Current pipeline phase
        current_stage: Stage currently active, if any
        completed_stages: Stages already completed
        is_greenfield: Project flavor (decides the fork stage)
        skipped_stages: Stages dropped by a skip deviation

    Returns:
        AgentSelection (agent is None when the phase has nothing left)
    """
    intent = IntentType(intent)
    phase = Phase(phase)
    completed = list(completed_stages)
    skipped = list(skipped_stages)

    if intent == IntentType.RESUME and current_stage:
        next_info = get_next_agent(current_stage, completed, skipped)
        if next_info.next:
            return AgentSelection(
                agent=next_info.next,
                reason=f"Resuming after {current_stage}",
                parallel_group=next_info.group if next_info.is_parallel else None,
            )

    if not completed and not skipped:
        start = fork_stage(is_greenfield)
        flavor = "greenfield" if is_greenfield else "brownfield"

        if intent == IntentType.PLANNING:
            return AgentSelection(start, f"Starting {flavor} project")

        # Direct entry without planning
        if intent == IntentType.IMPLEMENTATION and phase == Phase.BUILD:
            return AgentSelection("dev", "Direct implementation request")

        if intent == IntentType.DEPLOY and phase == Phase.DEPLOY:
            return AgentSelection("devops", "Direct deployment request")

        return AgentSelection(start, "Starting from beginning of pipeline")

    done = set(completed) | set(skipped)
    for spec in get_phase_stages(phase):
        if spec.group == FORK_GROUP:
            if spec.name != fork_stage(is_greenfield) or spec.name in done:
                continue
            return AgentSelection(spec.name, f"Next incomplete agent in {phase.value} phase")

        if spec.name in done:
            continue

        return AgentSelection(
            agent=spec.name,
            reason=f"Next incomplete agent in {phase.value} phase",
            parallel_group=get_group_members(spec.group) if spec.parallel else None,
        )

    return AgentSelection(None, f"No incomplete agents in {phase.value} phase: phase complete")
