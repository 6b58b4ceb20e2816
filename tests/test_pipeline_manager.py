"""Tests for the phase state machine."""

from typing import Optional

import pytest

from agent_pipeline.deviation_handler import apply_deviation
from agent_pipeline.errors import UnknownStageError
from agent_pipeline.models import (
    PHASE_ORDER,
    AgentStatus,
    DeviationType,
    Phase,
    PipelineConfig,
    ProjectType,
    Session,
)
from agent_pipeline.pipeline_manager import (
    NextAction,
    advance_pipeline,
    check_phase_transition,
    get_pipeline_progress,
    init_pipeline,
    is_pipeline_complete,
    mark_agent_in_progress,
    reset_pipeline_to,
)


PLANNING_WORK = ["greenfield-wu", "brief", "detail", "architect", "ux", "phases", "tasks"]


def complete_stages(session: Session, names: list[str], scores: Optional[dict] = None) -> Session:
    scores = scores or {}
    for name in names:
        results = {"score": scores[name]} if name in scores else {}
        session = advance_pipeline(session, name, results).session
    return session


@pytest.fixture
def session() -> Session:
    return init_pipeline()


@pytest.fixture
def planned(session: Session) -> Session:
    """Session with everything up to qa-planning completed."""
    return complete_stages(session, PLANNING_WORK)


# =============================================================================
# Initialization and stage activation
# =============================================================================

class TestInitPipeline:
    """Tests for init_pipeline."""

    def test_greenfield(self, session: Session):
        assert session.phase == Phase.PLANNING
        assert session.project_type == ProjectType.GREENFIELD
        assert len(session.agents) == 11
        assert "greenfield-wu" in session.agents
        assert "brownfield-wu" not in session.agents
        assert all(s.status == AgentStatus.PENDING for s in session.agents.values())
        assert session.completed_agents == []
        assert session.current_agent == ""

    def test_brownfield(self):
        session = init_pipeline(is_greenfield=False)
        assert session.project_type == ProjectType.BROWNFIELD
        assert "brownfield-wu" in session.agents
        assert "greenfield-wu" not in session.agents

    def test_custom_starting_phase(self):
        assert init_pipeline(phase="build").phase == Phase.BUILD


class TestMarkAgentInProgress:
    """Tests for mark_agent_in_progress."""

    def test_returns_updated_copy(self, session: Session):
        updated = mark_agent_in_progress(session, "greenfield-wu")

        assert updated.agents["greenfield-wu"].status == AgentStatus.IN_PROGRESS
        assert updated.agents["greenfield-wu"].started_at is not None
        assert updated.current_agent == "greenfield-wu"
        assert session.agents["greenfield-wu"].status == AgentStatus.PENDING
        assert session.current_agent == ""

    def test_only_one_stage_in_progress(self, session: Session):
        updated = mark_agent_in_progress(session, "brief")
        updated = mark_agent_in_progress(updated, "detail")

        assert updated.agents_with_status(AgentStatus.IN_PROGRESS) == ["detail"]
        assert updated.agents["brief"].status == AgentStatus.PENDING

    def test_unknown_stage(self, session: Session):
        with pytest.raises(UnknownStageError):
            mark_agent_in_progress(session, "marketing")

    def test_other_fork_stage_is_not_in_session(self, session: Session):
        with pytest.raises(UnknownStageError):
            mark_agent_in_progress(session, "brownfield-wu")


# =============================================================================
# Advancing
# =============================================================================

class TestAdvancePipeline:
    """Tests for advance_pipeline."""

    def test_continue_to_next_stage(self, session: Session):
        result = advance_pipeline(session, "greenfield-wu", {"score": 100})

        assert result.next_action == NextAction.CONTINUE
        assert result.next_agent == "brief"
        assert result.session.current_agent == "brief"
        assert result.session.agents["brief"].status == AgentStatus.IN_PROGRESS
        assert result.session.agents["greenfield-wu"].status == AgentStatus.COMPLETED
        assert result.session.agents["greenfield-wu"].score == 100
        assert result.session.history[-1].action == "completed"

    def test_does_not_modify_input(self, session: Session):
        advance_pipeline(session, "greenfield-wu")
        assert session.completed_agents == []
        assert session.agents["greenfield-wu"].status == AgentStatus.PENDING

    def test_completed_agents_kept_in_pipeline_order(self, session: Session):
        session = complete_stages(session, ["ux", "brief", "greenfield-wu", "detail"])
        assert session.completed_agents == ["greenfield-wu", "brief", "detail", "ux"]

    def test_completing_twice_does_not_duplicate(self, session: Session):
        session = complete_stages(session, ["brief", "brief"])

        assert session.completed_agents == ["brief"]
        assert [h.agent for h in session.history] == ["brief", "brief"]

    def test_unknown_stage(self, session: Session):
        with pytest.raises(UnknownStageError):
            advance_pipeline(session, "marketing")

    def test_qa_planning_below_threshold_waits(self, planned: Session):
        result = advance_pipeline(planned, "qa-planning", {"score": 90})

        assert result.next_action == NextAction.WAIT
        assert result.session.phase == Phase.PLANNING
        assert result.session.mode_transitions == []

        check = check_phase_transition(result.session)
        assert not check.can_advance
        assert check.required_score == 95
        assert check.reason == "QA-Planning score 90 below threshold 95"

    def test_qa_planning_passing_advances_to_build(self, planned: Session):
        result = advance_pipeline(planned, "qa-planning", {"score": 96})

        assert check_phase_transition(result.session.model_copy(update={"phase": Phase.PLANNING})).can_advance
        assert result.next_action == NextAction.ADVANCE_PHASE
        assert result.needs_phase_switch
        assert result.next_agent == "dev"
        assert result.session.phase == Phase.BUILD
        assert result.session.current_agent == "dev"
        assert result.session.agents["dev"].status == AgentStatus.IN_PROGRESS

        transition = result.session.mode_transitions[-1]
        assert transition.from_phase == Phase.PLANNING
        assert transition.to_phase == Phase.BUILD
        assert transition.trigger == "autonomous"

    def test_rerun_qa_after_wait(self, planned: Session):
        waiting = advance_pipeline(planned, "qa-planning", {"score": 90}).session
        result = advance_pipeline(waiting, "qa-planning", {"score": 96})

        assert result.next_action == NextAction.ADVANCE_PHASE
        assert result.session.agents["qa-planning"].score == 96

    def test_custom_threshold(self, planned: Session):
        config = PipelineConfig(qa_planning_threshold=85)
        result = advance_pipeline(planned, "qa-planning", {"score": 90}, config)
        assert result.next_action == NextAction.ADVANCE_PHASE

    def test_qa_implementation_below_threshold(self, planned: Session):
        session = complete_stages(planned, ["qa-planning", "dev"], {"qa-planning": 96})
        result = advance_pipeline(session, "qa-implementation", {"score": 85})

        assert result.next_action == NextAction.WAIT
        assert result.session.phase == Phase.BUILD
        assert "below threshold 90" in check_phase_transition(result.session).reason

    def test_full_run_is_monotonic_and_completes(self, session: Session):
        stages = PLANNING_WORK + ["qa-planning", "dev", "qa-implementation", "devops"]
        scores = {"qa-planning": 96, "qa-implementation": 92}
        phase_index = 0
        result = None

        for name in stages:
            results = {"score": scores[name]} if name in scores else {}
            result = advance_pipeline(session, name, results)
            session = result.session
            new_index = PHASE_ORDER.index(session.phase)
            assert new_index >= phase_index
            phase_index = new_index

        assert result.next_action == NextAction.COMPLETE
        assert session.phase == Phase.DEPLOY
        assert session.completed_at is not None
        assert session.current_agent == ""
        assert is_pipeline_complete(session)
        assert [t.to_phase for t in session.mode_transitions] == [Phase.BUILD, Phase.DEPLOY]

    def test_wait_when_nothing_left_in_order(self, session: Session):
        # devops done out of order while still in planning
        result = advance_pipeline(session, "devops")
        assert result.next_action == NextAction.WAIT
        assert result.session.phase == Phase.PLANNING


class TestCheckPhaseTransition:
    """Tests for check_phase_transition."""

    def test_planning_not_completed(self, session: Session):
        check = check_phase_transition(session)
        assert not check.can_advance
        assert check.reason == "QA-Planning not yet completed"
        assert check.required_score == 95

    def test_build_needs_dev(self, session: Session):
        session = session.model_copy(update={"phase": Phase.BUILD})
        check = check_phase_transition(session)
        assert check.reason == "Dev agent not yet completed"

    def test_deploy(self, session: Session):
        session = session.model_copy(update={"phase": Phase.DEPLOY})
        assert not check_phase_transition(session).can_advance

        session = complete_stages(session, ["devops"])
        assert session.completed_at is not None

    def test_skipped_qa_planning_blocks_transition(self, session: Session):
        session = apply_deviation(session, DeviationType.SKIP, {"stage": "qa-planning"}).session
        check = check_phase_transition(session)

        assert not check.can_advance
        assert check.reason == "Phase cannot advance: QA-Planning skipped"


# =============================================================================
# Skipped stages
# =============================================================================

class TestSkippedStages:
    """Tests for advancing around stages dropped by a skip deviation."""

    def test_skipped_stage_inside_phase_is_passed_over(self, session: Session):
        session = apply_deviation(session, DeviationType.SKIP, {"stage": "ux"}).session
        session = complete_stages(session, ["greenfield-wu", "brief", "detail"])

        result = advance_pipeline(session, "architect")

        assert result.next_action == NextAction.CONTINUE
        assert result.next_agent == "phases"

    def test_skipped_qa_planning_keeps_build_closed(self, session: Session):
        session = apply_deviation(session, DeviationType.SKIP, {"stage": "qa-planning"}).session
        session = complete_stages(session, PLANNING_WORK[:-1])

        result = advance_pipeline(session, "tasks")
        updated = result.session

        assert result.next_action == NextAction.WAIT
        assert result.next_agent is None
        assert result.reason == "Phase cannot advance: QA-Planning skipped"
        assert updated.phase == Phase.PLANNING
        assert updated.current_agent == ""
        assert updated.agents["dev"].status == AgentStatus.PENDING

    def test_skipped_qa_implementation_keeps_deploy_closed(self, planned: Session):
        session = complete_stages(planned, ["qa-planning"], {"qa-planning": 96})
        session = apply_deviation(session, DeviationType.SKIP, {"stage": "qa-implementation"}).session

        result = advance_pipeline(session, "dev")

        assert result.next_action == NextAction.WAIT
        assert result.reason == "Phase cannot advance: QA-Implementation skipped"
        assert result.session.phase == Phase.BUILD
        assert result.session.agents["devops"].status == AgentStatus.PENDING

    def test_rollback_to_skipped_qa_reopens_the_phase(self, session: Session):
        session = apply_deviation(session, DeviationType.SKIP, {"stage": "qa-planning"}).session
        session = complete_stages(session, PLANNING_WORK)

        session = reset_pipeline_to(session, "qa-planning")
        result = advance_pipeline(session, "qa-planning", {"score": 97})

        assert result.next_action == NextAction.ADVANCE_PHASE
        assert result.session.phase == Phase.BUILD
        assert result.session.current_agent == "dev"


# =============================================================================
# Reset and progress
# =============================================================================

class TestResetPipelineTo:
    """Tests for reset_pipeline_to."""

    def test_reset_from_build_to_architect(self, planned: Session):
        session = complete_stages(planned, ["qa-planning"], {"qa-planning": 96})
        assert session.phase == Phase.BUILD

        reset = reset_pipeline_to(session, "architect")

        assert reset.phase == Phase.PLANNING
        assert reset.current_agent == "architect"
        assert reset.agents["architect"].status == AgentStatus.IN_PROGRESS
        assert reset.completed_agents == ["greenfield-wu", "brief", "detail"]
        for name in ("ux", "phases", "tasks", "qa-planning", "dev"):
            assert reset.agents[name].status == AgentStatus.PENDING
            assert reset.agents[name].score is None
        assert reset.agents["detail"].status == AgentStatus.COMPLETED
        assert reset.history[-1].action == "reset_to"
        assert reset.history[-1].agent == "architect"

    def test_reset_clears_completion(self, session: Session):
        stages = PLANNING_WORK + ["qa-planning", "dev", "qa-implementation", "devops"]
        session = complete_stages(session, stages, {"qa-planning": 96, "qa-implementation": 92})

        reset = reset_pipeline_to(session, "dev")

        assert reset.completed_at is None
        assert reset.phase == Phase.BUILD
        assert not is_pipeline_complete(reset)

    def test_reset_unknown_stage(self, session: Session):
        with pytest.raises(UnknownStageError):
            reset_pipeline_to(session, "marketing")


class TestPipelineProgress:
    """Tests for get_pipeline_progress."""

    def test_progress(self, session: Session):
        session = complete_stages(session, ["greenfield-wu"])
        progress = get_pipeline_progress(session)

        assert progress.phase == Phase.PLANNING
        assert progress.progress == 9
        assert progress.completed_agents == ["greenfield-wu"]
        assert progress.current_agent == "brief"
        assert progress.next_agent == "detail"

    def test_no_current_agent(self, session: Session):
        progress = get_pipeline_progress(session)
        assert progress.progress == 0
        assert progress.next_agent is None
