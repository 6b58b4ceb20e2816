"""Tests for deviation detection, impact analysis and application."""

import pytest

from agent_pipeline.agent_selector import select_agent
from agent_pipeline.deviation_handler import (
    analyze_deviation_impact,
    apply_deviation,
    detect_deviation,
    extract_target_stage,
    get_deviation_history,
    keyword_matches,
)
from agent_pipeline.errors import UnknownStageError
from agent_pipeline.models import AgentStatus, BacklogEntry, DeviationType, Phase, Session
from agent_pipeline.pipeline_manager import advance_pipeline, init_pipeline


PLANNING_WORK = ["greenfield-wu", "brief", "detail", "architect", "ux", "phases", "tasks"]


def complete_stages(session: Session, names, scores=None) -> Session:
    scores = scores or {}
    for name in names:
        results = {"score": scores[name]} if name in scores else {}
        session = advance_pipeline(session, name, results).session
    return session


@pytest.fixture
def session() -> Session:
    return init_pipeline()


@pytest.fixture
def in_build(session: Session) -> Session:
    return complete_stages(session, PLANNING_WORK + ["qa-planning"], {"qa-planning": 96})


# =============================================================================
# Detection
# =============================================================================

class TestDetectDeviation:
    """Tests for detect_deviation."""

    def test_go_back_to_brief(self):
        result = detect_deviation("Let's go back to the brief stage", None)

        assert result.is_deviation
        assert result.type == DeviationType.ROLLBACK
        assert result.confidence > 0
        assert result.target_stage == "brief"

    def test_skip(self):
        result = detect_deviation("We can skip the ux stage")

        assert result.type == DeviationType.SKIP
        assert result.target_stage == "ux"
        assert result.confidence == pytest.approx(1 / 3)

    def test_restart(self):
        result = detect_deviation("Honestly we should start over from scratch")
        assert result.type == DeviationType.RESTART
        assert result.confidence == pytest.approx(2 / 3)

    def test_scope_change(self):
        result = detect_deviation("Can you also add a search feature")
        assert result.type == DeviationType.SCOPE_CHANGE
        assert result.target_stage is None

    def test_priority_change(self):
        result = detect_deviation("Payments are more important, prioritize them")
        assert result.type == DeviationType.PRIORITY_CHANGE

    def test_no_deviation(self):
        result = detect_deviation("Please continue with the next stage")

        assert not result.is_deviation
        assert result.type == DeviationType.NONE
        assert result.confidence == 0.0

    def test_confidence_caps_at_one(self):
        result = detect_deviation("start over, from scratch, begin again, fresh start")
        assert result.confidence == 1.0

    def test_ties_go_to_most_disruptive(self):
        result = detect_deviation("skip the tests and go back")

        assert result.scores[DeviationType.SKIP] == result.scores[DeviationType.ROLLBACK] == 1
        assert result.type == DeviationType.ROLLBACK


class TestKeywordMatching:
    """Tests for keyword_matches and extract_target_stage."""

    def test_words_match_at_word_start(self):
        assert keyword_matches("go back", "go right back")
        assert keyword_matches("remove", "it should be removed")
        assert not keyword_matches("include", "let's conclude")

    def test_stage_names_and_aliases(self):
        assert extract_target_stage("redo the qa planning") == "qa-planning"
        assert extract_target_stage("review the architecture again") == "architect"
        assert extract_target_stage("nothing relevant") is None

    def test_earliest_mention_wins(self):
        assert extract_target_stage("after dev, back to brief") == "dev"

    def test_development_is_not_dev_prefix(self):
        assert extract_target_stage("the development work") == "dev"
        assert extract_target_stage("devops rollout") == "devops"

    def test_work_understanding_follows_project_type(self):
        brownfield = init_pipeline(is_greenfield=False)

        assert extract_target_stage("redo work understanding") == "greenfield-wu"
        assert extract_target_stage("redo work understanding", brownfield) == "brownfield-wu"


# =============================================================================
# Impact
# =============================================================================

class TestAnalyzeImpact:
    """Tests for analyze_deviation_impact."""

    def test_rollback_without_target(self, session: Session):
        impact = analyze_deviation_impact(DeviationType.ROLLBACK, session)

        assert impact.impact == "high"
        assert impact.requires_confirmation
        assert impact.recommendation == "Target stage for rollback must be specified"

    def test_rollback_affects_started_later_stages(self, session: Session):
        session = complete_stages(session, ["greenfield-wu", "brief", "detail"])
        impact = analyze_deviation_impact("rollback", session, {"target_stage": "brief"})

        # architect is in progress after detail completes
        assert impact.affected_agents == ["detail", "architect"]
        assert impact.impact == "high"

    def test_restart(self, session: Session):
        session = complete_stages(session, ["greenfield-wu", "brief"])
        impact = analyze_deviation_impact(DeviationType.RESTART, session)

        assert impact.impact == "high"
        assert impact.requires_confirmation
        assert impact.affected_agents == ["greenfield-wu", "brief"]

    def test_skip_named_stage(self, session: Session):
        impact = analyze_deviation_impact(DeviationType.SKIP, session, {"stage": "ux"})

        assert impact.impact == "medium"
        assert impact.requires_confirmation
        assert impact.affected_agents == ["ux"]

    def test_skip_defaults_to_upcoming_stage(self, session: Session):
        session = complete_stages(session, ["greenfield-wu"])
        impact = analyze_deviation_impact(DeviationType.SKIP, session)
        assert impact.affected_agents == ["detail"]

    def test_scope_change_early_is_low(self, session: Session):
        impact = analyze_deviation_impact(DeviationType.SCOPE_CHANGE, session)

        assert impact.impact == "low"
        assert not impact.requires_confirmation
        assert impact.affected_agents == []

    def test_scope_change_after_detail_needs_revalidation(self, session: Session):
        session = complete_stages(session, ["greenfield-wu", "brief", "detail"])
        impact = analyze_deviation_impact(DeviationType.SCOPE_CHANGE, session)

        assert impact.impact == "medium"
        assert impact.requires_confirmation
        assert impact.affected_agents == ["architect", "phases", "tasks"]

    def test_priority_change(self, session: Session):
        small = analyze_deviation_impact(
            DeviationType.PRIORITY_CHANGE, session, {"affected_stages": ["dev"]}
        )
        large = analyze_deviation_impact(
            DeviationType.PRIORITY_CHANGE, session, {"affected_stages": ["detail", "architect", "ux"]}
        )

        assert small.impact == "low" and not small.requires_confirmation
        assert large.impact == "medium" and large.requires_confirmation

    def test_unknown_rollback_target(self, session: Session):
        with pytest.raises(UnknownStageError):
            analyze_deviation_impact(DeviationType.ROLLBACK, session, {"target_stage": "marketing"})


# =============================================================================
# Application
# =============================================================================

class TestApplyDeviation:
    """Tests for apply_deviation."""

    def test_scope_change_adds_backlog_entries(self, session: Session):
        before = {name: state.status for name, state in session.agents.items()}
        outcome = apply_deviation(
            session,
            DeviationType.SCOPE_CHANGE,
            {"added_features": ["Search"], "removed_features": ["Export to PDF"]},
        )

        assert outcome.applied
        assert [(b.type, b.description) for b in outcome.session.backlog] == [
            ("feature", "Search"),
            ("feature_removal", "Export to PDF"),
        ]
        assert {n: s.status for n, s in outcome.session.agents.items()} == before
        assert outcome.changes == ["Added feature: Search", "Removed feature: Export to PDF"]
        assert len(outcome.session.deviations) == 1

    def test_empty_scope_change_is_not_applied(self, session: Session):
        outcome = apply_deviation(session, DeviationType.SCOPE_CHANGE, {})

        assert not outcome.applied
        assert outcome.session is session
        assert session.deviations == []

    def test_priority_change(self, session: Session):
        outcome = apply_deviation(
            session, DeviationType.PRIORITY_CHANGE, {"description": "Payments before search"}
        )

        assert outcome.applied
        assert outcome.session.backlog[-1].type == "priority_change"
        assert outcome.session.backlog[-1].description == "Payments before search"

    def test_rollback_from_build(self, in_build: Session):
        outcome = apply_deviation(in_build, DeviationType.ROLLBACK, {"target_stage": "brief"})
        session = outcome.session

        assert outcome.applied
        assert session.phase == Phase.PLANNING
        assert session.current_agent == "brief"
        assert session.agents["brief"].status == AgentStatus.IN_PROGRESS
        assert session.completed_agents == ["greenfield-wu"]
        assert session.mode_transitions[-1].trigger == "deviation"
        assert session.mode_transitions[-1].to_phase == Phase.PLANNING
        assert outcome.changes[-1] == "Rolled back to: brief"
        assert "Reset agent: dev" in outcome.changes
        assert session.deviations[-1].type == DeviationType.ROLLBACK

    def test_rollback_without_target(self, session: Session):
        outcome = apply_deviation(session, DeviationType.ROLLBACK, {})

        assert not outcome.applied
        assert outcome.session.deviations == []

    def test_skip_current_stage_moves_on(self, session: Session):
        session = complete_stages(session, ["greenfield-wu"])
        assert session.current_agent == "brief"

        outcome = apply_deviation(session, DeviationType.SKIP, {"stage": "brief"})
        updated = outcome.session

        assert updated.agents["brief"].status == AgentStatus.SKIPPED
        assert updated.current_agent == "detail"
        assert updated.agents["detail"].status == AgentStatus.IN_PROGRESS
        assert updated.history[-1].action == "skipped"
        assert "Current agent moved to: detail" in outcome.changes

    def test_skip_completed_stage_removes_it_from_completed(self, session: Session):
        session = complete_stages(session, ["greenfield-wu", "brief"])
        outcome = apply_deviation(session, DeviationType.SKIP, {"target_stage": "brief"})

        assert outcome.session.completed_agents == ["greenfield-wu"]
        assert outcome.session.skipped_agents == ["brief"]

    def test_skip_unknown_stage(self, session: Session):
        with pytest.raises(UnknownStageError):
            apply_deviation(session, DeviationType.SKIP, {"stage": "brownfield-wu"})

    def test_restart(self, session: Session):
        session = complete_stages(session, ["greenfield-wu", "brief"])
        session.backlog.append(BacklogEntry(type="feature", description="Search"))

        outcome = apply_deviation(session, DeviationType.RESTART, {})
        updated = outcome.session

        assert outcome.applied
        assert updated.completed_agents == []
        assert updated.backlog == []
        assert updated.current_agent == ""
        assert all(s.status == AgentStatus.PENDING for s in updated.agents.values())
        assert updated.phase == Phase.PLANNING
        assert updated.history[-1].agent == "pipeline"
        assert updated.history[-1].action == "restart"
        assert get_deviation_history(updated)[-1].type == DeviationType.RESTART

    def test_restart_from_deploy_records_phase_change(self, in_build: Session):
        session = complete_stages(in_build, ["dev", "qa-implementation"], {"qa-implementation": 95})
        assert session.phase == Phase.DEPLOY

        updated = apply_deviation(session, DeviationType.RESTART).session

        assert updated.phase == Phase.PLANNING
        assert updated.mode_transitions[-1].from_phase == Phase.DEPLOY
        assert updated.mode_transitions[-1].trigger == "deviation"

    def test_input_session_untouched(self, session: Session):
        session = complete_stages(session, ["greenfield-wu", "brief"])
        apply_deviation(session, DeviationType.RESTART)

        assert session.completed_agents == ["greenfield-wu", "brief"]
        assert session.deviations == []

    def test_deviation_log_is_append_only(self, session: Session):
        session = apply_deviation(session, DeviationType.PRIORITY_CHANGE, {"description": "a"}).session
        first = session.deviations[0]
        session = apply_deviation(session, DeviationType.SCOPE_CHANGE, {"added_features": ["b"]}).session

        assert [d.type for d in session.deviations] == [
            DeviationType.PRIORITY_CHANGE,
            DeviationType.SCOPE_CHANGE,
        ]
        assert session.deviations[0] == first

    def test_selection_after_skipping_the_fork(self, session: Session):
        updated = apply_deviation(session, DeviationType.SKIP, {"stage": "greenfield-wu"}).session

        selection = select_agent(
            "resume",
            updated.phase,
            updated.current_agent,
            updated.completed_agents,
            skipped_stages=updated.skipped_agents,
        )

        assert selection.agent == "brief"
        assert updated.agents[selection.agent].status == AgentStatus.PENDING
