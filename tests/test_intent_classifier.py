"""Tests for intent classification."""

import pytest

from agent_pipeline.intent_classifier import (
    IntentType,
    check_phase_alignment,
    classify_intent,
    get_intent_phase,
    keyword_pattern,
)
from agent_pipeline.models import Phase


class TestClassifyIntent:
    """Tests for classify_intent."""

    def test_planning_message(self):
        result = classify_intent("Let's plan the architecture")

        assert result.intent == IntentType.PLANNING
        assert result.confidence == 1.0
        assert result.matched_keywords == ["plan", "architecture"]

    def test_empty_message_defaults_to_question(self):
        result = classify_intent("")

        assert result.intent == IntentType.QUESTION
        assert result.confidence == 0.5
        assert result.matched_keywords == []
        assert "defaulting to question" in result.reasoning

    def test_status_message(self):
        result = classify_intent("Show me the progress report")
        assert result.intent == IntentType.STATUS

    def test_tie_keeps_first_declared_intent(self):
        # plan (planning) and build (implementation) both score 3
        result = classify_intent("plan and build")

        assert result.scores[IntentType.PLANNING] == result.scores[IntentType.IMPLEMENTATION]
        assert result.intent == IntentType.PLANNING
        assert result.confidence == pytest.approx(0.5)

    def test_phase_boost_breaks_tie(self):
        result = classify_intent("plan and build", phase=Phase.BUILD)

        assert result.intent == IntentType.IMPLEMENTATION
        assert result.scores[IntentType.IMPLEMENTATION] == pytest.approx(4.5)
        assert result.scores[IntentType.PLANNING] == pytest.approx(1.5)

    def test_phase_accepts_string(self):
        result = classify_intent("implement the login form", phase="build")
        assert result.intent == IntentType.IMPLEMENTATION

    def test_keywords_match_at_word_start_only(self):
        result = classify_intent("review the specification")

        # "ci" must not fire inside "specification"
        assert result.scores[IntentType.DEPLOY] == 0
        assert result.intent == IntentType.PLANNING

    def test_keyword_prefix_matches_longer_word(self):
        result = classify_intent("run the testing suite")

        assert result.intent == IntentType.REVIEW
        assert "test" in result.matched_keywords

    def test_reasoning_mentions_phase_and_stage(self):
        result = classify_intent("deploy it", phase=Phase.DEPLOY, current_stage="devops")

        assert result.intent == IntentType.DEPLOY
        assert "Current phase: deploy" in result.reasoning
        assert "Current stage: devops" in result.reasoning

    def test_case_insensitive(self):
        assert classify_intent("DEPLOY TO PRODUCTION").intent == IntentType.DEPLOY


class TestKeywordPattern:
    """Tests for keyword_pattern."""

    def test_multi_word_keyword(self):
        pattern = keyword_pattern("pick up")
        assert pattern.search("let's pick up where we stopped")
        assert not pattern.search("pickup truck")

    def test_special_characters_are_escaped(self):
        assert keyword_pattern("c++").search("some c++ code")


class TestPhaseAlignment:
    """Tests for get_intent_phase and check_phase_alignment."""

    def test_intent_phase(self):
        assert get_intent_phase(IntentType.REVIEW) == Phase.BUILD
        assert get_intent_phase("deploy") == Phase.DEPLOY
        assert get_intent_phase(IntentType.STATUS) is None

    def test_forward_transition(self):
        alignment = check_phase_alignment(IntentType.IMPLEMENTATION, Phase.PLANNING)

        assert alignment.needs_change
        assert alignment.target_phase == Phase.BUILD
        assert "forward" in alignment.reason

    def test_backward_transition_needs_deviation(self):
        alignment = check_phase_alignment(IntentType.PLANNING, Phase.BUILD)

        assert alignment.needs_change
        assert alignment.target_phase == Phase.PLANNING
        assert "deviation protocol" in alignment.reason

    def test_same_phase(self):
        alignment = check_phase_alignment(IntentType.PLANNING, "planning")
        assert not alignment.needs_change
        assert alignment.reason == "Already in the correct phase"

    def test_phaseless_intent(self):
        alignment = check_phase_alignment(IntentType.HELP, Phase.DEPLOY)
        assert not alignment.needs_change
        assert alignment.target_phase is None
