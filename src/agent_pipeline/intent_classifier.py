"""Intent classification for free-text user input.

Scores a message against weighted keyword tables to decide what the user
wants to do next, nudged by the phase the pipeline is currently in.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .models import PHASE_ORDER, Phase


class IntentType(str, Enum):
    """High-level intent categories, in tie-break order."""
    PLANNING = "planning"
    IMPLEMENTATION = "implementation"
    REVIEW = "review"
    DEPLOY = "deploy"
    QUESTION = "question"
    DEVIATION = "deviation"
    STATUS = "status"
    RESUME = "resume"
    HELP = "help"


# Weight per keyword tier
WEIGHTS = {
    "high": 3,
    "medium": 2,
    "low": 1,
}

# Keyword tiers for each intent
INTENT_KEYWORDS: dict[IntentType, dict[str, list[str]]] = {
    IntentType.PLANNING: {
        "high": ["plan", "design", "architecture", "structure", "requirements", "spec", "specification"],
        "medium": ["define", "outline", "organize", "prepare", "brief", "draft"],
        "low": ["think", "consider", "analyze", "brainstorm"],
    },
    IntentType.IMPLEMENTATION: {
        "high": ["implement", "build", "code", "create", "develop", "write"],
        "medium": ["fix", "add", "update", "change", "refactor", "modify"],
        "low": ["edit", "adjust", "tweak", "improve"],
    },
    IntentType.REVIEW: {
        "high": ["review", "test", "qa", "quality", "validate", "verify"],
        "medium": ["check", "inspect", "examine", "audit", "assess"],
        "low": ["look", "see", "confirm"],
    },
    IntentType.DEPLOY: {
        "high": ["deploy", "release", "publish", "ship", "launch"],
        "medium": ["ci", "cd", "pipeline", "production", "staging"],
        "low": ["push", "upload", "deliver"],
    },
    IntentType.QUESTION: {
        "high": ["what", "how", "why", "when", "where", "which", "who"],
        "medium": ["explain", "tell me", "show me", "help me understand"],
        "low": ["can you", "could you", "would you"],
    },
    IntentType.DEVIATION: {
        "high": ["change", "instead", "actually", "wait", "stop", "different"],
        "medium": ["switch", "modify", "adjust", "reconsider", "rethink"],
        "low": ["maybe", "perhaps", "alternatively"],
    },
    IntentType.STATUS: {
        "high": ["status", "progress", "dashboard", "summary", "report"],
        "medium": ["where", "how far", "current", "state"],
        "low": ["show", "display", "list"],
    },
    IntentType.RESUME: {
        "high": ["continue", "resume", "pick up", "carry on", "proceed", "where we left", "left off"],
        "medium": ["where was i", "where were we", "what next", "keep going"],
        "low": ["onwards"],
    },
    IntentType.HELP: {
        "high": ["help", "guide", "tutorial", "documentation", "docs"],
        "medium": ["how to", "what is", "explain", "confused"],
        "low": ["support", "assist", "info"],
    },
}

# Score multipliers applied while the pipeline is in a given phase
PHASE_BOOSTS: dict[Phase, dict[IntentType, float]] = {
    Phase.PLANNING: {
        IntentType.PLANNING: 1.5,
        IntentType.IMPLEMENTATION: 0.5,
    },
    Phase.BUILD: {
        IntentType.IMPLEMENTATION: 1.5,
        IntentType.REVIEW: 1.2,
        IntentType.PLANNING: 0.5,
    },
    Phase.DEPLOY: {
        IntentType.DEPLOY: 1.5,
        IntentType.IMPLEMENTATION: 0.5,
    },
}

# Phase each intent points at (None = no phase change implied)
INTENT_PHASES: dict[IntentType, Optional[Phase]] = {
    IntentType.PLANNING: Phase.PLANNING,
    IntentType.IMPLEMENTATION: Phase.BUILD,
    IntentType.REVIEW: Phase.BUILD,
    IntentType.DEPLOY: Phase.DEPLOY,
    IntentType.QUESTION: None,
    IntentType.DEVIATION: None,
    IntentType.STATUS: None,
    IntentType.RESUME: None,
    IntentType.HELP: None,
}

DEFAULT_INTENT = IntentType.QUESTION
DEFAULT_CONFIDENCE = 0.5


def keyword_pattern(keyword: str) -> re.Pattern:
    """Compile a keyword so it only matches at the start of a word.

    "ci" should fire on "ci/cd" but not inside "specification", while
    "test" still matches "tests" and "testing".
    """
    return re.compile(r"\b" + re.escape(keyword))


_PATTERNS: dict[str, re.Pattern] = {
    kw: keyword_pattern(kw)
    for tiers in INTENT_KEYWORDS.values()
    for keywords in tiers.values()
    for kw in keywords
}


@dataclass
class IntentResult:
    """Outcome of classifying one message."""
    intent: IntentType
    confidence: float
    matched_keywords: list[str] = field(default_factory=list)
    reasoning: str = ""
    scores: dict[IntentType, float] = field(default_factory=dict)


@dataclass
class PhaseAlignment:
    """Whether acting on an intent requires a phase change."""
    needs_change: bool
    target_phase: Optional[Phase]
    reason: str


def classify_intent(
    message: str,
    phase: Optional[Phase | str] = None,
    current_stage: Optional[str] = None,
) -> IntentResult:
    """Classify a user message into an intent category.

    Args:
        message: Raw user input
        phase: Current pipeline phase, used to boost/dampen categories
        current_stage: Currently active stage (only reported in reasoning)

    Returns:
        IntentResult with the winning intent and its confidence
    """
    text = (message or "").lower().strip()
    phase = Phase(phase) if phase else None

    scores: dict[IntentType, float] = {intent: 0.0 for intent in IntentType}
    matched: dict[IntentType, list[str]] = {intent: [] for intent in IntentType}

    for intent, tiers in INTENT_KEYWORDS.items():
        for tier, keywords in tiers.items():
            for keyword in keywords:
                if _PATTERNS[keyword].search(text):
                    scores[intent] += WEIGHTS[tier]
                    matched[intent].append(keyword)

    if phase is not None:
        for intent, multiplier in PHASE_BOOSTS.get(phase, {}).items():
            scores[intent] *= multiplier

    # Strict > keeps the first-declared intent on ties
    top_intent = DEFAULT_INTENT
    top_score = 0.0
    for intent in IntentType:
        if scores[intent] > top_score:
            top_score = scores[intent]
            top_intent = intent

    total = sum(scores.values())
    confidence = top_score / total if total > 0 else DEFAULT_CONFIDENCE

    return IntentResult(
        intent=top_intent,
        confidence=confidence,
        matched_keywords=matched[top_intent],
        reasoning=_build_reasoning(matched[top_intent], phase, current_stage),
        scores=scores,
    )


def _build_reasoning(
    keywords: list[str],
    phase: Optional[Phase],
    current_stage: Optional[str],
) -> str:
    parts = []
    if keywords:
        parts.append(f"Matched keywords: {', '.join(keywords)}")
    if phase is not None:
        parts.append(f"Current phase: {phase.value}")
    if current_stage:
        parts.append(f"Current stage: {current_stage}")
    if not parts:
        parts.append("No keywords matched; defaulting to question")
    return "; ".join(parts)


def get_intent_phase(intent: IntentType | str) -> Optional[Phase]:
    """Get the phase an intent points at, if any."""
    return INTENT_PHASES[IntentType(intent)]


def check_phase_alignment(intent: IntentType | str, current_phase: Phase | str) -> PhaseAlignment:
    """Check whether acting on an intent means leaving the current phase.

    Forward moves are ordinary phase transitions; backward moves have to go
    through the deviation protocol (rollback).
    """
    target = get_intent_phase(intent)
    current = Phase(current_phase)

    if target is None:
        return PhaseAlignment(False, None, "Intent does not require a phase change")

    if target == current:
        return PhaseAlignment(False, None, "Already in the correct phase")

    if PHASE_ORDER.index(target) > PHASE_ORDER.index(current):
        return PhaseAlignment(
            True, target, f"Intent requires {target.value} phase (forward transition)"
        )

    return PhaseAlignment(
        True, target,
        f"Intent requires {target.value} phase (backward transition - deviation protocol)"
    )
