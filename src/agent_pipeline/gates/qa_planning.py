"""G2: QA planning (post-qa-planning).

Checks the QA-planning output: a test strategy, a coverage plan and a risk
assessment, plus a passing handoff with no unmet criteria.
"""

from typing import Any, Iterable

from .base import EvidenceSource, Evaluation, GateBase, handoff_evidence, has_critical


QA_PLANNING_DIRS = ("qa-planning",)


def _classify_names(names: Iterable[str]) -> dict[str, bool]:
    found = {"test_strategy": False, "coverage_plan": False, "risk_assessment": False}
    for name in names:
        lower = name.lower()
        if "strategy" in lower or "test-plan" in lower:
            found["test_strategy"] = True
        if "coverage" in lower:
            found["coverage_plan"] = True
        if "risk" in lower:
            found["risk_assessment"] = True
    return found


class QAPlanningGate(GateBase):
    id = "g2-qa-planning"
    name = "QA Planning"
    pipeline_point = "post-qa-planning"
    stage = "qa-planning"
    primary_handoff = "qa-planning"
    CRITERIA = (
        "Test strategy document exists",
        "Coverage plan exists",
        "Risk assessment documented",
        "QA-Planning handoff with score >= threshold",
        "All QA-Planning criteria met",
    )

    def collect_evidence(self, source: EvidenceSource) -> dict[str, Any]:
        handoff = source.require_handoff(self.primary_handoff)

        names = list(handoff.outputs)
        for dirname in QA_PLANNING_DIRS:
            path = source.artifacts_dir / dirname
            if path.is_dir():
                names.extend(p.name for p in path.iterdir())

        return {
            **_classify_names(names),
            "qa_planning_handoff": handoff_evidence(handoff),
        }

    def score_evidence(self, evidence: dict[str, Any]) -> Evaluation:
        result = Evaluation(criteria=list(self.CRITERIA))
        result.check("Test strategy document exists", evidence["test_strategy"], "No test strategy found")
        result.check("Coverage plan exists", evidence["coverage_plan"], "No coverage plan found")
        result.check("Risk assessment documented", evidence["risk_assessment"], "No risk assessment found")

        handoff = evidence["qa_planning_handoff"]
        threshold = self.config.qa_planning_threshold
        score = handoff["score"] or 0
        result.check(
            "QA-Planning handoff with score >= threshold",
            score >= threshold,
            f"QA-Planning score: {score:g} (need >= {threshold:g})",
        )
        unmet = handoff["criteria_unmet"]
        result.check("All QA-Planning criteria met", not unmet, f"{len(unmet)} unmet criteria")
        result.critical_blocker = has_critical(handoff["blockers"])

        return result
