"""G4: QA implementation (post-qa-impl).

The strictest checkpoint: every test criterion met, no open blockers,
performance and security reports present and a high QA score. A blocker
tagged critical fails the gate regardless of the score.
"""

from typing import Any

from .base import EvidenceSource, Evaluation, GateBase, handoff_evidence, has_critical


class QAImplementationGate(GateBase):
    id = "g4-qa-implementation"
    name = "QA Implementation"
    pipeline_point = "post-qa-impl"
    stage = "qa-implementation"
    primary_handoff = "qa-implementation"
    CRITERIA = (
        "QA-Implementation handoff exists",
        "All test criteria met",
        "No open blockers",
        "Performance benchmarks met",
        "Security scan clean",
        "QA-Implementation score >= threshold",
    )

    def collect_evidence(self, source: EvidenceSource) -> dict[str, Any]:
        handoff = source.require_handoff(self.primary_handoff)
        root = source.project_dir

        return {
            "qa_impl_handoff": handoff_evidence(handoff),
            "performance_report": source.any_exists(
                source.artifacts_dir / "performance-report.md",
                root / ".performance-benchmark",
            ),
            "security_report": source.any_exists(
                source.artifacts_dir / "security-report.md",
                root / ".security-scan",
            ),
        }

    def score_evidence(self, evidence: dict[str, Any]) -> Evaluation:
        result = Evaluation(criteria=list(self.CRITERIA))
        handoff = evidence.get("qa_impl_handoff")

        result.check(
            "QA-Implementation handoff exists",
            handoff is not None,
            "No QA-Implementation handoff recorded",
        )

        blockers: list[str] = []
        score = 0
        if handoff is not None:
            unmet = handoff["criteria_unmet"]
            result.check("All test criteria met", not unmet, f"{len(unmet)} test criteria unmet")

            blockers = handoff["blockers"]
            result.check("No open blockers", not blockers, f"{len(blockers)} blocker(s) remain open")
            score = handoff["score"] or 0

        result.check(
            "Performance benchmarks met",
            evidence["performance_report"],
            "Performance benchmarks not defined",
        )
        result.check("Security scan clean", evidence["security_report"], "Security scan not found")

        threshold = self.config.gate_pass_threshold
        result.check(
            "QA-Implementation score >= threshold",
            score >= threshold,
            f"QA-Impl score: {score:g} (need >= {threshold:g})",
        )

        result.critical_blocker = has_critical(blockers)
        if result.critical_blocker:
            result.warnings.append("Critical bugs remain open")

        return result
