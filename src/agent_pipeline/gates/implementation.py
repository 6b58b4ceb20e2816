"""G3: implementation quality (post-dev)."""

from typing import Any

from ..models import AgentStatus
from .base import EvidenceSource, Evaluation, GateBase, handoff_evidence, has_critical


SOURCE_EXTENSIONS = (
    ".py", ".js", ".ts", ".jsx", ".tsx", ".go", ".rs", ".java", ".rb", ".php",
)

# Minimum dev handoff score
DEV_SCORE_THRESHOLD = 90.0


def looks_like_source(path: str) -> bool:
    lower = path.lower()
    return "src/" in lower or lower.endswith(SOURCE_EXTENSIONS)


def looks_like_test(path: str) -> bool:
    lower = path.lower()
    return "test" in lower or ".spec." in lower


class ImplementationGate(GateBase):
    id = "g3-implementation"
    name = "Implementation Quality"
    pipeline_point = "post-dev"
    stage = "dev"
    primary_handoff = "dev"
    CRITERIA = (
        "All dev tasks completed",
        "Source files created",
        "Test files created alongside source",
        "Lint passes",
        "No security issues flagged",
        "Dev handoff score >= 90",
    )

    def collect_evidence(self, source: EvidenceSource) -> dict[str, Any]:
        handoff = source.require_handoff(self.primary_handoff)
        root = source.project_dir

        dev_status = AgentStatus.PENDING.value
        if source.session is not None and "dev" in source.session.agents:
            dev_status = source.session.agents["dev"].status.value

        source_files = any(looks_like_source(o) for o in handoff.outputs)
        if not source_files:
            source_files = source.has_content(root / "src")

        test_files = any(looks_like_test(o) for o in handoff.outputs)
        if not test_files:
            test_files = source.has_content(root / "tests") or source.has_content(root / "test")

        return {
            "dev_status": dev_status,
            "source_files": source_files,
            "test_files": test_files,
            "lint_result": (root / ".lint-result").exists(),
            "security_scan": source.any_exists(
                root / ".security-scan",
                source.artifacts_dir / "security-report.md",
            ),
            "dev_handoff": handoff_evidence(handoff),
        }

    def score_evidence(self, evidence: dict[str, Any]) -> Evaluation:
        result = Evaluation(criteria=list(self.CRITERIA))
        result.check(
            "All dev tasks completed",
            evidence["dev_status"] == AgentStatus.COMPLETED.value,
            f"Dev agent is {evidence['dev_status']}",
        )
        result.check("Source files created", evidence["source_files"], "No source files detected")
        result.check(
            "Test files created alongside source", evidence["test_files"], "No test files detected"
        )
        result.check("Lint passes", evidence["lint_result"], "Lint status unknown: no .lint-result found")
        result.check(
            "No security issues flagged",
            evidence["security_scan"],
            "Security scan not found: consider running a scan",
        )

        handoff = evidence["dev_handoff"]
        score = handoff["score"] or 0
        result.check(
            "Dev handoff score >= 90",
            score >= DEV_SCORE_THRESHOLD,
            f"Dev handoff score: {score:g} (need >= {DEV_SCORE_THRESHOLD:g})",
        )
        if handoff["blockers"]:
            result.warnings.append(f"{len(handoff['blockers'])} blocker(s) from dev")
        result.critical_blocker = has_critical(handoff["blockers"])

        return result
