"""G5: deploy ready (pre-deploy)."""

from typing import Any

from ..handoff_log import HandoffLog
from ..models import AgentStatus, HandoffStatus, Session
from .base import EvidenceSource, Evaluation, GateBase, has_critical


README_FILES = ("README.md", "readme.md")
CHANGELOG_FILES = ("CHANGELOG.md", "docs/CHANGELOG.md", "changelog.md", "CHANGES.md")


def _incomplete_stages(session: Session) -> list[str]:
    return [
        name for name, state in session.agents.items()
        if state.status not in (AgentStatus.COMPLETED, AgentStatus.SKIPPED)
    ]


def _open_blockers(session: Session, log: HandoffLog) -> list[str]:
    blockers = []
    for name in session.completed_agents:
        handoff = log.latest_for(name)
        if handoff is not None:
            blockers.extend(f"{name}: {b}" for b in handoff.blockers)
    return blockers


class DeployReadyGate(GateBase):
    id = "g5-deploy-ready"
    name = "Deploy Ready"
    pipeline_point = "pre-deploy"
    stage = "devops"
    primary_handoff = "qa-implementation"
    CRITERIA = (
        "QA-Implementation passed",
        "README updated",
        "CHANGELOG updated",
        "Release notes prepared",
        "All tasks completed",
        "No open blockers",
    )

    def collect_evidence(self, source: EvidenceSource) -> dict[str, Any]:
        qa_handoff = source.require_handoff(self.primary_handoff)
        root = source.project_dir

        incomplete: list[str] = []
        blockers: list[str] = []
        session = source.session
        if session is not None:
            # devops itself runs after this gate
            incomplete = [n for n in _incomplete_stages(session) if n != self.stage]
            blockers = _open_blockers(session, source.log)

        return {
            "qa_impl_score": qa_handoff.score,
            "qa_impl_status": qa_handoff.status.value,
            "readme": source.any_exists(*(root / name for name in README_FILES)),
            "changelog": source.any_exists(*(root / name for name in CHANGELOG_FILES)),
            "release_notes": source.any_exists(
                root / "RELEASE.md",
                source.artifacts_dir / "release-notes.md",
            ),
            "session_loaded": session is not None,
            "incomplete_stages": incomplete,
            "open_blockers": blockers,
        }

    def score_evidence(self, evidence: dict[str, Any]) -> Evaluation:
        result = Evaluation(criteria=list(self.CRITERIA))

        threshold = self.config.qa_implementation_threshold
        score = evidence["qa_impl_score"] or 0
        passed = score >= threshold and evidence["qa_impl_status"] == HandoffStatus.COMPLETE.value
        result.check("QA-Implementation passed", passed, "QA-Implementation has not passed")
        result.check("README updated", evidence["readme"], "README not found")
        result.check("CHANGELOG updated", evidence["changelog"], "CHANGELOG not found")
        result.check("Release notes prepared", evidence["release_notes"], "Release notes not found")

        incomplete = evidence["incomplete_stages"]
        if not evidence["session_loaded"]:
            result.check("All tasks completed", False, "No session found")
        else:
            result.check(
                "All tasks completed",
                not incomplete,
                f"Not all tasks are completed: {', '.join(incomplete)}",
            )

        blockers = evidence["open_blockers"]
        result.check("No open blockers", not blockers, "Open blockers remain from agent handoffs")
        result.critical_blocker = has_critical(blockers)

        return result
