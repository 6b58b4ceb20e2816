"""G1: planning complete (pre-build).

Checks that every planning artifact exists, QA-planning signed off with a
passing score, and the session shows the planning stages done.
"""

from typing import Any

from ..agent_selector import FORK_GROUP, get_phase_stages
from ..models import AgentStatus, Phase
from .base import EvidenceSource, Evaluation, GateBase, handoff_evidence, has_critical


# (evidence key, directory under .pipeline/artifacts, label)
REQUIRED_ARTIFACTS = (
    ("brief", "brief", "Brief artifact"),
    ("prd", "detail", "PRD artifact"),
    ("architecture", "architecture", "Architecture artifact"),
    ("ux", "ux", "UX artifact"),
    ("phases", "phases", "Phases artifact"),
    ("tasks", "tasks", "Tasks artifact"),
)

PLANNING_STAGES = tuple(
    spec.name for spec in get_phase_stages(Phase.PLANNING) if spec.group != FORK_GROUP
)


class PlanningCompleteGate(GateBase):
    id = "g1-planning-complete"
    name = "Planning Complete"
    pipeline_point = "pre-build"
    stage = "qa-planning"
    primary_handoff = "qa-planning"
    CRITERIA = (
        *(f"{label} exists" for _, _, label in REQUIRED_ARTIFACTS),
        "QA-Planning handoff with passing score",
        "Session shows planning completed",
    )

    def collect_evidence(self, source: EvidenceSource) -> dict[str, Any]:
        handoff = source.require_handoff(self.primary_handoff)

        artifacts = {}
        for key, dirname, _ in REQUIRED_ARTIFACTS:
            path = source.artifacts_dir / dirname
            artifacts[key] = {"exists": path.exists(), "has_content": source.has_content(path)}

        stage_status = {}
        if source.session is not None:
            stage_status = {
                name: source.session.agents[name].status.value
                for name in PLANNING_STAGES
                if name in source.session.agents
            }

        return {
            "artifacts": artifacts,
            "qa_planning_handoff": handoff_evidence(handoff),
            "session_loaded": source.session is not None,
            "stage_status": stage_status,
        }

    def score_evidence(self, evidence: dict[str, Any]) -> Evaluation:
        result = Evaluation(criteria=list(self.CRITERIA))

        for key, _, label in REQUIRED_ARTIFACTS:
            info = evidence["artifacts"].get(key, {})
            warning = None
            if info.get("exists") and not info.get("has_content"):
                warning = f"{label} directory exists but is empty"
            elif not info.get("exists"):
                warning = f"{label} missing"
            result.check(f"{label} exists", bool(info.get("has_content")), warning)

        handoff = evidence["qa_planning_handoff"]
        threshold = self.config.qa_planning_threshold
        score = handoff["score"] or 0
        result.check(
            "QA-Planning handoff with passing score",
            score >= threshold,
            f"QA-Planning score {score:g} below {threshold:g} threshold",
        )
        if handoff["blockers"]:
            result.warnings.append(f"{len(handoff['blockers'])} blocker(s) from QA-Planning")
        result.critical_blocker = has_critical(handoff["blockers"])

        done = (AgentStatus.COMPLETED.value, AgentStatus.SKIPPED.value)
        missing = [
            name for name in PLANNING_STAGES
            if evidence["stage_status"].get(name) not in done
        ]
        if not evidence["session_loaded"]:
            warning = "No session found"
        else:
            warning = f"Incomplete planning agents: {', '.join(missing)}"
        result.check("Session shows planning completed", not missing, warning)

        return result
