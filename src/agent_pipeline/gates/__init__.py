"""Quality gates guarding the pipeline's phase boundaries."""

from typing import Optional

from ..errors import UnknownGateError
from ..models import PipelineConfig
from .base import (
    Evaluation,
    EvidenceSource,
    GateBase,
    GateMode,
    GateResult,
    GateVerdict,
    determine_verdict,
    for_mode,
    recommend,
    waive,
)
from .circuit_breaker import BreakerStats, CircuitBreaker, CircuitState
from .deploy_ready import DeployReadyGate
from .implementation import ImplementationGate
from .planning_complete import PlanningCompleteGate
from .qa_implementation import QAImplementationGate
from .qa_planning import QAPlanningGate
from .runner import GateRunner


PIPELINE_POINT_MAP: dict[str, type[GateBase]] = {
    "pre-build": PlanningCompleteGate,
    "post-qa-planning": QAPlanningGate,
    "post-dev": ImplementationGate,
    "post-qa-impl": QAImplementationGate,
    "pre-deploy": DeployReadyGate,
}

PIPELINE_POINTS: tuple[str, ...] = tuple(PIPELINE_POINT_MAP)


def get_gate_for_pipeline_point(
    point: str,
    config: Optional[PipelineConfig] = None,
) -> GateBase:
    """Instantiate the gate guarding a pipeline point.

    Raises:
        UnknownGateError: If no gate is registered for the point
    """
    gate_class = PIPELINE_POINT_MAP.get(point)
    if gate_class is None:
        raise UnknownGateError(point)
    return gate_class(config)


__all__ = [
    "BreakerStats",
    "CircuitBreaker",
    "CircuitState",
    "DeployReadyGate",
    "Evaluation",
    "EvidenceSource",
    "GateBase",
    "GateMode",
    "GateResult",
    "GateRunner",
    "GateVerdict",
    "ImplementationGate",
    "PIPELINE_POINTS",
    "PIPELINE_POINT_MAP",
    "PlanningCompleteGate",
    "QAImplementationGate",
    "QAPlanningGate",
    "recommend",
    "determine_verdict",
    "for_mode",
    "get_gate_for_pipeline_point",
    "waive",
]
