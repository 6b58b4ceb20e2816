"""Runs gates through per-checkpoint circuit breakers."""

from pathlib import Path
from typing import Callable, Optional

from ..errors import UnknownGateError
from ..models import PipelineConfig
from .base import GateMode, GateResult, GateVerdict
from .circuit_breaker import BreakerStats, CircuitBreaker, monotonic_ms


def _failed(result: GateResult) -> bool:
    return result.verdict == GateVerdict.FAIL


class GateRunner:
    """Evaluates gates, keeping one circuit breaker per pipeline point.

    A FAIL verdict counts as a breaker failure, so a checkpoint that keeps
    failing is rejected with CircuitOpenError until its timeout passes.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.config = config or PipelineConfig()
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def breaker_for(self, pipeline_point: str) -> CircuitBreaker:
        """Breaker guarding a pipeline point, created on first use.

        Raises:
            UnknownGateError: If no gate guards that point
        """
        # Imported here: the registry imports this module
        from . import PIPELINE_POINT_MAP

        if pipeline_point not in PIPELINE_POINT_MAP:
            raise UnknownGateError(pipeline_point)
        if pipeline_point not in self._breakers:
            self._breakers[pipeline_point] = CircuitBreaker(
                failure_threshold=self.config.breaker_failure_threshold,
                reset_timeout_ms=self.config.breaker_reset_timeout_ms,
                clock=self._clock,
                name=pipeline_point,
            )
        return self._breakers[pipeline_point]

    def run(
        self,
        pipeline_point: str,
        project_dir: Path | str,
        mode: GateMode | str = GateMode.AUTONOMOUS,
    ) -> GateResult:
        """Evaluate the gate bound to a pipeline point.

        A REVIEW verdict (human-in-the-loop mode) is not a breaker failure.

        Raises:
            UnknownGateError: If no gate guards that point
            CircuitOpenError: If the point's breaker is open
        """
        # Imported here: the registry imports this module
        from . import get_gate_for_pipeline_point

        gate = get_gate_for_pipeline_point(pipeline_point, self.config)
        breaker = self.breaker_for(pipeline_point)
        return breaker.call(gate.evaluate, project_dir, mode, is_failure=_failed)

    def stats(self) -> dict[str, BreakerStats]:
        return {point: breaker.stats() for point, breaker in self._breakers.items()}

    def reset(self, pipeline_point: Optional[str] = None) -> None:
        """Reset one breaker, or all of them."""
        if pipeline_point is None:
            for breaker in self._breakers.values():
                breaker.reset()
        elif pipeline_point in self._breakers:
            self._breakers[pipeline_point].reset()
