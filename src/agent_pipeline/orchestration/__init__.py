"""Orchestration layer for the agent pipeline.

- PipelineOrchestrator: loads and saves the session around the pure
  transition functions, runs gates and prints progress
"""

from .orchestrator import CompletionOutcome, MessageRoute, PipelineOrchestrator

__all__ = [
    "CompletionOutcome",
    "MessageRoute",
    "PipelineOrchestrator",
]
