"""Protocol definitions for the engine's external collaborators.

The orchestration core reads durable per-stage notes and handoff records
but does not own how they are stored. These protocols let tests (and
alternative backends) stand in for the file-based implementations.
"""

from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from .models import Handoff, MemoryEntry


@runtime_checkable
class MemoryStore(Protocol):
    """Read access to durable notes recorded for a stage."""

    def read(self, stage: str) -> list[MemoryEntry]:
        """All entries recorded for a stage (empty if none)."""
        ...

    def source_label(self, stage: str) -> str:
        """Human-readable name of where a stage's notes come from."""
        ...


@runtime_checkable
class HandoffStore(Protocol):
    """Append-only storage of handoff records."""

    def append(self, handoff: Handoff) -> tuple[Handoff, Path]:
        """Persist a record, returning it (with its sequence) and its location."""
        ...

    def read_all(self) -> list[Handoff]:
        """All records in chronological order."""
        ...

    def latest_for(self, stage: str) -> Optional[Handoff]:
        """Most recent record from a stage, if any."""
        ...
