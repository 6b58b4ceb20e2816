"""Persistence for the session document.

The whole session is read and rewritten on every operation; there is no
partial patch format. One project has exactly one session file at
.pipeline/state/session.json.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from .models import AgentStatus, Phase, ProjectType, Session, percentage
from .workspace import Workspace


class SessionSummary(BaseModel):
    """Display-oriented digest of a session."""
    phase: Phase
    project_type: ProjectType
    current_agent: str = ""
    progress_percent: int = 0
    completed_count: int = 0
    total_count: int = 0
    active_agents: list[str] = Field(default_factory=list)
    completed_agents: list[str] = Field(default_factory=list)
    duration_seconds: int = 0
    mode_transitions: int = 0
    deviations: int = 0
    started_at: datetime
    completed_at: Optional[datetime] = None

    @property
    def duration_formatted(self) -> str:
        hours, remainder = divmod(self.duration_seconds, 3600)
        return f"{hours}h {remainder // 60}m"


@dataclass
class SessionValidation:
    """Result of checking the session file on disk."""
    exists: bool
    valid: bool
    reason: str


class SessionStore:
    """Loads and saves the session document for one project."""

    def __init__(self, workspace: Workspace):
        self.workspace = workspace

    @classmethod
    def for_project(cls, project_path: Path | str) -> "SessionStore":
        return cls(Workspace.open(project_path))

    @property
    def path(self) -> Path:
        return self.workspace.session_file

    def exists(self) -> bool:
        return self.path.exists()

    def init_session(self, session: Session) -> Path:
        """Create the workspace and write a fresh session.

        Overwrites any session already on disk.

        Args:
            session: Initial session (usually from init_pipeline)

        Returns:
            Path the session was written to
        """
        self.workspace.ensure_structure()
        return self.save(session)

    def load(self) -> Optional[Session]:
        """Load the session from disk.

        Returns:
            Session, or None if the file is missing or unreadable
        """
        if not self.path.exists():
            return None

        try:
            return Session.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (ValidationError, ValueError) as e:
            print(f"[SessionStore] Warning: Could not load session: {e}")
            return None

    def save(self, session: Session) -> Path:
        """Rewrite the session file with the given session."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            session.model_dump_json(indent=2, by_alias=True),
            encoding="utf-8"
        )
        return self.path

    def delete(self) -> bool:
        """Remove the session file.

        Returns:
            True if a file was removed
        """
        if not self.path.exists():
            return False
        self.path.unlink()
        return True

    def validate(self) -> SessionValidation:
        """Check that the session file exists and parses into a valid session."""
        if not self.path.exists():
            return SessionValidation(False, False, "Session file does not exist")

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            return SessionValidation(True, False, f"Session file is not valid JSON: {e}")

        try:
            session = Session.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"]) or "session"
            return SessionValidation(True, False, f"Invalid field {location}: {first['msg']}")

        in_progress = session.agents_with_status(AgentStatus.IN_PROGRESS)
        if len(in_progress) > 1:
            return SessionValidation(
                True, False,
                f"More than one stage in progress: {', '.join(in_progress)}"
            )

        return SessionValidation(True, True, "Session is valid")

    def get_summary(self, now: Optional[datetime] = None) -> Optional[SessionSummary]:
        """Summarize the stored session for display.

        Args:
            now: Reference time for the duration (defaults to the current time)

        Returns:
            SessionSummary, or None when there is no readable session
        """
        session = self.load()
        if session is None:
            return None
        return summarize_session(session, now=now)


def summarize_session(session: Session, now: Optional[datetime] = None) -> SessionSummary:
    """Build a SessionSummary from an in-memory session."""
    total = len(session.agents)
    completed = len(session.completed_agents)
    end = session.completed_at or now or datetime.now()
    duration = max(0, int((end - session.started_at).total_seconds()))

    return SessionSummary(
        phase=session.phase,
        project_type=session.project_type,
        current_agent=session.current_agent,
        progress_percent=percentage(completed, total),
        completed_count=completed,
        total_count=total,
        active_agents=session.agents_with_status(AgentStatus.IN_PROGRESS),
        completed_agents=list(session.completed_agents),
        duration_seconds=duration,
        mode_transitions=len(session.mode_transitions),
        deviations=len(session.deviations),
        started_at=session.started_at,
        completed_at=session.completed_at,
    )
