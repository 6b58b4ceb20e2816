"""Workspace management for the .pipeline/ directory structure.

Handles creation of the workspace directories and loading of the optional
config file. Every other component asks the workspace where its files live.
"""

import json
from pathlib import Path
from typing import Optional

from .models import PipelineConfig


class Workspace:
    """Manages the .pipeline/ workspace directory structure.

    Directory structure:
        .pipeline/
        ├── config.json             # Optional PipelineConfig overrides
        ├── state/
        │   └── session.json        # The session document
        ├── handoffs/               # Append-only handoff log
        │   └── {seq:04d}_{stage}.json
        ├── memories/               # Durable per-stage notes (read-only here)
        │   └── {stage}/MEMORY.md
        └── artifacts/              # Stage outputs inspected by quality gates
    """

    DEFAULT_DIR = ".pipeline"

    def __init__(self, project_path: Path | str, dirname: Optional[str] = None):
        """Initialize the workspace.

        Args:
            project_path: Path to the project directory
            dirname: Workspace directory name (defaults to .pipeline)
        """
        self.project_path = Path(project_path).resolve()
        self.root = self.project_path / (dirname or self.DEFAULT_DIR)
        self.state_dir = self.root / "state"
        self.handoffs_dir = self.root / "handoffs"
        self.memories_dir = self.root / "memories"
        self.artifacts_dir = self.root / "artifacts"

        # File paths
        self.config_file = self.root / "config.json"
        self.session_file = self.state_dir / "session.json"

    @classmethod
    def for_config(cls, project_path: Path | str, config: PipelineConfig) -> "Workspace":
        return cls(project_path, dirname=config.workspace_dir)

    @classmethod
    def open(cls, project_path: Path | str) -> "Workspace":
        """Workspace for a project, honoring workspace_dir from its config."""
        return cls.for_config(project_path, cls(project_path).load_config())

    def ensure_structure(self) -> None:
        """Create the workspace directories if they don't exist."""
        for directory in (
            self.root,
            self.state_dir,
            self.handoffs_dir,
            self.memories_dir,
            self.artifacts_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)

    def exists(self) -> bool:
        """Check if the workspace exists."""
        return self.root.exists()

    def memory_file(self, stage: str) -> Path:
        """Path to a stage's durable notes."""
        return self.memories_dir / stage / "MEMORY.md"

    # =========================================================================
    # Configuration
    # =========================================================================

    def load_config(self) -> PipelineConfig:
        """Load config.json, falling back to defaults.

        Returns:
            PipelineConfig (defaults if the file is missing or unreadable)
        """
        if not self.config_file.exists():
            return PipelineConfig()

        try:
            data = json.loads(self.config_file.read_text(encoding="utf-8"))
            return PipelineConfig.model_validate(data)
        except (json.JSONDecodeError, ValueError) as e:
            print(f"[Workspace] Warning: Could not load config.json: {e}")
            return PipelineConfig()

    def save_config(self, config: PipelineConfig) -> None:
        """Write config.json.

        Args:
            config: Configuration to persist
        """
        self.root.mkdir(parents=True, exist_ok=True)
        self.config_file.write_text(
            config.model_dump_json(indent=2),
            encoding="utf-8"
        )
