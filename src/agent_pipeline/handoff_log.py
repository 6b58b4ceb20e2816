"""Append-only log of handoff records.

Each record gets its own file, .pipeline/handoffs/{sequence:04d}_{stage}.json.
Files are created exclusively, so an existing record is never rewritten; a
stage that runs again produces a new record with a higher sequence number.
"""

import re
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .models import Handoff
from .workspace import Workspace


_FILENAME_RE = re.compile(r"^(\d{4,})_(.+)\.json$")


class HandoffLog:
    """File-backed HandoffStore."""

    MAX_APPEND_ATTEMPTS = 5

    def __init__(self, workspace: Workspace):
        self.workspace = workspace

    @property
    def directory(self) -> Path:
        return self.workspace.handoffs_dir

    def _record_files(self) -> list[tuple[int, Path]]:
        if not self.directory.exists():
            return []

        files = []
        for path in self.directory.iterdir():
            match = _FILENAME_RE.match(path.name)
            if match and path.is_file():
                files.append((int(match.group(1)), path))
        return sorted(files)

    def next_sequence(self) -> int:
        files = self._record_files()
        return files[-1][0] + 1 if files else 1

    def append(self, handoff: Handoff) -> tuple[Handoff, Path]:
        """Write a new record.

        The record's sequence is assigned here; whatever the caller set is
        replaced.

        Returns:
            (record as written, path of its file)
        """
        self.directory.mkdir(parents=True, exist_ok=True)

        for _ in range(self.MAX_APPEND_ATTEMPTS):
            sequence = self.next_sequence()
            record = handoff.model_copy(update={"sequence": sequence})
            path = self.directory / f"{sequence:04d}_{record.from_stage}.json"
            try:
                with open(path, "x", encoding="utf-8") as f:
                    f.write(record.model_dump_json(indent=2))
            except FileExistsError:
                continue
            return record, path

        raise FileExistsError(
            f"Could not allocate a handoff sequence in {self.directory}"
        )

    def read_all(self) -> list[Handoff]:
        """All readable records, oldest first."""
        records = []
        for _, path in self._record_files():
            try:
                records.append(Handoff.model_validate_json(path.read_text(encoding="utf-8")))
            except (ValidationError, ValueError, OSError) as e:
                print(f"[HandoffLog] Warning: Skipping unreadable handoff {path.name}: {e}")
        return records

    def latest_for(self, stage: str) -> Optional[Handoff]:
        """The most recent record from a stage."""
        for record in reversed(self.read_all()):
            if record.from_stage == stage:
                return record
        return None

    def is_empty(self) -> bool:
        return not self._record_files()
