"""Read-only access to per-stage durable notes.

Notes live in .pipeline/memories/<stage>/MEMORY.md, written by whatever
tooling runs the stages. The format:

    ## Category

    - An entry (high) [tag-a, tag-b]
    - Another entry
      continued on an indented line

Confidence defaults to medium when the entry does not state it.
"""

import re
from pathlib import Path

from .models import MemoryEntry
from .workspace import Workspace


_TAGS_RE = re.compile(r"\[([^\]]+)\]\s*$")
_CONFIDENCE_RE = re.compile(r"\((high|medium|low)\)\s*$", re.IGNORECASE)


def parse_memory_markdown(content: str) -> list[MemoryEntry]:
    """Parse a MEMORY.md document into entries.

    Items that appear before the first category heading are ignored.
    """
    entries: list[MemoryEntry] = []
    category = None
    current = None

    for line in content.splitlines():
        if line.startswith("## "):
            if current:
                entries.append(current)
            category = line[3:].strip()
            current = None
        elif line.startswith("- ") and category:
            if current:
                entries.append(current)

            text = line[2:].strip()
            tags: list[str] = []
            tag_match = _TAGS_RE.search(text)
            if tag_match:
                tags = [t.strip() for t in tag_match.group(1).split(",") if t.strip()]
                text = text[:tag_match.start()].strip()

            confidence = "medium"
            confidence_match = _CONFIDENCE_RE.search(text)
            if confidence_match:
                confidence = confidence_match.group(1).lower()
                text = text[:confidence_match.start()].strip()

            current = MemoryEntry(category=category, content=text, confidence=confidence, tags=tags)
        elif line.startswith("  ") and line.strip() and current:
            current.content += "\n" + line.strip()

    if current:
        entries.append(current)

    return entries


class AgentMemory:
    """File-backed MemoryStore over the workspace memories directory."""

    def __init__(self, workspace: Workspace):
        self.workspace = workspace

    def path_for(self, stage: str) -> Path:
        return self.workspace.memory_file(stage)

    def source_label(self, stage: str) -> str:
        return f"memory file for {stage}"

    def read(self, stage: str) -> list[MemoryEntry]:
        """Read a stage's notes.

        Returns:
            Parsed entries, empty if the file is missing or unreadable
        """
        path = self.path_for(stage)
        if not path.exists():
            return []

        try:
            return parse_memory_markdown(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            print(f"[AgentMemory] Warning: Could not read {path}: {e}")
            return []

    def stages(self) -> list[str]:
        """Stages that have a memory directory."""
        if not self.workspace.memories_dir.exists():
            return []
        return sorted(p.name for p in self.workspace.memories_dir.iterdir() if p.is_dir())

    def search(self, query: str) -> list[tuple[str, MemoryEntry]]:
        """Case-insensitive search over content, category and tags.

        Returns:
            (stage, entry) pairs in stage order
        """
        needle = query.lower()
        results = []
        for stage in self.stages():
            for entry in self.read(stage):
                if (
                    needle in entry.content.lower()
                    or needle in entry.category.lower()
                    or any(needle in tag.lower() for tag in entry.tags)
                ):
                    results.append((stage, entry))
        return results
