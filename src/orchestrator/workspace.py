from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from orchestrator.extraction import ExtractedFileChange

logger = logging.getLogger(__name__)

TREE_IGNORED_NAMES = {
    ".git",
    ".hg",
    ".venv",
    "venv",
    "node_modules",
    "__pycache__",
    ".mypy_cache",
    ".pytest_cache",
    ".ruff_cache",
    "dist",
    "build",
}
MISSING_FILE_MARKER = "[File does not exist or cannot be read]"


class WorkspaceError(RuntimeError):
    """Raised when a path resolves outside the workspace root."""


class Workspace:
    """File system access rooted at one project directory."""

    def __init__(self, root: Path) -> None:
        self.root = root.resolve()

    def resolve(self, relative_path: str) -> Path:
        candidate = (self.root / relative_path).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise WorkspaceError(f"Path escapes workspace root: {relative_path}")
        return candidate

    def exists(self, relative_path: str) -> bool:
        try:
            return self.resolve(relative_path).is_file()
        except WorkspaceError:
            return False

    def read_file(self, relative_path: str) -> str:
        return self.resolve(relative_path).read_text(encoding="utf-8")

    def write_file(self, relative_path: str, content: str) -> Path:
        target = self.resolve(relative_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        if content and not content.endswith("\n"):
            content += "\n"
        target.write_text(content, encoding="utf-8")
        return target

    def read_files(self, paths: Iterable[str]) -> str:
        sections: list[str] = []
        for path in paths:
            try:
                content = self.read_file(path)
            except (OSError, UnicodeDecodeError, WorkspaceError):
                content = MISSING_FILE_MARKER
            sections.append(f"=== {path} ===\n{content}\n")
        return "\n".join(sections)

    def directory_tree(self, max_depth: int = 2) -> str:
        lines = [f"{self.root.name}/"]

        def _walk(directory: Path, depth: int, indent: str) -> None:
            try:
                entries = sorted(
                    directory.iterdir(), key=lambda entry: (not entry.is_dir(), entry.name)
                )
            except OSError:
                return
            for entry in entries:
                if entry.name in TREE_IGNORED_NAMES:
                    continue
                if entry.is_dir():
                    lines.append(f"{indent}{entry.name}/")
                    if depth < max_depth:
                        _walk(entry, depth + 1, indent + "  ")
                else:
                    lines.append(f"{indent}{entry.name}")

        _walk(self.root, 1, "  ")
        return "\n".join(lines)

    def apply_changes(self, changes: Iterable[ExtractedFileChange]) -> list[str]:
        """Write create/modify changes and return the paths written.

        Deletions are not applied; they are logged and skipped.
        """
        written: list[str] = []
        for change in changes:
            if change.change_kind == "delete":
                logger.info("Skipping file deletion: %s", change.path)
                continue
            try:
                self.write_file(change.path, change.content)
            except WorkspaceError as exc:
                logger.warning("Refusing to write %s: %s", change.path, exc)
                continue
            except OSError as exc:
                logger.error("Failed to write %s: %s", change.path, exc)
                continue
            logger.debug("Wrote %s (%s)", change.path, change.change_kind)
            written.append(change.path)
        return written
