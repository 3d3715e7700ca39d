from pathlib import Path

import pytest

from orchestrator.extraction import ExtractedFileChange
from orchestrator.workspace import MISSING_FILE_MARKER, Workspace, WorkspaceError


def test_write_file_creates_parents_and_trailing_newline(tmp_path: Path) -> None:
    workspace = Workspace(tmp_path)

    target = workspace.write_file("pkg/module.py", "x = 1")

    assert target == (tmp_path / "pkg" / "module.py").resolve()
    assert target.read_text(encoding="utf-8") == "x = 1\n"
    assert workspace.exists("pkg/module.py")


def test_resolve_rejects_paths_outside_root(tmp_path: Path) -> None:
    workspace = Workspace(tmp_path / "root")

    with pytest.raises(WorkspaceError):
        workspace.resolve("../outside.txt")
    assert workspace.exists("../outside.txt") is False


def test_read_files_marks_missing_files(tmp_path: Path) -> None:
    (tmp_path / "a.py").write_text("a = 1\n", encoding="utf-8")
    workspace = Workspace(tmp_path)

    rendered = workspace.read_files(["a.py", "b.py"])

    assert "=== a.py ===\na = 1" in rendered
    assert f"=== b.py ===\n{MISSING_FILE_MARKER}" in rendered


def test_directory_tree_skips_ignored_names(tmp_path: Path) -> None:
    (tmp_path / ".git").mkdir()
    (tmp_path / "src" / "pkg" / "deep").mkdir(parents=True)
    (tmp_path / "src" / "pkg" / "deep" / "hidden.py").write_text("", encoding="utf-8")
    (tmp_path / "README.md").write_text("", encoding="utf-8")

    tree = Workspace(tmp_path).directory_tree(max_depth=2)

    assert ".git" not in tree
    assert "  src/" in tree
    assert "    pkg/" in tree
    assert "hidden.py" not in tree
    assert "  README.md" in tree


def test_apply_changes_writes_and_skips_deletes(tmp_path: Path) -> None:
    (tmp_path / "old.py").write_text("keep\n", encoding="utf-8")
    workspace = Workspace(tmp_path)

    written = workspace.apply_changes(
        [
            ExtractedFileChange(path="new.py", content="print(1)", change_kind="create"),
            ExtractedFileChange(path="old.py", content="", change_kind="delete"),
            ExtractedFileChange(path="../escape.py", content="x", change_kind="create"),
        ]
    )

    assert written == ["new.py"]
    assert (tmp_path / "new.py").read_text(encoding="utf-8") == "print(1)\n"
    assert (tmp_path / "old.py").exists()
    assert not (tmp_path.parent / "escape.py").exists()
