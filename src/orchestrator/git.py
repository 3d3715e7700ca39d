from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path


class GitError(RuntimeError):
    """Raised when a git command fails."""


@dataclass(slots=True)
class ChangedFile:
    path: str
    status: str


@dataclass(slots=True)
class NumStat:
    files: int = 0
    added: int = 0
    removed: int = 0


class GitClient:
    def __init__(self, repo_root: Path) -> None:
        self.repo_root = repo_root.resolve()

    def _run_git(self, args: list[str], check: bool = True) -> subprocess.CompletedProcess[str]:
        try:
            proc = subprocess.run(
                ["git", "--no-pager", *args],
                cwd=self.repo_root,
                text=True,
                capture_output=True,
            )
        except FileNotFoundError as exc:
            raise GitError("git executable not found.") from exc
        if check and proc.returncode != 0:
            raise GitError(proc.stderr.strip() or proc.stdout.strip())
        return proc

    def is_repository(self) -> bool:
        try:
            proc = self._run_git(["rev-parse", "--is-inside-work-tree"], check=False)
        except GitError:
            return False
        return proc.returncode == 0 and proc.stdout.strip() == "true"

    def changed_files(self) -> list[ChangedFile]:
        proc = self._run_git(["status", "--porcelain", "--untracked-files=all"])
        files: list[ChangedFile] = []
        for line in proc.stdout.splitlines():
            if len(line) < 4:
                continue
            status = line[:2].strip() or "?"
            path = line[3:]
            if " -> " in path:
                path = path.split(" -> ", 1)[1]
            files.append(ChangedFile(path=path.strip('"'), status=status))
        return files

    def diff(self, *, staged: bool = False, path: str | None = None) -> str:
        args = ["diff"]
        if staged:
            args.append("--cached")
        if path:
            args.extend(["--", path])
        return self._run_git(args).stdout

    def add(self, paths: list[str]) -> None:
        if not paths:
            return
        self._run_git(["add", "-A", "--", *paths])

    def staged_numstat(self) -> NumStat:
        proc = self._run_git(["diff", "--cached", "--numstat"])
        stat = NumStat()
        for line in proc.stdout.splitlines():
            parts = line.split("\t")
            if len(parts) < 3:
                continue
            stat.files += 1
            # Binary files report "-" for both counts.
            if parts[0].isdigit():
                stat.added += int(parts[0])
            if parts[1].isdigit():
                stat.removed += int(parts[1])
        return stat

    def commit(self, message: str) -> str:
        self._run_git(["commit", "-m", message])
        return self._run_git(["rev-parse", "HEAD"]).stdout.strip()
