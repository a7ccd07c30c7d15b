"""Git history, blame and ownership, read through the git command."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

_LOG_FORMAT = "--format=%H%x00%an%x00%ae%x00%at%x00%s%x1e"
_RECENT_COMMIT_LIMIT = 500


class GitError(Exception):
    """A git command failed or the directory is not a repository."""


@dataclass(frozen=True)
class Repository:
    """A git working tree."""

    workdir: Path

    def _invoke(self, args: tuple[str, ...]) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                ["git", "-C", str(self.workdir), *args],
                capture_output=True,
                check=False,
            )
        except OSError as exc:
            raise GitError(f"cannot run git: {exc}") from exc

    def run(self, *args: str) -> str:
        """Run a git command in this repository and return its output."""
        completed = self._invoke(args)
        if completed.returncode != 0:
            message = (completed.stderr or b"").decode("utf-8", "replace").strip()
            raise GitError(message or f"git {args[0]} failed")
        return (completed.stdout or b"").decode("utf-8", "replace")

    def succeeds(self, *args: str) -> bool:
        """Whether a git command exits successfully."""
        return self._invoke(args).returncode == 0


@dataclass
class BlameLine:
    """Blame information for one hunk of a file."""

    line: int
    commit_hash: str
    author: str
    email: str
    timestamp: int
    summary: str = ""


@dataclass
class SymbolCommit:
    """A commit with its author and summary line."""

    hash: str
    author: str
    email: str
    timestamp: int
    message: str


@dataclass
class OwnershipEntry:
    """How much of a file one author wrote, and when they last touched it."""

    author: str
    email: str
    commits: int
    last_touched: int


def open_repo(root: str | os.PathLike[str]) -> Repository:
    """Find the repository containing ``root``."""
    probe = Repository(Path(root))
    try:
        top = probe.run("rev-parse", "--show-toplevel").strip()
    except GitError as exc:
        raise GitError("not a git repository") from exc
    if not top:
        raise GitError("not a git repository")
    return Repository(Path(top))


def _parse_porcelain(text: str) -> list[BlameLine]:
    commit_info: dict[str, dict[str, str]] = {}
    hunks: list[tuple[str, int]] = []
    expect_header = True
    sha = ""
    for line in text.split("\n"):
        if line.startswith("\t"):
            expect_header = True
            continue
        if not line:
            continue
        if expect_header:
            parts = line.split()
            sha = parts[0]
            if len(parts) >= 4:
                hunks.append((sha, int(parts[2])))
            expect_header = False
            continue
        key, _, value = line.partition(" ")
        commit_info.setdefault(sha, {}).setdefault(key, value)

    lines = []
    for i, (commit_hash, start) in enumerate(hunks):
        info = commit_info.get(commit_hash, {})
        email = info.get("author-mail", "").strip()
        if email.startswith("<") and email.endswith(">"):
            email = email[1:-1]
        lines.append(
            BlameLine(
                line=start + i - min(i, max(start - 1, 0)),
                commit_hash=commit_hash,
                author=info.get("author") or "unknown",
                email=email,
                timestamp=int(info.get("author-time") or 0),
            )
        )
    return lines


def blame_file(repo: Repository, file_path: str) -> list[BlameLine]:
    """One entry per blame hunk of a file, relative to the working tree."""
    try:
        output = repo.run("blame", "--porcelain", "--", file_path)
    except GitError as exc:
        raise GitError(f"blaming {file_path}: {exc}") from exc
    return _parse_porcelain(output)


def _parse_log(output: str) -> list[SymbolCommit]:
    commits = []
    for record in output.split("\x1e"):
        record = record.strip("\n")
        if not record:
            continue
        commit_hash, author, email, timestamp, message = (
            record.split("\x00", 4) + ["", "", "", ""]
        )[:5]
        commits.append(
            SymbolCommit(
                hash=commit_hash,
                author=author or "unknown",
                email=email,
                timestamp=int(timestamp or 0),
                message=message,
            )
        )
    return commits


def get_recent_commits(repo: Repository, limit: int) -> list[SymbolCommit]:
    """Up to ``limit`` commits reachable from HEAD, most recent first."""
    output = repo.run("log", "--date-order", "-n", str(limit), _LOG_FORMAT, "HEAD")
    return _parse_log(output)


def _changed_paths(repo: Repository, newer: str, older: str) -> set[str]:
    output = repo.run(
        "diff-tree", "-r", "--name-only", "--no-renames", "-z", newer, older
    )
    return {path for path in output.split("\x00") if path}


def get_file_commits(
    repo: Repository, file_path: str, limit: int
) -> list[SymbolCommit]:
    """Up to ``limit`` commits that touched a file, most recent first."""
    history = _parse_log(repo.run("log", "--date-order", _LOG_FORMAT, "HEAD"))
    commits: list[SymbolCommit] = []
    previous: str | None = None
    for commit in history:
        if len(commits) >= limit:
            break
        if previous is None:
            changed = repo.succeeds("cat-file", "-e", f"{commit.hash}:{file_path}")
        else:
            changed = file_path in _changed_paths(repo, previous, commit.hash)
        if changed:
            commits.append(commit)
        previous = commit.hash
    return commits


def compute_ownership(blame_lines: Iterable[BlameLine]) -> list[OwnershipEntry]:
    """Group blame entries by author, most entries first."""
    ownership: dict[str, OwnershipEntry] = {}
    for line in blame_lines:
        entry = ownership.setdefault(
            line.author,
            OwnershipEntry(author=line.author, email=line.email, commits=0, last_touched=0),
        )
        entry.commits += 1
        entry.last_touched = max(entry.last_touched, line.timestamp)
    return sorted(ownership.values(), key=lambda entry: entry.commits, reverse=True)


def sync_git_data(store, root: str | os.PathLike[str]) -> None:
    """Copy recent commits and per-file ownership into the store."""
    repo = open_repo(root)

    for commit in get_recent_commits(repo, _RECENT_COMMIT_LIMIT):
        store.upsert_git_commit(
            commit.hash, commit.author, commit.email, commit.timestamp, commit.message
        )

    for file in store.get_all_files():
        try:
            blame_lines = blame_file(repo, file)
        except GitError:
            continue
        for entry in compute_ownership(blame_lines):
            store.upsert_file_ownership(
                file, entry.author, entry.email, entry.commits, entry.last_touched
            )


def current_branch(repo: Repository) -> str:
    """Short name of the checked-out branch, or ``HEAD`` when detached."""
    name = repo.run("rev-parse", "--abbrev-ref", "HEAD").strip()
    return name or "HEAD"