import subprocess
from pathlib import Path
from unittest import mock

import pytest

from engram.git import (
    BlameLine,
    GitError,
    OwnershipEntry,
    Repository,
    SymbolCommit,
    blame_file,
    compute_ownership,
    current_branch,
    get_file_commits,
    get_recent_commits,
    open_repo,
    sync_git_data,
)
from engram.graph.records import ParsedSymbol, ParseResult, SymbolKind
from engram.graph.store import Store

SHA_A = "a" * 40
SHA_B = "b" * 40

PORCELAIN = (
    f"{SHA_A} 1 1 2\n"
    "author Alice\n"
    "author-mail <alice@example.com>\n"
    "author-time 100\n"
    "author-tz +0000\n"
    "summary first\n"
    "filename main.py\n"
    "\tline one\n"
    f"{SHA_A} 2 2\n"
    "\tline two\n"
    f"{SHA_B} 3 3 1\n"
    "author Bob\n"
    "author-mail <bob@example.com>\n"
    "author-time 200\n"
    "summary second\n"
    "filename main.py\n"
    "\tline three\n"
)

LOG = (
    "c3\x00Alice\x00alice@example.com\x00300\x00third\x1e\n"
    "c2\x00Bob\x00bob@example.com\x00200\x00second\x1e\n"
    "c1\x00Alice\x00alice@example.com\x00100\x00first\x1e\n"
)


def completed(cmd, stdout="", returncode=0):
    return subprocess.CompletedProcess(cmd, returncode, stdout=stdout.encode(), stderr=b"")


def make_fake_git(top):
    def fake_run(cmd, **kwargs):
        args = cmd[3:]
        if args[:2] == ["rev-parse", "--show-toplevel"]:
            return completed(cmd, f"{top}\n")
        if args[:2] == ["rev-parse", "--abbrev-ref"]:
            return completed(cmd, "main\n")
        if args[0] == "log":
            return completed(cmd, LOG)
        if args[0] == "blame":
            return completed(cmd, PORCELAIN)
        if args[0] == "cat-file":
            return completed(cmd, "", 0 if args[-1] == "c3:main.py" else 128)
        if args[0] == "diff-tree":
            pair = tuple(args[-2:])
            changed = {("c3", "c2"): "other.py\x00", ("c2", "c1"): "main.py\x00"}
            return completed(cmd, changed.get(pair, ""))
        return completed(cmd, "", 1)

    return fake_run


def blame(author, timestamp, line):
    return BlameLine(
        line=line,
        commit_hash="x",
        author=author,
        email=f"{author.lower()}@example.com",
        timestamp=timestamp,
    )


def test_compute_ownership():
    lines = [blame("Alice", 100, 1), blame("Alice", 100, 2), blame("Bob", 200, 3)]
    ownership = compute_ownership(lines)
    assert len(ownership) == 2
    assert ownership[0].author == "Alice"
    assert ownership[0].commits == 2
    assert ownership[1].author == "Bob"
    assert ownership[1].commits == 1


def test_compute_ownership_last_touched_is_latest():
    lines = [blame("Alice", 100, 1), blame("Alice", 500, 2), blame("Alice", 300, 3)]
    assert compute_ownership(lines) == [
        OwnershipEntry(author="Alice", email="alice@example.com", commits=3, last_touched=500)
    ]


def test_compute_ownership_empty():
    assert compute_ownership([]) == []


def test_open_repo_not_a_repository(tmp_path):
    with mock.patch("subprocess.run", return_value=completed([], "", 128)):
        with pytest.raises(GitError):
            open_repo(tmp_path)


def test_open_repo_without_git_installed(tmp_path):
    with mock.patch("subprocess.run", side_effect=FileNotFoundError("git")):
        with pytest.raises(GitError):
            open_repo(tmp_path)


def test_open_repo_finds_top_level(tmp_path):
    with mock.patch("subprocess.run", side_effect=make_fake_git(tmp_path)):
        repo = open_repo(tmp_path / "sub")
    assert repo.workdir == Path(str(tmp_path))


def test_current_branch(tmp_path):
    with mock.patch("subprocess.run", side_effect=make_fake_git(tmp_path)):
        assert current_branch(Repository(tmp_path)) == "main"


def test_blame_file_parses_hunks(tmp_path):
    with mock.patch("subprocess.run", side_effect=make_fake_git(tmp_path)):
        lines = blame_file(Repository(tmp_path), "main.py")
    assert lines == [
        BlameLine(1, SHA_A, "Alice", "alice@example.com", 100, ""),
        BlameLine(3, SHA_B, "Bob", "bob@example.com", 200, ""),
    ]


def test_blame_file_failure_raises(tmp_path):
    with mock.patch("subprocess.run", return_value=completed([], "", 128)):
        with pytest.raises(GitError):
            blame_file(Repository(tmp_path), "missing.py")


def test_get_recent_commits(tmp_path):
    with mock.patch("subprocess.run", side_effect=make_fake_git(tmp_path)):
        commits = get_recent_commits(Repository(tmp_path), 500)
    assert [c.hash for c in commits] == ["c3", "c2", "c1"]
    assert commits[1] == SymbolCommit("c2", "Bob", "bob@example.com", 200, "second")


def test_get_file_commits(tmp_path):
    with mock.patch("subprocess.run", side_effect=make_fake_git(tmp_path)):
        commits = get_file_commits(Repository(tmp_path), "main.py", 10)
    assert [c.hash for c in commits] == ["c3", "c1"]


def test_get_file_commits_respects_limit(tmp_path):
    with mock.patch("subprocess.run", side_effect=make_fake_git(tmp_path)):
        commits = get_file_commits(Repository(tmp_path), "main.py", 1)
    assert [c.hash for c in commits] == ["c3"]


def test_sync_git_data(tmp_path):
    store = Store.open_in_memory()
    store.initialize()
    symbol = ParsedSymbol(
        id="s1",
        canonical_id="c1",
        name="main",
        kind=SymbolKind.FUNCTION,
        file="main.py",
        line_start=1,
        line_end=3,
        body_hash="bh",
        full_hash="fh",
        language="python",
        scope_chain=["main"],
    )
    store.sync_file("main.py", ParseResult(symbols=[symbol]))

    with mock.patch("subprocess.run", side_effect=make_fake_git(tmp_path)):
        sync_git_data(store, tmp_path)

    assert store.get_file_ownership("main.py") == [
        ("Alice", "alice@example.com", 1, 100),
        ("Bob", "bob@example.com", 1, 200),
    ] or store.get_file_ownership("main.py") == [
        ("Bob", "bob@example.com", 1, 200),
        ("Alice", "alice@example.com", 1, 100),
    ]
    history = store.get_file_commit_history("main.py")
    assert [entry[0] for entry in history] == ["c3", "c2", "c1"]