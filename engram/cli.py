"""Command line interface: initialise, inspect and search a project's symbol store."""

from __future__ import annotations

import argparse
import json
import os
import re
import signal
import sqlite3
import subprocess
import sys
from pathlib import Path
from typing import Any

from engram.graph.store import Store

_ENGRAM_DIR = ".engram"
_DB_NAME = "engram.db"
_PID_FILE = Path(_ENGRAM_DIR) / "engram.pid"
_NOT_INITIALIZED = "Engram not initialized. Run `engram init` first."
_TOP_SYMBOLS = 3
_PID_PATTERN = re.compile(r"\+?[0-9]+")
_MAX_PID = 2**32 - 1


class CliError(Exception):
    """A command could not be carried out."""


def _db_path(root: Path) -> Path:
    return root / _ENGRAM_DIR / _DB_NAME


def _canonical(root: str | os.PathLike[str]) -> Path:
    return Path(root).resolve(strict=True)


def _open_existing(root: Path) -> Store:
    db_path = _db_path(root)
    if not db_path.exists():
        raise CliError(_NOT_INITIALIZED)
    return Store.open(db_path)


def format_bm25_results(store: Store, query: str, top_k: int) -> list[str]:
    """Output lines for a keyword-only search."""
    results = store.search_bm25(query, top_k)
    if not results:
        return [f"No results found for '{query}'"]
    lines = []
    for symbol_id, score in results:
        sym = store.get_symbol(symbol_id)
        if sym is not None:
            lines.append(
                f"  {score:.3f}  {sym.kind} {sym.name} ({sym.file}:{sym.line_start})"
            )
    return lines


def file_context_line(store: Store, file: str) -> str | None:
    """A one-line summary of a file's symbols, or None if nothing is known about it."""
    symbols = store.get_file_symbols(file)
    if not symbols:
        symbols = [
            sym
            for sym in store.get_all_symbols()
            if sym.file.endswith(file) or file.endswith(sym.file)
        ]
    if not symbols:
        return None

    total_callers = sum(len(store.get_direct_callers(sym.id)) for sym in symbols)
    max_risk = max((store.get_risk_score(sym.id) for sym in symbols), default=0.0)
    max_risk = max(max_risk, 0.0)
    stale_count = sum(
        1
        for sym in symbols
        for (*_, status) in store.get_annotations(sym.id)
        if status == "stale"
    )
    top_symbols = [f"{sym.kind} {sym.name}" for sym in symbols[:_TOP_SYMBOLS]]

    line = (
        f"[engram] {file} — {len(symbols)} symbols, {total_callers} callers, "
        f"risk={max_risk:.0f}"
    )
    if stale_count > 0:
        line += f", {stale_count} stale annotations"
    line += f" | top: {', '.join(top_symbols)}"
    return line


def hooks_config(engram_bin: str | os.PathLike[str], root: str | os.PathLike[str]) -> dict[str, Any]:
    """Settings that make the agent consult the store before reading a file."""
    command = (
        f'{os.fspath(engram_bin)} search --root {os.fspath(root)} --top_k 3 '
        f'"$TOOL_INPUT_FILE" 2>/dev/null || true'
    )
    return {
        "hooks": {
            "PreToolUse": [
                {
                    "matcher": "Read",
                    "hooks": [{"type": "command", "command": command}],
                }
            ]
        }
    }


def _terminate(pid: int) -> None:
    if os.name == "nt":
        subprocess.run(
            ["taskkill", "/PID", str(pid), "/F"], capture_output=True, check=False
        )
    else:
        try:
            os.kill(pid, signal.SIGTERM)
        except OSError:
            pass


def stop_daemon(pid_file: str | os.PathLike[str]) -> str:
    """Signal the daemon named in a PID file, remove the file, and describe what happened."""
    path = Path(pid_file)
    if not path.exists():
        return "No running Engram daemon found."
    text = path.read_text().strip()
    pid = int(text) if _PID_PATTERN.fullmatch(text) else None
    if pid is None or pid > _MAX_PID:
        path.unlink()
        return "Removed stale PID file"
    _terminate(pid)
    path.unlink()
    return f"Stopped Engram daemon (PID {pid})"


def _engram_executable() -> Path:
    argv0 = sys.argv[0] if sys.argv else ""
    if argv0 and Path(argv0).exists():
        return Path(argv0).resolve()
    return Path("engram")


# Commands


def _cmd_init(args: argparse.Namespace) -> None:
    root = _canonical(args.root)
    engram_dir = root / _ENGRAM_DIR
    engram_dir.mkdir(parents=True, exist_ok=True)
    with Store.open(engram_dir / _DB_NAME) as store:
        store.initialize()
    print(f"Engram initialized at {engram_dir}")


def _cmd_stop(args: argparse.Namespace) -> None:
    print(stop_daemon(_PID_FILE))


def _cmd_status(args: argparse.Namespace) -> None:
    root = _canonical(args.root)
    db_path = _db_path(root)
    if not db_path.exists():
        print("Engram not initialized in this directory.")
        return
    with Store.open(db_path) as store:
        stats = store.stats()
    print("Engram status:")
    print(f"  Symbols: {stats.symbol_count}")
    print(f"  Edges:   {stats.edge_count}")
    print(f"  Files:   {stats.file_count}")


def _cmd_search(args: argparse.Namespace) -> None:
    root = _canonical(args.root)
    with _open_existing(root) as store:
        for line in format_bm25_results(store, args.query, args.top_k):
            print(line)


def _cmd_context_for_file(args: argparse.Namespace) -> None:
    root = _canonical(args.root)
    db_path = _db_path(root)
    if not db_path.exists():
        return
    with Store.open(db_path) as store:
        line = file_context_line(store, args.file)
    if line is not None:
        print(line)


def _cmd_install_hooks(args: argparse.Namespace) -> None:
    root = _canonical(args.root)
    settings_dir = root / ".claude"
    settings_dir.mkdir(parents=True, exist_ok=True)
    settings_path = settings_dir / "settings.local.json"
    config = hooks_config(_engram_executable(), root)
    settings_path.write_text(json.dumps(config, indent=2))
    print(f"Claude Code hooks installed at {settings_path}")
    print("PreToolUse/Read hook will inject Engram context before file reads.")


def _parse_bool(value: str) -> bool:
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean: {value!r}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="engram", description="Persistent codebase intelligence for coding agents"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def with_root(p: argparse.ArgumentParser) -> argparse.ArgumentParser:
        p.add_argument("--root", default=".", help="project root directory")
        return p

    with_root(
        sub.add_parser("init", help="Initialize Engram in the current repository")
    ).set_defaults(handler=_cmd_init)

    sub.add_parser("stop", help="Stop the Engram daemon").set_defaults(handler=_cmd_stop)

    with_root(sub.add_parser("status", help="Show indexing status")).set_defaults(
        handler=_cmd_status
    )

    search = with_root(sub.add_parser("search", help="Search the codebase"))
    search.add_argument("query", help="search query")
    search.add_argument(
        "--top-k", "--top_k", dest="top_k", type=int, default=10,
        help="maximum number of results",
    )
    search.set_defaults(handler=_cmd_search)

    context = with_root(
        sub.add_parser("context-for-file", help="Get brief context for a file")
    )
    context.add_argument("--file", required=True, help="file path relative to root")
    context.add_argument("--brief", type=_parse_bool, default=True)
    context.set_defaults(handler=_cmd_context_for_file)

    with_root(
        sub.add_parser("install-hooks", help="Install Claude Code hooks")
    ).set_defaults(handler=_cmd_install_hooks)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Run a command; returns the process exit status."""
    args = _build_parser().parse_args(argv)
    try:
        args.handler(args)
    except (CliError, OSError, sqlite3.Error) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())