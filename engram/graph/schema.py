"""Database schema for the symbol store."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field

_TEXT = "TEXT"
_INT = "INTEGER"
_REAL = "REAL"
_BLOB = "BLOB"


@dataclass(frozen=True)
class _Column:
    name: str
    type: str = _TEXT
    required: bool = False
    default: str | None = None
    key: bool = False
    serial: bool = False

    def sql(self) -> str:
        parts = [self.name, self.type]
        if self.serial:
            parts.append("PRIMARY KEY AUTOINCREMENT")
        elif self.key:
            parts.append("PRIMARY KEY")
        if self.required:
            parts.append("NOT NULL")
        if self.default is not None:
            parts.append(f"DEFAULT {self.default}")
        return " ".join(parts)


@dataclass(frozen=True)
class _Table:
    name: str
    columns: tuple[_Column, ...]
    primary_key: tuple[str, ...] = ()
    references: dict[str, str] = field(default_factory=dict)
    indexes: dict[str, str] = field(default_factory=dict)

    def sql(self) -> str:
        clauses = [column.sql() for column in self.columns]
        if self.primary_key:
            clauses.append(f"PRIMARY KEY ({', '.join(self.primary_key)})")
        clauses.extend(
            f"FOREIGN KEY ({column}) REFERENCES {target}"
            for column, target in self.references.items()
        )
        body = ",\n    ".join(clauses)
        statements = [f"CREATE TABLE IF NOT EXISTS {self.name} (\n    {body}\n);"]
        statements.extend(
            f"CREATE INDEX IF NOT EXISTS {index} ON {self.name}({column});"
            for index, column in self.indexes.items()
        )
        return "\n".join(statements)


def _c(name: str, type_: str = _TEXT, **options) -> _Column:
    return _Column(name, type_, **options)


def _req(name: str, type_: str = _TEXT) -> _Column:
    return _Column(name, type_, required=True)


def _key(name: str) -> _Column:
    return _Column(name, _TEXT, key=True)


def _serial(name: str = "id") -> _Column:
    return _Column(name, _INT, serial=True)


_TABLES: tuple[_Table, ...] = (
    # Structural layer
    _Table(
        "symbols",
        (
            _key("id"),
            _c("canonical_id"),
            _req("name"),
            _req("kind"),
            _req("file"),
            _req("line_start", _INT),
            _req("line_end", _INT),
            _c("signature"),
            _c("docstring"),
            _req("body_hash"),
            _req("full_hash"),
            _c("complexity", _INT, default="0"),
            _req("language"),
            _c("scope_chain"),
            _c("parent_id"),
            _req("updated_at", _INT),
        ),
        indexes={
            "idx_symbols_file": "file",
            "idx_symbols_name": "name",
            "idx_symbols_canonical": "canonical_id",
        },
    ),
    _Table(
        "edges",
        (
            _req("from_id"),
            _req("to_id"),
            _req("kind"),
            _c("file"),
            _c("line", _INT),
            _c("confidence", _REAL, default="1.0"),
        ),
        primary_key=("from_id", "to_id", "kind"),
        indexes={"idx_edges_from": "from_id", "idx_edges_to": "to_id"},
    ),
    _Table(
        "chunks",
        (
            _key("id"),
            _req("symbol_id"),
            _req("chunk_index", _INT),
            _req("content"),
            _req("line_start", _INT),
            _req("line_end", _INT),
            _req("token_count", _INT),
            _req("nws_count", _INT),
            _req("body_hash"),
        ),
        references={"symbol_id": "symbols(id)"},
        indexes={"idx_chunks_symbol": "symbol_id"},
    ),
    _Table(
        "file_hashes",
        (_key("file"), _req("content_hash"), _req("updated_at", _INT)),
    ),
    _Table(
        "embeddings",
        (_key("symbol_id"), _req("embedding", _BLOB), _req("body_hash")),
        references={"symbol_id": "symbols(id)"},
    ),
    # Historical layer
    _Table(
        "git_commits",
        (
            _key("hash"),
            _req("author"),
            _c("email"),
            _req("timestamp", _INT),
            _c("message"),
        ),
    ),
    _Table(
        "symbol_commits",
        (_req("symbol_id"), _req("commit_hash"), _c("change_type")),
        primary_key=("symbol_id", "commit_hash"),
    ),
    _Table(
        "file_ownership",
        (
            _req("file"),
            _req("author"),
            _c("email"),
            _c("commits", _INT, default="1"),
            _req("last_touched", _INT),
        ),
        primary_key=("file", "author"),
    ),
    # Interaction layer
    _Table(
        "cortex_sessions",
        (
            _key("id"),
            _req("started_at", _INT),
            _c("ended_at", _INT),
            _c("source"),
            _c("goal"),
            _c("summary"),
        ),
    ),
    _Table(
        "interactions",
        (
            _serial(),
            _c("session_id"),
            _req("timestamp", _INT),
            _req("tool_name"),
            _c("query_text"),
            _c("result_symbols"),
            _c("duration_ms", _INT),
        ),
    ),
    _Table(
        "attention_map",
        (
            _key("symbol_id"),
            _c("view_count", _INT, default="0"),
            _c("query_count", _INT, default="0"),
            _c("annotate_count", _INT, default="0"),
            _c("last_accessed", _INT),
            _c("importance_score", _REAL, default="0.0"),
        ),
    ),
    # Knowledge layer
    _Table(
        "annotations",
        (
            _serial(),
            _req("symbol_id"),
            _req("annotation_type"),
            _req("content"),
            _c("author", default="'agent'"),
            _c("confidence", _REAL, default="0.8"),
            _req("full_hash_at"),
            _c("status", default="'active'"),
            _req("created_at", _INT),
            _req("updated_at", _INT),
        ),
        indexes={
            "idx_annotations_symbol": "symbol_id",
            "idx_annotations_status": "status",
        },
    ),
    _Table(
        "decisions",
        (
            _serial(),
            _req("symbol_ids"),
            _req("description"),
            _c("rationale"),
            _c("alternatives"),
            _c("confidence", _REAL, default="0.8"),
            _req("created_at", _INT),
        ),
    ),
    _Table(
        "patterns",
        (
            _serial(),
            _req("name"),
            _req("description"),
            _c("trigger_symbol_ids"),
            _c("evidence"),
            _c("confidence", _REAL, default="0.7"),
            _req("created_at", _INT),
        ),
    ),
    _Table(
        "topics",
        (_req("topic"), _req("symbol_id")),
        primary_key=("topic", "symbol_id"),
    ),
    # Reasoning layer
    _Table(
        "insights",
        (
            _serial(),
            _req("insight_type"),
            _req("content"),
            _c("symbol_ids"),
            _c("confidence", _REAL, default="0.7"),
            _c("status", default="'active'"),
            _req("created_at", _INT),
        ),
    ),
    _Table(
        "cascade_log",
        (
            _serial(),
            _req("trigger_symbol"),
            _req("affected_symbol"),
            _c("annotation_id", _INT),
            _c("old_confidence", _REAL),
            _c("new_confidence", _REAL),
            _c("reason"),
            _req("timestamp", _INT),
        ),
    ),
    # Temporal layer
    _Table(
        "symbol_evolution",
        (
            _key("id"),
            _req("symbol_id"),
            _c("commit_hash"),
            _req("timestamp", _INT),
            _req("change_type"),
            _c("old_full_hash"),
            _c("new_full_hash"),
            _c("old_file"),
            _c("new_file"),
            _c("diff_summary"),
        ),
        references={"symbol_id": "symbols(id)"},
        indexes={"idx_evolution_symbol": "symbol_id"},
    ),
    _Table(
        "branch_context",
        (_key("branch_name"), _req("last_seen_at", _INT), _req("symbol_snapshot")),
    ),
)

_FTS_COLUMNS = ("symbol_id", "name", "signature", "docstring", "scope_chain", "file")

SCHEMA_SQL = "\n\n".join(table.sql() for table in _TABLES) + "\n"

FTS_SQL = f"CREATE VIRTUAL TABLE fts_symbols USING fts5({', '.join(_FTS_COLUMNS)});\n"


def create_schema(conn: sqlite3.Connection) -> None:
    """Create every regular table and index; safe to run more than once."""
    conn.executescript(SCHEMA_SQL)


def create_fts_table(conn: sqlite3.Connection) -> None:
    """Create the full-text symbol index unless it already exists."""
    (exists,) = conn.execute(
        "SELECT COUNT(*) > 0 FROM sqlite_master WHERE type='table' AND name='fts_symbols'"
    ).fetchone()
    if not exists:
        conn.executescript(FTS_SQL)