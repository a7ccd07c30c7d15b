"""SQLite-backed symbol store: file sync, structural queries and embeddings."""

from __future__ import annotations

import hashlib
import json
import os
import sqlite3
import struct
import threading
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

from engram.graph import schema
from engram.graph.records import (
    ParsedSymbol,
    ParseResult,
    StoreStats,
    SymbolKind,
    SymbolRow,
)

_SYMBOL_COLUMNS = (
    "id, canonical_id, name, kind, file, line_start, line_end, "
    "signature, docstring, body_hash, full_hash, language, "
    "scope_chain, parent_id"
)

# Bodies shorter than this many bytes are added to the full-text index.
_SHORT_BODY_BYTES = 200


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _is_value_type(kind: Any) -> bool:
    try:
        return SymbolKind(_enum_value(kind)).is_value_type()
    except ValueError:
        return False


def _row_to_symbol(row: tuple) -> SymbolRow:
    return SymbolRow(
        id=row[0],
        canonical_id=row[1] or "",
        name=row[2],
        kind=row[3],
        file=row[4],
        line_start=row[5],
        line_end=row[6],
        signature=row[7] or "",
        docstring=row[8],
        body_hash=row[9],
        full_hash=row[10],
        language=row[11],
        scope_chain=row[12] or "",
        parent_id=row[13],
    )


def _fts_text(sym: ParsedSymbol) -> str:
    """Docstring, plus the body for value-like or short symbols."""
    doc = sym.docstring or ""
    body = sym.body or ""
    is_short_body = len(body.encode("utf-8")) < _SHORT_BODY_BYTES
    if _is_value_type(sym.kind) or is_short_body:
        return f"{doc} {body}"
    return doc


class StoreBase:
    """Core of the symbol store: one SQLite connection guarded by a lock."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.RLock()

    @classmethod
    def open(cls, path: str | os.PathLike[str]):
        """Open (or create) a database file in WAL mode."""
        conn = sqlite3.connect(
            os.fspath(path), check_same_thread=False, isolation_level=None
        )
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return cls(conn)

    @classmethod
    def open_in_memory(cls):
        """Open a private in-memory database."""
        conn = sqlite3.connect(":memory:", check_same_thread=False, isolation_level=None)
        conn.execute("PRAGMA foreign_keys=ON")
        return cls(conn)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    def initialize(self) -> None:
        """Create all tables, indexes and the full-text index."""
        with self._lock:
            schema.create_schema(self._conn)
            schema.create_fts_table(self._conn)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self._conn.execute("BEGIN")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    def _fetch_all(self, sql: str, params: tuple = ()) -> list[tuple]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def _fetch_one(self, sql: str, params: tuple = ()) -> tuple | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._conn.execute(sql, params)

    # File sync

    @staticmethod
    def _content_hash(result: ParseResult) -> str:
        hasher = hashlib.sha256()
        for sym in result.symbols:
            hasher.update(sym.full_hash.encode("utf-8"))
        return hasher.hexdigest()

    def sync_file(self, relative_path: str | os.PathLike[str], result: ParseResult) -> bool:
        """Replace everything stored for a file; False if its content is unchanged."""
        file_str = os.fspath(relative_path)
        content_hash = self._content_hash(result)

        with self._lock:
            row = self._conn.execute(
                "SELECT content_hash FROM file_hashes WHERE file = ?", (file_str,)
            ).fetchone()
            if row is not None and row[0] == content_hash:
                return False

            now = int(time.time())
            with self._transaction() as tx:
                tx.execute(
                    "DELETE FROM chunks WHERE symbol_id IN "
                    "(SELECT id FROM symbols WHERE file = ?)",
                    (file_str,),
                )
                tx.execute(
                    "DELETE FROM fts_symbols WHERE symbol_id IN "
                    "(SELECT id FROM symbols WHERE file = ?)",
                    (file_str,),
                )
                tx.execute("DELETE FROM edges WHERE file = ?", (file_str,))
                tx.execute("DELETE FROM symbols WHERE file = ?", (file_str,))

                for sym in result.symbols:
                    scope_json = json.dumps(sym.scope_chain, separators=(",", ":"))
                    tx.execute(
                        "INSERT OR REPLACE INTO symbols "
                        "(id, canonical_id, name, kind, file, line_start, line_end, "
                        " signature, docstring, body_hash, full_hash, language, "
                        " scope_chain, parent_id, updated_at) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            sym.id,
                            sym.canonical_id,
                            sym.name,
                            _enum_value(sym.kind),
                            sym.file,
                            sym.line_start,
                            sym.line_end,
                            sym.signature,
                            sym.docstring,
                            sym.body_hash,
                            sym.full_hash,
                            sym.language,
                            scope_json,
                            sym.parent_id,
                            now,
                        ),
                    )
                    tx.execute(
                        "INSERT INTO fts_symbols "
                        "(symbol_id, name, signature, docstring, scope_chain, file) "
                        "VALUES (?, ?, ?, ?, ?, ?)",
                        (
                            sym.id,
                            sym.name,
                            sym.signature,
                            _fts_text(sym),
                            scope_json,
                            sym.file,
                        ),
                    )

                for chunk in result.chunks:
                    tx.execute(
                        "INSERT OR REPLACE INTO chunks "
                        "(id, symbol_id, chunk_index, content, line_start, line_end, "
                        " token_count, nws_count, body_hash) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            chunk.id,
                            chunk.symbol_id,
                            chunk.chunk_index,
                            chunk.content,
                            chunk.line_start,
                            chunk.line_end,
                            chunk.token_count,
                            chunk.nws_count,
                            chunk.body_hash,
                        ),
                    )

                for edge in result.edges:
                    tx.execute(
                        "INSERT OR REPLACE INTO edges "
                        "(from_id, to_id, kind, file, line, confidence) "
                        "VALUES (?, ?, ?, ?, ?, ?)",
                        (
                            edge.from_id,
                            edge.to_id,
                            _enum_value(edge.kind),
                            edge.file,
                            edge.line,
                            edge.confidence,
                        ),
                    )

                tx.execute(
                    "INSERT OR REPLACE INTO file_hashes (file, content_hash, updated_at) "
                    "VALUES (?, ?, ?)",
                    (file_str, content_hash, now),
                )
        return True

    # Queries

    def get_symbol(self, symbol_id: str) -> SymbolRow | None:
        row = self._fetch_one(
            f"SELECT {_SYMBOL_COLUMNS} FROM symbols WHERE id = ?", (symbol_id,)
        )
        return _row_to_symbol(row) if row is not None else None

    def find_symbol_by_name(self, name: str) -> list[SymbolRow]:
        rows = self._fetch_all(
            f"SELECT {_SYMBOL_COLUMNS} FROM symbols WHERE name = ?", (name,)
        )
        return [_row_to_symbol(row) for row in rows]

    def search_bm25(self, query: str, top_k: int) -> list[tuple[str, float]]:
        """Full-text search; ranks are negative, best first. A malformed query finds nothing."""
        try:
            rows = self._fetch_all(
                "SELECT symbol_id, rank FROM fts_symbols "
                "WHERE fts_symbols MATCH ? ORDER BY rank LIMIT ?",
                (query, top_k),
            )
        except sqlite3.OperationalError:
            return []
        return [(symbol_id, float(rank)) for symbol_id, rank in rows]

    def _walk_calls(
        self, symbol_id: str, depth: int, sql: str
    ) -> list[tuple[str, int]]:
        results: list[tuple[str, int]] = []
        visited: set[str] = set()
        frontier: list[tuple[str, int]] = [(symbol_id, 0)]
        with self._lock:
            while frontier:
                current_id, current_depth = frontier.pop()
                if current_depth > depth or current_id in visited:
                    continue
                visited.add(current_id)
                if current_depth > 0:
                    results.append((current_id, current_depth))
                for (neighbour,) in self._conn.execute(sql, (current_id,)).fetchall():
                    frontier.append((neighbour, current_depth + 1))
        return results

    def find_callers(self, symbol_id: str, depth: int) -> list[tuple[str, int]]:
        """Symbols that call this one, up to ``depth`` hops, with their distance."""
        return self._walk_calls(
            symbol_id,
            depth,
            "SELECT from_id FROM edges WHERE to_id = ? AND kind = 'CALLS'",
        )

    def find_dependencies(self, symbol_id: str, depth: int) -> list[tuple[str, int]]:
        """Symbols this one calls, up to ``depth`` hops, with their distance."""
        return self._walk_calls(
            symbol_id,
            depth,
            "SELECT to_id FROM edges WHERE from_id = ? AND kind = 'CALLS'",
        )

    def get_file_symbols(self, file: str) -> list[SymbolRow]:
        rows = self._fetch_all(
            f"SELECT {_SYMBOL_COLUMNS} FROM symbols WHERE file = ? ORDER BY line_start",
            (file,),
        )
        return [_row_to_symbol(row) for row in rows]

    def get_all_symbols(self) -> list[SymbolRow]:
        rows = self._fetch_all(
            f"SELECT {_SYMBOL_COLUMNS} FROM symbols ORDER BY file, line_start"
        )
        return [_row_to_symbol(row) for row in rows]

    def get_all_files(self) -> list[str]:
        return [file for (file,) in self._fetch_all("SELECT file FROM file_hashes")]

    def get_direct_callers(self, symbol_id: str) -> list[str]:
        rows = self._fetch_all(
            "SELECT from_id FROM edges WHERE to_id = ? AND kind = 'CALLS'", (symbol_id,)
        )
        return [from_id for (from_id,) in rows]

    def stats(self) -> StoreStats:
        with self._lock:
            (symbol_count,) = self._conn.execute("SELECT COUNT(*) FROM symbols").fetchone()
            (edge_count,) = self._conn.execute("SELECT COUNT(*) FROM edges").fetchone()
            (file_count,) = self._conn.execute(
                "SELECT COUNT(*) FROM file_hashes"
            ).fetchone()
        return StoreStats(symbol_count, edge_count, file_count)

    def garbage_collect(self, existing_files: Iterable[str]) -> int:
        """Drop every tracked file not in ``existing_files``; returns how many went."""
        keep = set(existing_files)
        removed = 0
        with self._lock:
            stale = [file for file in self.get_all_files() if file not in keep]
            for file in stale:
                with self._transaction() as tx:
                    tx.execute(
                        "DELETE FROM fts_symbols WHERE symbol_id IN "
                        "(SELECT id FROM symbols WHERE file = ?)",
                        (file,),
                    )
                    tx.execute(
                        "DELETE FROM chunks WHERE symbol_id IN "
                        "(SELECT id FROM symbols WHERE file = ?)",
                        (file,),
                    )
                    tx.execute("DELETE FROM edges WHERE file = ?", (file,))
                    tx.execute("DELETE FROM symbols WHERE file = ?", (file,))
                    tx.execute("DELETE FROM file_hashes WHERE file = ?", (file,))
                removed += 1
        return removed

    def language_breakdown(self) -> list[tuple[str, int]]:
        """Symbol count per language, largest first."""
        rows = self._fetch_all(
            "SELECT language, COUNT(*) FROM symbols GROUP BY language ORDER BY COUNT(*) DESC"
        )
        return [(language, count) for language, count in rows]

    # Embeddings

    def save_embedding(
        self, symbol_id: str, embedding: Iterable[float], body_hash: str
    ) -> None:
        """Store a vector as little-endian 32-bit floats."""
        values = list(embedding)
        blob = struct.pack(f"<{len(values)}f", *values)
        self._execute(
            "INSERT OR REPLACE INTO embeddings (symbol_id, embedding, body_hash) "
            "VALUES (?, ?, ?)",
            (symbol_id, blob, body_hash),
        )

    def get_all_embeddings(self) -> list[tuple[str, list[float]]]:
        result: list[tuple[str, list[float]]] = []
        for symbol_id, blob in self._fetch_all(
            "SELECT symbol_id, embedding FROM embeddings"
        ):
            count = len(blob) // 4
            vector = list(struct.unpack(f"<{count}f", bytes(blob[: count * 4])))
            result.append((symbol_id, vector))
        return result

    def get_stale_embeddings(self) -> list[tuple[str, str]]:
        """Symbols with no embedding or one computed for an older body."""
        rows = self._fetch_all(
            "SELECT s.id, s.body_hash FROM symbols s "
            "LEFT JOIN embeddings e ON s.id = e.symbol_id "
            "WHERE e.symbol_id IS NULL OR e.body_hash != s.body_hash"
        )
        return [(symbol_id, body_hash) for symbol_id, body_hash in rows]