"""Symbol store with the knowledge, interaction, history and temporal layers."""

from __future__ import annotations

import hashlib
import json
import time
from collections.abc import Iterable, Mapping

from engram.graph.base import StoreBase
from engram.graph.records import CascadeEntry

# Weights of each attention event in a symbol's importance score.
_ATTENTION_COLUMNS = {
    "view": "view_count",
    "query": "query_count",
    "annotate": "annotate_count",
}

# Unexplored symbols with more callers than this count as blind spots.
_BLIND_SPOT_CALLERS = 3
_BLIND_SPOT_LIMIT = 20
_COMMIT_HISTORY_LIMIT = 50
_DOWNVOTE_STEP = 0.2


def _now() -> int:
    return int(time.time())


def _ids_json(symbol_ids: Iterable[str]) -> str:
    return json.dumps(list(symbol_ids), separators=(",", ":"))


class Store(StoreBase):
    """The full symbol store used by the command line and the search layers."""

    # Annotations

    def create_annotation(
        self, symbol_id: str, annotation_type: str, content: str, full_hash_at: str
    ) -> int:
        """Annotate a symbol, anchored to its current full hash; returns the new id."""
        now = _now()
        cursor = self._execute(
            "INSERT INTO annotations "
            "(symbol_id, annotation_type, content, full_hash_at, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (symbol_id, annotation_type, content, full_hash_at, now, now),
        )
        return cursor.lastrowid

    def verify_annotation(self, annotation_id: int) -> None:
        """Mark an annotation as confirmed: full confidence and active."""
        self._execute(
            "UPDATE annotations SET confidence = 1.0, status = 'active', updated_at = ? "
            "WHERE id = ?",
            (_now(), annotation_id),
        )

    def downvote_annotation(self, annotation_id: int) -> None:
        """Lower an annotation's confidence by 0.2, never below zero."""
        self._execute(
            "UPDATE annotations SET confidence = MAX(0.0, confidence - ?), updated_at = ? "
            "WHERE id = ?",
            (_DOWNVOTE_STEP, _now(), annotation_id),
        )

    def get_annotations(self, symbol_id: str) -> list[tuple[int, str, str, float, str]]:
        """(id, type, content, confidence, status) for a symbol, newest first."""
        rows = self._fetch_all(
            "SELECT id, annotation_type, content, confidence, status "
            "FROM annotations WHERE symbol_id = ? ORDER BY created_at DESC",
            (symbol_id,),
        )
        return [
            (ann_id, ann_type, content, float(confidence), status)
            for ann_id, ann_type, content, confidence, status in rows
        ]

    def get_annotation_hash(self, annotation_id: int) -> str | None:
        """The full hash an annotation was anchored to, or None if it does not exist."""
        row = self._fetch_one(
            "SELECT full_hash_at FROM annotations WHERE id = ?", (annotation_id,)
        )
        return row[0] if row is not None else None

    def update_annotation_status(
        self, annotation_id: int, status: str, confidence: float
    ) -> None:
        self._execute(
            "UPDATE annotations SET status = ?, confidence = ?, updated_at = ? WHERE id = ?",
            (status, confidence, _now(), annotation_id),
        )

    def reduce_annotation_confidence(
        self, annotation_id: int, new_confidence: float
    ) -> None:
        self._execute(
            "UPDATE annotations SET confidence = ?, updated_at = ? WHERE id = ?",
            (new_confidence, _now(), annotation_id),
        )

    # Cascade log

    def write_cascade_log(self, entry: CascadeEntry, timestamp: int) -> None:
        self._execute(
            "INSERT INTO cascade_log "
            "(trigger_symbol, affected_symbol, annotation_id, old_confidence, "
            " new_confidence, reason, timestamp) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                entry.trigger_symbol,
                entry.affected_symbol,
                entry.annotation_id,
                entry.old_confidence,
                entry.new_confidence,
                entry.reason,
                timestamp,
            ),
        )

    def get_cascade_log(
        self, trigger_symbol: str
    ) -> list[tuple[str, str, int, float, float, str]]:
        """Entries caused by a trigger symbol, in the order they were written."""
        rows = self._fetch_all(
            "SELECT trigger_symbol, affected_symbol, annotation_id, old_confidence, "
            "new_confidence, reason FROM cascade_log WHERE trigger_symbol = ? ORDER BY id",
            (trigger_symbol,),
        )
        return [
            (trigger, affected, ann_id, float(old), float(new), reason)
            for trigger, affected, ann_id, old, new, reason in rows
        ]

    # Knowledge layer

    def record_decision(
        self,
        symbol_ids: Iterable[str],
        description: str,
        rationale: str | None = None,
        alternatives: str | None = None,
    ) -> int:
        cursor = self._execute(
            "INSERT INTO decisions (symbol_ids, description, rationale, alternatives, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (_ids_json(symbol_ids), description, rationale, alternatives, _now()),
        )
        return cursor.lastrowid

    def record_pattern(
        self, name: str, description: str, symbol_ids: Iterable[str]
    ) -> int:
        cursor = self._execute(
            "INSERT INTO patterns (name, description, trigger_symbol_ids, created_at) "
            "VALUES (?, ?, ?, ?)",
            (name, description, _ids_json(symbol_ids), _now()),
        )
        return cursor.lastrowid

    def create_insight(
        self, insight_type: str, content: str, symbol_ids: Iterable[str]
    ) -> int:
        cursor = self._execute(
            "INSERT INTO insights (insight_type, content, symbol_ids, created_at) "
            "VALUES (?, ?, ?, ?)",
            (insight_type, content, _ids_json(symbol_ids), _now()),
        )
        return cursor.lastrowid

    def get_insights(self) -> list[tuple[int, str, str, str, float, str]]:
        """Active insights as (id, type, content, symbol_ids JSON, confidence, status)."""
        rows = self._fetch_all(
            "SELECT id, insight_type, content, COALESCE(symbol_ids, '[]'), confidence, status "
            "FROM insights WHERE status = 'active' ORDER BY confidence DESC"
        )
        return [
            (ins_id, ins_type, content, ids, float(confidence), status)
            for ins_id, ins_type, content, ids, confidence, status in rows
        ]

    def resolve_insight(self, insight_id: int, status: str) -> None:
        self._execute(
            "UPDATE insights SET status = ? WHERE id = ?", (status, insight_id)
        )

    def get_risk_score(self, symbol_id: str) -> float:
        """(1 + complexity) x (1 + callers) x (1 + stale annotations)."""
        with self._lock:
            (caller_count,) = self._conn.execute(
                "SELECT COUNT(*) FROM edges WHERE to_id = ? AND kind = 'CALLS'",
                (symbol_id,),
            ).fetchone()
            (stale_count,) = self._conn.execute(
                "SELECT COUNT(*) FROM annotations WHERE symbol_id = ? AND status = 'stale'",
                (symbol_id,),
            ).fetchone()
            row = self._conn.execute(
                "SELECT COALESCE(complexity, 0) FROM symbols WHERE id = ?", (symbol_id,)
            ).fetchone()
        complexity = row[0] if row is not None else 0
        return (1.0 + complexity) * (1.0 + caller_count) * (1.0 + stale_count)

    def add_topic(self, topic: str, symbol_id: str) -> None:
        self._execute(
            "INSERT OR IGNORE INTO topics (topic, symbol_id) VALUES (?, ?)",
            (topic, symbol_id),
        )

    def get_topic_symbols(self, topic: str) -> list[str]:
        rows = self._fetch_all("SELECT symbol_id FROM topics WHERE topic = ?", (topic,))
        return [symbol_id for (symbol_id,) in rows]

    def get_all_topics(self) -> list[tuple[str, int]]:
        """Every topic with its symbol count, largest first."""
        rows = self._fetch_all(
            "SELECT topic, COUNT(*) FROM topics GROUP BY topic ORDER BY COUNT(*) DESC"
        )
        return [(topic, count) for topic, count in rows]

    # Interaction tracking

    def record_attention(self, symbol_id: str, event: str) -> None:
        """Count a view, query or annotate event and refresh the importance score."""
        now = _now()
        with self._transaction() as tx:
            tx.execute(
                "INSERT INTO attention_map "
                "(symbol_id, view_count, query_count, annotate_count, last_accessed, "
                " importance_score) VALUES (?, 0, 0, 0, ?, 0.0) "
                "ON CONFLICT(symbol_id) DO UPDATE SET last_accessed = excluded.last_accessed",
                (symbol_id, now),
            )
            column = _ATTENTION_COLUMNS.get(event)
            if column is not None:
                tx.execute(
                    f"UPDATE attention_map SET {column} = {column} + 1 WHERE symbol_id = ?",
                    (symbol_id,),
                )
            tx.execute(
                "UPDATE attention_map SET importance_score = "
                "view_count + 2.0 * query_count + 3.0 * annotate_count WHERE symbol_id = ?",
                (symbol_id,),
            )

    def get_exploration_map(self) -> tuple[list[tuple[str, float]], list[str]]:
        """Explored symbols by importance, and heavily called symbols never looked at."""
        explored = [
            (symbol_id, float(score))
            for symbol_id, score in self._fetch_all(
                "SELECT symbol_id, importance_score FROM attention_map "
                "ORDER BY importance_score DESC"
            )
        ]
        blind_spots = [
            symbol_id
            for (symbol_id,) in self._fetch_all(
                "SELECT s.id FROM symbols s "
                "LEFT JOIN attention_map a ON s.id = a.symbol_id "
                "WHERE a.symbol_id IS NULL "
                "AND (SELECT COUNT(*) FROM edges e WHERE e.to_id = s.id AND e.kind = 'CALLS') > ? "
                "ORDER BY (SELECT COUNT(*) FROM edges e WHERE e.to_id = s.id) DESC "
                "LIMIT ?",
                (_BLIND_SPOT_CALLERS, _BLIND_SPOT_LIMIT),
            )
        ]
        return explored, blind_spots

    def suggest_next(self, limit: int) -> list[tuple[str, str]]:
        """Unexplored symbols as (id, name), most referenced first."""
        rows = self._fetch_all(
            "SELECT s.id, s.name FROM symbols s "
            "LEFT JOIN attention_map a ON s.id = a.symbol_id "
            "WHERE a.symbol_id IS NULL "
            "ORDER BY (SELECT COUNT(*) FROM edges e WHERE e.to_id = s.id) DESC "
            "LIMIT ?",
            (limit,),
        )
        return [(symbol_id, name) for symbol_id, name in rows]

    def get_hot_symbols(self, limit: int) -> list[tuple[str, float]]:
        """Symbols with a positive importance score, highest first."""
        rows = self._fetch_all(
            "SELECT symbol_id, importance_score FROM attention_map "
            "WHERE importance_score > 0 ORDER BY importance_score DESC LIMIT ?",
            (limit,),
        )
        return [(symbol_id, float(score)) for symbol_id, score in rows]

    # Git data

    def upsert_git_commit(
        self, commit_hash: str, author: str, email: str, timestamp: int, message: str
    ) -> None:
        self._execute(
            "INSERT OR REPLACE INTO git_commits (hash, author, email, timestamp, message) "
            "VALUES (?, ?, ?, ?, ?)",
            (commit_hash, author, email, timestamp, message),
        )

    def upsert_file_ownership(
        self, file: str, author: str, email: str, commits: int, last_touched: int
    ) -> None:
        self._execute(
            "INSERT OR REPLACE INTO file_ownership "
            "(file, author, email, commits, last_touched) VALUES (?, ?, ?, ?, ?)",
            (file, author, email, commits, last_touched),
        )

    def get_file_ownership(self, file: str) -> list[tuple[str, str, int, int]]:
        """(author, email, commits, last_touched) for a file, most commits first."""
        rows = self._fetch_all(
            "SELECT author, email, commits, last_touched FROM file_ownership "
            "WHERE file = ? ORDER BY commits DESC",
            (file,),
        )
        return [(author, email, commits, touched) for author, email, commits, touched in rows]

    def get_file_commit_history(self, file: str) -> list[tuple[str, str, int, str]]:
        """The 50 most recent commits of the repository; ``file`` is not yet used to filter."""
        rows = self._fetch_all(
            "SELECT hash, author, timestamp, message FROM git_commits "
            "ORDER BY timestamp DESC LIMIT ?",
            (_COMMIT_HISTORY_LIMIT,),
        )
        return [(commit, author, ts, message) for commit, author, ts, message in rows]

    # Temporal data

    def log_symbol_evolution(
        self,
        symbol_id: str,
        change_type: str,
        commit_hash: str | None = None,
        old_full_hash: str | None = None,
        new_full_hash: str | None = None,
        old_file: str | None = None,
        new_file: str | None = None,
        diff_summary: str | None = None,
    ) -> None:
        """Record a change to a symbol; one entry per symbol, change type and second."""
        now = _now()
        event_id = hashlib.sha256(
            f"{symbol_id}:{change_type}:{now}".encode("utf-8")
        ).hexdigest()
        self._execute(
            "INSERT OR REPLACE INTO symbol_evolution "
            "(id, symbol_id, commit_hash, timestamp, change_type, old_full_hash, "
            " new_full_hash, old_file, new_file, diff_summary) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                event_id,
                symbol_id,
                commit_hash,
                now,
                change_type,
                old_full_hash,
                new_full_hash,
                old_file,
                new_file,
                diff_summary,
            ),
        )

    def get_symbol_evolution(
        self, symbol_id: str
    ) -> list[tuple[str, int, str, str | None, str | None]]:
        """(change type, timestamp, summary, old hash, new hash), newest first."""
        rows = self._fetch_all(
            "SELECT change_type, timestamp, COALESCE(diff_summary, ''), old_full_hash, "
            "new_full_hash FROM symbol_evolution WHERE symbol_id = ? ORDER BY timestamp DESC",
            (symbol_id,),
        )
        return [tuple(row) for row in rows]

    def save_branch_context(self, branch: str, snapshot: Mapping[str, str]) -> None:
        self._execute(
            "INSERT OR REPLACE INTO branch_context (branch_name, last_seen_at, symbol_snapshot) "
            "VALUES (?, ?, ?)",
            (branch, _now(), json.dumps(dict(snapshot), separators=(",", ":"))),
        )

    def get_previous_full_hash(self, symbol_id: str) -> str | None:
        """The hash a symbol had before its latest recorded change, if any."""
        row = self._fetch_one(
            "SELECT old_full_hash FROM symbol_evolution "
            "WHERE symbol_id = ? ORDER BY timestamp DESC LIMIT 1",
            (symbol_id,),
        )
        return row[0] if row is not None else None