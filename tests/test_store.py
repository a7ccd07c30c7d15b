import json
import sqlite3

import pytest

from engram.graph.records import (
    CascadeEntry,
    EdgeKind,
    ParsedEdge,
    ParsedSymbol,
    ParseResult,
    SymbolKind,
)
from engram.graph.store import Store


def _symbol(name, file="test.rs"):
    return ParsedSymbol(
        id=f"id-{name}",
        canonical_id=f"canon-{name}",
        name=name,
        kind=SymbolKind.FUNCTION,
        file=file,
        line_start=1,
        line_end=2,
        body=f"fn {name}() {{}}",
        body_hash=f"body-{name}",
        full_hash=f"full-{name}",
        language="rust",
        scope_chain=[name],
    )


def _calls(caller, callee, file="test.rs"):
    return ParsedEdge(f"id-{caller}", f"id-{callee}", EdgeKind.CALLS, file=file, line=1)


@pytest.fixture
def store():
    s = Store.open_in_memory()
    s.initialize()
    yield s
    s.close()


def _sync(store, names, edges, file="test.rs"):
    result = ParseResult(
        symbols=[_symbol(n, file) for n in names],
        edges=[_calls(a, b, file) for a, b in edges],
    )
    store.sync_file(file, result)


def test_annotation_defaults_and_lookup(store):
    ann_id = store.create_annotation("id-a", "explanation", "does things", "hash1")
    assert ann_id > 0
    rows = store.get_annotations("id-a")
    assert rows == [(ann_id, "explanation", "does things", pytest.approx(0.8), "active")]
    assert store.get_annotation_hash(ann_id) == "hash1"
    assert store.get_annotation_hash(ann_id + 100) is None


def test_verify_and_downvote(store):
    ann_id = store.create_annotation("id-a", "note", "text", "h")
    store.update_annotation_status(ann_id, "stale", 0.3)
    assert store.get_annotations("id-a")[0][3:] == (pytest.approx(0.3), "stale")
    store.verify_annotation(ann_id)
    assert store.get_annotations("id-a")[0][3:] == (1.0, "active")
    for _ in range(10):
        store.downvote_annotation(ann_id)
    assert store.get_annotations("id-a")[0][3] == 0.0


def test_reduce_confidence(store):
    ann_id = store.create_annotation("id-a", "note", "text", "h")
    store.reduce_annotation_confidence(ann_id, 0.25)
    assert store.get_annotations("id-a")[0][3] == pytest.approx(0.25)


def test_cascade_log_round_trip(store):
    first = CascadeEntry("t", "x", 1, 0.8, 0.5, "caller changed")
    second = CascadeEntry("t", "y", 2, 0.9, 0.4, "dependency changed")
    store.write_cascade_log(first, 10)
    store.write_cascade_log(second, 11)
    store.write_cascade_log(CascadeEntry("other", "z", 3, 1.0, 0.1, "r"), 12)
    assert store.get_cascade_log("t") == [
        ("t", "x", 1, 0.8, 0.5, "caller changed"),
        ("t", "y", 2, 0.9, 0.4, "dependency changed"),
    ]


def test_decisions_and_patterns_get_new_ids(store):
    d1 = store.record_decision(["a"], "use sqlite", "simple", None)
    d2 = store.record_decision(["b"], "use fts5")
    p1 = store.record_pattern("retry", "retries on failure", ["a", "b"])
    p2 = store.record_pattern("cache", "caches results", [])
    assert d2 > d1
    assert p2 > p1


def test_insights_active_only_and_resolve(store):
    i1 = store.create_insight("warning", "hot spot", ["a", "b"])
    i2 = store.create_insight("warning", "dead code", [])
    insights = store.get_insights()
    assert {row[0] for row in insights} == {i1, i2}
    by_id = {row[0]: row for row in insights}
    assert json.loads(by_id[i1][3]) == ["a", "b"]
    assert by_id[i1][5] == "active"
    store.resolve_insight(i1, "resolved")
    assert [row[0] for row in store.get_insights()] == [i2]


def test_risk_score_counts_callers_and_stale(store):
    _sync(store, ["callee", "c1", "c2"], [("c1", "callee"), ("c2", "callee")])
    assert store.get_risk_score("id-c1") == 1.0
    base = store.get_risk_score("id-callee")
    ann = store.create_annotation("id-callee", "note", "x", "h")
    store.update_annotation_status(ann, "stale", 0.1)
    assert base == 3.0
    assert store.get_risk_score("id-callee") == base * 2
    assert store.get_risk_score("missing") == 1.0


def test_topics(store):
    store.add_topic("auth", "a")
    store.add_topic("auth", "b")
    store.add_topic("auth", "b")
    store.add_topic("db", "c")
    assert sorted(store.get_topic_symbols("auth")) == ["a", "b"]
    assert store.get_all_topics() == [("auth", 2), ("db", 1)]


def test_attention_and_hot_symbols(store):
    store.record_attention("viewed", "view")
    store.record_attention("annotated", "annotate")
    store.record_attention("ignored", "unknown-event")
    hot = store.get_hot_symbols(10)
    assert [symbol_id for symbol_id, _ in hot] == ["annotated", "viewed"]
    assert hot[0][1] > hot[1][1] > 0
    assert store.get_hot_symbols(1) == hot[:1]
    explored, _ = store.get_exploration_map()
    assert {symbol_id for symbol_id, _ in explored} == {"viewed", "annotated", "ignored"}


def test_attention_accumulates(store):
    store.record_attention("s", "view")
    once = store.get_hot_symbols(1)[0][1]
    store.record_attention("s", "view")
    assert store.get_hot_symbols(1)[0][1] == 2 * once


def test_blind_spots_need_more_than_three_callers(store):
    names = ["busy", "quiet"] + [f"c{i}" for i in range(4)]
    edges = [(f"c{i}", "busy") for i in range(4)] + [(f"c{i}", "quiet") for i in range(3)]
    _sync(store, names, edges)
    _, blind = store.get_exploration_map()
    assert blind == ["id-busy"]
    store.record_attention("id-busy", "view")
    assert store.get_exploration_map()[1] == []


def test_suggest_next_orders_by_references(store):
    _sync(store, ["top", "mid", "leaf"], [("top", "mid"), ("mid", "leaf"), ("top", "leaf")])
    suggestions = store.suggest_next(2)
    assert suggestions == [("id-leaf", "leaf"), ("id-mid", "mid")]
    store.record_attention("id-leaf", "view")
    assert ("id-leaf", "leaf") not in store.suggest_next(10)


def test_git_commits_history(store):
    store.upsert_git_commit("aaa", "Alice", "alice@example.com", 100, "first")
    store.upsert_git_commit("bbb", "Bob", "bob@example.com", 200, "second")
    store.upsert_git_commit("aaa", "Alice", "alice@example.com", 100, "first (edited)")
    history = store.get_file_commit_history("any.rs")
    assert history == [("bbb", "Bob", 200, "second"), ("aaa", "Alice", 100, "first (edited)")]


def test_commit_history_is_limited(store):
    for i in range(60):
        store.upsert_git_commit(f"h{i}", "A", "a@example.com", i, "m")
    history = store.get_file_commit_history("x")
    assert len(history) == 50
    assert history[0][2] == 59


def test_file_ownership(store):
    store.upsert_file_ownership("a.rs", "Alice", "alice@example.com", 2, 100)
    store.upsert_file_ownership("a.rs", "Bob", "bob@example.com", 5, 200)
    store.upsert_file_ownership("b.rs", "Carol", "carol@example.com", 1, 50)
    assert store.get_file_ownership("a.rs") == [
        ("Bob", "bob@example.com", 5, 200),
        ("Alice", "alice@example.com", 2, 100),
    ]
    store.upsert_file_ownership("a.rs", "Alice", "alice@example.com", 9, 300)
    assert store.get_file_ownership("a.rs")[0] == ("Alice", "alice@example.com", 9, 300)


def test_symbol_evolution(store):
    _sync(store, ["f"], [])
    assert store.get_previous_full_hash("id-f") is None
    store.log_symbol_evolution(
        "id-f", "modified", old_full_hash="old", new_full_hash="new", diff_summary="body"
    )
    store.log_symbol_evolution("id-f", "moved", old_full_hash="new", new_full_hash="new")
    history = store.get_symbol_evolution("id-f")
    assert sorted((row[0], row[2]) for row in history) == [("modified", "body"), ("moved", "")]
    assert store.get_previous_full_hash("id-f") in {"old", "new"}
    assert store.get_symbol_evolution("other") == []


def test_branch_context_persisted(tmp_path):
    path = tmp_path / "engram.db"
    with Store.open(path) as store:
        store.initialize()
        store.save_branch_context("main", {"a": "h1"})
        store.save_branch_context("main", {"a": "h2", "b": "h3"})
    conn = sqlite3.connect(path)
    try:
        rows = conn.execute(
            "SELECT branch_name, symbol_snapshot FROM branch_context"
        ).fetchall()
    finally:
        conn.close()
    assert len(rows) == 1
    assert rows[0][0] == "main"
    assert json.loads(rows[0][1]) == {"a": "h2", "b": "h3"}