# engram

A persistent store of codebase knowledge for coding agents. It keeps the
symbols of a project, the call edges between them, notes written about them,
and git history in one SQLite database under `.engram/engram.db`. Symbols can
be found by keywords (SQLite FTS5, BM25 ranking), and the library also offers
a hybrid search that fuses vector similarity, keywords and call-graph
proximity.

## Install

```
pip install .
```

There are no third-party dependencies. Full-text search needs an SQLite build
with FTS5, which the standard `sqlite3` module has on most platforms. The git
features run the `git` command.

## Command line

```
engram init --root .
engram status --root .
engram search "token validation" --top_k 10 --root .
engram context-for-file --file src/auth.py --root .
engram install-hooks --root .
engram stop
```

- `init` creates `.engram/engram.db` under the root and its tables.
- `status` prints the number of symbols, edges and files in the store, or says
  that the directory is not initialised.
- `search QUERY` prints the best keyword (BM25) matches as
  `score  kind name (file:line)`. `--top_k` (also `--top-k`) sets how many,
  default 10.
- `context-for-file --file PATH` prints one summary line for a file: number of
  symbols, callers, the highest risk score, stale annotations and the first
  three symbols. If the exact path is not stored, symbols whose path ends with
  it (or that it ends with) are used. It prints nothing when the project is
  not initialised or the file is unknown, so an editor hook can call it
  safely. `--brief` is accepted (`true`/`false`) and does not change output.
- `install-hooks` writes `.claude/settings.local.json` under the root with a
  `PreToolUse` hook for `Read` that runs `engram search` on the file.
- `stop` reads `.engram/engram.pid` in the current directory, sends the
  process a termination signal, and removes the file; an unreadable PID file
  is just removed.

`--root` defaults to the current directory. Commands that need a store exit
with status 1 and an `Error:` message if it has not been initialised.

## Library

```python
from engram.graph.records import EdgeKind, ParsedEdge, ParsedSymbol, ParseResult, SymbolKind
from engram.graph.store import Store

def symbol(sid, name):
    return ParsedSymbol(
        id=sid, canonical_id=sid, name=name, kind=SymbolKind.FUNCTION,
        file="a.py", line_start=1, line_end=2, body=f"def {name}(): pass",
        body_hash=f"b-{sid}", full_hash=f"f-{sid}", language="python",
        scope_chain=[name],
    )

with Store.open_in_memory() as store:
    store.initialize()
    result = ParseResult(
        symbols=[symbol("s1", "hello"), symbol("s2", "greet")],
        edges=[ParsedEdge("s2", "s1", EdgeKind.CALLS, file="a.py")],
    )
    store.sync_file("a.py", result)        # True
    store.sync_file("a.py", result)        # False: content hash unchanged
    print(store.stats())
    print(store.search_bm25("hello", 5))
    print(store.find_callers("s1", 2))     # [("s2", 1)]
```

`engram.graph.store.Store` (built on `engram.graph.base.StoreBase`) offers:

- file sync and structural queries: `sync_file`, `get_symbol`,
  `find_symbol_by_name`, `get_file_symbols`, `get_all_symbols`,
  `find_callers`, `find_dependencies`, `get_direct_callers`, `stats`,
  `language_breakdown`, and `garbage_collect`, which drops every file not in
  the list it is given;
- embeddings stored as little-endian 32-bit floats: `save_embedding`,
  `get_all_embeddings`, `get_stale_embeddings`;
- knowledge: annotations (`create_annotation`, `verify_annotation`,
  `downvote_annotation`, `get_annotations`, ...), a cascade log, decisions,
  patterns, insights and topics;
- `get_risk_score`: (1 + complexity) × (1 + callers) × (1 + stale annotations);
- attention tracking: `record_attention`, `get_exploration_map`,
  `suggest_next`, `get_hot_symbols`;
- git and temporal data: commits, file ownership, symbol evolution and branch
  snapshots.

`engram.graph.schema` creates the tables (`create_schema`) and the FTS5 index
(`create_fts_table`).

`engram.embeddings` provides `cosine_similarity`, `build_embedding_text`,
`VectorIndex`, `rrf_fuse` (reciprocal rank fusion, k = 60) and
`search_hybrid(query, store, embedder, index, top_k)`. The embedding model is
yours to supply by subclassing `Embedder` and implementing `embed_batch` and
`dimensions`.

`engram.git` reads a repository through the `git` command: `open_repo`,
`blame_file`, `get_recent_commits`, `get_file_commits`, `compute_ownership`,
`current_branch`, and `sync_git_data`, which stores the 500 most recent
commits and per-file ownership. Failures raise `GitError`.

## What it does not do

- It does not parse source code. Symbols and edges must be supplied as
  `ParseResult` objects; there is no command that indexes a project, so a
  freshly initialised store is empty until a program fills it.
- There is no daemon or file watcher, and nothing writes the PID file that
  `engram stop` reads.
- No embedding model is included, and the `search` command uses keyword
  search only; hybrid search is available from the library with your own
  `Embedder`.
- There is no agent protocol server.