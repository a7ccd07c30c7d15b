"""Embedding-based search: vector index, rank fusion and hybrid search."""

from __future__ import annotations

import math
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from engram.graph.records import SymbolRow

# Reciprocal rank fusion constant; 60 is the usual choice.
RRF_K = 60.0

# How many more candidates each signal fetches than the caller asked for.
_OVER_FETCH = 3
# How far the graph signal expands from each high-attention symbol.
_GRAPH_HOPS = 2


@dataclass
class SearchResult:
    """A symbol found by a search, with its score and the signal that produced it."""

    symbol_id: str
    score: float
    source: str = "rrf"


class Embedder(ABC):
    """A model that turns texts into fixed-size vectors."""

    @abstractmethod
    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed every text, in order."""

    @abstractmethod
    def dimensions(self) -> int:
        """Length of each vector the model produces."""

    def embed_one(self, text: str) -> list[float]:
        """Embed a single text."""
        vectors = self.embed_batch([text])
        if not vectors:
            raise ValueError("empty embedding result")
        return list(vectors[0])


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors; 0.0 if either has zero length."""
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


def build_embedding_text(
    sym: SymbolRow, callers: Iterable[str], deps: Iterable[str]
) -> str:
    """Text describing a symbol in its context, as fed to the embedding model."""
    scope = sym.scope()
    scope_str = f" in {' > '.join(scope[:-1])}" if len(scope) > 1 else ""

    parts = [f"{sym.kind} {sym.name}{scope_str}"]
    if sym.signature:
        parts.append(sym.signature)
    if sym.docstring:
        parts.append(sym.docstring)

    caller_names = list(callers)
    if caller_names:
        parts.append(f"called by: {', '.join(caller_names)}")
    dep_names = list(deps)
    if dep_names:
        parts.append(f"uses: {', '.join(dep_names)}")
    return "\n".join(parts)


class VectorIndex:
    """In-memory brute-force index of symbol embeddings."""

    def __init__(self) -> None:
        self._vectors: dict[str, list[float]] = {}

    def insert(self, symbol_id: str, embedding: Sequence[float]) -> None:
        self._vectors[symbol_id] = list(embedding)

    def __len__(self) -> int:
        return len(self._vectors)

    def search(
        self, query_embedding: Sequence[float], top_k: int
    ) -> list[tuple[str, float]]:
        """The ``top_k`` most similar symbols as (id, similarity), best first."""
        scores = [
            (symbol_id, cosine_similarity(query_embedding, vector))
            for symbol_id, vector in self._vectors.items()
        ]
        scores.sort(key=lambda item: item[1], reverse=True)
        return scores[:top_k]

    def load_from_store(self, store) -> int:
        """Load every stored embedding; returns the index size afterwards."""
        for symbol_id, embedding in store.get_all_embeddings():
            self._vectors[symbol_id] = embedding
        return len(self._vectors)


def rrf_fuse(
    signals: Iterable[Sequence[tuple[str, float]]], top_k: int
) -> list[SearchResult]:
    """Combine ranked lists by reciprocal rank fusion: sum of 1 / (k + rank)."""
    fused: dict[str, float] = {}
    for signal in signals:
        for rank, (symbol_id, _score) in enumerate(signal, start=1):
            fused[symbol_id] = fused.get(symbol_id, 0.0) + 1.0 / (RRF_K + rank)

    results = [
        SearchResult(symbol_id=symbol_id, score=score, source="rrf")
        for symbol_id, score in fused.items()
    ]
    results.sort(key=lambda result: result.score, reverse=True)
    return results[:top_k]


def _graph_signal(store, limit: int) -> list[tuple[str, float]]:
    """Symbols near high-attention symbols, scored by importance over distance."""
    try:
        hot = store.get_hot_symbols(limit)
    except sqlite3.Error:
        return []

    scores: dict[str, float] = {}
    for hot_id, importance in hot:
        for walk in (store.find_callers, store.find_dependencies):
            try:
                neighbours = walk(hot_id, _GRAPH_HOPS)
            except sqlite3.Error:
                continue
            for neighbour_id, distance in neighbours:
                score = importance / (distance + 1.0)
                scores[neighbour_id] = max(scores.get(neighbour_id, 0.0), score)

    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    return ranked[:limit]


def search_hybrid(
    query: str, store, embedder: Embedder, index: VectorIndex, top_k: int
) -> list[SearchResult]:
    """Fuse vector similarity, BM25 and call-graph proximity into one ranking."""
    over_fetch = top_k * _OVER_FETCH

    query_embedding = embedder.embed_one(query)
    vector_results = [
        (symbol_id, float(score))
        for symbol_id, score in index.search(query_embedding, over_fetch)
    ]
    # Full-text ranks are negative with lower meaning better.
    bm25_results = [
        (symbol_id, -score) for symbol_id, score in store.search_bm25(query, over_fetch)
    ]

    signals = [vector_results, bm25_results]
    graph_results = _graph_signal(store, over_fetch)
    if graph_results:
        signals.append(graph_results)
    return rrf_fuse(signals, top_k)