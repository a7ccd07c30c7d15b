"""Plain data records shared by the parser, the store and the search layers."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum


class SymbolKind(str, Enum):
    """Kind of a code symbol as stored in the ``symbols.kind`` column."""

    FUNCTION = "function"
    METHOD = "method"
    CLASS = "class"
    STRUCT = "struct"
    ENUM = "enum"
    TRAIT = "trait"
    INTERFACE = "interface"
    IMPL = "impl"
    MODULE = "module"
    CONSTANT = "constant"
    VARIABLE = "variable"
    TYPE_ALIAS = "type_alias"
    SECTION = "section"

    def __str__(self) -> str:
        return self.value

    def is_value_type(self) -> bool:
        """Whether the symbol holds a value whose body is worth full-text indexing."""
        return self in (SymbolKind.CONSTANT, SymbolKind.VARIABLE, SymbolKind.TYPE_ALIAS)


class EdgeKind(str, Enum):
    """Kind of a relation between two symbols."""

    CALLS = "CALLS"
    INHERITS = "INHERITS"
    IMPLEMENTS = "IMPLEMENTS"
    IMPORTS = "IMPORTS"
    CONTAINS = "CONTAINS"
    REFERENCES = "REFERENCES"

    def __str__(self) -> str:
        return self.value


@dataclass
class ParsedSymbol:
    """A symbol extracted from source code, before it is stored."""

    id: str
    canonical_id: str
    name: str
    kind: SymbolKind
    file: str
    line_start: int
    line_end: int
    signature: str = ""
    docstring: str | None = None
    body: str = ""
    body_hash: str = ""
    full_hash: str = ""
    language: str = ""
    scope_chain: list[str] = field(default_factory=list)
    parent_id: str | None = None


@dataclass
class ParsedEdge:
    """A relation between two symbols found while parsing."""

    from_id: str
    to_id: str
    kind: EdgeKind
    file: str | None = None
    line: int | None = None
    confidence: float = 1.0


@dataclass
class Chunk:
    """A slice of a large symbol's body, indexed on its own."""

    id: str
    symbol_id: str
    chunk_index: int
    content: str
    line_start: int
    line_end: int
    token_count: int
    nws_count: int
    body_hash: str


@dataclass
class ParseResult:
    """Everything extracted from one file: symbols, edges and chunks."""

    symbols: list[ParsedSymbol] = field(default_factory=list)
    edges: list[ParsedEdge] = field(default_factory=list)
    chunks: list[Chunk] = field(default_factory=list)


@dataclass
class SymbolRow:
    """A symbol as read back from the store."""

    id: str
    canonical_id: str
    name: str
    kind: str
    file: str
    line_start: int
    line_end: int
    signature: str
    docstring: str | None
    body_hash: str
    full_hash: str
    language: str
    scope_chain: str
    parent_id: str | None = None

    def scope(self) -> list[str]:
        """The scope chain decoded from JSON; empty if it cannot be decoded."""
        try:
            value = json.loads(self.scope_chain or "")
        except (TypeError, ValueError):
            return []
        if not isinstance(value, list):
            return []
        return [str(item) for item in value]


@dataclass(frozen=True)
class StoreStats:
    """Counts of symbols, edges and files in a store."""

    symbol_count: int
    edge_count: int
    file_count: int


@dataclass
class CascadeEntry:
    """One annotation affected by a change to another symbol."""

    trigger_symbol: str
    affected_symbol: str
    annotation_id: int
    old_confidence: float
    new_confidence: float
    reason: str