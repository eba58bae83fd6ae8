"""Data model for call-hierarchy items, lineage trees and graphs."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import IntEnum


class SymbolKind(IntEnum):
    """LSP symbol kinds the engine cares about (values match the protocol)."""

    FILE = 1
    MODULE = 2
    NAMESPACE = 3
    PACKAGE = 4
    CLASS = 5
    METHOD = 6
    PROPERTY = 7
    FIELD = 8
    CONSTRUCTOR = 9
    ENUM = 10
    INTERFACE = 11
    FUNCTION = 12
    VARIABLE = 13
    CONSTANT = 14


CALLABLE_KINDS = frozenset({SymbolKind.FUNCTION, SymbolKind.METHOD})


@dataclass(frozen=True, order=True)
class Position:
    line: int  # 0-indexed
    character: int

    @classmethod
    def from_dict(cls, data: dict) -> Position:
        return cls(line=int(data["line"]), character=int(data["character"]))

    def to_dict(self) -> dict:
        return {"line": self.line, "character": self.character}


@dataclass(frozen=True)
class Range:
    start: Position
    end: Position

    @classmethod
    def from_dict(cls, data: dict) -> Range:
        return cls(
            start=Position.from_dict(data["start"]),
            end=Position.from_dict(data["end"]),
        )


@dataclass(frozen=True)
class SymbolInformation:
    """A document symbol, flattened from either LSP result shape.

    ``selection_range`` is only known for hierarchical ``DocumentSymbol``
    results; flat ``SymbolInformation`` results leave it as None.
    """

    name: str
    kind: int
    uri: str
    range: Range
    selection_range: Range | None = None

    @property
    def is_callable(self) -> bool:
        return self.kind in CALLABLE_KINDS


@dataclass(frozen=True)
class SymbolIdentity:
    """(uri, name): the only cache and dedup key used by the engine."""

    uri: str
    name: str

    @property
    def key(self) -> str:
        return f"{self.uri}::{self.name}"


@dataclass(frozen=True)
class CallHierarchyItem:
    """A call-hierarchy item as reported by the server.

    ``raw`` is the untouched payload; it is sent back verbatim for
    ``callHierarchy/incomingCalls`` since servers stash private data in it.
    """

    name: str
    kind: int
    uri: str
    range: Range
    selection_range: Range
    raw: dict = field(compare=False, repr=False)

    @classmethod
    def from_dict(cls, data: dict) -> CallHierarchyItem:
        return cls(
            name=data["name"],
            kind=int(data["kind"]),
            uri=data["uri"],
            range=Range.from_dict(data["range"]),
            selection_range=Range.from_dict(data["selectionRange"]),
            raw=data,
        )

    @property
    def identity(self) -> SymbolIdentity:
        return SymbolIdentity(self.uri, self.name)


@dataclass(frozen=True)
class CallHierarchyIncomingCall:
    caller: CallHierarchyItem
    from_ranges: tuple[Range, ...]

    @classmethod
    def from_dict(cls, data: dict) -> CallHierarchyIncomingCall:
        return cls(
            caller=CallHierarchyItem.from_dict(data["from"]),
            from_ranges=tuple(Range.from_dict(r) for r in data.get("fromRanges", [])),
        )


@dataclass(eq=False)
class CallHierarchyNode:
    """A node of the lineage tree.

    ``incoming`` is a list while the node is being expanded and becomes a
    tuple once expansion finishes; the visited cache shares that tuple.
    ``recursive`` marks a caller that was already being expanded higher up
    the same traversal; it is never expanded itself.
    """

    item: CallHierarchyItem
    incoming: Sequence[IncomingEdge] = field(default_factory=list)
    recursive: bool = False

    @property
    def identity(self) -> SymbolIdentity:
        return self.item.identity

    @property
    def name(self) -> str:
        return self.item.name

    @property
    def declaration_line(self) -> int:
        return self.item.range.start.line

    @property
    def is_root(self) -> bool:
        return not self.incoming and not self.recursive

    @property
    def is_expanded(self) -> bool:
        return isinstance(self.incoming, tuple)


@dataclass(frozen=True)
class IncomingEdge:
    """``caller`` calls the owning node from each of ``call_sites``."""

    caller: CallHierarchyNode
    call_sites: tuple[Range, ...]

    @property
    def lines(self) -> list[int]:
        return [r.start.line for r in self.call_sites]


@dataclass(frozen=True, order=True)
class LineagePath:
    """Root name plus the line offsets leading from the root to the start node."""

    root: str
    offsets: tuple[int, ...] = ()


@dataclass(frozen=True)
class GraphNode:
    node_id: str
    name: str
    path: str
    lines: tuple[int, ...]  # 1-indexed, ascending
    is_root: bool


@dataclass
class LineageGraph:
    """Deterministic node/edge description of a lineage tree."""

    title: str
    nodes: list[GraphNode] = field(default_factory=list)
    edges: list[tuple[str, str]] = field(default_factory=list)


NOT_CALLED_TITLE = "Not called anywhere"
INCOMPLETE_TITLE = "Lineage incomplete (cancelled)"


@dataclass
class LineageResult:
    """Outcome of resolving one start symbol.

    ``summary`` is None when the symbol is not called anywhere, in which
    case ``dot`` is None too. ``complete`` is False when the traversal was
    cancelled before it finished; such a result says nothing about callers,
    so :attr:`called` is None.
    """

    key: str
    start: CallHierarchyNode
    summary: str | None = None
    dot: str | None = None
    complete: bool = True
    paths: list[LineagePath] = field(default_factory=list)

    @property
    def called(self) -> bool | None:
        if not self.complete:
            return None
        return self.summary is not None

    @property
    def title(self) -> str:
        if not self.complete:
            return INCOMPLETE_TITLE
        return self.summary if self.summary is not None else NOT_CALLED_TITLE
