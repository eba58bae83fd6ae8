"""Locate the name token of a function so the server can prepare a call hierarchy."""

from __future__ import annotations

import re

from codelineage.model import Position, SymbolInformation

# func Name(   func (r *Recv) Name(   func (r Recv[T]) Name[T any](
GO_FUNCTION_NAME_PATTERN = re.compile(
    r"^\s*func\s*(?:\(\s*(?:\w+\s+)?\*?\s*\w+(?:\[[^\]]*\])?\s*\)\s*)?(\w+)\s*[\[(]"
)


def bare_name(symbol_name: str) -> str:
    """``(*Server).Start`` -> ``Start``."""
    return symbol_name.rsplit(".", 1)[-1]


def name_position(symbol: SymbolInformation, line_text: str) -> Position | None:
    """Position of *symbol*'s name on its declaration line, if it can be found."""
    if symbol.selection_range is not None:
        return symbol.selection_range.start

    line = symbol.range.start.line
    m = GO_FUNCTION_NAME_PATTERN.match(line_text)
    if m:
        return Position(line, m.start(1))

    m = re.search(rf"\b{re.escape(bare_name(symbol.name))}\b", line_text)
    if m:
        return Position(line, m.start())
    return None
