"""Build memoized incoming-call trees by querying the language server."""

from __future__ import annotations

import fnmatch
import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Protocol

from codelineage.model import (
    CallHierarchyIncomingCall,
    CallHierarchyItem,
    CallHierarchyNode,
    IncomingEdge,
    Range,
    SymbolIdentity,
)

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDE = ("*_test.go", "*component_test*")


class IncomingCallsSource(Protocol):
    async def incoming_calls(
        self, item: CallHierarchyItem
    ) -> list[CallHierarchyIncomingCall]: ...


class CancellationToken:
    """Cooperative cancellation flag checked between expansion steps."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled


class VisitedCache:
    """Fully expanded edge tuples keyed by symbol identity.

    Lives for one analysis session.  Entries are only ever written once a
    node's edge list is complete, and are never invalidated individually:
    a cached subtree spans many files, so any source change calls
    :meth:`clear`.
    """

    def __init__(self) -> None:
        self._entries: dict[SymbolIdentity, tuple[IncomingEdge, ...]] = {}

    def get(self, identity: SymbolIdentity) -> tuple[IncomingEdge, ...] | None:
        return self._entries.get(identity)

    def store(self, identity: SymbolIdentity, edges: tuple[IncomingEdge, ...]) -> None:
        self._entries[identity] = edges

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, identity: object) -> bool:
        return identity in self._entries

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class _Frame:
    node: CallHierarchyNode
    depth: int
    low: int  # shallowest in-progress ancestor referenced from this subtree
    calls: Iterator[CallHierarchyIncomingCall] | None = None


def dedupe_call_sites(ranges: Iterable[Range]) -> tuple[Range, ...]:
    """Keep the first range reported for each source line."""
    seen: set[int] = set()
    result: list[Range] = []
    for r in ranges:
        if r.start.line not in seen:
            seen.add(r.start.line)
            result.append(r)
    return tuple(result)


class LineageBuilder:
    """Expand "who calls this" edges until every branch reaches a root.

    The traversal keeps its own work stack, so call depth is bounded only by
    memory.  A caller that is already being expanded higher up the same
    traversal becomes a *recursive* back-reference: its edge is recorded but
    it is not expanded again.  Nodes whose subtree points back above
    themselves (tracked with a Tarjan-style low-link) are frozen but not
    cached, because their edges are only complete relative to that ancestor.
    """

    def __init__(
        self,
        client: IncomingCallsSource,
        cache: VisitedCache | None = None,
        *,
        exclude: Sequence[str] = DEFAULT_EXCLUDE,
        exclude_names: Sequence[str] = (),
    ) -> None:
        self.client = client
        self.cache = cache if cache is not None else VisitedCache()
        self.exclude = tuple(exclude)
        self.exclude_names = tuple(exclude_names)
        self.hits = 0
        self.misses = 0
        self.requests = 0

    def is_excluded(self, item: CallHierarchyItem) -> bool:
        """True for test or generated code that should not count as a caller."""
        if any(fnmatch.fnmatchcase(item.uri, pat) for pat in self.exclude):
            return True
        return any(fnmatch.fnmatchcase(item.name, pat) for pat in self.exclude_names)

    async def expand(
        self, start: CallHierarchyNode, token: CancellationToken | None = None
    ) -> bool:
        """Populate *start* with its full incoming-call tree.

        Returns False when *token* was cancelled before the tree was
        complete; nothing partial is cached in that case.
        """
        stack = [_Frame(start, depth=0, low=0)]
        in_progress: dict[SymbolIdentity, int] = {start.identity: 0}

        while stack:
            if token is not None and token.is_cancelled:
                logger.debug("Expansion of %s cancelled", start.name)
                return False

            frame = stack[-1]
            node = frame.node

            if frame.calls is None:
                cached = self.cache.get(node.identity)
                if cached is not None:
                    self.hits += 1
                    node.incoming = cached
                    self._pop(stack, in_progress, cacheable=False)
                    continue

                self.misses += 1
                self.requests += 1
                node.incoming = []
                calls = await self.client.incoming_calls(node.item)
                frame.calls = iter(calls)
                continue

            call = next(frame.calls, None)
            if call is None:
                self._pop(stack, in_progress, cacheable=True)
                continue

            if self.is_excluded(call.caller):
                logger.debug("Skipping excluded caller %s", call.caller.uri)
                continue

            call_sites = dedupe_call_sites(call.from_ranges)
            if not call_sites:
                logger.warning(
                    "Ignoring caller %s of %s: server reported no call sites",
                    call.caller.name,
                    node.name,
                )
                continue

            child = CallHierarchyNode(call.caller)
            node.incoming.append(IncomingEdge(child, call_sites))

            ancestor_depth = in_progress.get(child.identity)
            if ancestor_depth is not None:
                child.recursive = True
                child.incoming = ()
                frame.low = min(frame.low, ancestor_depth)
                continue

            depth = len(stack)
            in_progress[child.identity] = depth
            stack.append(_Frame(child, depth=depth, low=depth))

        logger.debug(
            "Expanded %s (cache hits=%d misses=%d)", start.name, self.hits, self.misses
        )
        return True

    def _pop(
        self,
        stack: list[_Frame],
        in_progress: dict[SymbolIdentity, int],
        *,
        cacheable: bool,
    ) -> None:
        frame = stack.pop()
        node = frame.node
        del in_progress[node.identity]

        if cacheable:
            node.incoming = tuple(node.incoming)
            if frame.low >= frame.depth:
                self.cache.store(node.identity, node.incoming)
            else:
                logger.debug("Not caching %s: part of a call cycle", node.name)

        if stack:
            parent = stack[-1]
            parent.low = min(parent.low, frame.low)
