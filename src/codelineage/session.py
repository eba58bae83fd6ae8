"""One analysis session: a server connection plus one visited cache."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path

from codelineage.client import LspClient
from codelineage.config import Settings
from codelineage.graph import build_graph, render_dot
from codelineage.lineage import CancellationToken, LineageBuilder, VisitedCache
from codelineage.model import CallHierarchyNode, LineageResult
from codelineage.paths import dedupe_paths, enumerate_paths, summarize
from codelineage.symbols import name_position

logger = logging.getLogger(__name__)

CYCLE_ONLY_SUMMARY = "called only from within a call cycle"


class LineageSession:
    """Find functions in documents and resolve their call lineages.

    DOT graphs for resolved symbols are kept in :attr:`graphs`, keyed by
    ``"<uri>::<name>"``.
    """

    def __init__(
        self,
        client: LspClient,
        root_path: Path,
        settings: Settings | None = None,
    ) -> None:
        self.client = client
        self.root_path = root_path
        self.settings = settings or Settings()
        self.cache = VisitedCache()
        self.builder = LineageBuilder(
            client,
            self.cache,
            exclude=self.settings.exclude,
            exclude_names=self.settings.exclude_names,
        )
        self.graphs: dict[str, str] = {}
        self._opened: set[str] = set()

    async def find_functions(self, path: Path) -> list[CallHierarchyNode]:
        """Prepare one start node per function or method declared in *path*."""
        uri = path.as_uri()
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Could not read %s: %s", path, e)
            return []

        if uri not in self._opened:
            await self.client.did_open(uri, self.settings.language_id, text)
            self._opened.add(uri)

        symbols = await self.client.document_symbols(uri)
        if not symbols:
            logger.debug("No symbols in %s", path)
            return []

        lines = text.splitlines()
        starts: list[CallHierarchyNode] = []
        for symbol in symbols:
            if not symbol.is_callable:
                continue
            line_no = symbol.range.start.line
            line_text = lines[line_no] if line_no < len(lines) else ""
            position = name_position(symbol, line_text)
            if position is None:
                logger.debug("Could not locate name of %s in %s", symbol.name, path)
                continue

            items = await self.client.prepare_call_hierarchy(uri, position)
            if not items:
                logger.debug("No call hierarchy for %s", symbol.name)
                continue
            starts.append(CallHierarchyNode(items[0]))
        return starts

    async def resolve(
        self, start: CallHierarchyNode, token: CancellationToken | None = None
    ) -> LineageResult:
        """Expand *start* and summarize where calls to it originate."""
        key = start.identity.key
        complete = await self.builder.expand(start, token)
        if not complete:
            return LineageResult(key=key, start=start, complete=False)

        if not start.incoming:
            return LineageResult(key=key, start=start)

        paths = dedupe_paths(enumerate_paths(start))
        if paths:
            summary = summarize(
                paths,
                max_segments=self.settings.max_path_segments,
                max_width=self.settings.max_summary_width,
                implicit_roots=self.settings.implicit_roots,
            )
        else:
            summary = CYCLE_ONLY_SUMMARY

        dot = render_dot(build_graph(start, self.root_path))
        self.graphs[key] = dot
        return LineageResult(key=key, start=start, summary=summary, dot=dot, paths=paths)

    async def resolve_all(
        self,
        starts: Sequence[CallHierarchyNode],
        token: CancellationToken | None = None,
    ) -> list[LineageResult]:
        """Resolve *starts* concurrently, sharing this session's cache."""
        semaphore = asyncio.Semaphore(self.settings.concurrency)

        async def bounded(start: CallHierarchyNode) -> LineageResult:
            async with semaphore:
                return await self.resolve(start, token)

        results = await asyncio.gather(*(bounded(s) for s in starts))
        logger.debug(
            "Resolved %d symbols: %d requests, cache hits=%d misses=%d",
            len(results),
            self.builder.requests,
            self.builder.hits,
            self.builder.misses,
        )
        return list(results)

    def invalidate(self) -> None:
        """Forget cached lineages, e.g. after a source file changed."""
        self.cache.clear()
        self.graphs.clear()
