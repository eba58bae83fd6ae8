"""Enumerate root-to-start paths and compress them into short summaries."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence

from codelineage.model import CallHierarchyNode, LineagePath

DEFAULT_MAX_WIDTH = 80
DEFAULT_IMPLICIT_ROOTS = ("init",)


def enumerate_paths(start: CallHierarchyNode) -> list[LineagePath]:
    """Return one path per (root, call site chain) reachable from *start*.

    Each call site of each edge yields its own path, so a caller that calls
    twice contributes two paths.  Recursive back-references end a branch
    without producing a path.
    """
    paths: list[LineagePath] = []
    stack: list[tuple[CallHierarchyNode, tuple[int, ...]]] = [(start, ())]
    while stack:
        node, offsets = stack.pop()
        if node.is_root:
            paths.append(LineagePath(node.name, offsets))
            continue
        for edge in node.incoming:
            caller = edge.caller
            for line in edge.lines:
                stack.append((caller, (line - caller.declaration_line, *offsets)))
    return paths


def dedupe_paths(paths: Iterable[LineagePath]) -> list[LineagePath]:
    return list(dict.fromkeys(paths))


def truncate_path(path: LineagePath, max_segments: int) -> LineagePath:
    """Keep the root-most *max_segments* segments; 0 means unlimited.

    The root name counts as a segment, so a limit of 1 keeps only the root.
    """
    if max_segments <= 0 or len(path.offsets) + 1 <= max_segments:
        return path
    return LineagePath(path.root, path.offsets[: max_segments - 1])


def render_path(path: LineagePath) -> str:
    return ".".join([path.root, *map(str, path.offsets)])


def compress_paths(smallest: LineagePath, largest: LineagePath) -> str:
    """Render two paths from the same root as one string.

    ``[1,2,3,4,5]`` and ``[1,2,3,6,7]`` become ``root.1.2.3.[4.5..6.7]``.
    """
    if smallest.offsets == largest.offsets:
        return render_path(smallest)

    common = 0
    for a, b in zip(smallest.offsets, largest.offsets):
        if a != b:
            break
        common += 1

    prefix = [smallest.root, *map(str, smallest.offsets[:common])]
    low = ".".join(map(str, smallest.offsets[common:]))
    high = ".".join(map(str, largest.offsets[common:]))
    return ".".join([*prefix, f"[{low}..{high}]"])


def summarize(
    paths: Iterable[LineagePath],
    *,
    max_segments: int = 0,
    max_width: int = DEFAULT_MAX_WIDTH,
    implicit_roots: Sequence[str] = DEFAULT_IMPLICIT_ROOTS,
) -> str:
    """One compressed entry per root, trimmed to fit *max_width* characters."""
    unique = dedupe_paths(truncate_path(p, max_segments) for p in paths)

    by_root: dict[str, list[LineagePath]] = defaultdict(list)
    for path in unique:
        by_root[path.root].append(path)

    entries: list[str] = []
    for root in sorted(by_root):
        if root in implicit_roots:
            entries.append(root)
            continue
        group = by_root[root]
        entries.append(compress_paths(min(group), max(group)))

    title = ", ".join(entries)
    excess = 0
    while len(title) > max_width and len(entries) > 1:
        entries.pop()
        excess += 1
        title = ", ".join(entries)
    if excess > 0:
        title += f", and {excess} more"
    return title
