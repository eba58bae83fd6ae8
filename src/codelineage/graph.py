"""Serialize a lineage tree into a deterministic Graphviz DOT graph."""

from __future__ import annotations

import os
from pathlib import Path
from urllib.parse import unquote, urlparse

from codelineage.model import CallHierarchyNode, GraphNode, LineageGraph

_GRAPH_DEFAULTS = """\
  graph [rankdir=TB, fontname="Courier", fontsize=12];
  node [shape=box, style="rounded,filled", fontname="Courier", fontsize=10];
  edge [arrowhead=vee, arrowsize=0.8, penwidth=1.5];"""


def uri_to_path(uri: str) -> Path:
    return Path(unquote(urlparse(uri).path))


def relative_path(uri: str, root_path: Path) -> str:
    """Path of *uri* relative to *root_path*, with forward slashes."""
    rel = os.path.relpath(uri_to_path(uri), root_path)
    return rel.replace(os.sep, "/")


def build_graph(start: CallHierarchyNode, root_path: Path) -> LineageGraph:
    """Collapse the tree under *start* into unique nodes and edges.

    A node is identified by name and relative path; every call-site line
    seen for it anywhere in the tree ends up in its label.  The start node
    contributes its own declaration line.
    """
    names: dict[str, tuple[str, str]] = {}
    lines: dict[str, set[int]] = {}
    edges: set[tuple[str, str]] = set()

    def node_id(node: CallHierarchyNode) -> str:
        rel = relative_path(node.item.uri, root_path)
        nid = f"{node.name}_{rel}"
        names.setdefault(nid, (node.name, rel))
        return nid

    start_id = node_id(start)
    lines[start_id] = {start.declaration_line}

    seen: set[int] = set()
    stack = [start]
    while stack:
        node = stack.pop()
        if id(node) in seen:
            continue
        seen.add(id(node))
        callee_id = node_id(node)
        for edge in node.incoming:
            caller_id = node_id(edge.caller)
            lines.setdefault(caller_id, set()).update(edge.lines)
            edges.add((caller_id, callee_id))
            stack.append(edge.caller)

    callees = {callee for _, callee in edges}
    graph_nodes = [
        GraphNode(
            node_id=nid,
            name=names[nid][0],
            path=names[nid][1],
            lines=tuple(sorted(line + 1 for line in lines[nid])),
            is_root=nid not in callees,
        )
        for nid in sorted(lines)
    ]
    return LineageGraph(
        title=f"{start.name}CallHierarchy",
        nodes=graph_nodes,
        edges=sorted(edges),
    )


def _quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _label(node: GraphNode) -> str:
    location = node.path
    if node.lines:
        location += ":" + ",".join(map(str, node.lines))
    return _quote(node.name)[:-1] + "\\n" + _quote(location)[1:]


def render_dot(graph: LineageGraph) -> str:
    """Graphviz text for *graph*; identical graphs give identical text."""
    out = [f"digraph {_quote(graph.title)} {{", _GRAPH_DEFAULTS]
    for node in graph.nodes:
        attrs = [f"label={_label(node)}"]
        if node.is_root:
            attrs.append('class="root"')
            attrs.append("penwidth=3")
        out.append(f"  {_quote(node.node_id)} [{', '.join(attrs)}];")
    for caller, callee in graph.edges:
        out.append(f"  {_quote(caller)} -> {_quote(callee)};")
    out.append("}")
    return "\n".join(out) + "\n"
