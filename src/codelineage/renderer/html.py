"""Render lineage graphs to a standalone HTML file."""

from __future__ import annotations

import html
import json
from collections.abc import Sequence
from pathlib import Path
from string import Template

from codelineage.graph import relative_path
from codelineage.model import LineageResult

_TEMPLATE_PATH = Path(__file__).with_name("template.html")


def _result_to_dict(result: LineageResult, root_path: Path) -> dict:
    item = result.start.item
    return {
        "key": result.key,
        "name": item.name,
        "location": f"{relative_path(item.uri, root_path)}:{item.range.start.line + 1}",
        "summary": result.title,
        "dot": result.dot,
    }


def _results_to_json(results: Sequence[LineageResult], root_path: Path) -> str:
    """Serialize the called symbols into the JSON blob consumed by the template JS."""
    entries = [_result_to_dict(r, root_path) for r in results if r.dot is not None]
    entries.sort(key=lambda e: (e["location"], e["name"]))
    # </script> inside a DOT label must not end the inline script block
    return json.dumps(entries).replace("</", "<\\/")


def render_html(
    project_name: str,
    results: Sequence[LineageResult],
    root_path: Path,
    output_path: Path,
) -> None:
    """Write the interactive lineage viewer to *output_path*."""
    template = Template(_TEMPLATE_PATH.read_text())
    page = template.safe_substitute(
        TITLE=html.escape(project_name),
        DATA_JSON=_results_to_json(results, root_path),
    )
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(page)
