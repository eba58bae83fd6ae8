"""Orchestrator: discover → start server → resolve lineages → render."""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from codelineage.client import start_server, stop_server
from codelineage.config import Settings, load_settings
from codelineage.errors import LineageError
from codelineage.graph import relative_path
from codelineage.model import LineageResult
from codelineage.renderer.html import render_html
from codelineage.session import LineageSession

logger = logging.getLogger(__name__)

_SKIP = {
    ".git",
    ".github",
    ".venv",
    ".idea",
    ".vscode",
    "__pycache__",
    "node_modules",
    "vendor",
    "testdata",
    "build",
    "dist",
}


def discover_sources(project_dir: Path, settings: Settings) -> list[Path]:
    """Source files under *project_dir* matching the include patterns."""
    found: set[Path] = set()
    for pattern in settings.include:
        for path in project_dir.rglob(pattern):
            if not path.is_file():
                continue
            if any(part in _SKIP for part in path.relative_to(project_dir).parts[:-1]):
                continue
            uri = path.as_uri()
            if any(fnmatch.fnmatchcase(uri, pat) for pat in settings.exclude):
                continue
            found.add(path)
    return sorted(found)


async def analyze(
    project_dir: Path, sources: Sequence[Path], settings: Settings
) -> list[LineageResult]:
    """Resolve the lineage of every function declared in *sources*."""
    process, client = await start_server(
        settings.server_command,
        project_dir,
        request_timeout=settings.request_timeout,
    )
    try:
        await client.initialize(project_dir.as_uri())
        await client.initialized()

        session = LineageSession(client, project_dir, settings)
        starts = []
        for path in sources:
            found = await session.find_functions(path)
            logger.debug("%s: %d functions", path, len(found))
            starts.extend(found)
        return await session.resolve_all(starts)
    finally:
        await stop_server(process, client)


def format_result(result: LineageResult, project_dir: Path) -> str:
    item = result.start.item
    location = f"{relative_path(item.uri, project_dir)}:{item.range.start.line + 1}"
    return f"{location} {item.name}: {result.title}"


def run(
    project_dir: Path,
    files: Sequence[Path] | None = None,
    *,
    settings: Settings | None = None,
    output: Path | None = None,
    open_browser: bool = False,
) -> Path:
    """Run the full codelineage pipeline and return the output path."""
    project_dir = project_dir.resolve()
    settings = settings or load_settings(project_dir)

    sources = [f.resolve() for f in files] if files else discover_sources(project_dir, settings)
    if not sources:
        logger.error("No source files found.")
        sys.exit(1)

    logger.debug("Sources: %d, server: %s", len(sources), settings.server_command)

    try:
        results = asyncio.run(analyze(project_dir, sources, settings))
    except LineageError as e:
        logger.error("%s", e)
        sys.exit(1)

    for result in results:
        print(format_result(result, project_dir))

    out_path = output or (project_dir / "codelineage.html")
    render_html(project_dir.name, results, project_dir, out_path)

    logger.info("Generated %s", out_path)

    if open_browser:
        import webbrowser

        webbrowser.open(out_path.as_uri())

    return out_path
