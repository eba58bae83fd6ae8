"""Command-line interface for codelineage."""

from __future__ import annotations

import argparse
import logging
import shlex
from pathlib import Path

from codelineage.config import load_settings
from codelineage.pipeline import run


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="codelineage",
        description="Show every call path that reaches each function, via a language server.",
    )
    parser.add_argument(
        "project_dir",
        type=Path,
        help="Path to the project to analyze",
    )
    parser.add_argument(
        "files",
        nargs="*",
        type=Path,
        help="Files whose functions to resolve (default: all matching sources)",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="Output HTML file path (default: codelineage.html)",
    )
    parser.add_argument(
        "--server",
        default=None,
        help="Language server command line (default: from config, else gopls)",
    )
    parser.add_argument(
        "--max-path-segments",
        type=int,
        default=None,
        help="Keep at most this many segments per path, root included (0 = unlimited)",
    )
    parser.add_argument(
        "--max-width",
        type=int,
        default=None,
        help="Maximum summary width in characters",
    )
    parser.add_argument(
        "--open",
        action="store_true",
        dest="open_browser",
        help="Open the generated HTML in a browser",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (debug) output",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.WARNING, format="%(message)s")
    if args.verbose:
        logging.getLogger("codelineage").setLevel(logging.DEBUG)

    settings = load_settings(args.project_dir.resolve())
    if args.server:
        settings.server_command = shlex.split(args.server)
    if args.max_path_segments is not None:
        settings.max_path_segments = args.max_path_segments
    if args.max_width is not None:
        settings.max_summary_width = args.max_width
    settings.normalize()

    run(
        args.project_dir,
        args.files,
        settings=settings,
        output=args.output,
        open_browser=args.open_browser,
    )
