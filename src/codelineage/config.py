"""Settings loaded from .codelineage.toml or [tool.codelineage] in pyproject.toml."""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from codelineage.lineage import DEFAULT_EXCLUDE
from codelineage.paths import DEFAULT_IMPLICIT_ROOTS, DEFAULT_MAX_WIDTH

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    server_command: list[str] = field(default_factory=lambda: ["gopls"])
    language_id: str = "go"
    include: list[str] = field(default_factory=lambda: ["*.go"])
    exclude: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE))
    exclude_names: list[str] = field(default_factory=list)
    max_path_segments: int = 0
    max_summary_width: int = DEFAULT_MAX_WIDTH
    implicit_roots: list[str] = field(default_factory=lambda: list(DEFAULT_IMPLICIT_ROOTS))
    concurrency: int = 4
    request_timeout: float | None = None

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> Settings:
        """Build settings from a config table, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        for key in sorted(set(data) - known):
            logger.warning("Ignoring unknown codelineage setting '%s'", key)
        settings = cls(**{k: v for k, v in data.items() if k in known})
        settings.normalize()
        return settings

    def normalize(self) -> None:
        """Replace unusable values with defaults."""
        if isinstance(self.server_command, str):
            self.server_command = self.server_command.split()
        if not _is_int(self.max_summary_width) or self.max_summary_width <= 0:
            logger.warning(
                "Invalid max_summary_width %r; using %d",
                self.max_summary_width,
                DEFAULT_MAX_WIDTH,
            )
            self.max_summary_width = DEFAULT_MAX_WIDTH
        if not _is_int(self.max_path_segments) or self.max_path_segments < 0:
            logger.warning(
                "Invalid max_path_segments %r; using unlimited", self.max_path_segments
            )
            self.max_path_segments = 0
        if not _is_int(self.concurrency) or self.concurrency < 1:
            logger.warning("Invalid concurrency %r; using 1", self.concurrency)
            self.concurrency = 1
        if self.request_timeout is not None and (
            isinstance(self.request_timeout, bool)
            or not isinstance(self.request_timeout, (int, float))
            or self.request_timeout <= 0
        ):
            logger.warning("Invalid request_timeout %r; disabled", self.request_timeout)
            self.request_timeout = None


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def load_settings(project_dir: Path) -> Settings:
    """Read settings for *project_dir*, falling back to defaults."""
    table = _read_config_table(project_dir)
    if table is None:
        return Settings()
    return Settings.from_mapping(table)


def _read_config_table(project_dir: Path) -> dict[str, Any] | None:
    # Try .codelineage.toml first
    codelineage_toml = project_dir / ".codelineage.toml"
    if codelineage_toml.exists():
        try:
            with open(codelineage_toml, "rb") as f:
                data = tomllib.load(f)
            table = data.get("codelineage")
            if isinstance(table, dict):
                return table
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning("Could not read %s: %s", codelineage_toml, e)

    # Fall back to [tool.codelineage] in pyproject.toml
    pyproject = project_dir / "pyproject.toml"
    if pyproject.exists():
        try:
            with open(pyproject, "rb") as f:
                data = tomllib.load(f)
            table = data.get("tool", {}).get("codelineage")
            if isinstance(table, dict):
                return table
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning("Could not read %s: %s", pyproject, e)

    return None
