from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from dotenv import find_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from treemerge.config import DEFAULT_CONFIRM_THRESHOLD_BYTES, HeaderStyle
from treemerge.exceptions import ConfigError
from treemerge.file_manipulation import normalize_extensions, normalize_globs

ENV_FILE = find_dotenv(usecwd=True)


def _env_log_file() -> str:
    return os.environ.get("TREEMERGE_LOG_FILE", "")


def _env_confirm_threshold() -> int:
    raw = os.environ.get("TREEMERGE_CONFIRM_BYTES", "").strip()
    return int(raw) if raw else DEFAULT_CONFIRM_THRESHOLD_BYTES


class Settings(BaseModel):
    """Resolved configuration of a single merge run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    root: Path = Field(default_factory=Path.cwd, description="Root directory to process.")
    output: Path | None = Field(default=None, description="Output file; defaults to <dirname>.txt.")
    include: tuple[str, ...] = Field(default=(), description="Include globs, override excludes.")
    exclude: tuple[str, ...] = Field(default=(), description="Exclude globs.")
    extensions: frozenset[str] = Field(default=frozenset(), description="Allowed extensions, empty for all.")
    all_files: bool = Field(default=False, description="Disable default excludes.")
    follow_symlinks: bool = Field(default=False, description="Follow symlinks.")
    split_every: int | None = Field(default=None, gt=0, description="Line count after which to split output.")
    header_style: HeaderStyle = Field(default=HeaderStyle.HASH, description="Header style for file separators.")
    dry_run: bool = Field(default=False, description="Report only, write nothing.")
    no_confirm: bool = Field(default=False, description="Skip confirmation prompts.")
    verbose: bool = Field(default=False, description="Verbose logging.")
    log_file: str = Field(default_factory=_env_log_file, description="Log file path.")
    confirm_threshold_bytes: int = Field(
        default_factory=_env_confirm_threshold,
        gt=0,
        description="Estimated output size above which confirmation is required.",
    )
    workers: int | None = Field(default=None, gt=0, description="Scanner thread count.")

    @field_validator("include", "exclude", mode="before")
    @classmethod
    def _normalize_globs(cls, value: Any) -> Any:  # noqa: ANN401
        if isinstance(value, str):
            value = [value]
        if isinstance(value, list | tuple):
            return tuple(normalize_globs(value))
        return value

    @field_validator("extensions", mode="before")
    @classmethod
    def _normalize_extensions(cls, value: Any) -> Any:  # noqa: ANN401
        if isinstance(value, str):
            value = [value]
        if isinstance(value, list | tuple | set | frozenset):
            return normalize_extensions(value)
        return value

    def output_path(self) -> Path:
        """Return the base output path, defaulting to ``<root dirname>.txt`` in the working directory."""
        if self.output is not None:
            return self.output
        name = self.root.resolve().name or "treemerge"
        return Path.cwd() / f"{name}.txt"


def load_settings(**values: Any) -> Settings:  # noqa: ANN401
    """Build a Settings instance, reporting invalid values as a ConfigError.

    Args:
        **values: Settings fields; unknown names are rejected.

    Raises:
        ConfigError: if a value is missing, unknown or out of range.

    Returns:
        Settings: the validated, immutable configuration.
    """
    try:
        return Settings(**values)
    except ValueError as e:
        raise ConfigError(message=f"Invalid configuration: {e}") from e
