"""
treemerge: concatenate all text files in a directory tree.

Overview
--------
Walks a directory, keeps the files that are plain text and pass the
include/exclude rules, and writes them in sorted relative-path order, each
preceded by a header, into one output file or into several numbered segments
(`--split-every`). A file is never cut in half across two segments.

Built-in excludes (VCS metadata, build and cache directories, lockfiles,
licenses, common binaries) apply unless `--all-files` is given. `--include`
patterns win over every exclude.

Settings may also come from a YAML file (`--config`), whose keys are the
setting names; command-line flags take precedence.

Usage
-----
Run `python -m treemerge.cli --help` for full options. Common examples:
    - Merge a project into project.txt:
        uv run python -m treemerge.cli path/to/project

    - Only Rust and TOML files, split every 20k lines:
        uv run python -m treemerge.cli . -e rs -e toml --split-every 20000 -o corpus.txt

    - See what would be merged:
        uv run python -m treemerge.cli . --dry-run --verbose
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from dotenv import load_dotenv

from treemerge import __version__
from treemerge.config import HeaderStyle
from treemerge.exceptions import ConfigError, TreemergeError
from treemerge.logging import logger, setup_logging
from treemerge.output_construction import DryRunReport
from treemerge.pipeline import run
from treemerge.settings import ENV_FILE, Settings, load_settings

if TYPE_CHECKING:
    from collections.abc import Sequence

    from treemerge.output_construction import MergeReport
    from treemerge.planner import MergePlan


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser.

    Every option defaults to None so that only flags given on the command
    line override values read from a config file.

    Returns:
        argparse.ArgumentParser: the parser
    """
    p = argparse.ArgumentParser(
        prog="treemerge",
        description="Concatenate all text files in a directory tree.",
    )
    p.add_argument("root", type=Path, nargs="?", default=None, help="Root directory to process.")
    p.add_argument("-o", "--output", type=Path, default=None, help="Output file name; defaults to <dirname>.txt.")
    p.add_argument(
        "-i",
        "--include",
        action="append",
        default=None,
        help="Glob pattern to include, overrides excludes (repeatable).",
    )
    p.add_argument(
        "-x",
        "--exclude",
        action="append",
        default=None,
        help="Glob pattern to exclude (repeatable).",
    )
    p.add_argument(
        "-e",
        "--ext",
        dest="extensions",
        action="append",
        default=None,
        help="Only include files with these extensions (repeatable or comma list).",
    )
    p.add_argument("--all-files", action="store_true", default=None, help="Disable default excludes.")
    p.add_argument(
        "--split-every",
        type=int,
        default=None,
        help="Line count after which to split output (never splits inside a file).",
    )
    p.add_argument(
        "--header-style",
        choices=[s.value for s in HeaderStyle],
        default=None,
        help="Header style for file separators (default: hash).",
    )
    p.add_argument("--dry-run", action="store_true", default=None, help="Dry-run mode (no files written).")
    p.add_argument("--no-confirm", action="store_true", default=None, help="Skip confirmation prompts.")
    p.add_argument("--follow-symlinks", action="store_true", default=None, help="Follow symlinks.")
    p.add_argument("--verbose", action="store_true", default=None, help="Verbose logging.")
    p.add_argument("--log-file", type=str, default=None, help="Log file path.")
    p.add_argument("--workers", type=int, default=None, help="Scanner threads (default: CPU count).")
    p.add_argument("--config", type=Path, default=None, help="YAML file with default settings.")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def load_config_file(path: Path) -> dict[str, Any]:
    """Read settings from a YAML mapping.

    Args:
        path (Path): the YAML file

    Raises:
        ConfigError: if the file cannot be read, is not valid YAML, or is not a mapping.

    Returns:
        dict[str, Any]: setting names to values
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise ConfigError(message=f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(message=f"Invalid YAML in config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(message=f"Config file {path} must contain a mapping.")
    return {str(k).replace("-", "_"): v for k, v in data.items()}


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    """Parse command-line arguments into Settings.

    Args:
        argv (Sequence[str] | None): arguments, defaults to ``sys.argv[1:]``

    Raises:
        ConfigError: if the config file or a value is invalid.

    Returns:
        Settings: the resolved configuration
    """
    args = vars(build_parser().parse_args(argv))
    config_path = args.pop("config")
    values = load_config_file(config_path) if config_path is not None else {}
    values.update({k: v for k, v in args.items() if v is not None})
    return load_settings(**values)


def human_size(n: int) -> str:
    """Format a byte count with a binary unit."""
    size = float(n)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if size < 1024 or unit == "GiB":  # noqa: PLR2004
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{n} B"


def prompt_confirmation(merge_plan: MergePlan) -> bool:
    """Ask on the terminal whether a large merge should go ahead."""
    question = (
        f"Estimated output is {human_size(merge_plan.estimated_bytes)} "
        f"({merge_plan.file_count} files). Continue? [y/N] "
    )
    try:
        answer = input(question)
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def print_report(report: MergeReport | DryRunReport) -> None:
    """Print the user-facing summary of a run on stdout."""
    if isinstance(report, DryRunReport):
        print(f"Dry-run. Would merge {len(report.files)} files:")
        for segment in report.segments:
            if len(report.segments) > 1:
                print(f"[{segment.path}]")
            for rel in segment.files:
                print(rel)
    else:
        targets = ", ".join(str(s.path) for s in report.segments)
        print(f"Wrote {targets} files={len(report.files_written)} lines={report.total_lines}")
    for issue in report.skipped:
        print(f"skipped {issue.rel}: {issue.kind} ({issue.message})", file=sys.stderr)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line.

    Returns:
        int: 0 on success, 1 on a treemerge error, 130 when interrupted
    """
    if ENV_FILE:
        load_dotenv(ENV_FILE)
    try:
        settings = parse_args(argv)
    except ConfigError as e:
        logger.error("treemerge.failed", error=type(e).__name__, message=str(e))
        return 1
    if settings.log_file or settings.verbose:
        setup_logging(settings.log_file or None, verbose=settings.verbose, force=True)

    try:
        report = run(settings, confirm=prompt_confirmation)
    except TreemergeError as e:
        logger.error("treemerge.failed", error=type(e).__name__, message=str(e))
        return 1
    except KeyboardInterrupt:
        logger.warning("treemerge.cancelled")
        return 130

    print_report(report)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
