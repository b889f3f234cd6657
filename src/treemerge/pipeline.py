from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from treemerge.exceptions import ConfigError, ConfirmationDeclinedError, NoFilesError, TraversalError
from treemerge.file_manipulation import relpath
from treemerge.logging import logger
from treemerge.output_construction import write
from treemerge.planner import needs_confirmation, plan
from treemerge.rules import RuleSet
from treemerge.scanner import scan

if TYPE_CHECKING:
    from collections.abc import Callable

    from treemerge.output_construction import DryRunReport, MergeReport
    from treemerge.planner import MergePlan
    from treemerge.settings import Settings

    ConfirmFn = Callable[[MergePlan], bool]


def check_output_destination(output: Path) -> None:
    """Make sure the output path can be written before anything is scanned.

    Args:
        output (Path): the base output path

    Raises:
        ConfigError: if the output is a directory, or its parent is missing or not writable.
    """
    parent = output.parent
    if output.is_dir():
        raise ConfigError(message=f"Output path is a directory: {output}")
    if not parent.is_dir():
        raise ConfigError(message=f"Output directory does not exist: {parent}")
    if not os.access(parent, os.W_OK):
        raise ConfigError(message=f"Output directory is not writable: {parent}")


def reserved_output(root: Path, output: Path) -> str | None:
    """Relative path of the output file when it lies below the scan root, else None."""
    resolved_root = root.resolve()
    resolved_output = output.resolve()
    rel = relpath(resolved_output, resolved_root)
    return None if rel == str(resolved_output) else rel


def run(settings: Settings, *, confirm: ConfirmFn | None = None) -> MergeReport | DryRunReport:
    """Scan, plan and merge according to `settings`.

    Args:
        settings (Settings): the run configuration
        confirm (ConfirmFn | None): asked with the plan when the projected output
            exceeds the safety threshold; a missing callback counts as a refusal

    Raises:
        ConfigError: on invalid rules or an unwritable output path.
        TraversalError: if the root is missing or not a directory.
        NoFilesError: if no file survived the rules.
        ConfirmationDeclinedError: if a large merge was not confirmed.
        WriteError: if an output segment cannot be written.

    Returns:
        MergeReport | DryRunReport: the report of the run
    """
    root = settings.root
    if not root.is_dir():
        raise TraversalError(root=root)
    output = settings.output_path()
    if not settings.dry_run:
        check_output_destination(output)

    ruleset = RuleSet.from_settings(settings, reserved=reserved_output(root, output))
    logger.info("scan.start", root=str(root.resolve()), output=str(output))
    result = scan(root, ruleset, count_lines=settings.split_every is not None, workers=settings.workers)
    if not result.entries:
        raise NoFilesError(root=root)

    merge_plan = plan(result.entries, settings.split_every, header_style=settings.header_style)
    if not settings.dry_run and needs_confirmation(
        merge_plan,
        threshold_bytes=settings.confirm_threshold_bytes,
        no_confirm=settings.no_confirm,
    ):
        if confirm is None or not confirm(merge_plan):
            raise ConfirmationDeclinedError(estimated_bytes=merge_plan.estimated_bytes)
        logger.info("merge.confirmed", estimated_bytes=merge_plan.estimated_bytes)

    return write(merge_plan, settings, skipped=result.issues)
