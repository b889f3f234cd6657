from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from treemerge.config import FileEntry, HeaderStyle
from treemerge.exceptions import ConfigError
from treemerge.file_manipulation import render_header
from treemerge.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class Segment(BaseModel):
    """Files written to one output destination, in order."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=1, description="1-based position in emission order")
    entries: tuple[FileEntry, ...] = Field(default=(), description="Files of the segment")
    line_count: int | None = Field(default=None, description="Sum of file line counts, when known")


class MergePlan(BaseModel):
    """Ordered segments plus the projected output size."""

    model_config = ConfigDict(frozen=True)

    segments: tuple[Segment, ...] = ()
    split_every: int | None = None
    estimated_bytes: int = 0

    @property
    def entries(self) -> Iterator[FileEntry]:
        """Iterate over every planned file in emission order."""
        for segment in self.segments:
            yield from segment.entries

    @property
    def file_count(self) -> int:
        """Number of planned files."""
        return sum(len(s.entries) for s in self.segments)


def estimate_entry_bytes(entry: FileEntry, style: HeaderStyle) -> int:
    """Estimate the bytes one file adds to the output: header, body and blank line."""
    return len(render_header(entry.rel, style)) + entry.size + 1


def _segment(index: int, entries: list[FileEntry]) -> Segment:
    counts = [e.line_count for e in entries]
    total = None if any(c is None for c in counts) else sum(c for c in counts if c is not None)
    return Segment(index=index, entries=tuple(entries), line_count=total)


def split_entries(entries: Sequence[FileEntry], split_every: int) -> list[list[FileEntry]]:
    """Partition files by line threshold without ever splitting a file.

    A file is appended while the running total stays at or below
    `split_every`; the first file that would cross it opens a new group,
    unless the current group is empty, in which case it is placed alone.

    Args:
        entries (Sequence[FileEntry]): files in emission order, with line counts
        split_every (int): the line threshold, strictly positive

    Raises:
        ConfigError: if `split_every` is not strictly positive.
        ValueError: if a file has no line count.

    Returns:
        list[list[FileEntry]]: the groups, in order
    """
    if split_every <= 0:
        raise ConfigError(message=f"split_every must be a positive line count, got {split_every}.")
    groups: list[list[FileEntry]] = []
    current: list[FileEntry] = []
    running = 0
    for entry in entries:
        if entry.line_count is None:
            msg = f"line count of {entry.rel} is required to split output"
            raise ValueError(msg)
        if current and running + entry.line_count > split_every:
            groups.append(current)
            current = []
            running = 0
        current.append(entry)
        running += entry.line_count
    if current:
        groups.append(current)
    return groups


def plan(
    entries: Sequence[FileEntry],
    split_every: int | None = None,
    *,
    header_style: HeaderStyle = HeaderStyle.HASH,
) -> MergePlan:
    """Build the merge plan for a sorted list of eligible files.

    Args:
        entries (Sequence[FileEntry]): the files, in scanner order
        split_every (int | None): optional line threshold per segment
        header_style (HeaderStyle): header style, used for the size estimate

    Raises:
        ConfigError: if `split_every` is not strictly positive.

    Returns:
        MergePlan: one segment without `split_every`, otherwise as many as needed
    """
    groups = [list(entries)] if split_every is None else split_entries(entries, split_every)
    segments = tuple(_segment(i, group) for i, group in enumerate(groups, start=1))
    estimated = sum(estimate_entry_bytes(e, header_style) for e in entries)
    logger.debug("plan.built", files=len(entries), segments=len(segments), estimated_bytes=estimated)
    return MergePlan(segments=segments, split_every=split_every, estimated_bytes=estimated)


def needs_confirmation(merge_plan: MergePlan, *, threshold_bytes: int, no_confirm: bool) -> bool:
    """Tell whether the projected output is large enough to ask the user first."""
    return not no_confirm and merge_plan.estimated_bytes > threshold_bytes
