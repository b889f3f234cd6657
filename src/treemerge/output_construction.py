from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from pydantic import BaseModel, ConfigDict, Field

from treemerge.config import COPY_BUFFER_BYTES, FileEntry, ScanIssue
from treemerge.exceptions import ReadError, WriteError
from treemerge.file_manipulation import render_header, separator_after
from treemerge.logging import logger
from treemerge.planner import estimate_entry_bytes

if TYPE_CHECKING:
    from collections.abc import Sequence

    from treemerge.config import HeaderStyle
    from treemerge.planner import MergePlan, Segment
    from treemerge.settings import Settings

_ = Path()


class SegmentReport(BaseModel):
    """What went (or would go) into one output destination."""

    model_config = ConfigDict(frozen=True)

    path: Path = Field(..., description="Destination path")
    files: tuple[str, ...] = Field(default=(), description="Relative paths, in order")
    lines: int | None = Field(default=None, description="Lines written (projected for dry runs)")
    byte_count: int = Field(default=0, description="Bytes written (estimated for dry runs)")


class MergeReport(BaseModel):
    """Outcome of a real merge."""

    model_config = ConfigDict(frozen=True)

    files_written: tuple[str, ...] = ()
    skipped: tuple[ScanIssue, ...] = ()
    segments: tuple[SegmentReport, ...] = ()
    total_lines: int = 0
    total_bytes: int = 0


class DryRunReport(BaseModel):
    """Outcome of a dry run: the same files and boundaries, nothing written."""

    model_config = ConfigDict(frozen=True)

    files: tuple[str, ...] = ()
    skipped: tuple[ScanIssue, ...] = ()
    segments: tuple[SegmentReport, ...] = ()
    estimated_bytes: int = 0


def segment_paths(base: Path, count: int) -> list[Path]:
    """Name the output destinations.

    One segment keeps the base name; N segments get ``.1`` .. ``.N`` appended,
    zero-padded to the width of N, in the same directory.

    Args:
        base (Path): the base output path
        count (int): the number of segments

    Returns:
        list[Path]: one path per segment, in emission order
    """
    if count <= 1:
        return [base]
    width = len(str(count))
    return [base.with_name(f"{base.name}.{i:0{width}d}") for i in range(1, count + 1)]


def _copy_body(entry: FileEntry, src: BinaryIO, out: BinaryIO, dest: Path) -> tuple[int, int, bytes]:
    """Copy a source file with a bounded buffer.

    Returns:
        tuple[int, int, bytes]: bytes copied, newlines copied, last byte copied
    """
    copied = 0
    newlines = 0
    last = b""
    while True:
        try:
            chunk = src.read(COPY_BUFFER_BYTES)
        except OSError as e:
            raise ReadError(path=entry.rel, message=str(e)) from e
        if not chunk:
            break
        try:
            out.write(chunk)
        except OSError as e:
            raise WriteError(path=dest, message=str(e)) from e
        copied += len(chunk)
        newlines += chunk.count(b"\n")
        last = chunk[-1:]
    return copied, newlines, last


def _write_bytes(out: BinaryIO, data: bytes, dest: Path) -> None:
    try:
        out.write(data)
    except OSError as e:
        raise WriteError(path=dest, message=str(e)) from e


def write_segment(
    segment: Segment,
    dest: Path,
    header_style: HeaderStyle,
) -> tuple[SegmentReport, list[ScanIssue]]:
    """Write one segment: header, raw bytes and a blank line per file.

    A file that cannot be read is skipped and anything already written for it
    is truncated away, so the segment never holds a partial file.

    Args:
        segment (Segment): the files to write
        dest (Path): the destination path
        header_style (HeaderStyle): header style

    Raises:
        WriteError: if the destination cannot be opened or written.

    Returns:
        tuple[SegmentReport, list[ScanIssue]]: the segment summary and the skipped files
    """
    written: list[str] = []
    skipped: list[ScanIssue] = []
    total_bytes = 0
    total_lines = 0
    try:
        out = dest.open("wb")
    except OSError as e:
        raise WriteError(path=dest, message=str(e)) from e
    with out:
        for entry in segment.entries:
            start = total_bytes
            try:
                src = entry.path.open("rb")
            except OSError as e:
                error = ReadError(path=entry.rel, message=str(e))
                logger.warning("merge.file_skipped", path=entry.rel, message=error.message)
                skipped.append(ScanIssue.from_error(error))
                continue
            with src:
                header = render_header(entry.rel, header_style)
                _write_bytes(out, header, dest)
                try:
                    copied, newlines, last = _copy_body(entry, src, out, dest)
                except ReadError as error:
                    logger.warning("merge.file_skipped", path=entry.rel, message=error.message)
                    skipped.append(ScanIssue.from_error(error))
                    try:
                        out.seek(start)
                        out.truncate()
                    except OSError as e:
                        raise WriteError(path=dest, message=str(e)) from e
                    continue
            separator = separator_after(last)
            _write_bytes(out, separator, dest)
            total_bytes += len(header) + copied + len(separator)
            total_lines += header.count(b"\n") + newlines + separator.count(b"\n")
            written.append(entry.rel)
            logger.debug("merge.file_written", path=entry.rel, segment=segment.index, bytes=copied)
    logger.info("merge.segment_written", path=str(dest), files=len(written), lines=total_lines, byte_count=total_bytes)
    report = SegmentReport(path=dest, files=tuple(written), lines=total_lines, byte_count=total_bytes)
    return report, skipped


def dry_run_report(merge_plan: MergePlan, settings: Settings, *, skipped: Sequence[ScanIssue] = ()) -> DryRunReport:
    """Describe what `write` would produce, without touching the filesystem."""
    paths = segment_paths(settings.output_path(), len(merge_plan.segments))
    segments = tuple(
        SegmentReport(
            path=path,
            files=tuple(e.rel for e in segment.entries),
            lines=segment.line_count,
            byte_count=sum(estimate_entry_bytes(e, settings.header_style) for e in segment.entries),
        )
        for segment, path in zip(merge_plan.segments, paths, strict=True)
    )
    return DryRunReport(
        files=tuple(e.rel for e in merge_plan.entries),
        skipped=tuple(skipped),
        segments=segments,
        estimated_bytes=merge_plan.estimated_bytes,
    )


def write(
    merge_plan: MergePlan,
    settings: Settings,
    *,
    skipped: Sequence[ScanIssue] = (),
) -> MergeReport | DryRunReport:
    """Write every segment of the plan, in order.

    Args:
        merge_plan (MergePlan): the segments to write
        settings (Settings): the run configuration (output path, header style, dry run)
        skipped (Sequence[ScanIssue]): issues from the scan, carried into the report

    Raises:
        WriteError: if an output destination fails; the run stops there.

    Returns:
        MergeReport | DryRunReport: a DryRunReport when `settings.dry_run`, else a MergeReport
    """
    if settings.dry_run:
        return dry_run_report(merge_plan, settings, skipped=skipped)

    paths = segment_paths(settings.output_path(), len(merge_plan.segments))
    reports: list[SegmentReport] = []
    issues = list(skipped)
    for segment, path in zip(merge_plan.segments, paths, strict=True):
        report, segment_issues = write_segment(segment, path, settings.header_style)
        reports.append(report)
        issues.extend(segment_issues)

    merge_report = MergeReport(
        files_written=tuple(rel for r in reports for rel in r.files),
        skipped=tuple(issues),
        segments=tuple(reports),
        total_lines=sum(r.lines or 0 for r in reports),
        total_bytes=sum(r.byte_count for r in reports),
    )
    logger.info(
        "merge.done",
        files=len(merge_report.files_written),
        skipped=len(merge_report.skipped),
        segments=len(merge_report.segments),
        lines=merge_report.total_lines,
        bytes=merge_report.total_bytes,
    )
    return merge_report
