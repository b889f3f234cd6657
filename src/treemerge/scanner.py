"""Directory walk producing the sorted list of eligible files."""

from __future__ import annotations

import os
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from treemerge.config import FileEntry, ScanIssue
from treemerge.exceptions import CycleError, ReadError, ScanPermissionError, StatError, TraversalError
from treemerge.file_manipulation import count_lines, is_regular_file
from treemerge.logging import logger
from treemerge.rules import Decision

if TYPE_CHECKING:
    from concurrent.futures import Future

    from treemerge.rules import RuleSet

DirIdentity = tuple[int, int]


class ScanResult(BaseModel):
    """Eligible files in byte-lexicographic order, plus the entries that had to be skipped."""

    model_config = ConfigDict(frozen=True)

    entries: tuple[FileEntry, ...] = ()
    issues: tuple[ScanIssue, ...] = ()


@dataclass
class _DirListing:
    """What one worker found in one directory."""

    entries: list[FileEntry] = field(default_factory=list)
    issues: list[ScanIssue] = field(default_factory=list)
    subdirs: list[tuple[str, Path]] = field(default_factory=list)
    ancestors: frozenset[DirIdentity] = frozenset()


def default_workers() -> int:
    """Pool size bounded by the available CPU parallelism."""
    return os.cpu_count() or 1


def _dir_identity(path: Path) -> DirIdentity:
    st = path.stat()
    return (st.st_dev, st.st_ino)


def _child_rel(parent: str, name: str) -> str:
    return f"{parent}/{name}" if parent else name


class Scanner:
    """Walk a directory tree and collect the files the rules keep.

    Each directory is listed by one pool task which also runs the bounded
    content sniff of its files. Tasks return their own lists; only the main
    thread merges them and schedules subdirectories.

    A task carries the identities of the directories on its own path from the
    root. A followed symlink is a cycle only when it leads back to one of
    them. A directory reachable through several links is listed once per
    route.
    """

    def __init__(self, ruleset: RuleSet, *, count_lines: bool = False, workers: int | None = None) -> None:
        self.ruleset = ruleset
        self.count_lines = count_lines
        self.workers = workers or default_workers()

    def scan(self, root: Path) -> ScanResult:
        """Walk `root` and return the eligible files sorted by relative path.

        Args:
            root (Path): the directory to walk

        Raises:
            TraversalError: if `root` does not exist or is not a directory.

        Returns:
            ScanResult: the eligible files and the per-entry issues
        """
        root = Path(root)
        if not root.is_dir():
            raise TraversalError(root=root)
        root = root.resolve()

        entries: list[FileEntry] = []
        issues: list[ScanIssue] = []
        root_ancestors = frozenset({_dir_identity(root)})

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="treemerge-scan") as pool:
            pending: set[Future[_DirListing]] = {pool.submit(self._list_dir, "", root, root_ancestors)}
            while pending:
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    listing = future.result()
                    entries.extend(listing.entries)
                    issues.extend(listing.issues)
                    for rel, path in listing.subdirs:
                        try:
                            identity = _dir_identity(path)
                        except PermissionError:
                            issues.append(self._issue(ScanPermissionError(path=rel)))
                            continue
                        except OSError as e:
                            issues.append(self._issue(StatError(path=rel, message=str(e))))
                            continue
                        if identity in listing.ancestors:
                            issues.append(self._issue(CycleError(path=rel)))
                            continue
                        pending.add(pool.submit(self._list_dir, rel, path, listing.ancestors | {identity}))

        entries.sort(key=lambda e: e.sort_key)
        issues.sort(key=lambda i: i.rel.encode("utf-8", "surrogateescape"))
        logger.debug("scan.done", root=str(root), files=len(entries), issues=len(issues))
        return ScanResult(entries=tuple(entries), issues=tuple(issues))

    @staticmethod
    def _issue(error: ScanPermissionError | CycleError | ReadError | StatError) -> ScanIssue:
        logger.warning("scan.issue", path=error.path, error=type(error).__name__, message=error.message)
        return ScanIssue.from_error(error)

    def _list_dir(self, rel_dir: str, abs_dir: Path, ancestors: frozenset[DirIdentity]) -> _DirListing:
        listing = _DirListing(ancestors=ancestors)
        try:
            with os.scandir(abs_dir) as it:
                children = sorted(it, key=lambda e: e.name)
        except PermissionError:
            listing.issues.append(self._issue(ScanPermissionError(path=rel_dir or ".")))
            return listing
        except OSError as e:
            listing.issues.append(self._issue(ReadError(path=rel_dir or ".", message=str(e))))
            return listing

        for child in children:
            rel = _child_rel(rel_dir, child.name)
            path = Path(child.path)
            try:
                is_symlink = child.is_symlink()
                is_dir = child.is_dir()
                is_file = child.is_file()
            except OSError as e:
                listing.issues.append(self._issue(StatError(path=rel, message=str(e))))
                continue

            if is_dir:
                if self.ruleset.decide(rel, is_dir=True, is_symlink=is_symlink) is Decision.DROP:
                    logger.debug("scan.pruned", path=rel)
                    if is_symlink and not self.ruleset.follow_symlinks:
                        continue
                    for readmitted in self.ruleset.readmitted_under(rel):
                        self._inspect_file(listing, readmitted, path / readmitted[len(rel) + 1 :])
                    continue
                listing.subdirs.append((rel, path))
            elif is_file:
                self._inspect_file(listing, rel, path, is_symlink=is_symlink)
        return listing

    def _inspect_file(self, listing: _DirListing, rel: str, path: Path, *, is_symlink: bool | None = None) -> None:
        try:
            if is_symlink is None:
                # Re-admitted paths were not listed; they must exist as files.
                if not is_regular_file(path):
                    return
                is_symlink = path.is_symlink()
            if self.ruleset.decide(rel, is_symlink=is_symlink, path=path) is Decision.DROP:
                return
        except PermissionError:
            listing.issues.append(self._issue(ScanPermissionError(path=rel)))
            return
        except OSError as e:
            listing.issues.append(self._issue(ReadError(path=rel, message=str(e))))
            return
        try:
            size = path.stat().st_size
        except OSError as e:
            listing.issues.append(self._issue(StatError(path=rel, message=str(e))))
            return
        try:
            line_count = count_lines(path) if self.count_lines else None
        except OSError as e:
            listing.issues.append(self._issue(ReadError(path=rel, message=str(e))))
            return
        listing.entries.append(
            FileEntry(
                path=path,
                rel=rel,
                size=size,
                line_count=line_count,
                is_text=True,
                is_symlink=is_symlink,
            ),
        )


def scan(root: Path, ruleset: RuleSet, *, count_lines: bool = False, workers: int | None = None) -> ScanResult:
    """Walk `root` with `ruleset`; see :meth:`Scanner.scan`."""
    return Scanner(ruleset, count_lines=count_lines, workers=workers).scan(root)
