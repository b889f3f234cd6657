from __future__ import annotations

from enum import StrEnum, auto
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from treemerge.exceptions import CycleError, ReadError, ScanPermissionError, StatError

if TYPE_CHECKING:
    from treemerge.exceptions import TreemergeError

_ = Path()

SNIFF_BYTES = 8192
COPY_BUFFER_BYTES = 64 * 1024
DEFAULT_CONFIRM_THRESHOLD_BYTES = 500 * 1024 * 1024


class HeaderStyle(StrEnum):
    """Literal formatting written before each merged file."""

    PLAIN = auto()
    HASH = auto()
    UNDERLINE = auto()


class IssueKind(StrEnum):
    """Why an entry was left out of the merge."""

    PERMISSION = auto()
    CYCLE = auto()
    READ = auto()
    STAT = auto()


HASH_HEADER_MARKER = "##########"
UNDERLINE_CHAR = "="

# gitignore-style patterns, matched at any depth unless they contain an inner "/".
DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    # VCS
    ".git/",
    ".svn/",
    ".hg/",
    # build dirs
    "target/",
    "dist/",
    "build/",
    "out/",
    # caches
    "__pycache__/",
    ".cache/",
    ".mypy_cache/",
    ".pytest_cache/",
    ".ruff_cache/",
    ".venv/",
    ".idea/",
    ".vscode/",
    "node_modules/",
    # docs output
    "_site/",
    "_book/",
    "docs/_build/",
    # boilerplate
    "LICENSE",
    "LICENSE.*",
    "COPYING",
    "NOTICE",
    # lockfiles
    "*.lock",
    "package-lock.json",
    "Pipfile.lock",
    "pnpm-lock.yaml",
    # binaries
    "*.pyc",
    "*.pyo",
    "*.o",
    "*.so",
    "*.dll",
    "*.exe",
)

_ERROR_KINDS: dict[type[TreemergeError], IssueKind] = {
    ScanPermissionError: IssueKind.PERMISSION,
    CycleError: IssueKind.CYCLE,
    ReadError: IssueKind.READ,
    StatError: IssueKind.STAT,
}


class FileEntry(BaseModel):
    """An eligible file found below the scan root.

    Attributes:
        path: Absolute path used to read the file. For a followed symlink this is
            the link itself, so the content comes from its target.
        rel: Path relative to the scan root, with POSIX separators.
        size: File size in bytes.
        line_count: Number of lines, or None when it was not needed during the scan.
        is_text: Result of the content sniff.
        is_symlink: Whether the entry was reached through a symlink.
    """

    model_config = ConfigDict(frozen=True)

    path: Path = Field(..., description="Absolute file path")
    rel: str = Field(..., description="File path relative to the scan root")
    size: int = Field(..., ge=0, description="File size in bytes")
    line_count: int | None = Field(default=None, ge=0, description="Line count, when computed")
    is_text: bool = Field(default=True, description="Content sniff result")
    is_symlink: bool = Field(default=False, description="Reached through a symlink")

    @property
    def sort_key(self) -> bytes:
        """Byte-lexicographic ordering key of the relative path."""
        return self.rel.encode("utf-8", "surrogateescape")


class ScanIssue(BaseModel):
    """A recoverable per-entry problem, kept for the final report."""

    model_config = ConfigDict(frozen=True)

    rel: str
    kind: IssueKind
    message: str

    @classmethod
    def from_error(cls, error: ScanPermissionError | CycleError | ReadError | StatError) -> ScanIssue:
        """Build an issue from one of the recoverable error types."""
        return cls(rel=error.path, kind=_ERROR_KINDS[type(error)], message=error.message)
