"""Eligibility rules: default ignores, user globs, extension filter, symlink policy, content sniff."""

from __future__ import annotations

import re
from enum import StrEnum, auto
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

import pathspec

from treemerge.config import DEFAULT_IGNORE_PATTERNS
from treemerge.exceptions import ConfigError
from treemerge.file_manipulation import has_glob_magic, normalize_extensions, normalize_globs, sniff_is_binary
from treemerge.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from pathlib import Path

    from treemerge.settings import Settings

DEFAULT_IGNORE_SPEC = pathspec.GitIgnoreSpec.from_lines(DEFAULT_IGNORE_PATTERNS)


class Decision(StrEnum):
    """Outcome of evaluating the rules for one entry."""

    KEEP = auto()
    DROP = auto()


def check_glob(pattern: str) -> None:
    """Reject glob syntax that gitignore matching would silently discard.

    Args:
        pattern (str): the glob pattern

    Raises:
        ConfigError: on an unclosed bracket class or a dangling escape.
    """
    i = 0
    end = len(pattern)
    while i < end:
        char = pattern[i]
        if char == "\\":
            if i + 1 >= end:
                raise ConfigError(message=f"Invalid glob pattern {pattern!r}: dangling escape.")
            i += 2
            continue
        if char == "[":
            j = i + 1
            if j < end and pattern[j] in "!^":
                j += 1
            if j < end and pattern[j] == "]":
                j += 1
            close = pattern.find("]", j)
            if close < 0:
                raise ConfigError(message=f"Invalid glob pattern {pattern!r}: unclosed bracket.")
            i = close + 1
            continue
        i += 1


def clean_include(pattern: str) -> str:
    """Normalize an include pattern and keep it inside the scan root.

    Literal paths lose their leading ``/`` and any ``.`` components, so they
    compare equal to the relative paths the scanner produces.

    Args:
        pattern (str): a normalized include glob

    Raises:
        ConfigError: if the pattern has a ``..`` component.

    Returns:
        str: the cleaned pattern
    """
    if ".." in pattern.split("/"):
        raise ConfigError(message=f"Include pattern {pattern!r} must not contain '..'.")
    if has_glob_magic(pattern) or pattern.endswith("/"):
        return pattern
    return PurePosixPath(pattern.lstrip("/")).as_posix()


def compile_globs(patterns: Sequence[str]) -> pathspec.GitIgnoreSpec:
    """Compile user globs, anchored at the scan root.

    ``*`` stays within one path component, ``**`` spans any depth, ``?`` and
    bracket classes behave as in gitignore. Matching is case-sensitive.

    Args:
        patterns (Sequence[str]): the normalized glob patterns

    Raises:
        ConfigError: if a pattern cannot be compiled.

    Returns:
        pathspec.GitIgnoreSpec: the compiled patterns
    """
    for p in patterns:
        check_glob(p)
    anchored = [p if p.startswith("/") else f"/{p}" for p in patterns]
    try:
        return pathspec.GitIgnoreSpec.from_lines(anchored)
    except (ValueError, TypeError, re.error) as e:
        raise ConfigError(message=f"Invalid glob pattern: {e}") from e


def _dir_forms(rel: str) -> tuple[str, str]:
    return (rel, f"{rel}/")


class RuleSet:
    """Decide whether a path below the scan root is merged.

    Path rules come first and the first decisive one wins:

    1. a default-ignore match (unless ``all_files``) is a tentative drop;
    2. a user include match keeps the path;
    3. a user exclude match drops it;
    4. the tentative drop from step 1 becomes final.

    Files kept by those rules without an include match then go through the
    extension allow-list, the symlink policy and the binary content sniff, in
    that order. An include match keeps a file outright.

    Directories are pruned by default ignores and excludes alone; an include
    never revives a directory. Literal include paths below a pruned directory
    are re-admitted one file at a time, see :meth:`readmitted_under`.
    """

    def __init__(
        self,
        *,
        include: Iterable[str] = (),
        exclude: Iterable[str] = (),
        extensions: Iterable[str] = (),
        all_files: bool = False,
        follow_symlinks: bool = False,
        reserved: str | None = None,
    ) -> None:
        self.include = tuple(clean_include(p) for p in normalize_globs(include))
        self.exclude = tuple(normalize_globs(exclude))
        self.extensions = normalize_extensions(extensions)
        self.all_files = all_files
        self.follow_symlinks = follow_symlinks
        self.reserved = reserved
        self._include_spec = compile_globs(self.include)
        self._exclude_spec = compile_globs(self.exclude)
        self._literal_includes = tuple(p for p in self.include if not has_glob_magic(p) and not p.endswith("/"))

    @classmethod
    def from_settings(cls, settings: Settings, *, reserved: str | None = None) -> RuleSet:
        """Build the rules described by a Settings value.

        Args:
            settings (Settings): the run configuration
            reserved (str | None): relative path of the output file when it lies below the root

        Returns:
            RuleSet: the compiled rules
        """
        return cls(
            include=settings.include,
            exclude=settings.exclude,
            extensions=settings.extensions,
            all_files=settings.all_files,
            follow_symlinks=settings.follow_symlinks,
            reserved=reserved,
        )

    def is_default_ignored(self, rel: str, *, is_dir: bool = False) -> bool:
        """Check a path against the built-in ignore table (always False with ``all_files``)."""
        if self.all_files:
            return False
        candidates = _dir_forms(rel) if is_dir else (rel,)
        return any(DEFAULT_IGNORE_SPEC.match_file(c) for c in candidates)

    def is_included(self, rel: str) -> bool:
        """Check a file path against the user include globs."""
        return self._include_spec.match_file(rel)

    def is_excluded(self, rel: str, *, is_dir: bool = False) -> bool:
        """Check a path against the user exclude globs."""
        candidates = _dir_forms(rel) if is_dir else (rel,)
        return any(self._exclude_spec.match_file(c) for c in candidates)

    def is_reserved(self, rel: str) -> bool:
        """Tell whether a path is the output file or one of its numbered segments."""
        if self.reserved is None:
            return False
        if rel == self.reserved:
            return True
        prefix = f"{self.reserved}."
        return rel.startswith(prefix) and rel[len(prefix) :].isdigit()

    def has_allowed_extension(self, rel: str) -> bool:
        """Check the extension allow-list; an empty list allows everything."""
        if not self.extensions:
            return True
        return PurePosixPath(rel).suffix.lstrip(".").lower() in self.extensions

    def path_decision(self, rel: str, *, is_dir: bool = False) -> Decision:
        """Apply the path rules only (default ignores, includes, excludes)."""
        if self.is_reserved(rel):
            return Decision.DROP
        if is_dir:
            ignored = self.is_default_ignored(rel, is_dir=True) or self.is_excluded(rel, is_dir=True)
            return Decision.DROP if ignored else Decision.KEEP
        tentative_drop = self.is_default_ignored(rel)
        if self.is_included(rel):
            return Decision.KEEP
        if self.is_excluded(rel) or tentative_drop:
            return Decision.DROP
        return Decision.KEEP

    def decide(
        self,
        rel: str,
        *,
        is_dir: bool = False,
        is_symlink: bool = False,
        path: Path | None = None,
    ) -> Decision:
        """Evaluate every rule for one entry.

        Args:
            rel (str): path relative to the scan root, POSIX separators
            is_dir (bool): whether the entry is a directory
            is_symlink (bool): whether the entry is a symlink
            path (Path | None): absolute path to sniff; the content check is skipped when None

        Raises:
            OSError: if the content sniff cannot read the file.

        Returns:
            Decision: KEEP or DROP
        """
        if self.path_decision(rel, is_dir=is_dir) is Decision.DROP:
            return Decision.DROP
        if is_dir:
            return Decision.DROP if is_symlink and not self.follow_symlinks else Decision.KEEP
        if self.is_included(rel):
            return Decision.KEEP
        if not self.has_allowed_extension(rel):
            return Decision.DROP
        if is_symlink and not self.follow_symlinks:
            return Decision.DROP
        if path is not None and sniff_is_binary(path):
            logger.debug("rules.binary", path=rel)
            return Decision.DROP
        return Decision.KEEP

    def readmitted_under(self, dir_rel: str) -> tuple[str, ...]:
        """Return the literal include paths lying below a pruned directory.

        Args:
            dir_rel (str): relative path of the pruned directory

        Returns:
            tuple[str, ...]: relative file paths to examine individually
        """
        prefix = f"{dir_rel}/"
        return tuple(p for p in self._literal_includes if p.startswith(prefix))
