from dataclasses import dataclass, fields
from pathlib import Path


@dataclass(frozen=True)
class TreemergeError(Exception):
    """Base exception for errors in the treemerge package."""

    def __str__(self) -> str:
        message = getattr(self, "message", "") or (self.__doc__ or "").strip()
        details = ", ".join(f"{f.name}={getattr(self, f.name)}" for f in fields(self) if f.name != "message")
        return f"{message} ({details})" if details else message


@dataclass(frozen=True)
class ConfigError(TreemergeError):
    """Raised when the configuration is invalid (bad glob, bad split size, unwritable output)."""

    message: str


@dataclass(frozen=True)
class TraversalError(TreemergeError):
    """Raised when the scan root is missing or is not a directory."""

    root: Path
    message: str = "treemerge only operates on directories."


@dataclass(frozen=True)
class ScanPermissionError(TreemergeError):
    """Recorded when a directory or file below the root cannot be accessed."""

    path: str
    message: str = "Permission denied."


@dataclass(frozen=True)
class CycleError(TreemergeError):
    """Recorded when following a symlink leads back to an already visited directory."""

    path: str
    message: str = "Symlink cycle detected."


@dataclass(frozen=True)
class ReadError(TreemergeError):
    """Recorded when a source file cannot be read."""

    path: str
    message: str = "Source file could not be read."


@dataclass(frozen=True)
class StatError(TreemergeError):
    """Recorded when the metadata of an entry below the root cannot be read."""

    path: str
    message: str = "Entry metadata could not be read."


@dataclass(frozen=True)
class WriteError(TreemergeError):
    """Raised when an output segment cannot be written."""

    path: Path
    message: str = "Output segment could not be written."


@dataclass(frozen=True)
class ConfirmationDeclinedError(TreemergeError):
    """Raised when a large merge was not confirmed."""

    estimated_bytes: int
    message: str = "Estimated output exceeds the safety threshold; use --no-confirm to bypass."


@dataclass(frozen=True)
class NoFilesError(TreemergeError):
    """Raised when no file survived the filters."""

    root: Path
    message: str = "No text files matched criteria."
