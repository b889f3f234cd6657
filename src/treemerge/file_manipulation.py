from __future__ import annotations

import codecs
import stat
from pathlib import Path
from typing import TYPE_CHECKING

from treemerge.config import COPY_BUFFER_BYTES, HASH_HEADER_MARKER, SNIFF_BYTES, UNDERLINE_CHAR, HeaderStyle

if TYPE_CHECKING:
    from collections.abc import Iterable


def relpath(path: Path, root: Path) -> str:
    """Send the relative path of path from root.

    Args:
        path (Path): the path to "relativise"
        root (Path): the root to relativise from

    Returns:
        str: the relative path from root to path, with POSIX separators.
            If path is not under root, returns the original path as a string.
    """
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)


def is_regular_file(path: Path) -> bool:
    """Check if a file is regular, following symlinks.

    Args:
        path (Path): path to test.

    Returns:
        bool: True if the file is regular, False otherwise.
    """
    try:
        st = path.stat()
    except OSError:
        return False
    return stat.S_ISREG(st.st_mode)


def looks_binary(chunk: bytes) -> bool:
    """Classify a sampled prefix of a file.

    A NUL byte, or bytes that are not valid UTF-8, mark the sample as binary.
    A multi-byte sequence cut by the end of the sample is not held against it.

    Args:
        chunk (bytes): the sampled prefix

    Returns:
        bool: True if the sample looks binary
    """
    if b"\0" in chunk:
        return True
    decoder = codecs.getincrementaldecoder("utf-8")()
    try:
        decoder.decode(chunk, final=False)
    except UnicodeDecodeError:
        return True
    return False


def sniff_is_binary(path: Path, nbytes: int = SNIFF_BYTES) -> bool:
    """Read the first `nbytes` of a file and classify them.

    Args:
        path (Path): path to test.
        nbytes (int, optional): number of bytes to sample. Defaults to SNIFF_BYTES.

    Raises:
        OSError: if the file cannot be opened or read.

    Returns:
        bool: True if the file looks binary, False for mergeable text.
    """
    with path.open("rb") as f:
        chunk = f.read(nbytes)
    return looks_binary(chunk)


def count_lines(path: Path) -> int:
    """Count the lines of a file without loading it whole.

    The last line counts even when it lacks a trailing newline.

    Args:
        path (Path): the file to count

    Raises:
        OSError: if the file cannot be read.

    Returns:
        int: the number of lines
    """
    newlines = 0
    last = b""
    with path.open("rb") as f:
        for blk in iter(lambda: f.read(COPY_BUFFER_BYTES), b""):
            newlines += blk.count(b"\n")
            last = blk[-1:]
    return newlines + (1 if last not in {b"", b"\n"} else 0)


def normalize_globs(globs: Iterable[str]) -> list[str]:
    """Normalize a sequence of path glob patterns.

    Normalize a sequence of glob patterns by stripping whitespace and
    replacing backslashes with forward slashes.

    Args:
        globs (Iterable[str]): the glob patterns to normalize

    Returns:
        list[str]: the normalized glob patterns, in their original order
    """
    out: list[str] = []
    for g in globs:
        g2 = (g or "").strip()
        if not g2:
            continue
        out.append(g2.replace("\\", "/"))
    return out


def normalize_extensions(exts: Iterable[str]) -> frozenset[str]:
    """Normalize extension filters: comma lists split, leading dots dropped, lower-cased.

    Args:
        exts (Iterable[str]): raw values such as ``"rs"``, ``".PY"`` or ``"md,txt"``

    Returns:
        frozenset[str]: the normalized extensions
    """
    out: set[str] = set()
    for raw in exts:
        for part in str(raw).split(","):
            ext = part.strip().lstrip(".").lower()
            if ext:
                out.add(ext)
    return frozenset(out)


def has_glob_magic(pattern: str) -> bool:
    """Tell whether a pattern contains glob metacharacters."""
    return any(c in pattern for c in "*?[")


def render_header(rel: str, style: HeaderStyle) -> bytes:
    """Render the header written before a file's content.

    Args:
        rel (str): the relative path of the file
        style (HeaderStyle): the header style

    Returns:
        bytes: the encoded header, newline terminated
    """
    match style:
        case HeaderStyle.PLAIN:
            text = f"{rel}\n"
        case HeaderStyle.HASH:
            text = f"{HASH_HEADER_MARKER} {rel}\n"
        case HeaderStyle.UNDERLINE:
            text = f"{rel}\n{UNDERLINE_CHAR * len(rel)}\n"
    return text.encode("utf-8", "surrogateescape")


def separator_after(last_byte: bytes) -> bytes:
    """Return the bytes closing a file's body: a line terminator if missing, then one blank line."""
    return b"\n" if last_byte in {b"", b"\n"} else b"\n\n"
