from __future__ import annotations

import os
import time
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from treemerge import scanner as scanner_module
from treemerge.config import IssueKind
from treemerge.exceptions import TraversalError
from treemerge.rules import RuleSet
from treemerge.scanner import Scanner, scan

if TYPE_CHECKING:
    from pytest_mock import MockerFixture


def _write(path: Path, content: str | bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding="utf-8")
    return path


@pytest.mark.unit
def test_scan_rejects_missing_or_file_root(tmp_path: Path) -> None:
    with pytest.raises(TraversalError):
        scan(tmp_path / "missing", RuleSet())

    afile = _write(tmp_path / "file.txt", "x\n")
    with pytest.raises(TraversalError):
        scan(afile, RuleSet())


@pytest.mark.unit
def test_scan_sorts_entries_and_skips_default_ignores(tmp_path: Path) -> None:
    _write(tmp_path / "b.log", "b\n" * 5)
    _write(tmp_path / "a.txt", "a\n" * 10)
    _write(tmp_path / ".git" / "config", "[core]\n\tbare = false\n")
    _write(tmp_path / "src" / "z.py", "print('z')\n")
    _write(tmp_path / "src" / "B.py", "print('B')\n")

    result = scan(tmp_path, RuleSet(), workers=4)

    assert [e.rel for e in result.entries] == ["a.txt", "b.log", "src/B.py", "src/z.py"]
    assert result.issues == ()


@pytest.mark.unit
def test_scan_drops_binary_files_and_keeps_empty_ones(tmp_path: Path) -> None:
    _write(tmp_path / "image.bin", b"\x89PNG\r\n\x1a\n\x00\x00")
    _write(tmp_path / "empty.txt", "")

    result = scan(tmp_path, RuleSet())

    assert [e.rel for e in result.entries] == ["empty.txt"]
    assert result.entries[0].size == 0


@pytest.mark.unit
def test_scan_counts_lines_only_when_asked(tmp_path: Path) -> None:
    _write(tmp_path / "a.txt", "one\ntwo\nthree")

    lazy = scan(tmp_path, RuleSet())
    counted = scan(tmp_path, RuleSet(), count_lines=True)

    assert lazy.entries[0].line_count is None
    assert counted.entries[0].line_count == 3


@pytest.mark.unit
def test_scan_readmits_literal_include_below_pruned_dir(tmp_path: Path) -> None:
    _write(tmp_path / "build" / "keep.txt", "keep\n")
    _write(tmp_path / "build" / "drop.txt", "drop\n")
    _write(tmp_path / "main.txt", "main\n")

    result = scan(tmp_path, RuleSet(include=["build/keep.txt", "build/*.md"]))

    assert [e.rel for e in result.entries] == ["build/keep.txt", "main.txt"]


@pytest.mark.unit
def test_scan_symlink_outside_root_follows_flag(tmp_path: Path) -> None:
    root = tmp_path / "root"
    target = _write(tmp_path / "outside" / "target.txt", "from outside\n")
    _write(root / "inside.txt", "inside\n")
    (root / "link.txt").symlink_to(target)

    without = scan(root, RuleSet())
    with_flag = scan(root, RuleSet(follow_symlinks=True))

    assert [e.rel for e in without.entries] == ["inside.txt"]
    assert [e.rel for e in with_flag.entries] == ["inside.txt", "link.txt"]
    link = with_flag.entries[1]
    assert link.is_symlink
    assert link.size == len("from outside\n")


@pytest.mark.unit
def test_scan_reports_symlink_cycle_and_terminates(tmp_path: Path) -> None:
    _write(tmp_path / "a" / "file.txt", "x\n")
    (tmp_path / "a" / "loop").symlink_to(tmp_path / "a", target_is_directory=True)

    result = scan(tmp_path, RuleSet(follow_symlinks=True))

    assert [e.rel for e in result.entries] == ["a/file.txt"]
    assert [(i.rel, i.kind) for i in result.issues] == [("a/loop", IssueKind.CYCLE)]


@pytest.mark.unit
def test_scan_records_permission_error_and_continues(tmp_path: Path, mocker: MockerFixture) -> None:
    _write(tmp_path / "secret" / "hidden.txt", "hidden\n")
    _write(tmp_path / "open.txt", "open\n")
    real_scandir = os.scandir

    def fake_scandir(path: str | os.PathLike[str]) -> object:
        if Path(path).name == "secret":
            raise PermissionError(13, "Permission denied", str(path))
        return real_scandir(path)

    mocker.patch.object(scanner_module.os, "scandir", side_effect=fake_scandir)

    result = Scanner(RuleSet(), workers=2).scan(tmp_path)

    assert [e.rel for e in result.entries] == ["open.txt"]
    assert [(i.rel, i.kind) for i in result.issues] == [("secret", IssueKind.PERMISSION)]


@pytest.mark.unit
def test_scan_order_is_independent_of_worker_count(tmp_path: Path) -> None:
    for d in ("x", "y", "z"):
        for i in range(5):
            _write(tmp_path / d / f"f{i}.txt", f"{d}{i}\n")

    single = scan(tmp_path, RuleSet(), workers=1)
    many = scan(tmp_path, RuleSet(), workers=8)

    assert [e.rel for e in single.entries] == [e.rel for e in many.entries]
    assert len(single.entries) == 15


@pytest.mark.unit
def test_scan_symlink_to_sibling_dir_is_not_a_cycle(tmp_path: Path) -> None:
    _write(tmp_path / "t" / "tgt" / "f.txt", "f\n")
    (tmp_path / "x").mkdir()
    (tmp_path / "x" / "l1").symlink_to(tmp_path / "t" / "tgt", target_is_directory=True)

    result = scan(tmp_path, RuleSet(follow_symlinks=True), workers=4)

    assert [e.rel for e in result.entries] == ["t/tgt/f.txt", "x/l1/f.txt"]
    assert result.issues == ()


@pytest.mark.unit
def test_scan_lists_directory_once_per_route(tmp_path: Path) -> None:
    _write(tmp_path / "z_real" / "f.txt", "f\n")
    (tmp_path / "a_link").symlink_to(tmp_path / "z_real", target_is_directory=True)

    result = scan(tmp_path, RuleSet(follow_symlinks=True), workers=4)

    assert [e.rel for e in result.entries] == ["a_link/f.txt", "z_real/f.txt"]
    assert result.issues == ()


@pytest.mark.unit
@pytest.mark.parametrize("slow_dir", ["t", "x"])
def test_scan_result_does_not_depend_on_listing_speed(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    slow_dir: str,
) -> None:
    _write(tmp_path / "t" / "tgt" / "f.txt", "f\n")
    (tmp_path / "x").mkdir()
    (tmp_path / "x" / "l1").symlink_to(tmp_path / "t" / "tgt", target_is_directory=True)
    real_list_dir = Scanner._list_dir  # noqa: SLF001

    def slow_list_dir(self: Scanner, rel_dir: str, abs_dir: Path, ancestors: frozenset[tuple[int, int]]) -> object:
        if rel_dir == slow_dir:
            time.sleep(0.05)
        return real_list_dir(self, rel_dir, abs_dir, ancestors)

    monkeypatch.setattr(Scanner, "_list_dir", slow_list_dir)

    result = scan(tmp_path, RuleSet(follow_symlinks=True), workers=4)

    assert [e.rel for e in result.entries] == ["t/tgt/f.txt", "x/l1/f.txt"]
    assert result.issues == ()


@pytest.mark.unit
def test_scan_records_stat_failure(tmp_path: Path, mocker: MockerFixture) -> None:
    _write(tmp_path / "sub" / "f.txt", "f\n")
    _write(tmp_path / "top.txt", "top\n")
    real_identity = scanner_module._dir_identity  # noqa: SLF001

    def failing_identity(path: Path) -> tuple[int, int]:
        if path.name == "sub":
            raise OSError(5, "Input/output error", str(path))
        return real_identity(path)

    mocker.patch.object(scanner_module, "_dir_identity", side_effect=failing_identity)

    result = scan(tmp_path, RuleSet())

    assert [e.rel for e in result.entries] == ["top.txt"]
    assert [(i.rel, i.kind) for i in result.issues] == [("sub", IssueKind.STAT)]


@pytest.mark.unit
def test_scan_readmits_dotted_literal_include(tmp_path: Path) -> None:
    _write(tmp_path / "build" / "keep.txt", "keep\n")

    result = scan(tmp_path, RuleSet(include=["./build//keep.txt"]))

    assert [e.rel for e in result.entries] == ["build/keep.txt"]
