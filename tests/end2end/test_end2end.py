from pathlib import Path

import pytest

from treemerge import cli


def _project(root: Path) -> Path:
    (root / "src").mkdir(parents=True)
    (root / "src" / "main.rs").write_text('fn main() { println!("hi"); }\n', encoding="utf-8")
    (root / "Cargo.toml").write_text('[package]\nname = "demo"\n', encoding="utf-8")
    (root / "Cargo.lock").write_text("# lock\n", encoding="utf-8")
    (root / "target").mkdir()
    (root / "target" / "debug.txt").write_text("build output\n", encoding="utf-8")
    (root / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n\x00\x00\x00")
    return root


@pytest.mark.end2end
def test_end_to_end_merge(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    repo = _project(tmp_path / "demo")
    output = tmp_path / "demo.txt"

    exit_code = cli.main([str(repo), "--output", str(output)])

    assert exit_code == 0
    assert output.read_text(encoding="utf-8") == (
        '########## Cargo.toml\n[package]\nname = "demo"\n\n'
        '########## src/main.rs\nfn main() { println!("hi"); }\n\n'
    )
    assert "files=2" in capsys.readouterr().out


@pytest.mark.end2end
def test_end_to_end_dry_run_with_filters(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    repo = _project(tmp_path / "demo")
    output = tmp_path / "demo.txt"

    exit_code = cli.main([str(repo), "-o", str(output), "-e", "rs", "--dry-run"])

    assert exit_code == 0
    assert not output.exists()
    out = capsys.readouterr().out
    assert "Would merge 1 files" in out
    assert "src/main.rs" in out
    assert "Cargo.toml" not in out


@pytest.mark.end2end
def test_end_to_end_split_with_output_inside_root(tmp_path: Path) -> None:
    repo = _project(tmp_path / "demo")
    output = repo / "corpus.txt"

    assert cli.main([str(repo), "-o", str(output), "--split-every", "1", "--header-style", "plain"]) == 0
    assert cli.main([str(repo), "-o", str(output), "--split-every", "1", "--header-style", "plain"]) == 0

    assert (repo / "corpus.txt.1").read_text(encoding="utf-8") == 'Cargo.toml\n[package]\nname = "demo"\n\n'
    assert (repo / "corpus.txt.2").read_text(encoding="utf-8") == 'src/main.rs\nfn main() { println!("hi"); }\n\n'
    assert not (repo / "corpus.txt.3").exists()


@pytest.mark.end2end
def test_end_to_end_declined_confirmation(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    repo = _project(tmp_path / "demo")
    output = tmp_path / "demo.txt"
    monkeypatch.setenv("TREEMERGE_CONFIRM_BYTES", "1")
    monkeypatch.setattr("builtins.input", lambda _prompt: "n")

    assert cli.main([str(repo), "-o", str(output)]) == 1
    assert not output.exists()
    assert cli.main([str(repo), "-o", str(output), "--no-confirm"]) == 0
    assert output.exists()
