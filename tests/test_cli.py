from __future__ import annotations

import pytest

from conftest import write_book
from bookpress import __version__
from bookpress.cli import main


def test_version(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--version"])

    assert excinfo.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_build_without_execution(book_root, capsys):
    assert main(["build", str(book_root), "--no-execute", "--format", "html"]) == 0

    out = capsys.readouterr().out
    assert "Built 3 chapter(s)" in out
    assert (book_root / "_book" / "index.html").exists()
    assert not (book_root / "_book" / "test-cookbook.epub").exists()


def test_check_and_artifact(book_root, tmp_path, capsys):
    assert main(["build", str(book_root), "--no-execute"]) == 0
    assert main(["check", str(book_root)]) == 0
    assert main(["artifact", str(book_root), "--dest", str(tmp_path / "out"), "--name", "book"]) == 0

    assert (tmp_path / "out" / "book.zip").exists()
    assert "no problems" in capsys.readouterr().out


def test_missing_manifest_exit_code(tmp_path):
    assert main(["build", str(tmp_path)]) == 2


def test_check_without_build_exit_code(book_root):
    assert main(["check", str(book_root)]) == 4


def test_publish_skips_other_branches(book_root, monkeypatch, capsys):
    monkeypatch.setenv("GITHUB_REF", "refs/heads/feature")
    monkeypatch.delenv("GITHUB_EVENT_NAME", raising=False)

    assert main(["publish", str(book_root)]) == 0
    assert "Skipped" in capsys.readouterr().out


def test_publish_unbuilt_book_exit_code(book_root, monkeypatch):
    monkeypatch.setenv("GITHUB_REF", "refs/heads/main")
    monkeypatch.delenv("GITHUB_EVENT_NAME", raising=False)

    assert main(["publish", str(book_root)]) == 5


def test_failing_chunk_exit_code(tmp_path):
    pytest.importorskip("ipykernel")
    root = write_book(
        tmp_path / "book",
        {"01-basics.md": "# Basics\n\n```{python}\nresult = 1 / 0\n```\n", "02-plots.md": None},
        manifest="title: Broken\nformats: [html]\n",
    )

    assert main(["build", str(root)]) == 3
    assert not (root / "_book").exists()
