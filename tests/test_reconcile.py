from __future__ import annotations

from pathlib import Path

import pytest

from yuque_mirror.exceptions import ReconciliationError
from yuque_mirror.fs import LocalFilesystem
from yuque_mirror.reconcile import OutputReconciler, ancestors


@pytest.fixture()
def fs(tmp_path: Path) -> LocalFilesystem:
    fs = LocalFilesystem(tmp_path / "out")
    for path in ("R/Keep.md", "R/Old.md", "R/Stale/Deep.md", ".meta/u/r/repo.json", "assets/x/img.png", ".hidden"):
        fs.write_file(path, "x")
    fs.create_directory("R/Empty")
    fs.create_directory("R/Folder")
    return fs


def test_ancestors() -> None:
    assert list(ancestors("a/b/c.md")) == ["a", "a/b"]
    assert list(ancestors("c.md")) == []


def test_removes_orphans_and_empty_directories(fs: LocalFilesystem) -> None:
    result = OutputReconciler(fs).reconcile({"R/Keep.md"}, {"R", "R/Folder"})

    assert sorted(result.deleted_files) == ["R/Old.md", "R/Stale/Deep.md"]
    assert sorted(result.pruned_directories) == ["R/Empty", "R/Stale"]
    assert fs.exists("R/Keep.md")
    assert fs.exists("R/Folder")
    assert not fs.exists("R/Stale")


def test_reserved_and_top_level_hidden_entries_are_untouched(fs: LocalFilesystem) -> None:
    OutputReconciler(fs).reconcile(set(), set())

    assert fs.exists(".meta/u/r/repo.json")
    assert fs.exists("assets/x/img.png")
    assert fs.exists(".hidden")
    assert not fs.exists("R")


def test_nested_hidden_entries_are_reconciled(fs: LocalFilesystem) -> None:
    fs.write_file("R/.NET.md", "x")
    fs.write_file("R/.git-notes/Tips.md", "x")

    result = OutputReconciler(fs).reconcile({"R/Keep.md"}, {"R"})

    assert "R/.NET.md" in result.deleted_files
    assert "R/.git-notes/Tips.md" in result.deleted_files
    assert "R/.git-notes" in result.pruned_directories
    assert fs.exists(".hidden")


def test_missing_output_area_is_a_no_op(tmp_path: Path) -> None:
    result = OutputReconciler(LocalFilesystem(tmp_path / "nothing")).reconcile(set(), set())
    assert result.deleted_files == []


def test_unreadable_output_area_raises(fs: LocalFilesystem, monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail(path: str):
        msg = "permission denied"
        raise PermissionError(msg)

    monkeypatch.setattr(fs, "list_directory", _fail)
    with pytest.raises(ReconciliationError):
        OutputReconciler(fs).scan()
