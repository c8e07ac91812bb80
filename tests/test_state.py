from __future__ import annotations

import json
from pathlib import Path

from yuque_mirror.state import ChangeCache, RenameIndex


def test_should_render_for_unknown_tag_or_missing_output() -> None:
    cache = ChangeCache("u/r", {"1": "v1"})
    assert cache.should_render(1, None, output_exists=True)
    assert cache.should_render(1, "v1", output_exists=False)
    assert cache.should_render(2, "v1", output_exists=True)
    assert cache.should_render(1, "v2", output_exists=True)
    assert not cache.should_render(1, "v1", output_exists=True)


def test_commit_writes_only_current_observations(tmp_path: Path) -> None:
    cache = ChangeCache("u/r", {"1": "v1", "2": "v2"})
    cache.record(1, "v1")
    cache.record(3, None)

    cache.commit(tmp_path)

    saved = json.loads(ChangeCache.path_for(tmp_path, "u/r").read_text(encoding="utf-8"))
    assert saved == {"1": "v1"}


def test_carry_forward_keeps_previous_tag() -> None:
    cache = ChangeCache("u/r", {"1": "old"})
    cache.carry_forward(1)
    cache.carry_forward(2)
    assert cache.observed == {"1": "old"}


def test_load_round_trips_committed_table(tmp_path: Path) -> None:
    first = ChangeCache("u/r")
    first.record(7, "2024")
    first.commit(tmp_path)

    assert ChangeCache.load(tmp_path, "u/r").previous_tag(7) == "2024"


def test_corrupt_table_loads_as_empty(tmp_path: Path) -> None:
    path = ChangeCache.path_for(tmp_path, "u/r")
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")

    cache = ChangeCache.load(tmp_path, "u/r")

    assert cache.previous_tag(1) is None


def test_rename_index_detects_moves() -> None:
    index = RenameIndex({"u/r/a": "R/A.md"})
    assert index.detect_move("u/r/a", "R/A.md") is None
    assert index.detect_move("u/r/a", "R/Guide/A.md") == "R/A.md"
    assert index.detect_move("u/r/new", "R/New.md") is None


def test_rename_index_commit_drops_unobserved_keys(tmp_path: Path) -> None:
    index = RenameIndex({"u/r/a": "R/A.md", "u/r/gone": "R/Gone.md"})
    index.record("u/r/a", "R/A.md")
    index.commit(tmp_path)

    assert RenameIndex.load(tmp_path).detect_move("u/r/gone", "x") is None
    assert json.loads(RenameIndex.path_for(tmp_path).read_text(encoding="utf-8")) == {"u/r/a": "R/A.md"}


def test_unwritten_tag_suppresses_rerender_until_it_changes(tmp_path: Path) -> None:
    first = ChangeCache("u/r")
    first.record(1, "v1", written=False)
    first.record(2, "v1")
    first.commit(tmp_path)

    cache = ChangeCache.load(tmp_path, "u/r")

    assert not cache.should_render(1, "v1", output_exists=False)
    assert cache.should_render(1, "v2", output_exists=False)
    assert cache.should_render(2, "v1", output_exists=False)


def test_written_record_clears_unwritten_marker() -> None:
    cache = ChangeCache("u/r", {"1": "v1"}, {"1": "v1"})
    cache.carry_forward(1)
    assert cache.unwritten == {"1": "v1"}

    cache.record(1, "v2")

    assert cache.unwritten == {}
    assert cache.observed == {"1": "v2"}
