from __future__ import annotations

import pytest

from yuque_mirror.models import NodeKind
from yuque_mirror.tree.paths import MAX_SEGMENT_LENGTH, PathAssigner, sanitize_segment


@pytest.mark.parametrize(
    ("title", "expected"),
    [
        ("Intro", "Intro"),
        ("a/b: c?", "a_b_ c_"),
        ('<x>|"y"*', "_x_y_"),
        ("  padded  ", "padded"),
        ("", "untitled"),
        (None, "untitled"),
        ("..", "_"),
        ("CON", "CON_"),
        ("lpt1.txt", "lpt1.txt_"),
        ("中文 标题", "中文 标题"),
    ],
)
def test_sanitize_segment(title: str | None, expected: str) -> None:
    assert sanitize_segment(title) == expected


def test_sanitize_segment_truncates_long_titles() -> None:
    assert len(sanitize_segment("x" * 300)) == MAX_SEGMENT_LENGTH


def test_sanitize_segment_never_contains_separator() -> None:
    assert "/" not in sanitize_segment("a/b/c")
    assert "\\" not in sanitize_segment("a\\b")


def test_duplicate_siblings_get_numbered_suffixes_in_order() -> None:
    assigner = PathAssigner()
    paths = [assigner.assign("repo", NodeKind.DOC, "Intro", "root") for _ in range(3)]
    assert paths == ["repo/Intro", "repo/Intro_1", "repo/Intro_2"]


def test_same_title_different_kind_does_not_collide() -> None:
    assigner = PathAssigner()
    folder = assigner.assign("repo", NodeKind.CONTAINER, "Guide", "root")
    page = assigner.assign("repo", NodeKind.DOC, "Guide", "root")
    assert folder == "repo/Guide"
    assert page == "repo/Guide"


def test_same_title_under_different_parents_does_not_collide() -> None:
    assigner = PathAssigner()
    assert assigner.assign("repo/a", NodeKind.DOC, "Intro", "a") == "repo/a/Intro"
    assert assigner.assign("repo/b", NodeKind.DOC, "Intro", "b") == "repo/b/Intro"


def test_titles_equal_after_sanitizing_collide() -> None:
    assigner = PathAssigner()
    assert assigner.assign("", NodeKind.DOC, "a/b", "root") == "a_b"
    assert assigner.assign("", NodeKind.DOC, "a:b", "root") == "a_b_1"


def test_literal_suffix_title_never_shares_a_path() -> None:
    assigner = PathAssigner()
    first = assigner.assign("", NodeKind.DOC, "X_1", "root")
    second = assigner.assign("", NodeKind.DOC, "X", "root")
    third = assigner.assign("", NodeKind.DOC, "X", "root")
    assert len({first, second, third}) == 3
    assert first == "X_1"
    assert second == "X"


def test_passthrough_root_claims_output_root() -> None:
    assigner = PathAssigner()
    assert assigner.passthrough() == ""
    assert assigner.assign("", NodeKind.DOC, "Intro", "root") == "Intro"


def test_directory_and_file_never_share_an_output_path() -> None:
    assigner = PathAssigner()
    folder = assigner.assign("R", NodeKind.CONTAINER, "A.md", "root")
    page = assigner.assign("R", NodeKind.DOC, "A", "root")
    assert folder == "R/A.md"
    assert page == "R/A_1"


def test_reserved_top_level_names_are_suffixed() -> None:
    assigner = PathAssigner()
    assert assigner.assign("", NodeKind.ROOT, "assets", "") == "assets_1"
    assert assigner.assign("", NodeKind.CONTAINER, ".meta", "root") == "_.meta"
    assert assigner.assign("R", NodeKind.CONTAINER, "assets", "r") == "R/assets"


def test_hidden_top_level_names_are_made_visible() -> None:
    assigner = PathAssigner()
    assigner.passthrough()
    assert assigner.assign("", NodeKind.DOC, ".NET", "root") == "_.NET"
    assert assigner.assign("R", NodeKind.DOC, ".NET", "r") == "R/.NET"
