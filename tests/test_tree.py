from __future__ import annotations

import logging

import pytest
from factories import doc, records, toc

from yuque_mirror.exceptions import SourceReadError
from yuque_mirror.models import NodeKind
from yuque_mirror.tree import build_tree


def _paths(tree) -> list[tuple[str, str]]:
    return [(node.kind.value, node.output_path) for node in tree.walk()]


def test_builds_nested_tree_in_toc_order() -> None:
    repo = records(
        "u/r",
        "Handbook",
        [
            toc("TITLE", "Guide", "g"),
            toc("DOC", "Intro", "i", parent="g", url="intro"),
            toc("DOC", "Setup", "s", parent="g", url="setup"),
            toc("LINK", "Site", "l", url="https://example.com"),
        ],
        [doc(1, "intro"), doc(2, "setup")],
    )

    tree = build_tree([repo])

    assert _paths(tree) == [
        ("ROOT", "Handbook"),
        ("CONTAINER", "Handbook/Guide"),
        ("DOC", "Handbook/Guide/Intro.md"),
        ("DOC", "Handbook/Guide/Setup.md"),
        ("LINK", "Handbook/Site.md"),
    ]
    intro = tree.docs["u/r/intro"]
    assert intro.doc_id == 1
    assert intro.revision == "2024-01-01T00:00:00Z"
    assert tree.parent_of(intro).title == "Guide"


def test_duplicate_titles_are_suffixed_in_toc_order() -> None:
    repo = records(
        "u/r",
        "R",
        [toc("DOC", "Intro", "a", url="a"), toc("DOC", "Intro", "b", url="b")],
        [doc(1, "a"), doc(2, "b")],
    )

    tree = build_tree([repo])

    assert tree.docs["u/r/a"].file_path == "R/Intro"
    assert tree.docs["u/r/b"].file_path == "R/Intro_1"


def test_every_node_path_is_unique() -> None:
    items = [toc("DOC", "Same", f"d{n}", url=f"s{n}") for n in range(5)]
    items += [toc("TITLE", "Same", f"t{n}") for n in range(3)]
    tree = build_tree([records("u/r", "R", items, [doc(n, f"s{n}") for n in range(5)])])

    outputs = [node.output_path for node in tree.walk()]
    assert len(outputs) == len(set(outputs))


def test_repositories_with_the_same_name_get_distinct_roots() -> None:
    tree = build_tree([records("a/r", "Docs", []), records("b/r", "Docs", [])])
    assert [tree.nodes[index].file_path for index in tree.roots] == ["Docs", "Docs_1"]


def test_meta_entries_are_dropped() -> None:
    tree = build_tree([records("u/r", "R", [toc("META", "", "meta"), toc("DOC", "A", "a", url="a")], [doc(1, "a")])])
    assert [node.kind for node in tree.walk()] == [NodeKind.ROOT, NodeKind.DOC]


def test_unknown_toc_types_are_dropped_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        tree = build_tree([records("u/r", "R", [toc("WEIRD", "X", "x")])])
    assert len(tree) == 1
    assert "unknown type" in caplog.text


def test_dangling_parent_is_dropped_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    repo = records("u/r", "R", [toc("DOC", "Orphan", "o", parent="missing", url="o"), toc("DOC", "A", "a", url="a")])
    with caplog.at_level(logging.WARNING):
        tree = build_tree([repo])
    assert [node.title for node in tree.walk()] == ["R", "A"]
    assert "parent missing not found" in caplog.text


def test_parent_cycle_is_rejected() -> None:
    repo = records("u/r", "R", [toc("TITLE", "A", "a", parent="b"), toc("TITLE", "B", "b", parent="a")])
    with pytest.raises(SourceReadError, match="cycle"):
        build_tree([repo])


def test_duplicate_identity_is_rejected() -> None:
    repo = records("u/r", "R", [toc("DOC", "A", "a", url="x"), toc("DOC", "B", "a", url="y")])
    with pytest.raises(SourceReadError, match="Duplicate"):
        build_tree([repo])


def test_unlisted_documents_are_skipped_by_default() -> None:
    repo = records("u/r", "R", [toc("DOC", "A", "a", url="a")], [doc(1, "a"), doc(2, "draft", "Draft")])
    tree = build_tree([repo])
    assert "u/r/draft" not in tree.docs


def test_unlisted_documents_go_to_uncategorized_bucket() -> None:
    repo = records("u/r", "R", [toc("DOC", "A", "a", url="a")], [doc(1, "a"), doc(2, "draft", "Draft")])

    tree = build_tree([repo], skip_draft=False, uncategorized_title="_misc")

    draft = tree.docs["u/r/draft"]
    assert draft.kind is NodeKind.DRAFT_DOC
    assert draft.output_path == "R/_misc/Draft.md"
    assert tree.parent_of(draft).kind is NodeKind.CONTAINER


def test_custom_repo_dir_renames_the_root() -> None:
    tree = build_tree([records("u/r", "R", [toc("DOC", "A", "a", url="a")])], repo_dir="docs")
    assert tree.docs["u/r/a"].output_path == "docs/A.md"


def test_passthrough_root_maps_onto_output_root() -> None:
    tree = build_tree([records("u/r", "R", [toc("TITLE", "G", "g"), toc("DOC", "A", "a", parent="g", url="a")])], repo_dir=".")
    root = tree.nodes[tree.roots[0]]
    assert root.file_path == ""
    assert tree.docs["u/r/a"].output_path == "G/A.md"


def test_passthrough_container_never_lands_in_the_assets_area() -> None:
    tree = build_tree(
        [records("u/r", "R", [toc("TITLE", "assets", "g"), toc("DOC", "A", "a", parent="g", url="a")])],
        repo_dir=".",
    )
    assert tree.docs["u/r/a"].output_path == "assets_1/A.md"


def test_repository_named_like_a_reserved_area_is_renamed() -> None:
    tree = build_tree([records("u/r", "assets", [toc("DOC", "A", "a", url="a")])])
    assert tree.docs["u/r/a"].output_path == "assets_1/A.md"


def test_walk_rejects_nodes_reached_twice() -> None:
    tree = build_tree([records("u/r", "R", [toc("DOC", "A", "a", url="a")])])
    tree.roots.append(tree.roots[0])
    with pytest.raises(SourceReadError):
        list(tree.walk())
