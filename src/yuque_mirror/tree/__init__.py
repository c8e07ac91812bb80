"""Tree assembly and path assignment for the mirror."""

from yuque_mirror.tree.builder import RepoRecords, Tree, TreeNode, build_repo_tree, build_tree
from yuque_mirror.tree.paths import PathAssigner, sanitize_segment

__all__ = [
    "PathAssigner",
    "RepoRecords",
    "Tree",
    "TreeNode",
    "build_repo_tree",
    "build_tree",
    "sanitize_segment",
]
