"""yuque-mirror: incremental Markdown mirror of Yuque knowledge bases."""

from yuque_mirror.builder import BuildSummary, build
from yuque_mirror.config import MirrorSettings, load_settings
from yuque_mirror.crawler import crawl

__version__ = "0.1.0"
__all__ = [
    "BuildSummary",
    "MirrorSettings",
    "build",
    "crawl",
    "load_settings",
]
