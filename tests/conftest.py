from __future__ import annotations

import os
from pathlib import Path

import pytest
from factories import FakeSource, StubRenderer

from yuque_mirror.config import MirrorSettings


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep real YUQUE_* variables and stray .env files out of every test."""
    for name in list(os.environ):
        if name.startswith("YUQUE_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture()
def renderer() -> StubRenderer:
    return StubRenderer()


@pytest.fixture()
def output_dir(tmp_path: Path) -> Path:
    return tmp_path / "storage"


@pytest.fixture()
def settings(output_dir: Path) -> MirrorSettings:
    return MirrorSettings(output_dir=output_dir, concurrency=4)
