"""Pytest configuration and fixtures for pkg-docs tests."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from mcp_pkg_docs.config import Settings
from mcp_pkg_docs.indexer import index_tree
from mcp_pkg_docs.query import QueryEngine
from mcp_pkg_docs.store import IndexStore

from rustdoc_pages import DEMO_METADATA, PACKAGE, write_minimal_version, write_version


@pytest.fixture
def cache_root(tmp_path: Path) -> Path:
    """Cache tree holding demo-crate 1.0.0 (full docs)."""
    cache = tmp_path / "docs_raw"
    write_version(cache, PACKAGE, "1.0.0", metadata=DEMO_METADATA)
    return cache


@pytest.fixture
def make_version() -> Callable[..., Path]:
    return write_version


@pytest.fixture
def make_minimal_version() -> Callable[..., Path]:
    return write_minimal_version


@pytest.fixture
def settings(tmp_path: Path, cache_root: Path) -> Settings:
    return Settings(cache_dir=cache_root, index_path=tmp_path / "data" / "index.sqlite")


@pytest.fixture
def store(settings: Settings):
    s = IndexStore(settings.index_path)
    yield s
    s.close()


@pytest.fixture
def indexed_store(store: IndexStore, cache_root: Path) -> IndexStore:
    """Store with the demo cache tree already indexed."""
    summary = index_tree(store, cache_root)
    assert not summary.failed, [v.error for v in summary.failed]
    return store


@pytest.fixture
def engine(indexed_store: IndexStore, settings: Settings) -> QueryEngine:
    return QueryEngine(indexed_store, settings)
