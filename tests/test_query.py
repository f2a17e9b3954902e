"""Tests for the query engine."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from mcp_pkg_docs.config import Settings
from mcp_pkg_docs.errors import NoMatchingVersion, NotFound, VersionNotFound
from mcp_pkg_docs.indexer import index_tree
from mcp_pkg_docs.models import Item, ItemKind
from mcp_pkg_docs.query import QueryEngine, match_tier, rank_items
from mcp_pkg_docs.store import IndexStore

from rustdoc_pages import PACKAGE, VALUE_RS


def _item(path: str, doc: str = None, kind: ItemKind = ItemKind.STRUCT) -> Item:
    return Item(path=path, kind=kind, documentation=doc, doc_path=path.replace("::", "/") + ".html")


@pytest.fixture
def ranked_engine(store: IndexStore, settings: Settings) -> QueryEngine:
    vid = store.upsert_version(store.upsert_package("pkg"), "1.0.0")
    store.replace_items(
        vid,
        [
            _item("mod::doc", doc="This page mentions Value in passing."),
            _item("mod::ValueRef"),
            _item("mod::Value"),
            _item("mod::Other"),
        ],
    )
    return QueryEngine(store, settings)


@pytest.mark.query
class TestRanking:
    """Search tiers."""

    def test_match_tier(self):
        """Test the three tiers and the non-match case."""
        assert match_tier(_item("mod::Value"), "value") == 0
        assert match_tier(_item("mod::Value"), "mod::value") == 0
        assert match_tier(_item("mod::ValueRef"), "Value") == 1
        assert match_tier(_item("mod::doc", doc="mentions Value"), "Value") == 2
        assert match_tier(_item("mod::Other"), "Value") is None

    def test_rank_orders_by_tier_then_path(self):
        """Test deterministic order within a tier."""
        items = [_item("b::ValueB"), _item("a::ValueA"), _item("z::Value")]
        assert [it.path for it in rank_items(items, "Value")] == ["z::Value", "a::ValueA", "b::ValueB"]

    def test_search_tier_order(self, ranked_engine: QueryEngine):
        """Test exact match, then path substring, then body match."""
        hits = ranked_engine.search_items("pkg", "1.0.0", "Value")
        assert [it.path for it in hits] == ["mod::Value", "mod::ValueRef", "mod::doc"]

    def test_search_limit(self, ranked_engine: QueryEngine):
        """Test that results are bounded."""
        assert len(ranked_engine.search_items("pkg", "latest", "Value", limit=1)) == 1

    def test_search_empty_result(self, ranked_engine: QueryEngine):
        """Test that no match is an empty list, not an error."""
        assert ranked_engine.search_items("pkg", "latest", "nothing-like-this") == []


@pytest.mark.query
class TestQueryEngine:
    """Engine operations over the indexed demo crate."""

    def test_list_packages(self, engine: QueryEngine):
        """Test package listing with latest version."""
        packages = engine.list_packages()
        assert [(p.name, p.latest) for p in packages] == [(PACKAGE, "1.0.0")]
        assert packages[0].description == "Demo crate"
        assert engine.list_packages("zzz") == []

    def test_list_versions_order(self, store: IndexStore, cache_root: Path, settings: Settings, make_minimal_version):
        """Test newest-first semver ordering with pre-releases."""
        for v in ("1.2.0", "2.0.0-beta", "2.0.0"):
            make_minimal_version(cache_root, PACKAGE, v)
        index_tree(store, cache_root)
        engine = QueryEngine(store, settings)
        assert [v.version for v in engine.list_versions(PACKAGE)] == ["2.0.0", "2.0.0-beta", "1.2.0", "1.0.0"]
        assert engine.resolve(PACKAGE, "latest").version == "2.0.0"
        assert engine.resolve(PACKAGE, "1").version == "1.2.0"

    def test_list_versions_unknown_package(self, engine: QueryEngine):
        """Test that an unindexed package has no versions."""
        assert engine.list_versions("x") == []

    def test_get_metadata(self, engine: QueryEngine):
        """Test package attributes joined with the resolved version."""
        meta = engine.get_metadata(PACKAGE, "^1")
        assert meta.name == PACKAGE
        assert meta.repository == "https://example.invalid/demo-crate"
        assert meta.version.version == "1.0.0"
        assert meta.version.downloads == 1234
        assert meta.version.msrv == "1.60"

    def test_get_metadata_no_match(self, engine: QueryEngine):
        """Test that an unsatisfiable selector fails NoMatchingVersion."""
        with pytest.raises(NoMatchingVersion):
            engine.get_metadata(PACKAGE, "2")

    def test_search_demo(self, engine: QueryEngine):
        """Test search over parsed items, with a kind filter."""
        hits = engine.search_items(PACKAGE, "latest", "Value")
        assert hits[0].path in {"demo_crate::value", "demo_crate::value::Value"}
        methods = engine.search_items(PACKAGE, "latest", "null", kinds=["method"])
        assert [it.path for it in methods] == ["demo_crate::value::Value::is_null"]

    def test_search_empty_query_lists_items(self, engine: QueryEngine):
        """Test that an empty query returns items in path order."""
        items = engine.search_items(PACKAGE, "latest", "", kinds=[ItemKind.STRUCT])
        assert [it.path for it in items] == ["demo_crate::Map"]

    def test_get_item(self, engine: QueryEngine):
        """Test lookup by item path and by doc path."""
        assert engine.get_item(PACKAGE, "latest", "demo_crate::Map").kind is ItemKind.STRUCT
        variant = engine.get_item(PACKAGE, "latest", "demo_crate/value/enum.Value.html#variant.Null")
        assert variant.path == "demo_crate::value::Value::Null"
        with pytest.raises(NotFound):
            engine.get_item(PACKAGE, "latest", "demo_crate::Nope")

    def test_source(self, engine: QueryEngine):
        """Test source listing, full content and line ranges."""
        assert engine.list_source(PACKAGE) == ["demo_crate/lib.rs", "demo_crate/value.rs"]
        assert engine.get_source(PACKAGE, "latest", "demo_crate/value.rs").content == VALUE_RS
        ranged = engine.get_source(PACKAGE, "latest", "demo_crate/value.rs", lines=(16, 18))
        assert ranged.content == "// line 16\n// line 17\n// line 18"
        single = engine.get_source(PACKAGE, "latest", "demo_crate/value.rs", lines=(4, None))
        assert single.content == "// line 4"

    def test_source_not_found(self, engine: QueryEngine):
        """Test missing files and out-of-range lines."""
        with pytest.raises(NotFound):
            engine.get_source(PACKAGE, "latest", "demo_crate/missing.rs")
        with pytest.raises(NotFound):
            engine.get_source(PACKAGE, "latest", "demo_crate/value.rs", lines=(999, None))

    def test_readme(self, engine: QueryEngine):
        """Test readme retrieval."""
        assert engine.get_readme(PACKAGE).startswith("# demo-crate")

    def test_readme_unknown_package(self, engine: QueryEngine):
        """Test that an unindexed package fails VersionNotFound, not a generic error."""
        with pytest.raises(VersionNotFound):
            engine.get_readme("x", "latest")

    def test_readme_absent(self, store: IndexStore, cache_root: Path, settings: Settings, make_minimal_version):
        """Test that a version without readme fails NotFound."""
        make_minimal_version(cache_root, "bare", "0.1.0")
        index_tree(store, cache_root, package="bare")
        engine = QueryEngine(store, settings)
        with pytest.raises(NotFound) as exc:
            engine.get_readme("bare")
        assert not isinstance(exc.value, VersionNotFound)

    def test_prerelease_policy_setting(self, store: IndexStore, cache_root: Path, make_minimal_version):
        """Test that 'latest' honours the pre-release fallback setting."""
        make_minimal_version(cache_root, "pre", "0.1.0-alpha")
        index_tree(store, cache_root, package="pre")
        assert QueryEngine(store, Settings()).resolve("pre").version == "0.1.0-alpha"
        strict = QueryEngine(store, Settings(latest_includes_prerelease=False))
        with pytest.raises(NoMatchingVersion):
            strict.resolve("pre")

    def test_status(self, engine: QueryEngine):
        """Test status counts."""
        status = engine.status()
        assert status["counts"]["items"] == 15
        assert status["counts"]["versions"] == 1

    def test_list_items(self, engine: QueryEngine):
        """Test that every item of the resolved version is listed in path order."""
        items = engine.list_items(PACKAGE, "^1")
        paths = [it.path for it in items]
        assert len(items) == 15
        assert paths == sorted(paths)

    def test_search_folds_non_ascii_case(self, store: IndexStore, settings: Settings):
        """Test that case-insensitive matching is not limited to ASCII."""
        vid = store.upsert_version(store.upsert_package("intl"), "1.0.0")
        store.replace_items(
            vid,
            [
                _item("intl::Élan"),
                _item("intl::addr", doc="Parses a Straße name."),
                _item("intl::Other"),
            ],
        )
        engine = QueryEngine(store, settings)
        assert [it.path for it in engine.search_items("intl", "1.0.0", "élan")] == ["intl::Élan"]
        assert [it.path for it in engine.search_items("intl", "1.0.0", "STRASSE")] == ["intl::addr"]


@pytest.mark.query
class TestConcurrentReads:
    """Reads from several threads against one store."""

    def test_parallel_search_and_readme(self, engine: QueryEngine):
        """Test that concurrent callers each see the same results as a sequential one."""
        expected_hits = [it.path for it in engine.search_items(PACKAGE, "latest", "Value")]
        expected_readme = engine.get_readme(PACKAGE)

        def read(n: int):
            if n % 2:
                return "readme", engine.get_readme(PACKAGE, "^1")
            return "search", [it.path for it in engine.search_items(PACKAGE, "latest", "Value")]

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(read, range(32)))

        assert len(results) == 32
        for kind, value in results:
            if kind == "readme":
                assert value == expected_readme
            else:
                assert value == expected_hits
