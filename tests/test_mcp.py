"""Tests for the MCP tool functions and the indexing CLI."""

from __future__ import annotations

from pathlib import Path

import pytest

from mcp_pkg_docs import cli
from mcp_pkg_docs import mcp as server
from mcp_pkg_docs.config import Settings
from mcp_pkg_docs.query import QueryEngine
from mcp_pkg_docs.store import IndexStore

from rustdoc_pages import PACKAGE


@pytest.fixture
def wired(monkeypatch, settings: Settings, store: IndexStore) -> QueryEngine:
    """Point the server's lazy wiring at the test store and cache."""
    engine = QueryEngine(store, settings)
    monkeypatch.setattr(server, "get_settings", lambda: settings)
    monkeypatch.setattr(server, "get_engine", lambda: engine)
    return engine


@pytest.mark.admin
class TestTools:
    """MCP tool behaviour."""

    def test_ping(self):
        """Test health ping."""
        assert server.ping() == "pong"

    @pytest.mark.asyncio
    async def test_admin_index_then_query(self, wired):
        """Test indexing through the admin tool and reading the results."""
        result = await server.t_admin_index()
        assert result["success"] is True
        assert result["indexed"] == [f"{PACKAGE} 1.0.0"]
        assert result["items"] == 15

        packages = await server.t_packages_search("demo")
        assert packages["packages"][0]["name"] == PACKAGE

        versions = await server.t_package_versions(PACKAGE)
        assert versions["found"] is True
        assert versions["versions"][0]["version"] == "1.0.0"
        assert "id" not in versions["versions"][0]

    @pytest.mark.asyncio
    async def test_search_items(self, wired):
        """Test the item search tool."""
        await server.t_admin_index()
        result = await server.t_search_items(PACKAGE, "from_str")
        assert result["found"] is True
        assert result["version"] == "1.0.0"
        first = result["results"][0]
        assert first["path"] == "demo_crate::from_str"
        assert first["uri"] == f"pkg://{PACKAGE}/1.0.0/items/demo_crate::from_str"

    @pytest.mark.asyncio
    async def test_search_items_not_found(self, wired):
        """Test that unknown packages are a normal not-found response."""
        result = await server.t_search_items("x", "Value")
        assert result["found"] is False
        assert "x" in result["message"]

    @pytest.mark.asyncio
    async def test_search_items_bad_kind(self, wired):
        """Test that an unknown kind filter is reported, not raised."""
        await server.t_admin_index()
        result = await server.t_search_items(PACKAGE, "Value", kinds=["widget"])
        assert result["found"] is False
        assert result["message"].startswith("invalid request")

    @pytest.mark.asyncio
    async def test_readme(self, wired):
        """Test the readme tool."""
        await server.t_admin_index()
        result = await server.t_readme(PACKAGE)
        assert result["found"] is True
        assert result["readme"].startswith("# demo-crate")
        missing = await server.t_readme("x")
        assert missing["found"] is False

    @pytest.mark.asyncio
    async def test_resource(self, wired):
        """Test the resource tool, including malformed URIs."""
        await server.t_admin_index()
        ok = await server.t_resource(f"pkg://{PACKAGE}/latest/src/demo_crate/value.rs#L1")
        assert ok["found"] is True
        assert ok["text"] == "// line 1"
        bad = await server.t_resource("ftp://nope")
        assert bad["found"] is False
        assert bad["message"].startswith("invalid uri")

    @pytest.mark.asyncio
    async def test_resource_malformed_netloc(self, wired):
        """Test that a URI urlsplit cannot parse is an invalid-uri response."""
        result = await server.t_resource("pkg://[serde/1.0.0")
        assert result["found"] is False
        assert result["message"].startswith("invalid uri")

    @pytest.mark.asyncio
    async def test_invalid_selector_is_reported_by_every_tool(self, wired):
        """Test that a bad selector is an invalid-request response from each tool."""
        await server.t_admin_index()
        bad = "not..a..version"
        responses = [
            await server.t_search_items(PACKAGE, "Value", version=bad),
            await server.t_readme(PACKAGE, bad),
            await server.t_resource(f"pkg://{PACKAGE}/{bad}/readme"),
        ]
        for result in responses:
            assert result["found"] is False
            assert result["message"].startswith("invalid request")

    @pytest.mark.asyncio
    async def test_index_status(self, wired, settings: Settings):
        """Test the status tool."""
        status = await server.t_admin_index_status()
        assert status["cache_dir"] == str(settings.cache_dir)
        assert status["cache_present"] is True
        assert status["counts"]["items"] == 0


@pytest.mark.admin
class TestCli:
    """pkg-docs-index command line."""

    def test_index_and_status(self, cache_root: Path, tmp_path: Path, capsys):
        """Test a successful run followed by a status report."""
        index = tmp_path / "cli" / "index.sqlite"
        assert cli.main(["--cache", str(cache_root), "--index", str(index)]) == 0
        out = capsys.readouterr().out
        assert f"✅ {PACKAGE} 1.0.0: 15 items" in out

        assert cli.main(["--cache", str(cache_root), "--index", str(index), "--status"]) == 0
        out = capsys.readouterr().out
        assert f"• {PACKAGE}: 1.0.0" in out

    def test_failed_version_exit_code(self, cache_root: Path, tmp_path: Path, make_minimal_version):
        """Test that any failed version makes the run exit non-zero."""
        make_minimal_version(cache_root, PACKAGE, "not-a-version")
        index = tmp_path / "cli" / "index.sqlite"
        assert cli.main(["--cache", str(cache_root), "--index", str(index)]) == 1

    def test_empty_cache(self, tmp_path: Path):
        """Test that an empty cache is reported as a failure."""
        (tmp_path / "empty").mkdir()
        index = tmp_path / "cli" / "index.sqlite"
        assert cli.main(["--cache", str(tmp_path / "empty"), "--index", str(index)]) == 1

    def test_status_without_index(self, tmp_path: Path, capsys):
        """Test status before any index exists."""
        index = tmp_path / "none" / "index.sqlite"
        assert cli.main(["--cache", str(tmp_path), "--index", str(index), "--status"]) == 0
        assert "not built" in capsys.readouterr().out
