# src/mcp_pkg_docs/mcp.py
from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from .config import Settings
from .errors import InvalidURI, NotFound
from .indexer import index_tree
from .logger import logger
from .query import QueryEngine
from .resources import ResourceResolver
from .store import IndexStore


# ---- lazy wiring (env-overrideable through Settings) ----
@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


@lru_cache(maxsize=1)
def get_engine() -> QueryEngine:
    settings = get_settings()
    return QueryEngine(IndexStore(settings.index_path), settings)


def _not_found(e: Exception) -> Dict[str, Any]:
    return {"found": False, "message": str(e)}


def _invalid_request(e: Exception) -> Dict[str, Any]:
    return {"found": False, "message": f"invalid request: {e}"}


# ---- MCP server ----
mcp = FastMCP("pkg-docs")


@mcp.tool(name="health_ping", description="Returns simple pong")
def ping() -> str:
    return "pong"


@mcp.tool(
    name="packages_search",
    description="List indexed packages whose name contains the query, with their latest version.",
)
async def t_packages_search(query: str = "") -> Dict[str, Any]:
    packages = get_engine().list_packages(query.strip())
    return {"packages": [p.model_dump() for p in packages]}


@mcp.tool(
    name="package_versions",
    description="List indexed versions of a package, newest first.",
)
async def t_package_versions(package: str) -> Dict[str, Any]:
    versions = get_engine().list_versions(package)
    return {
        "package": package,
        "found": bool(versions),
        "versions": [v.model_dump(exclude={"id"}) for v in versions],
    }


@mcp.tool(
    name="package_search_items",
    description=(
        "Search documented items (modules, types, functions, traits, impls) of one "
        "package version. version accepts 'latest', an exact version or a range like '^1.2'."
    ),
)
async def t_search_items(
    package: str,
    query: str,
    version: str = "latest",
    kinds: Optional[List[str]] = None,  # e.g. ["struct", "function"]
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    engine = get_engine()
    try:
        resolved = engine.resolve(package, version)
        hits = engine.search_items(package, resolved.version, query, kinds=kinds, limit=limit)
    except NotFound as e:
        return _not_found(e)
    except ValueError as e:
        return _invalid_request(e)
    return {
        "found": True,
        "package": package,
        "version": resolved.version,
        "results": [
            {
                "path": it.path,
                "kind": it.kind.value,
                "signature": it.signature,
                "uri": f"pkg://{package}/{resolved.version}/items/{it.path}",
            }
            for it in hits
        ],
    }


@mcp.tool(
    name="package_readme",
    description="Return the readme (Markdown) of a package version.",
)
async def t_readme(package: str, version: str = "latest") -> Dict[str, Any]:
    engine = get_engine()
    try:
        resolved = engine.resolve(package, version)
        text = engine.get_readme(package, resolved.version)
    except NotFound as e:
        return _not_found(e)
    except ValueError as e:
        return _invalid_request(e)
    return {"found": True, "package": package, "version": resolved.version, "readme": text}


@mcp.tool(
    name="package_resource",
    description=(
        "Read a pkg:// resource: pkg://{name}, pkg://{name}/{version}, "
        ".../readme, .../items[/{path}], .../src[/{file}#L1-L20] or .../{path}."
    ),
)
async def t_resource(uri: str) -> Dict[str, Any]:
    try:
        content = ResourceResolver(get_engine()).read(uri)
    except InvalidURI as e:
        return {"found": False, "message": f"invalid uri: {e}"}
    except NotFound as e:
        return _not_found(e)
    except ValueError as e:
        return _invalid_request(e)
    return {"found": True, **content.model_dump()}


@mcp.tool(
    name="admin_index",
    description="(Re)index cached documentation into the local index. Optionally one package only.",
)
async def t_admin_index(package: Optional[str] = None) -> Dict[str, Any]:
    settings = get_settings()
    summary = index_tree(
        get_engine().store,
        settings.cache_dir,
        package=package,
        max_workers=settings.max_workers,
    )
    return {
        "success": not summary.failed,
        "indexed": [f"{v.package} {v.version}" for v in summary.indexed],
        "failed": [{"version": f"{v.package} {v.version}", "error": v.error} for v in summary.failed],
        "items": summary.item_count,
        "warnings": summary.warning_count,
    }


@mcp.tool(
    name="admin_index_status",
    description="Report cache and index locations and row counts.",
)
async def t_admin_index_status() -> Dict[str, Any]:
    settings = get_settings()
    status = get_engine().status()
    status["cache_dir"] = str(settings.cache_dir)
    status["cache_present"] = settings.cache_dir.is_dir()
    return status


def main() -> None:
    settings = get_settings()
    logger.info(f"Serving pkg-docs from {settings.index_path}")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
