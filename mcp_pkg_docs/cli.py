"""Command-line indexer: load the documentation cache into the local index."""

from __future__ import annotations

import argparse
import pathlib
import sys
from typing import List, Optional

from .config import Settings
from .indexer import index_tree
from .models import IndexSummary
from .query import QueryEngine
from .store import IndexStore


def print_status(settings: Settings) -> None:
    """Show cache and index state."""
    print("📊 Index Status:")
    print(f"  Cache: {settings.cache_dir}")
    if settings.cache_dir.is_dir():
        packages = sorted(p.name for p in settings.cache_dir.iterdir() if p.is_dir())
        print(f"    ✅ {len(packages)} cached package(s)")
    else:
        print("    ❌ not found")

    print(f"  Index: {settings.index_path}")
    if not settings.index_path.exists():
        print("    ❌ not built")
        return

    with IndexStore(settings.index_path) as store:
        engine = QueryEngine(store, settings)
        counts = store.stats()
        print(
            f"    ✅ {counts['packages']} packages, {counts['versions']} versions, "
            f"{counts['items']} items, {counts['source_files']} source files"
        )
        for pkg in engine.list_packages():
            versions = ", ".join(v.version for v in engine.list_versions(pkg.name))
            print(f"    • {pkg.name}: {versions}")


def print_summary(summary: IndexSummary) -> None:
    for v in summary.versions:
        if v.indexed:
            print(
                f"  ✅ {v.package} {v.version}: {v.items} items, "
                f"{v.source_files} source files, {len(v.warnings)} warnings"
            )
        else:
            print(f"  ❌ {v.package} {v.version}: {v.error}")
    print(
        f"\n{len(summary.indexed)} indexed, {len(summary.failed)} failed, "
        f"{summary.item_count} items, {summary.warning_count} warnings"
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the indexing CLI."""
    parser = argparse.ArgumentParser(
        description="Index cached package documentation for the pkg-docs MCP server"
    )
    parser.add_argument("--cache", type=pathlib.Path, help="Documentation cache root")
    parser.add_argument("--index", type=pathlib.Path, help="SQLite index file")
    parser.add_argument("--package", help="Only index this package")
    parser.add_argument(
        "--status",
        action="store_true",
        help="Show cache and index status instead of indexing",
    )
    parser.add_argument("--workers", type=int, help="Parser worker processes per version")

    args = parser.parse_args(argv)

    settings = Settings.from_env()
    overrides = {}
    if args.cache is not None:
        overrides["cache_dir"] = args.cache.expanduser().resolve()
    if args.index is not None:
        overrides["index_path"] = args.index.expanduser().resolve()
    if args.workers is not None:
        overrides["max_workers"] = max(1, args.workers)
    if overrides:
        settings = settings.model_copy(update=overrides)

    if args.status:
        print_status(settings)
        return 0

    print(f"🔍 Indexing {settings.cache_dir} -> {settings.index_path}")
    with IndexStore(settings.index_path) as store:
        summary = index_tree(
            store, settings.cache_dir, package=args.package, max_workers=settings.max_workers
        )
    print_summary(summary)

    if not summary.versions:
        print("\n❌ Nothing to index.")
        return 1
    if summary.failed:
        print("\n❌ Some versions failed. See errors above.")
        return 1
    print("\n✅ Index ready.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
