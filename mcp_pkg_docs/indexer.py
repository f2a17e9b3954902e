# src/mcp_pkg_docs/indexer.py
"""
Walk the downloader's cache tree and load it into the index store.

Layout, one subtree per package version::

    <cache>/<package>/<version>/
        metadata.json          optional
        README*                optional
        <crate_dir>/index.html required root page
        <crate_dir>/**.html    item pages
        src/**                 rendered source listings

Each version is parsed completely before anything is written, then all of its
rows are swapped in a single store transaction.
"""
from __future__ import annotations

import pathlib
import sqlite3
from concurrent.futures import ProcessPoolExecutor, as_completed
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError

from .errors import InvalidVersion, PkgDocsError, VersionLayoutError
from .logger import logger
from .models import (
    IndexSummary,
    Item,
    ParseResult,
    ParseWarning,
    SourceFile,
    UnitRole,
    VersionManifest,
    VersionSummary,
)
from .parser import SOURCE_ROOT, parse_unit
from .store import IndexStore
from .versions import parse_version

METADATA_FILE = "metadata.json"
README_PREFIX = "README"

Unit = Tuple[UnitRole, str, pathlib.Path]


def crate_dir_name(package: str) -> str:
    """rustdoc writes ``serde-json`` docs under ``serde_json/``."""
    return package.replace("-", "_")


def _read_unit(path: pathlib.Path) -> bytes:
    return path.read_bytes()


def _rel(path: pathlib.Path, root: pathlib.Path) -> str:
    return path.relative_to(root).as_posix()


def discover_units(version_dir: pathlib.Path, package: str) -> List[Unit]:
    """
    Enumerate the documentation units of one version directory.

    Args:
        version_dir: ``<cache>/<package>/<version>``
        package: Package name, used to locate the crate's page tree

    Returns:
        (role, relative path, absolute path) triples in a stable order

    Raises:
        VersionLayoutError: The root page is missing
    """
    crate_dir = version_dir / crate_dir_name(package)
    root_page = crate_dir / "index.html"
    if not root_page.is_file():
        raise VersionLayoutError(
            f"{package} {version_dir.name}: missing root page {_rel(root_page, version_dir)}"
        )

    units: List[Unit] = []

    readmes = sorted(
        p for p in version_dir.iterdir()
        if p.is_file() and p.name.upper().startswith(README_PREFIX)
    )
    if readmes:
        units.append((UnitRole.README, readmes[0].name, readmes[0]))

    for page in sorted(crate_dir.rglob("*.html")):
        if page.is_file():
            units.append((UnitRole.PAGE, _rel(page, version_dir), page))

    src_root = version_dir / SOURCE_ROOT
    if src_root.is_dir():
        for listing in sorted(src_root.rglob("*")):
            if listing.is_file():
                units.append((UnitRole.SOURCE, _rel(listing, version_dir), listing))

    return units


def load_manifest(version_dir: pathlib.Path) -> Tuple[VersionManifest, List[ParseWarning]]:
    path = version_dir / METADATA_FILE
    if not path.is_file():
        return VersionManifest(), []
    try:
        return VersionManifest.model_validate_json(_read_unit(path)), []
    except ValidationError as e:
        msg = f"invalid metadata ignored: {e.error_count()} error(s)"
        return VersionManifest(), [ParseWarning(unit=METADATA_FILE, message=msg)]


def _check_version_dir(version_dir: pathlib.Path) -> None:
    try:
        parse_version(version_dir.name)
    except InvalidVersion as e:
        raise VersionLayoutError(f"version directory is not semver: {version_dir.name!r}") from e


def _parse_job(args: Tuple[bytes, UnitRole, str]) -> ParseResult:
    """Wrapper for parse_unit to enable parallel processing."""
    data, role, rel = args
    return parse_unit(data, role, rel)


def _parse_all(jobs: List[Tuple[bytes, UnitRole, str]], max_workers: int) -> List[ParseResult]:
    if max_workers <= 1 or len(jobs) < 2:
        return [_parse_job(job) for job in jobs]

    results: Dict[str, ParseResult] = {}
    with ProcessPoolExecutor(max_workers=max_workers) as executor:
        futures = {executor.submit(_parse_job, job): job[2] for job in jobs}
        for future in as_completed(futures):
            rel = futures[future]
            try:
                results[rel] = future.result()
            except Exception as e:
                logger.error(f"Error parsing {rel}: {e}")
                failed = ParseResult(unit=rel)
                failed.warn(f"parser worker failed: {e}")
                results[rel] = failed
    return [results[job[2]] for job in jobs]


def _collect(
    results: List[ParseResult], summary: VersionSummary
) -> Tuple[List[Item], List[SourceFile], Optional[str]]:
    items: Dict[str, Item] = {}
    sources: Dict[str, SourceFile] = {}
    readme: Optional[str] = None

    for res in results:
        summary.warnings.extend(res.warnings)
        if res.warnings and not (res.items or res.source or res.readme):
            summary.failed_units.append(res.unit)

        for it in res.items:
            kept = items.get(it.path)
            if kept is not None:
                summary.warnings.append(
                    ParseWarning(unit=res.unit, message=f"{it.path} already defined by {kept.doc_path}")
                )
                continue
            items[it.path] = it
        if res.source is not None:
            sources.setdefault(res.source.path, res.source)
        if res.readme is not None and readme is None:
            readme = res.readme.content

    return (
        [items[p] for p in sorted(items)],
        [sources[p] for p in sorted(sources)],
        readme,
    )


def index_version(
    store: IndexStore,
    package: str,
    version_dir: pathlib.Path,
    max_workers: int = 1,
) -> VersionSummary:
    """
    (Re)index one cached package version.

    Parse warnings never abort the run. A missing root page, an unreadable
    unit or a store failure leaves the previously indexed state untouched and
    is reported on the returned summary.
    """
    version = version_dir.name
    summary = VersionSummary(package=package, version=version)
    try:
        _check_version_dir(version_dir)
        units = discover_units(version_dir, package)
        manifest, manifest_warnings = load_manifest(version_dir)
        summary.warnings.extend(manifest_warnings)

        # Sort by page path so duplicate item paths resolve the same way every run
        jobs = [(_read_unit(abs_path), role, rel) for role, rel, abs_path in units]
        results = _parse_all(sorted(jobs, key=lambda j: j[2]), max_workers)
        items, sources, readme = _collect(results, summary)

        with store.transaction():
            package_id = store.upsert_package(package, manifest)
            version_id = store.upsert_version(package_id, version, manifest)
            store.replace_version(version_id, items, sources, readme)
    except (PkgDocsError, OSError, sqlite3.Error) as e:
        summary.error = str(e)

    if summary.error:
        logger.error(f"✗ {package} {version}: {summary.error}")
        return summary

    summary.indexed = True
    summary.items = len(items)
    summary.source_files = len(sources)
    summary.readme = readme is not None
    logger.info(
        f"✓ {package} {version}: {summary.items} items, {summary.source_files} source files, "
        f"{len(summary.warnings)} warnings"
    )
    for unit in summary.failed_units:
        logger.warning(f"  unit yielded no records: {unit}")
    return summary


def index_tree(
    store: IndexStore,
    cache_root: pathlib.Path,
    package: Optional[str] = None,
    max_workers: int = 1,
) -> IndexSummary:
    """
    Index every package version found under ``cache_root``.

    Args:
        store: Target index store
        cache_root: Root of the downloader's cache tree
        package: Only index this package
        max_workers: Parser processes per version (1 = sequential)

    Returns:
        IndexSummary with one entry per version directory visited
    """
    summary = IndexSummary()
    if not cache_root.is_dir():
        logger.warning(f"Cache directory not found: {cache_root}")
        return summary

    if package is not None:
        package_dirs = [cache_root / package]
        if not package_dirs[0].is_dir():
            summary.versions.append(
                VersionSummary(package=package, version="*", error="no cached documentation")
            )
            logger.warning(f"No cached documentation for {package} under {cache_root}")
            return summary
    else:
        package_dirs = sorted(p for p in cache_root.iterdir() if p.is_dir())

    for package_dir in package_dirs:
        version_dirs = sorted(p for p in package_dir.iterdir() if p.is_dir())
        logger.info(f"Indexing {package_dir.name}: {len(version_dirs)} version(s)")
        for version_dir in version_dirs:
            summary.versions.append(
                index_version(store, package_dir.name, version_dir, max_workers=max_workers)
            )

    logger.info(
        f"Indexed {len(summary.indexed)} version(s), {summary.item_count} items, "
        f"{summary.warning_count} warnings, {len(summary.failed)} failed"
    )
    return summary
