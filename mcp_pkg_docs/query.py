"""
Query engine: package listing, version resolution, item search and resource
lookups against the index store.

Every per-version operation takes a package name and a selector and resolves
the selector first, so a missing package surfaces as VersionNotFound and an
unsatisfiable selector as NoMatchingVersion.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Tuple, Union

from .config import Settings
from .errors import NotFound
from .models import (
    Item,
    ItemKind,
    PackageMetadata,
    PackageSummary,
    SourceFile,
    VersionInfo,
)
from .store import IndexStore
from .versions import LATEST, VersionSelector, parse_version, select_version

Selector = Union[str, VersionSelector, None]

# ============================================================================
# Ranking
# ============================================================================

TIER_EXACT = 0
TIER_PATH = 1
TIER_BODY = 2


def match_tier(item: Item, query: str) -> Optional[int]:
    """
    Relevance tier of an item for a query, or None when it does not match.

    0: the path or the item's own name equals the query
    1: the path contains the query
    2: the signature or documentation contains the query

    Comparison is case-insensitive.
    """
    q = query.casefold()
    path = item.path.casefold()
    if path == q or item.name.casefold() == q:
        return TIER_EXACT
    if q in path:
        return TIER_PATH
    if q in (item.signature or "").casefold() or q in (item.documentation or "").casefold():
        return TIER_BODY
    return None


def rank_items(items: Iterable[Item], query: str) -> List[Item]:
    """Order matching items by tier, then by path."""
    scored: List[Tuple[int, str, Item]] = []
    for it in items:
        tier = match_tier(it, query)
        if tier is not None:
            scored.append((tier, it.path, it))
    scored.sort(key=lambda s: (s[0], s[1]))
    return [it for _, _, it in scored]


def _kind_values(kinds: Optional[Iterable[Union[str, ItemKind]]]) -> Optional[List[str]]:
    if not kinds:
        return None
    return [ItemKind(k).value for k in kinds]


# ============================================================================
# Engine
# ============================================================================


class QueryEngine:
    """Read-side API over an IndexStore."""

    def __init__(self, store: IndexStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or Settings()

    def resolve(self, package: str, selector: Selector = LATEST) -> VersionInfo:
        """Resolve a selector to the stored version row it designates."""
        versions = self.store.versions_for(package)
        chosen = select_version(
            package,
            [v.version for v in versions],
            selector,
            latest_includes_prerelease=self.settings.latest_includes_prerelease,
        )
        return next(v for v in versions if v.version == chosen)

    def list_packages(self, query: str = "") -> List[PackageSummary]:
        out: List[PackageSummary] = []
        for pkg in self.store.list_packages(query):
            try:
                latest: Optional[str] = self.resolve(pkg.name).version
            except NotFound:
                latest = None
            out.append(PackageSummary(name=pkg.name, latest=latest, description=pkg.description))
        return out

    def list_versions(self, package: str) -> List[VersionInfo]:
        """All indexed versions, newest first by semver; empty for unknown packages."""
        versions = self.store.versions_for(package)
        return sorted(versions, key=lambda v: parse_version(v.version), reverse=True)

    def get_metadata(self, package: str, selector: Selector = LATEST) -> PackageMetadata:
        version = self.resolve(package, selector)
        pkg = self.store.get_package(package)
        if pkg is None:
            raise NotFound(f"package {package!r} is not indexed")
        return PackageMetadata(
            name=pkg.name,
            description=pkg.description,
            homepage=pkg.homepage,
            repository=pkg.repository,
            documentation=pkg.documentation,
            keywords=pkg.keywords,
            categories=pkg.categories,
            version=version,
        )

    def search_items(
        self,
        package: str,
        selector: Selector,
        query: str,
        kinds: Optional[Iterable[Union[str, ItemKind]]] = None,
        limit: Optional[int] = None,
    ) -> List[Item]:
        """
        Rank a version's items against a query.

        Args:
            package: Package name
            selector: Version selector
            query: Case-insensitive search text; empty lists every item
            kinds: Restrict results to these item kinds
            limit: Maximum results (default ``Settings.search_limit``)

        Returns:
            Items ordered by tier, then path; possibly empty
        """
        version = self.resolve(package, selector)
        limit = self.settings.search_limit if limit is None else max(0, limit)
        wanted = _kind_values(kinds)

        query = query.strip()
        if not query:
            items = self.store.items_for(version.id)
            if wanted:
                items = [it for it in items if it.kind.value in wanted]
            return items[:limit]

        candidates = self.store.match_items(version.id, query, wanted)
        return rank_items(candidates, query)[:limit]

    def list_items(self, package: str, selector: Selector = LATEST) -> List[Item]:
        version = self.resolve(package, selector)
        return self.store.items_for(version.id)

    def get_item(self, package: str, selector: Selector, path: str) -> Item:
        """Look an item up by item path (``a::b::C``) or doc path (``a/b/struct.C.html``)."""
        version = self.resolve(package, selector)
        item = self.store.get_item(version.id, path)
        if item is None and ("/" in path or path.endswith(".html")):
            item = self.store.get_item_by_doc_path(version.id, path.lstrip("/"))
        if item is None:
            raise NotFound(f"item {path!r} not found in {package} {version.version}")
        return item

    def list_source(self, package: str, selector: Selector = LATEST) -> List[str]:
        version = self.resolve(package, selector)
        return self.store.source_paths(version.id)

    def get_source(
        self,
        package: str,
        selector: Selector,
        path: str,
        lines: Optional[Tuple[int, Optional[int]]] = None,
    ) -> SourceFile:
        """
        One source file of the resolved version.

        Args:
            lines: 1-based inclusive ``(start, end)``; ``end=None`` means a single line

        Raises:
            NotFound: The file is not indexed, or the line range starts past the end
        """
        version = self.resolve(package, selector)
        src = self.store.get_source(version.id, path.lstrip("/"))
        if src is None:
            raise NotFound(f"source file {path!r} not found in {package} {version.version}")
        if lines is None:
            return src

        start, end = lines
        if start < 1 or start > src.line_count:
            raise NotFound(f"{src.path} has {src.line_count} lines; line {start} requested")
        end = start if end is None else max(start, end)
        return SourceFile(path=src.path, content=src.line_range(start, end))

    def get_readme(self, package: str, selector: Selector = LATEST) -> str:
        version = self.resolve(package, selector)
        text = self.store.get_readme(version.id)
        if text is None:
            raise NotFound(f"no readme stored for {package} {version.version}")
        return text

    def status(self) -> dict:
        """Index location and row counts."""
        return {"index_path": str(self.store.path), "counts": self.store.stats()}
