"""
pkg:// resource URIs.

::

    pkg://{name}                              versions
    pkg://{name}/{version}                    metadata
    pkg://{name}/{version}/readme             readme text
    pkg://{name}/{version}/items              item listing
    pkg://{name}/{version}/items/{path}       one item (item path or doc path)
    pkg://{name}/{version}/src                source file list
    pkg://{name}/{version}/src/{file}#L1-L9   source text, optionally a line range
    pkg://{name}/{version}/{path}             item, else source file

``{version}`` is any selector the version resolver accepts, ``latest`` included.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, List, Optional, Tuple, Union
from urllib.parse import quote, unquote, urlsplit

from pydantic import BaseModel, Field, TypeAdapter

from .errors import InvalidURI, NotFound
from .logger import logger
from .models import Item, ItemKind
from .query import QueryEngine

SCHEME = "pkg"

_LINES_RE = re.compile(r"^L?(\d+)(?:-L?(\d+))?$")
_JSON = TypeAdapter(Any)
# Selector characters kept literal in the canonical form; everything else is percent-encoded
_SELECTOR_SAFE = "^~<>=,.*+"


class ResourceKind(str, Enum):
    LISTING = "listing"
    METADATA = "metadata"
    README = "readme"
    ITEMS = "items"
    SRC = "src"
    PATH = "path"


class ResourceURI(BaseModel):
    """Typed form of a pkg:// URI. ``str()`` gives the canonical string."""

    package: str = Field(min_length=1)
    selector: Optional[str] = None
    resource: ResourceKind = ResourceKind.LISTING
    path: Optional[str] = None
    fragment: Optional[str] = None

    @classmethod
    def parse(cls, uri: str) -> "ResourceURI":
        try:
            parts = urlsplit(uri.strip())
        except ValueError as e:
            raise InvalidURI(f"malformed URI {uri!r}: {e}") from e
        if parts.scheme != SCHEME:
            raise InvalidURI(f"expected a {SCHEME}:// URI, got {uri!r}")
        if parts.query:
            raise InvalidURI(f"query strings are not supported: {uri!r}")
        package = parts.netloc
        if not package:
            raise InvalidURI(f"missing package name: {uri!r}")

        fragment = parts.fragment or None
        rest = parts.path.strip("/")
        if not rest:
            if fragment:
                raise InvalidURI(f"fragment without a resource: {uri!r}")
            return cls(package=package)

        selector, _, tail = rest.partition("/")
        selector = unquote(selector)
        if not tail:
            return cls(package=package, selector=selector, resource=ResourceKind.METADATA)

        head, _, sub = tail.partition("/")
        if head == ResourceKind.README.value and not sub:
            resource, path = ResourceKind.README, None
        elif head == ResourceKind.ITEMS.value:
            resource, path = ResourceKind.ITEMS, sub or None
        elif head == ResourceKind.SRC.value:
            resource, path = ResourceKind.SRC, sub or None
        else:
            resource, path = ResourceKind.PATH, tail

        return cls(
            package=package, selector=selector, resource=resource, path=path, fragment=fragment
        )

    def __str__(self) -> str:
        out = f"{SCHEME}://{self.package}"
        if self.selector is not None:
            out += "/" + quote(self.selector, safe=_SELECTOR_SAFE)
            if self.resource in (ResourceKind.README, ResourceKind.ITEMS, ResourceKind.SRC):
                out += f"/{self.resource.value}"
            if self.path:
                out += f"/{self.path}"
        if self.fragment:
            out += f"#{self.fragment}"
        return out


def parse_line_range(fragment: Optional[str]) -> Optional[Tuple[int, Optional[int]]]:
    """``L10`` / ``10-20`` / ``L10-L20`` -> (10, None) / (10, 20) / (10, 20)."""
    if not fragment:
        return None
    m = _LINES_RE.match(fragment)
    if not m:
        raise InvalidURI(f"invalid line range: #{fragment}")
    start = int(m.group(1))
    end = int(m.group(2)) if m.group(2) else None
    return start, end


# ============================================================================
# Rendering
# ============================================================================


class ItemRef(BaseModel):
    path: str
    kind: ItemKind
    signature: Optional[str] = None


class ItemListing(BaseModel):
    package: str
    version: str
    total: int
    items: List[ItemRef] = Field(default_factory=list)
    note: Optional[str] = None


class ResourceContent(BaseModel):
    uri: str
    mime_type: str
    text: str


def _dump(obj: Any) -> str:
    return _JSON.dump_json(obj, indent=2).decode("utf-8")


def _cap_text(text: str, limit: int) -> str:
    data = text.encode("utf-8")
    if len(data) <= limit:
        return text
    note = f"\n\n[... truncated: {len(data)} bytes, showing the first {limit} ...]"
    return data[:limit].decode("utf-8", errors="ignore") + note


class ResourceResolver:
    """Dispatch parsed pkg:// URIs to the query engine and render the result."""

    def __init__(self, engine: QueryEngine):
        self.engine = engine

    @property
    def max_bytes(self) -> int:
        return self.engine.settings.max_response_bytes

    def read(self, uri: Union[str, ResourceURI]) -> ResourceContent:
        """
        Resolve a URI and render its content.

        Raises:
            InvalidURI: The URI is malformed (raised before any lookup)
            NotFound: Version selection or the resource lookup failed
        """
        req = uri if isinstance(uri, ResourceURI) else ResourceURI.parse(uri)
        logger.debug(f"resource read {req}")
        pkg, sel = req.package, req.selector

        if req.resource is ResourceKind.LISTING:
            return self._json(req, self.engine.list_versions(pkg))
        if req.resource is ResourceKind.METADATA:
            return self._json(req, self.engine.get_metadata(pkg, sel))
        if req.resource is ResourceKind.README:
            text = _cap_text(self.engine.get_readme(pkg, sel), self.max_bytes)
            return ResourceContent(uri=str(req), mime_type="text/markdown", text=text)

        if req.resource is ResourceKind.ITEMS:
            if req.path is None:
                return self._json(req, self._listing(pkg, sel))
            return self._json(req, self.engine.get_item(pkg, sel, self._item_key(req)))

        if req.resource is ResourceKind.SRC:
            if req.path is None:
                return self._json(req, self.engine.list_source(pkg, sel))
            return self._source(req)

        # Bare path: an item first, then a source file
        try:
            return self._json(req, self.engine.get_item(pkg, sel, self._item_key(req)))
        except NotFound:
            pass
        try:
            return self._source(req)
        except NotFound:
            raise NotFound(f"no item or source file {req.path!r} in {pkg} {sel}") from None

    @staticmethod
    def _item_key(req: ResourceURI) -> str:
        path = req.path or ""
        # Doc paths keep their fragment: it names the member on the page
        if req.fragment and path.endswith(".html"):
            return f"{path}#{req.fragment}"
        return path

    def _source(self, req: ResourceURI) -> ResourceContent:
        lines = parse_line_range(req.fragment)
        src = self.engine.get_source(req.package, req.selector, req.path or "", lines=lines)
        return ResourceContent(
            uri=str(req), mime_type="text/plain", text=_cap_text(src.content, self.max_bytes)
        )

    def _listing(self, package: str, selector: Optional[str]) -> ItemListing:
        version = self.engine.resolve(package, selector)
        items: List[Item] = self.engine.list_items(package, version.version)
        listing = ItemListing(package=package, version=version.version, total=len(items))

        budget = self.max_bytes - 512
        used = 0
        for it in items:
            ref = ItemRef(path=it.path, kind=it.kind, signature=it.signature)
            size = len(ref.model_dump_json(indent=2).encode("utf-8")) + 32
            if used + size > budget:
                listing.note = (
                    f"truncated: showing {len(listing.items)} of {len(items)} items; "
                    "use package_search_items to narrow the listing"
                )
                break
            listing.items.append(ref)
            used += size
        return listing

    def _json(self, req: ResourceURI, obj: Any) -> ResourceContent:
        return ResourceContent(uri=str(req), mime_type="application/json", text=_dump(obj))
