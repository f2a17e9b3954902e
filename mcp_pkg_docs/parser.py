"""
Document parser: one cached documentation unit in, structured records out.

Pure functions of the bytes handed in. Malformed or unexpected markup never
raises; it produces fewer records plus ParseWarning entries, because the input
is third-party-rendered HTML we do not control.
"""

from __future__ import annotations

import posixpath
from typing import Iterable, List, Optional, Set
from urllib.parse import urlsplit

from bs4.element import Tag

from .logger import logger
from .models import (
    Item,
    ItemKind,
    ParseResult,
    ReadmeDocument,
    SourceFile,
    UnitRole,
)
from .utils import (
    clean_html_for_text,
    is_redirect_page,
    make_soup,
    strip_decorations,
    text_of,
    to_markdown,
)

SOURCE_ROOT = "src"
SOURCE_REF_PREFIX = "src:"

# ============================================================================
# Item kind classification
# ============================================================================

# Longest prefixes first: "Type Alias" must not be read as "Type".
HEADING_KINDS = [
    ("type definition", ItemKind.TYPE_ALIAS),
    ("type alias", ItemKind.TYPE_ALIAS),
    ("trait alias", ItemKind.TRAIT),
    ("derive macro", ItemKind.MACRO),
    ("attribute macro", ItemKind.MACRO),
    ("crate", ItemKind.MODULE),
    ("module", ItemKind.MODULE),
    ("struct", ItemKind.STRUCT),
    ("enum", ItemKind.ENUM),
    ("trait", ItemKind.TRAIT),
    ("function", ItemKind.FUNCTION),
    ("constant", ItemKind.CONSTANT),
    ("static", ItemKind.CONSTANT),
    ("macro", ItemKind.MACRO),
]

FILE_PREFIX_KINDS = {
    "struct": ItemKind.STRUCT,
    "enum": ItemKind.ENUM,
    "trait": ItemKind.TRAIT,
    "traitalias": ItemKind.TRAIT,
    "fn": ItemKind.FUNCTION,
    "type": ItemKind.TYPE_ALIAS,
    "constant": ItemKind.CONSTANT,
    "static": ItemKind.CONSTANT,
    "macro": ItemKind.MACRO,
    "derive": ItemKind.MACRO,
    "attr": ItemKind.MACRO,
}

# Fragment prefixes that name an indexed sub-item of the page's item.
MEMBER_PREFIXES = ("method.", "tymethod.", "variant.")

# Impl lists whose blocks are indexed as implementation items.
IMPL_LIST_IDS = ("implementations-list", "trait-implementations-list")

# Methods listed under these belong to trait impls and would duplicate
# the trait's own documentation.
SKIPPED_METHOD_LIST_IDS = {
    "trait-implementations-list",
    "synthetic-implementations-list",
    "blanket-implementations-list",
}


def classify_item_kind(heading: Optional[str], file_name: str) -> ItemKind:
    """
    Map a page's structural markers to an ItemKind.

    The main heading ("Struct serde_json::Value") is consulted first, then the
    rustdoc file name convention ("struct.Value.html", "index.html").
    Anything unrecognised is ItemKind.UNKNOWN.
    """
    if heading:
        h = heading.strip().lower()
        for prefix, kind in HEADING_KINDS:
            if h == prefix or h.startswith(prefix + " "):
                return kind

    if file_name == "index.html":
        return ItemKind.MODULE

    pieces = file_name.split(".")
    if len(pieces) == 3 and pieces[2] == "html":
        return FILE_PREFIX_KINDS.get(pieces[0], ItemKind.UNKNOWN)
    return ItemKind.UNKNOWN


# ============================================================================
# Path helpers
# ============================================================================


def item_path_for_page(rel_path: str) -> Optional[str]:
    """
    Derive the item path of a page from its location in the docs tree.

    ``serde_json/value/enum.Value.html`` -> ``serde_json::value::Value``
    ``serde_json/map/index.html``        -> ``serde_json::map``
    """
    parts = [p for p in rel_path.split("/") if p]
    if not parts or not parts[-1].endswith(".html"):
        return None
    *dirs, file_name = parts
    if file_name == "index.html":
        return "::".join(dirs) or None

    pieces = file_name.split(".")
    if len(pieces) != 3 or not pieces[1]:
        return None
    return "::".join([*dirs, pieces[1]])


def source_path_for_unit(rel_path: str) -> str:
    """``src/serde_json/lib.rs.html`` -> ``serde_json/lib.rs``"""
    path = rel_path
    if path.startswith(SOURCE_ROOT + "/"):
        path = path[len(SOURCE_ROOT) + 1 :]
    if path.endswith(".html"):
        path = path[: -len(".html")]
    return path


def _member_name(fragment: str) -> Optional[str]:
    if fragment.startswith("impl-"):
        return fragment
    for prefix in MEMBER_PREFIXES:
        if fragment.startswith(prefix):
            return fragment[len(prefix) :] or None
    return None


def resolve_link(base_page: str, href: Optional[str]) -> Optional[str]:
    """
    Resolve an in-page link to an item path or a ``src:`` source reference.

    Resolution is textual, relative to ``base_page``; links leaving the
    version tree and absolute URLs resolve to None.
    """
    if not href:
        return None
    parsed = urlsplit(href)
    if parsed.scheme or parsed.netloc:
        return None

    fragment = parsed.fragment
    if parsed.path:
        target = posixpath.normpath(posixpath.join(posixpath.dirname(base_page), parsed.path))
        if target == "." or target.startswith(".."):
            return None
    else:
        target = base_page

    if target.startswith(SOURCE_ROOT + "/"):
        ref = SOURCE_REF_PREFIX + source_path_for_unit(target)
        return f"{ref}#{fragment}" if fragment else ref

    item = item_path_for_page(target)
    if item is None:
        return None
    member = _member_name(fragment) if fragment else None
    return f"{item}::{member}" if member else item


# ============================================================================
# Structural helpers
# ============================================================================


def _decode(data: bytes, result: ParseResult) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        result.warn("not valid UTF-8; undecodable bytes replaced")
        return data.decode("utf-8", errors="replace")


def _inside(el: Tag, ids: Iterable[str]) -> bool:
    wanted = set(ids)
    return any(isinstance(p, Tag) and p.get("id") in wanted for p in el.parents)


def _docblock_after(section: Tag) -> Optional[Tag]:
    """The docblock belonging to a method/variant/impl section, if any."""
    holder = section.parent if isinstance(section.parent, Tag) and section.parent.name == "summary" else section
    sib = holder.find_next_sibling()
    if isinstance(sib, Tag) and "docblock" in (sib.get("class") or []):
        return sib
    return None


def _top_docblock(main: Tag) -> Optional[Tag]:
    top = main.select_one("details.top-doc div.docblock")
    if isinstance(top, Tag):
        return top
    # Older rustdoc puts the docblock directly under #main-content
    direct = main.find("div", class_="docblock", recursive=False)
    return direct if isinstance(direct, Tag) else None


def _related(elements: Iterable[Optional[Tag]], base_page: str, own_path: str) -> List[str]:
    refs: Set[str] = set()
    for el in elements:
        if el is None:
            continue
        for a in el.select("a[href]"):
            ref = resolve_link(base_page, a.get("href"))
            if ref and ref != own_path:
                refs.add(ref)
    return sorted(refs)


def _src_link(el: Optional[Tag], base_page: str) -> Optional[str]:
    if el is None:
        return None
    link = el.select_one("a.src")
    if not isinstance(link, Tag):
        return None
    ref = resolve_link(base_page, link.get("href"))
    if ref and ref.startswith(SOURCE_REF_PREFIX):
        return ref[len(SOURCE_REF_PREFIX) :]
    return None


def _markdown(el: Optional[Tag]) -> Optional[str]:
    if el is None:
        return None
    return to_markdown(el.decode_contents()) or None


# ============================================================================
# Unit parsers
# ============================================================================


def parse_page(data: bytes, rel_path: str) -> ParseResult:
    """
    Parse one rustdoc HTML page into its item and sub-items.

    Args:
        data: Raw page bytes
        rel_path: Page path relative to the version root

    Returns:
        ParseResult with items (page item first) and warnings
    """
    result = ParseResult(unit=rel_path)
    html = _decode(data, result)
    if is_redirect_page(html):
        return result

    base_path = item_path_for_page(rel_path)
    if base_path is None:
        result.warn("cannot derive an item path from the page location")
        return result

    soup = make_soup(html)
    main = soup.select_one("#main-content")
    if not isinstance(main, Tag):
        result.warn("no #main-content section; falling back to the page body")
        main = clean_html_for_text(html)

    heading_el = main.select_one(".main-heading h1") or main.find("h1")
    heading = text_of(heading_el if isinstance(heading_el, Tag) else None)
    kind = classify_item_kind(heading, posixpath.basename(rel_path))
    if kind is ItemKind.UNKNOWN:
        result.warn(f"unrecognised item kind (heading {heading!r})")

    decl = main.select_one("pre.item-decl")
    decl = decl if isinstance(decl, Tag) else None
    top_doc = _top_docblock(main)
    main_heading = main.select_one(".main-heading")

    result.items.append(
        Item(
            path=base_path,
            kind=kind,
            signature=text_of(decl, keep_lines=True),
            documentation=_markdown(top_doc),
            doc_path=rel_path,
            src_path=_src_link(main_heading if isinstance(main_heading, Tag) else None, rel_path),
            related=_related([decl, top_doc], rel_path, base_path),
        )
    )

    seen = {base_path}
    for sub in _sub_items(main, rel_path, base_path):
        if sub.path in seen:
            result.warn(f"duplicate item path {sub.path}")
            continue
        seen.add(sub.path)
        result.items.append(sub)

    return result


def _sub_items(main: Tag, rel_path: str, parent: str) -> Iterable[Item]:
    for section in main.select("section.variant[id]"):
        name = _member_name(str(section["id"]))
        if not name:
            continue
        path = f"{parent}::{name}"
        doc = _docblock_after(section)
        header = section.select_one(".code-header")
        yield Item(
            path=path,
            kind=ItemKind.VARIANT,
            signature=text_of(header if isinstance(header, Tag) else None),
            documentation=_markdown(doc),
            doc_path=f"{rel_path}#{section['id']}",
            related=_related([section, doc], rel_path, path),
        )

    for section in main.select("section.method[id]"):
        if _inside(section, SKIPPED_METHOD_LIST_IDS):
            continue
        name = _member_name(str(section["id"]))
        if not name:
            continue
        path = f"{parent}::{name}"
        doc = _docblock_after(section)
        header = section.select_one(".code-header")
        yield Item(
            path=path,
            kind=ItemKind.METHOD,
            signature=text_of(header if isinstance(header, Tag) else None),
            documentation=_markdown(doc),
            doc_path=f"{rel_path}#{section['id']}",
            src_path=_src_link(section, rel_path),
            related=_related([section, doc], rel_path, path),
        )

    for list_id in IMPL_LIST_IDS:
        container = main.find(id=list_id)
        if not isinstance(container, Tag):
            continue
        for section in container.select("section.impl[id]"):
            impl_id = str(section["id"])
            path = f"{parent}::{impl_id}"
            doc = _docblock_after(section)
            header = section.select_one(".code-header")
            yield Item(
                path=path,
                kind=ItemKind.IMPLEMENTATION,
                signature=text_of(header if isinstance(header, Tag) else None),
                documentation=_markdown(doc),
                doc_path=f"{rel_path}#{impl_id}",
                src_path=_src_link(section, rel_path),
                related=_related([header if isinstance(header, Tag) else None, doc], rel_path, path),
            )


def parse_source(data: bytes, rel_path: str) -> ParseResult:
    """Extract plain source text from a rendered listing (or a raw source file)."""
    result = ParseResult(unit=rel_path)
    text = _decode(data, result)
    path = source_path_for_unit(rel_path)

    if rel_path.endswith(".html"):
        soup = make_soup(text)
        code = soup.select_one("pre.rust") or soup.select_one(".example-wrap pre") or soup.find("pre")
        if not isinstance(code, Tag):
            result.warn("no source listing found in page")
            return result
        strip_decorations(code)
        content = code.get_text()
    else:
        content = text

    content = content.replace("\r\n", "\n").strip("\n")
    if not content:
        result.warn("source listing is empty")
    result.source = SourceFile(path=path, content=content + "\n" if content else "")
    return result


def parse_readme(data: bytes, rel_path: str) -> ParseResult:
    """Readmes are kept as Markdown; HTML readmes are converted."""
    result = ParseResult(unit=rel_path)
    text = _decode(data, result)

    if rel_path.lower().endswith((".html", ".htm")):
        content = to_markdown(str(clean_html_for_text(text)))
    else:
        content = text.replace("\r\n", "\n").strip()

    if not content:
        result.warn("readme is empty")
        return result
    result.readme = ReadmeDocument(content=content)
    return result


_PARSERS = {
    UnitRole.PAGE: parse_page,
    UnitRole.SOURCE: parse_source,
    UnitRole.README: parse_readme,
}


def parse_unit(data: bytes, role: UnitRole, rel_path: str) -> ParseResult:
    """
    Parse one documentation unit according to its role.

    Never raises on bad markup: an unexpected parser failure is recorded as a
    warning on an otherwise empty result.
    """
    try:
        result = _PARSERS[role](data, rel_path)
    except Exception as e:
        result = ParseResult(unit=rel_path)
        result.warn(f"parser error: {e}")
    for w in result.warnings:
        logger.debug(f"{w.unit}: {w.message}")
    return result
