# src/mcp_pkg_docs/utils.py
"""Shared utility functions for HTML parsing, text processing, and markdown conversion."""
from __future__ import annotations

import re

from bs4 import BeautifulSoup
from bs4.element import Tag
from markdownify import markdownify as md


# ---- BeautifulSoup parser detection ----
def bs4_has_lxml() -> bool:
    """Check if lxml parser is available for BeautifulSoup."""
    try:
        import lxml  # noqa: F401
        return True
    except Exception:
        return False


def make_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml" if bs4_has_lxml() else "html.parser")


# ---- HTML boilerplate removal selectors ----
MAIN_SELECTORS = [
    "section#main-content",
    "#main-content",
    "main[role='main']",
    "main",
    "article",
]

REMOVE_SELECTORS = [
    "nav",
    "header",
    "footer",
    "aside",
    "rustdoc-toolbar",
    "rustdoc-search",
    ".sidebar",
    ".mobile-topbar",
    ".sub",
    ".search-form",
    "noscript",
    "script",
    "style",
]

# Decorations inside docblocks that carry no content
DECORATION_SELECTORS = [
    "a.anchor",
    "a.doc-anchor",
    "a.test-arrow",
    "a.tooltip",
    "span.tooltip",
    "button",
    ".src-line-numbers",
    ".line-numbers",
    "[data-nosnippet]",
]


# ---- Regex patterns for text cleaning ----
FENCE_LINE_PATTERN = re.compile(r"^(`{3,}|~{3,})")
EMPTY_ARTIFACT_PATTERN = re.compile(r"^(?:#+|[-*_]+|>)$")
MULTI_WS_PATTERN = re.compile(r"\s+")
MULTI_NEWLINE_PATTERN = re.compile(r"\n{3,}")


# ---- HTML processing ----
def clean_html_for_text(html: str) -> BeautifulSoup:
    """
    Remove navigation, toolbars and scripts, and extract the main content.

    Args:
        html: Raw HTML string

    Returns:
        BeautifulSoup object with cleaned content
    """
    soup = make_soup(html)

    # Remove boilerplate elements
    for sel in REMOVE_SELECTORS:
        for el in soup.select(sel):
            el.decompose()

    # Try to find main content container
    main: Tag | None = None
    for sel in MAIN_SELECTORS:
        m = soup.select_one(sel)
        if isinstance(m, Tag):
            main = m
            break

    # If we found a main container, use only that
    if main is not None:
        soup = make_soup(str(main))

    return soup


def strip_decorations(el: Tag) -> Tag:
    """Drop anchors, run buttons and line-number gutters in place."""
    for sel in DECORATION_SELECTORS:
        for junk in el.select(sel):
            junk.decompose()
    return el


def is_redirect_page(html: str) -> bool:
    """rustdoc emits tiny redirect stubs for re-exports; they carry no content."""
    head = html.split("</head>", 1)[0]
    return "<title>Redirection</title>" in head


def text_of(el: Tag | None, keep_lines: bool = False) -> str | None:
    """Text of an element, or None when empty.

    Code headers carry their own spacing, so no separator is inserted between
    text nodes. With ``keep_lines`` the line structure of a ``<pre>`` survives.
    """
    if el is None:
        return None
    raw = el.get_text()
    if keep_lines:
        text = "\n".join(line.rstrip() for line in raw.strip("\n").splitlines()).strip()
    else:
        text = MULTI_WS_PATTERN.sub(" ", raw).strip()
    return text or None


# ---- Markdown conversion ----
def to_markdown(html_fragment: str) -> str:
    """
    Convert an HTML fragment to Markdown, keeping code blocks intact.

    Args:
        html_fragment: HTML string to convert

    Returns:
        Normalized markdown string
    """
    soup = make_soup(html_fragment)
    strip_decorations(soup)

    m = md(
        str(soup),
        heading_style="ATX",
        strip=["script", "style"],
        escape_asterisks=False,
        escape_underscores=False,
    )

    # Remove empty code blocks
    m = re.sub(r"```\s*\n\s*```", "", m)

    return normalize_text(m)


# ---- Text normalization ----
def normalize_text(text: str) -> str:
    """
    Normalize whitespace outside code fences.

    This function:
    - Removes carriage returns and NUL characters
    - Removes empty markdown artifacts (headings, dividers, quotes)
    - Collapses runs of spaces to one and blank-line runs to one blank line
    - Leaves fenced code blocks untouched apart from trailing whitespace

    Args:
        text: Text to normalize

    Returns:
        Normalized text with consistent whitespace
    """
    if not text:
        return ""

    text = text.replace("\r", "").replace("\x00", "")

    cleaned_lines: list[str] = []
    in_fence = False
    for raw in text.split("\n"):
        stripped = raw.strip()
        if FENCE_LINE_PATTERN.match(stripped):
            in_fence = not in_fence
            cleaned_lines.append(stripped)
            continue
        if in_fence:
            cleaned_lines.append(raw.rstrip())
            continue

        line = MULTI_WS_PATTERN.sub(" ", stripped)
        if EMPTY_ARTIFACT_PATTERN.fullmatch(line):
            line = ""
        # Only keep non-empty lines or a single blank line between paragraphs
        if line or (cleaned_lines and cleaned_lines[-1]):
            cleaned_lines.append(line)

    text = "\n".join(cleaned_lines)
    text = MULTI_NEWLINE_PATTERN.sub("\n\n", text)
    return text.strip()
