"""
Record types shared by the parser, the index store and the query engine.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

# ============================================================================
# Parsed records
# ============================================================================


class ItemKind(str, Enum):
    """Closed set of documented item kinds."""

    MODULE = "module"
    FUNCTION = "function"
    TYPE_ALIAS = "type_alias"
    STRUCT = "struct"
    ENUM = "enum"
    TRAIT = "trait"
    IMPLEMENTATION = "implementation"
    METHOD = "method"
    VARIANT = "variant"
    CONSTANT = "constant"
    MACRO = "macro"
    UNKNOWN = "unknown"


class UnitRole(str, Enum):
    """Logical role of one documentation unit handed to the parser."""

    PAGE = "page"
    README = "readme"
    SOURCE = "source"


class Item(BaseModel):
    """A documented code element within one version."""

    path: str = Field(description="Namespaced item path, e.g. serde_json::value::Value")
    kind: ItemKind = Field(description="Classified item kind")
    signature: Optional[str] = Field(None, description="Declaration / code header text")
    documentation: Optional[str] = Field(None, description="Docblock converted to Markdown")
    doc_path: str = Field(description="Page path (plus fragment) inside the version tree")
    src_path: Optional[str] = Field(
        None, description="Source location relative to the source root, with line fragment"
    )
    related: List[str] = Field(
        default_factory=list, description="Referenced item paths and src: locations"
    )

    @property
    def name(self) -> str:
        return self.path.rsplit("::", 1)[-1]


class SourceFile(BaseModel):
    """One source file of a version, stored as text and served by line."""

    path: str = Field(description="Path relative to the source root, e.g. serde_json/lib.rs")
    content: str = Field(description="Plain source text")

    @property
    def lines(self) -> List[str]:
        return self.content.splitlines()

    @property
    def line_count(self) -> int:
        return len(self.lines)

    def line_range(self, start: int, end: Optional[int] = None) -> str:
        """Return lines ``start..=end`` (1-based, inclusive)."""
        end = start if end is None else end
        start = max(1, start)
        return "\n".join(self.lines[start - 1 : end])


class ReadmeDocument(BaseModel):
    content: str = Field(description="Markdown text")


class ParseWarning(BaseModel):
    """Non-fatal problem found while structuring one documentation unit."""

    unit: str = Field(description="Relative path of the unit")
    message: str


class ParseResult(BaseModel):
    """Everything the parser extracted from one unit."""

    unit: str
    items: List[Item] = Field(default_factory=list)
    source: Optional[SourceFile] = None
    readme: Optional[ReadmeDocument] = None
    warnings: List[ParseWarning] = Field(default_factory=list)

    def warn(self, message: str) -> None:
        self.warnings.append(ParseWarning(unit=self.unit, message=message))


# ============================================================================
# Package / version metadata
# ============================================================================


class VersionManifest(BaseModel):
    """Optional metadata.json shipped alongside a version's documentation."""

    released_at: Optional[str] = None
    msrv: Optional[str] = None
    downloads: int = 0
    publisher: Optional[str] = None
    license: Optional[str] = None
    yanked: bool = False
    description: Optional[str] = None
    homepage: Optional[str] = None
    repository: Optional[str] = None
    documentation: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)


class PackageInfo(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    homepage: Optional[str] = None
    repository: Optional[str] = None
    documentation: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)


class VersionInfo(BaseModel):
    id: int
    package: str
    version: str
    released_at: Optional[str] = None
    msrv: Optional[str] = None
    downloads: int = 0
    publisher: Optional[str] = None
    license: Optional[str] = None
    yanked: bool = False


class PackageMetadata(BaseModel):
    """Package attributes joined with one resolved version."""

    name: str
    description: Optional[str] = None
    homepage: Optional[str] = None
    repository: Optional[str] = None
    documentation: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    version: VersionInfo


class PackageSummary(BaseModel):
    name: str
    latest: Optional[str] = None
    description: Optional[str] = None


# ============================================================================
# Indexing summaries
# ============================================================================


class VersionSummary(BaseModel):
    package: str
    version: str
    indexed: bool = False
    items: int = 0
    source_files: int = 0
    readme: bool = False
    warnings: List[ParseWarning] = Field(default_factory=list)
    failed_units: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class IndexSummary(BaseModel):
    versions: List[VersionSummary] = Field(default_factory=list)

    @property
    def indexed(self) -> List[VersionSummary]:
        return [v for v in self.versions if v.indexed]

    @property
    def failed(self) -> List[VersionSummary]:
        return [v for v in self.versions if not v.indexed]

    @property
    def item_count(self) -> int:
        return sum(v.items for v in self.versions)

    @property
    def warning_count(self) -> int:
        return sum(len(v.warnings) for v in self.versions)
