# src/mcp_pkg_docs/errors.py
"""Error taxonomy shared by the parser, store, resolver and query layers."""
from __future__ import annotations


class PkgDocsError(Exception):
    """Base class for every error raised by this package."""


class NotFound(PkgDocsError, LookupError):
    """A package, version or resource is not present in the index."""


class VersionNotFound(NotFound):
    """The package has no indexed versions at all."""

    def __init__(self, package: str, selector: str = "latest") -> None:
        self.package = package
        self.selector = selector
        super().__init__(f"no indexed versions for package {package!r}")


class NoMatchingVersion(NotFound):
    """The package is indexed but no version satisfies the selector."""

    def __init__(self, package: str, selector: str) -> None:
        self.package = package
        self.selector = selector
        super().__init__(f"no version of {package!r} matches {selector!r}")


class InvalidVersion(PkgDocsError, ValueError):
    """A version string or selector is not valid semver syntax."""


class InvalidURI(PkgDocsError, ValueError):
    """A resource URI does not follow the pkg:// grammar."""


class ConstraintViolation(PkgDocsError):
    """The index store rejected a write that breaks a uniqueness or foreign key constraint."""


class VersionLayoutError(PkgDocsError):
    """A version directory is missing its root page or is otherwise unusable."""
