"""
Version selectors and resolution.

A selector is ``latest``, an exact version (``1.2.3``), a partial version
(``1``, ``1.2``, ``1.*``) or a Cargo-style requirement (``^1.2``, ``~0.4.1``,
``>=1.0, <2.0``). Ordering always goes through ``semver.Version``, never
string comparison.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import semver

from .errors import InvalidVersion, NoMatchingVersion, VersionNotFound
from .logger import logger

LATEST = "latest"

_PARTIAL_RE = re.compile(
    r"""^v?(?P<major>0|[1-9]\d*|[*xX])
    (?:\.(?P<minor>0|[1-9]\d*|[*xX]))?
    (?:\.(?P<patch>0|[1-9]\d*|[*xX]))?
    (?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?
    (?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$""",
    re.X,
)
_OP_RE = re.compile(r"^(>=|<=|>|<|=|\^|~)?\s*(\S+)$")
_WILDCARDS = {"*", "x", "X"}


def parse_version(text: str) -> semver.Version:
    """Parse a full semantic version; raises InvalidVersion otherwise."""
    try:
        return semver.Version.parse(text.strip())
    except (TypeError, ValueError) as e:
        raise InvalidVersion(f"not a semantic version: {text!r}") from e


def precedence_key(version: Union[str, semver.Version]) -> str:
    """Normalized form used for uniqueness: build metadata carries no precedence."""
    v = parse_version(version) if isinstance(version, str) else version
    return str(v.replace(build=None))


def sort_versions(versions: Iterable[str], newest_first: bool = True) -> List[str]:
    return sorted(versions, key=parse_version, reverse=newest_first)


# ============================================================================
# Comparators
# ============================================================================


@dataclass(frozen=True)
class Bound:
    version: semver.Version
    inclusive: bool


@dataclass(frozen=True)
class Comparator:
    """One clause of a requirement: an interval over semver precedence."""

    lower: Optional[Bound] = None
    upper: Optional[Bound] = None
    # (major, minor, patch) when the clause names a pre-release
    pre_base: Optional[Tuple[int, int, int]] = None

    def contains(self, v: semver.Version) -> bool:
        if self.lower is not None:
            c = v.compare(self.lower.version)
            if c < 0 or (c == 0 and not self.lower.inclusive):
                return False
        if self.upper is not None:
            c = v.compare(self.upper.version)
            if c > 0 or (c == 0 and not self.upper.inclusive):
                return False
        return True


def _num(value: Optional[str]) -> Optional[int]:
    if value is None or value in _WILDCARDS:
        return None
    return int(value)


def _parse_comparator(text: str) -> Comparator:
    m = _OP_RE.match(text.strip())
    if not m:
        raise InvalidVersion(f"invalid version requirement: {text!r}")
    op, body = m.group(1) or "", m.group(2)
    pm = _PARTIAL_RE.match(body)
    if not pm:
        raise InvalidVersion(f"invalid version requirement: {text!r}")

    major = _num(pm.group("major"))
    minor = _num(pm.group("minor")) if major is not None else None
    patch = _num(pm.group("patch")) if minor is not None else None
    pre = pm.group("pre") if patch is not None else None

    if major is None:
        return Comparator()

    base = semver.Version(major, minor or 0, patch or 0, prerelease=pre)
    pre_base = (major, minor or 0, patch or 0) if pre else None

    def bump_major() -> semver.Version:
        return semver.Version(major + 1, 0, 0)

    def bump_minor() -> semver.Version:
        return semver.Version(major, (minor or 0) + 1, 0)

    def lo(v: semver.Version, inclusive: bool = True) -> Bound:
        return Bound(v, inclusive)

    def hi(v: semver.Version, inclusive: bool = False) -> Bound:
        return Bound(v, inclusive)

    if op in ("", "="):
        if patch is not None:
            return Comparator(lo(base), hi(base, True), pre_base)
        if minor is not None:
            return Comparator(lo(base), hi(bump_minor()), pre_base)
        return Comparator(lo(base), hi(bump_major()), pre_base)

    if op == "^":
        if major > 0 or minor is None:
            return Comparator(lo(base), hi(bump_major()), pre_base)
        if minor > 0 or patch is None:
            return Comparator(lo(base), hi(bump_minor()), pre_base)
        return Comparator(lo(base), hi(semver.Version(0, 0, patch + 1)), pre_base)

    if op == "~":
        if minor is None:
            return Comparator(lo(base), hi(bump_major()), pre_base)
        return Comparator(lo(base), hi(bump_minor()), pre_base)

    if op == ">":
        if patch is not None:
            return Comparator(lo(base, False), None, pre_base)
        if minor is not None:
            return Comparator(lo(bump_minor()), None, pre_base)
        return Comparator(lo(bump_major()), None, pre_base)

    if op == ">=":
        return Comparator(lo(base), None, pre_base)

    if op == "<":
        return Comparator(None, hi(base), pre_base)

    # "<="
    if patch is not None:
        return Comparator(None, hi(base, True), pre_base)
    if minor is not None:
        return Comparator(None, hi(bump_minor()), pre_base)
    return Comparator(None, hi(bump_major()), pre_base)


# ============================================================================
# Selector
# ============================================================================


@dataclass(frozen=True)
class VersionSelector:
    """Parsed form of a user-supplied version selector."""

    text: str
    exact: Optional[semver.Version] = None
    comparators: Tuple[Comparator, ...] = field(default_factory=tuple)

    @classmethod
    def parse(cls, text: Optional[str]) -> "VersionSelector":
        raw = (text or LATEST).strip()
        if not raw or raw.lower() == LATEST:
            return cls(text=LATEST)

        # A bare full version is an exact request, not a range
        if raw[0] not in "<>=^~":
            try:
                return cls(text=raw, exact=semver.Version.parse(raw.lstrip("v")))
            except ValueError:
                pass

        clauses = [c for c in re.split(r"\s*,\s*", raw) if c]
        if not clauses:
            raise InvalidVersion(f"invalid version selector: {text!r}")
        return cls(text=raw, comparators=tuple(_parse_comparator(c) for c in clauses))

    @property
    def is_latest(self) -> bool:
        return self.text == LATEST

    @property
    def is_exact(self) -> bool:
        return self.exact is not None

    def matches(self, v: semver.Version) -> bool:
        if self.is_latest:
            return True
        if self.is_exact:
            return v.compare(self.exact) == 0
        if not all(c.contains(v) for c in self.comparators):
            return False
        if v.prerelease:
            # Pre-releases only satisfy a requirement that names one on the same release
            return any(c.pre_base == (v.major, v.minor, v.patch) for c in self.comparators)
        return True

    def __str__(self) -> str:
        return self.text


def select_version(
    package: str,
    available: Sequence[str],
    selector: Union[str, VersionSelector, None],
    latest_includes_prerelease: bool = True,
) -> str:
    """
    Pick the stored version string a selector resolves to.

    Args:
        package: Package name, for error messages
        available: Version strings currently indexed for the package
        selector: ``latest``, an exact version, a partial or a requirement
        latest_includes_prerelease: Let ``latest`` fall back to the newest
            pre-release when no stable version is indexed

    Returns:
        The chosen version string exactly as stored

    Raises:
        VersionNotFound: The package has no indexed versions
        NoMatchingVersion: No indexed version satisfies the selector
        InvalidVersion: The selector is not valid syntax
    """
    parsed: Dict[str, semver.Version] = {}
    for s in available:
        try:
            parsed[s] = parse_version(s)
        except InvalidVersion:
            logger.warning(f"Ignoring non-semver stored version {s!r} of {package}")

    sel_text = selector.text if isinstance(selector, VersionSelector) else (selector or LATEST)
    if not parsed:
        raise VersionNotFound(package, sel_text)

    if isinstance(selector, str) and selector.strip() in parsed:
        return selector.strip()

    sel = selector if isinstance(selector, VersionSelector) else VersionSelector.parse(selector)

    if sel.is_latest:
        stable = [s for s, v in parsed.items() if not v.prerelease]
        pool = stable or (list(parsed) if latest_includes_prerelease else [])
    else:
        pool = [s for s, v in parsed.items() if sel.matches(v)]

    if not pool:
        raise NoMatchingVersion(package, sel.text)
    return max(pool, key=lambda s: parsed[s])
