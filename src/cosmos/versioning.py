"""Semantic versions and constraint expressions.

Versions are parsed and ordered by the ``semver`` library (SemVer 2.0
precedence, build metadata ignored for ordering). Constraints use the
conventional range grammar:

- ``*`` matches any parseable version
- ``=1.2.3``, ``>1.2``, ``>=1``, ``<2.0.0``, ``<=1.4``
- ``~1.2.3`` (patch updates), ``^1.2.3`` (compatible updates)
- a bare version means caret: ``1.2.3`` == ``^1.2.3``
- wildcards: ``1.*``, ``1.2.*``, ``1.x``
- comma-separated comparators must all match: ``>=1.2, <1.5``

A prerelease version only satisfies a constraint that names the same
major.minor.patch with a prerelease tag (``*`` excepted).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from semver import Version

from cosmos.errors import SemverError

logger = logging.getLogger(__name__)

_NUMBER = r"0|[1-9]\d*"
_WILDCARD = r"[*xX]"

COMPARATOR_PATTERN = re.compile(
    r"^(?P<op>>=|<=|=|>|<|~|\^)?\s*v?"
    rf"(?P<major>{_NUMBER}|{_WILDCARD})"
    rf"(?:\.(?P<minor>{_NUMBER}|{_WILDCARD}))?"
    rf"(?:\.(?P<patch>{_NUMBER}|{_WILDCARD}))?"
    r"(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)

# (version, inclusive)
Bound = tuple[Version, bool]


def parse_version(text: str) -> Version:
    """Parse a full semantic version.

    Raises:
        SemverError: If text is not a valid major.minor.patch version
    """
    if isinstance(text, Version):
        return text
    try:
        return Version.parse(str(text).strip())
    except (ValueError, TypeError) as e:
        raise SemverError(f"Invalid version '{text}': {e}") from e


@dataclass(frozen=True)
class Comparator:
    """One comparator of a constraint, normalized to a version interval."""

    op: str
    major: int | None
    minor: int | None = None
    patch: int | None = None
    prerelease: str | None = None

    @property
    def is_any(self) -> bool:
        return self.major is None

    def bounds(self) -> tuple[Bound | None, Bound | None]:
        """Return (lower, upper) bounds; None means unbounded."""
        if self.is_any:
            return None, None

        i, j, k = self.major, self.minor, self.patch
        exact = Version(i, j or 0, k or 0, prerelease=self.prerelease)
        op = self.op

        if op == "=":
            if k is not None:
                return (exact, True), (exact, True)
            if j is not None:
                return (Version(i, j, 0), True), (Version(i, j + 1, 0), False)
            return (Version(i, 0, 0), True), (Version(i + 1, 0, 0), False)

        if op == ">":
            if k is not None:
                return (exact, False), None
            if j is not None:
                return (Version(i, j + 1, 0), True), None
            return (Version(i + 1, 0, 0), True), None

        if op == ">=":
            return (exact, True), None

        if op == "<":
            return None, (exact, False)

        if op == "<=":
            if k is not None:
                return None, (exact, True)
            if j is not None:
                return None, (Version(i, j + 1, 0), False)
            return None, (Version(i + 1, 0, 0), False)

        if op == "~":
            if j is None:
                return (Version(i, 0, 0), True), (Version(i + 1, 0, 0), False)
            return (exact, True), (Version(i, j + 1, 0), False)

        # caret
        if j is None:
            return (Version(i, 0, 0), True), (Version(i + 1, 0, 0), False)
        if i > 0:
            upper = Version(i + 1, 0, 0)
        elif j > 0 or k is None:
            upper = Version(0, j + 1, 0)
        else:
            upper = Version(0, 0, k + 1)
        return (exact, True), (upper, False)

    def matches(self, version: Version) -> bool:
        lower, upper = self.bounds()
        if lower is not None:
            bound, inclusive = lower
            if version < bound or (version == bound and not inclusive):
                return False
        if upper is not None:
            bound, inclusive = upper
            if version > bound or (version == bound and not inclusive):
                return False
        return True

    def allows_prerelease_of(self, version: Version) -> bool:
        """True if this comparator opts into prereleases of version's release."""
        return (
            self.prerelease is not None
            and self.major == version.major
            and (self.minor or 0) == version.minor
            and (self.patch or 0) == version.patch
        )


@dataclass(frozen=True)
class Constraint:
    """A parsed constraint: every comparator must match."""

    text: str
    comparators: tuple[Comparator, ...]

    @property
    def is_any(self) -> bool:
        return any(c.is_any for c in self.comparators)

    def matches(self, version: Version) -> bool:
        if version.prerelease and not self.is_any:
            if not any(c.allows_prerelease_of(version) for c in self.comparators):
                return False
        return all(c.matches(version) for c in self.comparators)


def _parse_comparator(token: str, text: str) -> Comparator:
    match = COMPARATOR_PATTERN.match(token)
    if not match:
        raise SemverError(f"Invalid constraint '{text}': cannot parse '{token}'")

    op = match.group("op") or "^"
    parts = [match.group("major"), match.group("minor"), match.group("patch")]
    pre = match.group("pre")

    # Everything after the first wildcard is ignored
    numbers: list[int | None] = []
    wildcard = False
    for part in parts:
        if part is None or wildcard or part in ("*", "x", "X"):
            wildcard = wildcard or (part is not None and part in ("*", "x", "X"))
            numbers.append(None)
        else:
            numbers.append(int(part))

    if wildcard:
        if match.group("op") not in (None, "="):
            raise SemverError(
                f"Invalid constraint '{text}': wildcard not allowed after '{op}'"
            )
        op = "="
    if pre and numbers[2] is None:
        raise SemverError(
            f"Invalid constraint '{text}': prerelease requires a full version"
        )

    major, minor, patch = numbers
    return Comparator(op=op, major=major, minor=minor, patch=patch, prerelease=pre)


def parse_constraint(text: str) -> Constraint:
    """Parse a constraint expression.

    Raises:
        SemverError: If any comparator is malformed
    """
    if isinstance(text, Constraint):
        return text
    raw = str(text).strip()
    if not raw:
        raise SemverError("Invalid constraint '': empty expression")

    tokens = [t.strip() for t in raw.split(",")]
    if any(not t for t in tokens):
        raise SemverError(f"Invalid constraint '{text}': empty comparator")

    return Constraint(
        text=raw,
        comparators=tuple(_parse_comparator(t, raw) for t in tokens),
    )


def satisfies(version: str | Version, constraint: str | Constraint) -> bool:
    """Test a version against a constraint.

    Parse failure on either side yields False and a logged diagnostic; the
    caller keeps scanning other candidates.
    """
    try:
        parsed_version = parse_version(version)
        parsed_constraint = parse_constraint(constraint)
    except SemverError as e:
        logger.warning(
            f"Cannot test version '{version}' against constraint '{constraint}': {e}"
        )
        return False
    return parsed_constraint.matches(parsed_version)


def compare_versions(current: str, other: str) -> int:
    """Compare two versions by SemVer precedence.

    Returns:
        -1 if current < other, 0 if equal, 1 if current > other

    Raises:
        SemverError: If either version is malformed
    """
    return parse_version(current).compare(parse_version(other))
