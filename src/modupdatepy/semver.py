"""
semver.py

Semantic version parsing and ordering.

`SemanticVersion` is an immutable value with the usual precedence rules:

    1.0.0-alpha < 1.0.0-alpha.1 < 1.0.0-beta < 1.0.0 < 1.0.1

Build metadata is kept for display only and never affects ordering or equality.

Two parse modes exist:
 - strict (default): ``MAJOR.MINOR.PATCH[-PRERELEASE][+BUILD]``, nothing else.
 - tolerant: for mods whose authors publish things like ``v1.4c`` or ``Release 1.4``.
   Missing numeric parts default to 0 and any leftover text is folded into the
   prerelease slot. Only enabled per mod through the override policy, since it
   would happily turn garbage into a version for everyone else.
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .exceptions import ParseError

__all__ = [
    "SemanticVersion",
    "PrereleaseId",
    "parse_version",
    "compare",
    "is_prerelease",
]

PrereleaseId = Union[int, str]

_IDENT = r"[0-9A-Za-z-]+"
_STRICT_RE = re.compile(
    r"^(?P<major>\d+)\.(?P<minor>\d+)\.(?P<patch>\d+)"
    rf"(?:-(?P<pre>{_IDENT}(?:\.{_IDENT})*))?"
    rf"(?:\+(?P<build>{_IDENT}(?:\.{_IDENT})*))?$"
)
_TOLERANT_CORE_RE = re.compile(r"^(?P<major>\d+)(?:\.(?P<minor>\d+))?(?:\.(?P<patch>\d+))?")
_INVALID_CHARS_RE = re.compile(r"[^0-9A-Za-z.\-]+")
_VALID_IDENT_RE = re.compile(rf"^{_IDENT}$")


def _to_identifier(raw: str) -> PrereleaseId:
    return int(raw) if raw.isdigit() else raw


def _split_identifiers(text: str) -> Tuple[PrereleaseId, ...]:
    return tuple(_to_identifier(part) for part in text.split(".") if part)


def _sanitize(text: str) -> str:
    """Collapse anything that isn't a legal identifier character into '-' and drop empty segments."""
    text = _INVALID_CHARS_RE.sub("-", text.strip())
    parts = [p.strip("-") for p in text.split(".")]
    return ".".join(p for p in parts if p)


def _compare_identifiers(left: Tuple[PrereleaseId, ...], right: Tuple[PrereleaseId, ...]) -> int:
    # an empty prerelease is a stable release and outranks any prerelease
    if not left and not right:
        return 0
    if not left:
        return 1
    if not right:
        return -1

    for a, b in zip(left, right):
        if a == b:
            continue
        a_num = isinstance(a, int)
        b_num = isinstance(b, int)
        if a_num and b_num:
            return -1 if a < b else 1
        if a_num:
            return -1
        if b_num:
            return 1
        return -1 if a < b else 1

    if len(left) == len(right):
        return 0
    return -1 if len(left) < len(right) else 1


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class SemanticVersion:
    """
    Immutable semantic version.

    Attributes
    ----------
    major, minor, patch : int
        Non-negative core version numbers.
    prerelease : Tuple[int|str, ...]
        Dot-separated prerelease identifiers; numeric ones are stored as int.
        Empty means a stable release.
    build_metadata : str
        Opaque build suffix (the part after '+'); ignored when ordering.

    Examples
    --------
    >>> SemanticVersion.parse("1.2.3-beta.2+sha.5114f85")
    SemanticVersion('1.2.3-beta.2+sha.5114f85')
    >>> SemanticVersion.parse("v1.4c", tolerant=True).prerelease
    ('c',)
    """
    major: int
    minor: int = 0
    patch: int = 0
    prerelease: Tuple[PrereleaseId, ...] = ()
    build_metadata: str = ""

    def __post_init__(self):
        for name in ("major", "minor", "patch"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ParseError(f"{name} must be a non-negative integer, got {value!r}")

        prerelease = self.prerelease
        if isinstance(prerelease, str):
            prerelease = _split_identifiers(prerelease)
        else:
            prerelease = tuple(_to_identifier(p) if isinstance(p, str) else p for p in prerelease)
        for ident in prerelease:
            if isinstance(ident, int):
                if ident < 0:
                    raise ParseError(f"prerelease identifier can't be negative: {ident}")
            elif not _VALID_IDENT_RE.match(ident):
                raise ParseError(f"invalid prerelease identifier {ident!r}")
        object.__setattr__(self, "prerelease", prerelease)
        object.__setattr__(self, "build_metadata", self.build_metadata or "")

    # Parsing
    @classmethod
    def parse(cls, text: str, tolerant: bool = False) -> "SemanticVersion":
        """
        Parse a version string.

        Parameters
        ----------
        text : str
            Raw version text, e.g. ``"1.0.0-beta.1"``.
        tolerant : bool
            Accept non-standard strings (``"v1.4c"``, ``"Release 1.4"``, ``"2"``).

        Returns
        -------
        SemanticVersion

        Raises
        ------
        ParseError
            If `text` is empty, or (strict mode) doesn't match ``M.m.p[-pre][+build]``.
        """
        if text is None or not str(text).strip():
            raise ParseError("version text is empty")
        text = str(text).strip()

        match = _STRICT_RE.match(text)
        if match:
            return cls(
                int(match.group("major")),
                int(match.group("minor")),
                int(match.group("patch")),
                _split_identifiers(match.group("pre") or ""),
                match.group("build") or "",
            )
        if not tolerant:
            raise ParseError(f"'{text}' isn't a valid semantic version")
        return cls._parse_tolerant(text)

    @classmethod
    def _parse_tolerant(cls, text: str) -> "SemanticVersion":
        text, _, build = text.partition("+")

        # drop a leading label like "v", "Version " or "Release "
        first_digit = re.search(r"\d", text)
        if first_digit is None:
            # nothing numeric: keep the label as a prerelease of 0.0.0 so it still sorts
            return cls(0, 0, 0, _split_identifiers(_sanitize(text)), _sanitize(build))
        text = text[first_digit.start():]

        core = _TOLERANT_CORE_RE.match(text)
        rest = text[core.end():]
        rest = rest.lstrip(" -._")
        return cls(
            int(core.group("major")),
            int(core.group("minor") or 0),
            int(core.group("patch") or 0),
            _split_identifiers(_sanitize(rest)),
            _sanitize(build),
        )

    @classmethod
    def try_parse(cls, text: str, tolerant: bool = False) -> Optional["SemanticVersion"]:
        """Like `parse`, but return None instead of raising ParseError."""
        try:
            return cls.parse(text, tolerant=tolerant)
        except ParseError:
            return None

    # Ordering
    def compare_to(self, other: "SemanticVersion") -> int:
        """Return -1, 0 or 1 as this version sorts before, equal to or after `other`."""
        mine = (self.major, self.minor, self.patch)
        theirs = (other.major, other.minor, other.patch)
        if mine != theirs:
            return -1 if mine < theirs else 1
        return _compare_identifiers(self.prerelease, other.prerelease)

    def is_newer_than(self, other: Optional["SemanticVersion"]) -> bool:
        return other is None or self.compare_to(other) > 0

    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return self.compare_to(other) == 0

    def __lt__(self, other: "SemanticVersion") -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return self.compare_to(other) < 0

    def __hash__(self) -> int:
        return hash((self.major, self.minor, self.patch, self.prerelease))

    # Formatting
    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(str(p) for p in self.prerelease)
        if self.build_metadata:
            text += "+" + self.build_metadata
        return text

    def __repr__(self) -> str:
        return f"SemanticVersion({str(self)!r})"


def parse_version(text: str, tolerant: bool = False) -> SemanticVersion:
    """Module-level alias for `SemanticVersion.parse`."""
    return SemanticVersion.parse(text, tolerant=tolerant)


def compare(a: SemanticVersion, b: SemanticVersion) -> int:
    return a.compare_to(b)


def is_prerelease(version: SemanticVersion) -> bool:
    return version.is_prerelease()
