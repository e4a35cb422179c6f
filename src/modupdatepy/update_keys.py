"""
update_keys.py

Parsing for the compact ``Source:Identifier`` update-key tokens mods declare
in their manifests (``GitHub:Pathoschild/SMAPI``, ``Nexus:2400``, ...).

Parsing never raises: a token with no colon or an unknown site becomes an
`UpdateKey` with ``source == ModSource.UNKNOWN`` so the caller can report it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

from .exceptions import MalformedKeyError

__all__ = ["ModSource", "UpdateKey"]


class ModSource(str, Enum):
    """Known mod hosting sites. The value is the display name used in update keys."""
    GITHUB = "GitHub"
    NEXUS = "Nexus"
    CURSEFORGE = "CurseForge"
    MODDROP = "ModDrop"
    CHUCKLEFISH = "Chucklefish"
    PASTEBIN = "Pastebin"
    UNKNOWN = "Unknown"

    @classmethod
    def from_name(cls, name: str) -> "ModSource":
        """Match a site name case-insensitively; anything unrecognized is UNKNOWN."""
        wanted = (name or "").strip().lower()
        for member in cls:
            if member is not cls.UNKNOWN and member.value.lower() == wanted:
                return member
        return cls.UNKNOWN

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class UpdateKey:
    """
    A parsed update key.

    Attributes
    ----------
    source : ModSource
        Site the key points to, or UNKNOWN.
    identifier : str
        Site-specific ID (``owner/repo`` for GitHub, a number for Nexus/CurseForge/...).
    raw_text : str
        Original token, kept for warnings.
    """
    source: ModSource
    identifier: str
    raw_text: str = ""

    @classmethod
    def parse(cls, token: str) -> "UpdateKey":
        raw = "" if token is None else str(token)
        name, sep, identifier = raw.partition(":")
        identifier = identifier.strip()
        if not sep or not identifier:
            return cls(ModSource.UNKNOWN, identifier, raw)
        return cls(ModSource.from_name(name), identifier, raw)

    @property
    def is_valid(self) -> bool:
        return self.source is not ModSource.UNKNOWN and bool(self.identifier)

    @property
    def cache_key(self) -> Tuple[ModSource, str]:
        """The (source, identifier) pair shared by every mod pointing at the same listing."""
        identifier = self.identifier
        if self.source is ModSource.GITHUB:
            identifier = identifier.lower()
        return self.source, identifier

    def require_valid(self) -> "UpdateKey":
        if not self.is_valid:
            raise MalformedKeyError(f"'{self.raw_text}' isn't a valid update key")
        return self

    def __str__(self) -> str:
        if self.source is ModSource.UNKNOWN:
            return self.raw_text
        return f"{self.source.value}:{self.identifier}"
