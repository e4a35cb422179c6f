"""
types_models.py

Typed dataclasses passed between the source adapters, the result cache and the aggregator.

Purpose
-------
- `RawRelease` / `VersionInfo`: what one source adapter call returns (unparsed version text + URL).
- `FetchSuccess` / `FetchFailure`: the two outcome shapes stored by the result cache.
- `CacheEntry`: one cached outcome plus its expiry.
- `UpdateCandidate`, `UpdateRecommendation`, `UpdateCheckResult`: the aggregator's working unit and output.

Notes
-----
- Everything here is frozen; a cache refresh replaces an entry rather than mutating it.
- `to_dict()` helpers exist for callers that log or display results as JSON.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Tuple, Union, Sequence
import dateutil.parser as _dateutil_parser

from .exceptions import FetchFailureKind
from .semver import SemanticVersion
from .update_keys import ModSource

__all__ = [
    "parse_timestamp",
    "RawRelease",
    "VersionInfo",
    "FetchSuccess",
    "FetchFailure",
    "Outcome",
    "CacheEntry",
    "UpdateCandidate",
    "UpdateRecommendation",
    "UpdateCheckResult",
    "ModUpdateRequest",
]


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Best-effort conversion of an API timestamp into an aware UTC datetime.

    Accepts ISO strings (``2024-03-01T10:00:00Z``), unix epoch numbers and datetimes.
    Returns None for anything unparseable rather than raising; a missing release
    date never invalidates a release.
    """
    if value is None or value == "":
        return None
    try:
        if isinstance(value, datetime):
            dt = value
        elif isinstance(value, (int, float)):
            dt = datetime.fromtimestamp(float(value), tz=timezone.utc)
        else:
            dt = _dateutil_parser.parse(str(value))
    except (ValueError, OverflowError, TypeError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class RawRelease:
    """
    One version published on a source, before parsing.

    Attributes
    ----------
    version : str
        Version text exactly as the site reports it (tag name, version field, ...).
    url : Optional[str]
        Release or mod page URL.
    is_prerelease : bool
        True if the site itself flags the release as a prerelease (GitHub, ModDrop).
    published_at : Optional[datetime]
        Publish time if the site reports one.
    """
    version: str
    url: Optional[str] = None
    is_prerelease: bool = False
    published_at: Optional[datetime] = None


@dataclass(frozen=True)
class VersionInfo:
    """
    Successful result of one adapter call.

    Attributes
    ----------
    releases : Tuple[RawRelease, ...]
        Candidate versions. GitHub may return many; most sites return one.
    url : Optional[str]
        Canonical mod page on the source, used when a release has no URL of its own.
    """
    releases: Tuple[RawRelease, ...] = ()
    url: Optional[str] = None

    @classmethod
    def single(cls, version: str, url: Optional[str], **kwargs) -> "VersionInfo":
        return cls(releases=(RawRelease(version=version, url=url, **kwargs),), url=url)


@dataclass(frozen=True)
class FetchSuccess:
    info: VersionInfo
    fetched_at: datetime

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class FetchFailure:
    kind: FetchFailureKind
    reason: str
    fetched_at: datetime

    @property
    def ok(self) -> bool:
        return False


Outcome = Union[FetchSuccess, FetchFailure]


@dataclass(frozen=True)
class CacheEntry:
    """
    A cached adapter outcome.

    Attributes
    ----------
    key : Tuple[ModSource, str]
        (source, identifier) pair; shared by every mod using that update key.
    outcome : FetchSuccess | FetchFailure
    expires_at : datetime
        Derived from the outcome kind: fetched_at + success TTL or error TTL.
    """
    key: Tuple[ModSource, str]
    outcome: Outcome
    expires_at: datetime

    def is_live(self, now: datetime) -> bool:
        """Live up to and including `expires_at`; logically absent strictly after it."""
        return now <= self.expires_at


@dataclass(frozen=True)
class UpdateCandidate:
    """The best version one update key contributed to a check."""
    source: ModSource
    version: SemanticVersion
    info_url: Optional[str]
    is_from_beta_key: bool = False
    key_index: int = 0


@dataclass(frozen=True)
class UpdateRecommendation:
    """
    Consolidated answer for one mod.

    `has_update` is False when no candidate strictly exceeds the installed version;
    the other fields are then None.
    """
    has_update: bool = False
    version: Optional[SemanticVersion] = None
    info_url: Optional[str] = None
    source: Optional[ModSource] = None

    @classmethod
    def none(cls) -> "UpdateRecommendation":
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hasUpdate": self.has_update,
            "version": str(self.version) if self.version is not None else None,
            "infoUrl": self.info_url,
            "source": self.source.value if self.source is not None else None,
        }


@dataclass(frozen=True)
class UpdateCheckResult:
    """Recommendation plus the human-readable warnings collected along the way."""
    mod_id: str
    recommendation: UpdateRecommendation
    warnings: Tuple[str, ...] = ()

    @property
    def has_update(self) -> bool:
        return self.recommendation.has_update

    def to_dict(self) -> Dict[str, Any]:
        data = {"modId": self.mod_id, "warnings": list(self.warnings)}
        data.update(self.recommendation.to_dict())
        return data


@dataclass
class ModUpdateRequest:
    """
    Input for one mod in a bulk check (see `UpdateAggregator.check_all`).

    Attributes
    ----------
    mod_id : str
    installed_version : SemanticVersion | str
    update_keys : List[str]
        Update keys declared in the mod's manifest, in declared order.
    """
    mod_id: str
    installed_version: Union[SemanticVersion, str]
    update_keys: Sequence[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ModUpdateRequest":
        d = d or {}
        return cls(
            mod_id=d.get("modId") or d.get("UniqueID") or d.get("mod_id") or "",
            installed_version=d.get("version") or d.get("Version") or "",
            update_keys=list(d.get("updateKeys") or d.get("UpdateKeys") or d.get("update_keys") or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["installed_version"] = str(self.installed_version)
        return data
