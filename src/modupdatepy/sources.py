"""
sources.py - Source adapters (one per mod hosting site)

Each adapter answers one question: given a site-specific identifier, which version(s)
does the site currently publish, and where can a player read about them?

    adapter = GitHubAdapter(session)
    info = adapter.fetch("Pathoschild/SMAPI")   # -> VersionInfo
    for release in info.releases:
        print(release.version, release.url)

Adapters never parse versions themselves (the aggregator does that with the mod's own
override settings) and never retry on their own beyond the session's bounded urllib3
Retry. Every failure is raised as a `FetchError` subclass so the result cache can store
it with the short error TTL:

    NotFoundError           404/410, or an identifier that can't exist on that site
    RateLimitError          429
    UnavailableError        5xx, 401/403, timeouts, connection errors
    MalformedResponseError  the response didn't have the expected shape

The set of sites is closed: `build_adapters` returns a plain {ModSource: adapter} table.
"""

from __future__ import annotations

import html
import logging
import os
import re
from dataclasses import dataclass, field
from typing import *

import requests

from .exceptions import (
    MalformedResponseError,
    NotFoundError,
    UnavailableError,
    map_http_status,
)
from .types_models import RawRelease, VersionInfo, parse_timestamp
from .update_keys import ModSource
from .utils import parse_retry_after, safe_json, session_factory

logger = logging.getLogger(__name__)

__all__ = [
    "SourceSettings",
    "SourceAdapter",
    "GitHubAdapter",
    "NexusAdapter",
    "CurseForgeAdapter",
    "ModDropAdapter",
    "ChucklefishAdapter",
    "PastebinAdapter",
    "ADAPTER_TYPES",
    "build_adapters",
]

DEFAULT_TIMEOUT = 15.0

_NUMERIC_ID_RE = re.compile(r"^\d+$")
_GITHUB_REPO_RE = re.compile(r"^[\w.-]+/[\w.-]+$")
_PASTE_ID_RE = re.compile(r"^[A-Za-z0-9]+$")


@dataclass(frozen=True)
class SourceSettings:
    """
    Per-site connection settings. Opaque to everything except the matching adapter.

    Attributes
    ----------
    base_url : Optional[str]
        Override the site's API root (tests, mirrors, a caching proxy).
    headers : Dict[str, str]
        Extra headers sent with every request to this site.
    api_key : Optional[str]
        Credential, sent in the site's own header (GitHub token, Nexus apikey, CurseForge x-api-key).
    timeout : Optional[float]
        Per-call timeout in seconds; falls back to the global fetch timeout.
    """
    base_url: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    api_key: Optional[str] = None
    timeout: Optional[float] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SourceSettings":
        d = d or {}
        timeout = d.get("timeout")
        return cls(
            base_url=d.get("baseUrl") or d.get("base_url"),
            headers=dict(d.get("headers") or {}),
            api_key=d.get("apiKey") or d.get("api_key"),
            timeout=float(timeout) if timeout is not None else None,
        )


class SourceAdapter:
    """
    Base class for one site's adapter.

    Subclasses set `source`, `default_base_url` and implement `fetch`. The shared
    `_request` helper turns HTTP/transport failures into `FetchError` subclasses.

    Parameters
    ----------
    session : Optional[requests.Session]
        Shared session (connection pooling across adapters). Created if omitted.
    base_url : Optional[str]
        API root; defaults to `default_base_url`.
    timeout : float
        Per-request timeout in seconds.
    headers : Optional[Dict[str,str]]
        Extra headers for this site only.
    api_key : Optional[str]
        Credential sent in `api_key_header` (formatted with `api_key_format`).
    """
    source: ModSource = ModSource.UNKNOWN
    default_base_url: str = ""
    api_key_header: Optional[str] = None
    api_key_format: str = "{}"

    def __init__(self,
                 session: Optional[requests.Session] = None,
                 *,
                 base_url: Optional[str] = None,
                 timeout: float = DEFAULT_TIMEOUT,
                 headers: Optional[Dict[str, str]] = None,
                 api_key: Optional[str] = None):
        self.session = session or session_factory()
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.timeout = float(timeout)
        self.headers: Dict[str, str] = dict(headers or {})
        if api_key and self.api_key_header:
            self.headers[self.api_key_header] = self.api_key_format.format(api_key)

    def fetch(self, identifier: str) -> VersionInfo:
        """
        Fetch the version(s) currently published for `identifier`.

        Raises
        ------
        FetchError subclass
            NotFoundError / RateLimitError / UnavailableError / MalformedResponseError.
        """
        raise NotImplementedError

    def _require_numeric(self, identifier: str) -> int:
        identifier = (identifier or "").strip()
        if not _NUMERIC_ID_RE.match(identifier):
            raise NotFoundError(f"{self.source.value} mod IDs are numeric, got '{identifier}'")
        return int(identifier)

    def _request(self,
                 method: str,
                 path: str,
                 *,
                 params: Optional[Dict[str, Any]] = None,
                 json_body: Optional[Any] = None,
                 headers: Optional[Dict[str, str]] = None,
                 expect_json: bool = True) -> Any:
        """
        Perform one HTTP request against this site and return decoded JSON (or text).

        Raises
        ------
        FetchError subclass : mapped from the HTTP status or transport failure.
        """
        url = f"{self.base_url}{path}"
        req_headers = dict(self.headers)
        if headers:
            req_headers.update(headers)

        logger.debug("%s %s %s", self.source.value, method, url)
        try:
            resp = self.session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=req_headers,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise UnavailableError(f"{self.source.value} timed out after {self.timeout:g}s") from exc
        except requests.RequestException as exc:
            raise UnavailableError(f"{self.source.value} request failed: {exc}") from exc

        if resp.status_code >= 400:
            retry_after = 0.0
            if resp.status_code == 429:
                retry_after = parse_retry_after(resp.headers.get("Retry-After"))
                logger.warning("%s rate limited us (retry after %.0fs)", self.source.value, retry_after)
            raise map_http_status(
                resp.status_code,
                f"{self.source.value} returned HTTP {resp.status_code}",
                resp,
                retry_after=retry_after,
            )

        if not expect_json:
            return resp.text
        return safe_json(resp.text, source=self.source.value)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} base_url={self.base_url!r}>"


class GitHubAdapter(SourceAdapter):
    """
    GitHub releases. The tag name is the raw version; drafts are skipped.

    Identifier: ``owner/repo``.
    """
    source = ModSource.GITHUB
    default_base_url = "https://api.github.com"
    api_key_header = "Authorization"
    api_key_format = "Bearer {}"

    def fetch(self, identifier: str) -> VersionInfo:
        identifier = (identifier or "").strip()
        if not _GITHUB_REPO_RE.match(identifier):
            raise NotFoundError(f"GitHub keys must look like 'owner/repo', got '{identifier}'")

        payload = self._request(
            "GET",
            f"/repos/{identifier}/releases",
            params={"per_page": 100},
            headers={"Accept": "application/vnd.github+json"},
        )
        if not isinstance(payload, list):
            raise MalformedResponseError("GitHub releases response isn't a list")

        releases: List[RawRelease] = []
        for item in payload:
            if not isinstance(item, dict) or item.get("draft"):
                continue
            tag = item.get("tag_name")
            if not isinstance(tag, str) or not tag.strip():
                continue
            releases.append(RawRelease(
                version=tag.strip(),
                url=item.get("html_url") or None,
                is_prerelease=bool(item.get("prerelease")),
                published_at=parse_timestamp(item.get("published_at")),
            ))
        return VersionInfo(releases=tuple(releases), url=f"https://github.com/{identifier}/releases")


class NexusAdapter(SourceAdapter):
    """
    Nexus Mods v1 API. One version per mod; hidden/unpublished mods count as not found.

    Identifier: numeric mod ID.
    """
    source = ModSource.NEXUS
    default_base_url = "https://api.nexusmods.com"
    api_key_header = "apikey"

    def __init__(self, session: Optional[requests.Session] = None, *, game: str = "stardewvalley", **kwargs):
        super().__init__(session, **kwargs)
        self.game = game

    def fetch(self, identifier: str) -> VersionInfo:
        mod_id = self._require_numeric(identifier)
        payload = self._request("GET", f"/v1/games/{self.game}/mods/{mod_id}.json")
        if not isinstance(payload, dict):
            raise MalformedResponseError("Nexus mod response isn't an object")
        if payload.get("available") is False or payload.get("status") in ("hidden", "under_moderation", "removed"):
            raise NotFoundError(f"Nexus mod {mod_id} isn't available")

        version = payload.get("version")
        if not isinstance(version, str) or not version.strip():
            raise MalformedResponseError(f"Nexus mod {mod_id} has no version")
        url = f"https://www.nexusmods.com/{self.game}/mods/{mod_id}"
        return VersionInfo.single(
            version.strip(),
            url,
            published_at=parse_timestamp(payload.get("updated_time") or payload.get("updated_timestamp")),
        )


class CurseForgeAdapter(SourceAdapter):
    """
    CurseForge v1 API. CurseForge has no version field, so the version is read out of
    each latest file's display name (``"Content Patcher 1.2.3"``). Non-release files
    (beta/alpha release types) are flagged as prereleases.

    Identifier: numeric project ID.
    """
    source = ModSource.CURSEFORGE
    default_base_url = "https://api.curseforge.com"
    api_key_header = "x-api-key"

    _VERSION_IN_NAME_RE = re.compile(r"(?<![A-Za-z0-9.])v?(\d+(?:\.\d+){1,2}(?:-[0-9A-Za-z]+(?:\.[0-9A-Za-z]+)*)?)")
    _RELEASE_TYPE_RELEASE = 1

    def fetch(self, identifier: str) -> VersionInfo:
        mod_id = self._require_numeric(identifier)
        payload = self._request("GET", f"/v1/mods/{mod_id}")
        data = payload.get("data", payload) if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise MalformedResponseError("CurseForge mod response isn't an object")

        links = data.get("links") if isinstance(data.get("links"), dict) else {}
        url = links.get("websiteUrl") or f"https://www.curseforge.com/projects/{mod_id}"

        releases: List[RawRelease] = []
        for file in data.get("latestFiles") or []:
            if not isinstance(file, dict):
                continue
            version = self._version_from_file(file)
            if version is None:
                logger.debug("CurseForge file %r has no version in its name", file.get("id"))
                continue
            releases.append(RawRelease(
                version=version,
                url=url,
                is_prerelease=file.get("releaseType", self._RELEASE_TYPE_RELEASE) != self._RELEASE_TYPE_RELEASE,
                published_at=parse_timestamp(file.get("fileDate")),
            ))
        if not releases and data.get("latestFiles"):
            raise MalformedResponseError(f"CurseForge mod {mod_id} has no versioned files")
        return VersionInfo(releases=tuple(releases), url=url)

    @classmethod
    def _version_from_file(cls, file: Dict[str, Any]) -> Optional[str]:
        for name in (file.get("displayName"), file.get("fileName")):
            if not isinstance(name, str) or not name:
                continue
            stem, ext = os.path.splitext(name)
            if ext.lower() in (".zip", ".rar", ".7z"):
                name = stem
            matches = cls._VERSION_IN_NAME_RE.findall(name)
            if matches:
                return matches[-1]
        return None


class ModDropAdapter(SourceAdapter):
    """
    ModDrop mod-data API. The newest non-deleted, non-old file provides the version.

    Identifier: numeric mod ID.
    """
    source = ModSource.MODDROP
    default_base_url = "https://www.moddrop.com"

    def fetch(self, identifier: str) -> VersionInfo:
        mod_id = self._require_numeric(identifier)
        payload = self._request(
            "POST",
            "/api/mods/data",
            json_body={"ModIDs": [mod_id], "Files": True, "Mods": True},
        )
        mods = payload.get("mods") if isinstance(payload, dict) else None
        if not isinstance(mods, dict):
            raise MalformedResponseError("ModDrop response has no 'mods' object")
        entry = mods.get(str(mod_id))
        if not isinstance(entry, dict):
            raise NotFoundError(f"ModDrop mod {mod_id} not found")

        mod = entry.get("mod") if isinstance(entry.get("mod"), dict) else {}
        url = mod.get("pageUrl") or f"https://www.moddrop.com/stardew-valley/mods/{mod_id}"

        releases: List[RawRelease] = []
        for file in entry.get("files") or []:
            if not isinstance(file, dict) or file.get("isOld") or file.get("isDeleted"):
                continue
            version = file.get("version")
            if not isinstance(version, str) or not version.strip():
                continue
            releases.append(RawRelease(
                version=version.strip(),
                url=url,
                is_prerelease=bool(file.get("isPreRelease")),
                published_at=parse_timestamp(file.get("dateUpdated") or file.get("dateCreated")),
            ))
        return VersionInfo(releases=tuple(releases), url=url)


class ChucklefishAdapter(SourceAdapter):
    """
    Chucklefish community forums. There's no API, so the version is scraped from the
    resource page title: ``<h1>Mod Name <span class="muted">1.2.3</span></h1>``.

    Identifier: numeric resource ID.
    """
    source = ModSource.CHUCKLEFISH
    default_base_url = "https://community.playstarbound.com"

    _TITLE_VERSION_RE = re.compile(
        r"<h1[^>]*>.*?<span[^>]*class=\"[^\"]*muted[^\"]*\"[^>]*>\s*(?P<version>[^<]+?)\s*</span>",
        re.IGNORECASE | re.DOTALL,
    )

    def fetch(self, identifier: str) -> VersionInfo:
        mod_id = self._require_numeric(identifier)
        page = self._request(
            "GET",
            f"/resources/{mod_id}",
            headers={"Accept": "text/html"},
            expect_json=False,
        )
        match = self._TITLE_VERSION_RE.search(page or "")
        if not match:
            raise MalformedResponseError(f"Chucklefish resource {mod_id} page has no version")
        url = f"{self.base_url}/resources/{mod_id}"
        return VersionInfo.single(html.unescape(match.group("version")).strip(), url)


class PastebinAdapter(SourceAdapter):
    """
    Pastebin is never a version source. ``Pastebin:`` keys are accepted so that
    manifests declaring one don't produce "unknown update key" warnings, but they
    contribute nothing to a check: no candidate, no warning, and the paste URL is
    not used as an info URL. Point players at a paste with an override rule's
    ``forcedInfoUrl`` instead.
    """
    source = ModSource.PASTEBIN
    default_base_url = "https://pastebin.com"

    def fetch(self, identifier: str) -> VersionInfo:
        identifier = (identifier or "").strip()
        if not _PASTE_ID_RE.match(identifier):
            raise NotFoundError(f"'{identifier}' isn't a valid paste ID")
        return VersionInfo(releases=(), url=f"{self.base_url}/{identifier}")


ADAPTER_TYPES: Dict[ModSource, Type[SourceAdapter]] = {
    ModSource.GITHUB: GitHubAdapter,
    ModSource.NEXUS: NexusAdapter,
    ModSource.CURSEFORGE: CurseForgeAdapter,
    ModSource.MODDROP: ModDropAdapter,
    ModSource.CHUCKLEFISH: ChucklefishAdapter,
    ModSource.PASTEBIN: PastebinAdapter,
}


def build_adapters(settings: Optional[Mapping[ModSource, SourceSettings]] = None,
                   session: Optional[requests.Session] = None,
                   *,
                   timeout: float = DEFAULT_TIMEOUT) -> Dict[ModSource, SourceAdapter]:
    """
    Build one adapter per known site, sharing a single session.

    Parameters
    ----------
    settings : Mapping[ModSource, SourceSettings], optional
        Per-site overrides; sites without an entry use their defaults.
    session : requests.Session, optional
        Shared session; one is created with `session_factory` if omitted.
    timeout : float
        Default per-call timeout for sites whose settings don't set one.

    Returns
    -------
    Dict[ModSource, SourceAdapter]
    """
    settings = settings or {}
    session = session or session_factory()
    adapters: Dict[ModSource, SourceAdapter] = {}
    for source, adapter_type in ADAPTER_TYPES.items():
        site = settings.get(source) or SourceSettings()
        adapters[source] = adapter_type(
            session,
            base_url=site.base_url,
            timeout=site.timeout if site.timeout is not None else timeout,
            headers=site.headers,
            api_key=site.api_key,
        )
    return adapters
