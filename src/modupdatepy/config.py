"""
config.py

Update-check configuration: loading, defaults and wiring.

Configuration lives in a JSON file (``config.json``) with an optional user file
(``config.user.json``) whose top-level keys replace the base file's:

    {
      "CheckForUpdates": true,
      "UseBetaChannel": false,
      "SuccessCacheMinutes": 60,
      "ErrorCacheMinutes": 5,
      "FetchTimeoutSeconds": 15,
      "Sources": {"Nexus": {"apiKey": "..."}, "GitHub": {"baseUrl": "https://api.github.com"}},
      "ModOverrides": {"Author.Mod": {"allowNonStandardVersions": true}},
      "SuppressUpdateChecks": ["SMAPI.ConsoleCommands"],
      "GitHubProjectName": "Pathoschild/SMAPI"
    }

Everything is read once at startup; the resulting objects are read-only.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from datetime import timedelta
from pathlib import Path
from typing import *

import requests

from .aggregator import UpdateAggregator
from .cache import ResultCache
from .exceptions import ConfigurationError, ParseError
from .overrides import OverridePolicy, OverrideRule
from .semver import SemanticVersion
from .sources import SourceSettings, build_adapters
from .types_models import UpdateCheckResult
from .update_keys import ModSource, UpdateKey
from .utils import DEFAULT_USER_AGENT, session_factory

logger = logging.getLogger(__name__)

__all__ = [
    "UpdateCheckConfig",
    "load_config",
    "build_aggregator",
    "check_app_update",
    "DEFAULT_SUPPRESSED_MOD_IDS",
]

DEFAULT_APP_MOD_ID = "Pathoschild.SMAPI"
DEFAULT_APP_VERSION = "3.15.1"
DEFAULT_GITHUB_PROJECT = "Pathoschild/SMAPI"
DEFAULT_SUPPRESSED_MOD_IDS: Tuple[str, ...] = (
    "SMAPI.ConsoleCommands",
    "SMAPI.ErrorHandler",
    "SMAPI.SaveBackup",
)

# JSON name -> dataclass field
_JSON_FIELDS = {
    "CheckForUpdates": "check_for_updates",
    "UseBetaChannel": "use_beta_channel",
    "SuccessCacheMinutes": "success_ttl_minutes",
    "ErrorCacheMinutes": "error_ttl_minutes",
    "FetchTimeoutSeconds": "fetch_timeout",
    "MaxConcurrentLookups": "max_workers",
    "UserAgent": "user_agent",
    "Sources": "sources",
    "ModOverrides": "overrides",
    "SuppressUpdateChecks": "suppress_update_checks",
    "AppModId": "app_mod_id",
    "AppVersion": "app_version",
    "GitHubProjectName": "github_project_name",
    "AppBetaUpdateKeys": "app_beta_update_keys",
}


@dataclass(frozen=True)
class UpdateCheckConfig:
    """
    Update-check settings.

    Attributes
    ----------
    check_for_updates : bool
        Master switch; when False nothing is checked.
    use_beta_channel : Optional[bool]
        Show prerelease versions as updates. None means "on if the app itself is a prerelease".
    success_ttl_minutes, error_ttl_minutes : float
        Result cache TTLs.
    fetch_timeout : float
        Seconds allowed per source call.
    max_workers : int
        Concurrent source lookups.
    user_agent : str
    sources : Dict[ModSource, SourceSettings]
    overrides : OverridePolicy
    suppress_update_checks : FrozenSet[str]
        Mod IDs never checked (case-insensitive).
    app_mod_id, app_version, github_project_name, app_beta_update_keys
        The host application's own identity; self-update checks treat it as one more mod.
    """
    check_for_updates: bool = True
    use_beta_channel: Optional[bool] = None
    success_ttl_minutes: float = 60
    error_ttl_minutes: float = 5
    fetch_timeout: float = 15.0
    max_workers: int = 8
    user_agent: str = DEFAULT_USER_AGENT
    sources: Mapping[ModSource, SourceSettings] = field(default_factory=dict)
    overrides: OverridePolicy = field(default_factory=OverridePolicy)
    suppress_update_checks: FrozenSet[str] = frozenset(m.lower() for m in DEFAULT_SUPPRESSED_MOD_IDS)
    app_mod_id: str = DEFAULT_APP_MOD_ID
    app_version: str = DEFAULT_APP_VERSION
    github_project_name: str = DEFAULT_GITHUB_PROJECT
    app_beta_update_keys: Tuple[UpdateKey, ...] = ()

    def __post_init__(self):
        if self.success_ttl_minutes <= 0 or self.error_ttl_minutes <= 0:
            raise ConfigurationError("cache TTLs must be positive")
        if self.fetch_timeout <= 0:
            raise ConfigurationError("FetchTimeoutSeconds must be positive")
        if self.max_workers < 1:
            raise ConfigurationError("MaxConcurrentLookups must be at least 1")
        try:
            SemanticVersion.parse(self.app_version)
        except ParseError as exc:
            raise ConfigurationError(f"invalid app version: {exc.message}") from exc

    @property
    def app_semantic_version(self) -> SemanticVersion:
        return SemanticVersion.parse(self.app_version)

    @property
    def beta_channel_enabled(self) -> bool:
        if self.use_beta_channel is not None:
            return self.use_beta_channel
        return self.app_semantic_version.is_prerelease()

    @property
    def success_ttl(self) -> timedelta:
        return timedelta(minutes=self.success_ttl_minutes)

    @property
    def error_ttl(self) -> timedelta:
        return timedelta(minutes=self.error_ttl_minutes)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UpdateCheckConfig":
        """Build a config from parsed JSON, ignoring unknown keys."""
        if not isinstance(data, dict):
            raise ConfigurationError("update-check config must be a JSON object")
        kwargs: Dict[str, Any] = {}
        for json_name, attr in _JSON_FIELDS.items():
            if json_name in data and data[json_name] is not None:
                kwargs[attr] = data[json_name]

        try:
            if "sources" in kwargs:
                kwargs["sources"] = cls._parse_sources(kwargs["sources"])
            if "overrides" in kwargs:
                kwargs["overrides"] = OverridePolicy.from_dict(kwargs["overrides"])
            if "suppress_update_checks" in kwargs:
                kwargs["suppress_update_checks"] = frozenset(
                    m.strip().lower() for m in _string_list("SuppressUpdateChecks", kwargs["suppress_update_checks"]))
            if "app_beta_update_keys" in kwargs:
                kwargs["app_beta_update_keys"] = tuple(
                    UpdateKey.parse(k) for k in _string_list("AppBetaUpdateKeys", kwargs["app_beta_update_keys"]))
            for attr, kind in (("success_ttl_minutes", float), ("error_ttl_minutes", float),
                               ("fetch_timeout", float), ("max_workers", int)):
                if attr in kwargs:
                    kwargs[attr] = kind(kwargs[attr])
            for attr in ("check_for_updates", "use_beta_channel"):
                if attr in kwargs and not isinstance(kwargs[attr], bool):
                    raise ConfigurationError(f"{attr} must be true or false")
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"invalid update-check config: {exc}") from exc
        return cls(**kwargs)

    @staticmethod
    def _parse_sources(raw: Any) -> Dict[ModSource, SourceSettings]:
        if not isinstance(raw, dict):
            raise ConfigurationError("Sources must be an object keyed by site name")
        parsed: Dict[ModSource, SourceSettings] = {}
        for name, settings in raw.items():
            source = ModSource.from_name(name)
            if source is ModSource.UNKNOWN:
                raise ConfigurationError(f"unknown source '{name}' in Sources")
            if not isinstance(settings, dict):
                raise ConfigurationError(f"settings for source '{name}' must be an object")
            parsed[source] = SourceSettings.from_dict(settings)
        return parsed

    def custom_settings(self) -> Dict[str, Any]:
        """Return the simple settings which differ from their defaults (for startup logging)."""
        defaults = UpdateCheckConfig()
        custom: Dict[str, Any] = {}
        for f in fields(self):
            if f.name in ("sources", "overrides"):
                continue
            value = getattr(self, f.name)
            if value != getattr(defaults, f.name):
                custom[f.name] = sorted(value) if isinstance(value, frozenset) else value
        if self.sources:
            custom["sources"] = sorted(s.value for s in self.sources)
        if len(self.overrides):
            custom["overrides"] = len(self.overrides)
        return custom


def _string_list(name: str, value: Any) -> List[str]:
    # a lone string is one entry, not a sequence of characters
    if isinstance(value, str):
        return [value]
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ConfigurationError(f"{name} must be a list of strings")
    return list(value)


def _read_json(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as exc:
        raise ConfigurationError(f"can't read config file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"config file {path} isn't valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"config file {path} must contain a JSON object")
    return data


def load_config(path: Union[str, Path], user_path: Optional[Union[str, Path]] = None) -> UpdateCheckConfig:
    """
    Load the update-check config, applying an optional user override file on top.

    Parameters
    ----------
    path : str | Path
        Base config file (must exist).
    user_path : str | Path, optional
        User config file; ignored if it doesn't exist. Its top-level keys replace the base file's.

    Raises
    ------
    ConfigurationError
        If a file can't be read, isn't a JSON object, or holds invalid values.
    """
    data = _read_json(Path(path).expanduser())
    if user_path is not None:
        user_file = Path(user_path).expanduser()
        if user_file.exists():
            data.update(_read_json(user_file))
            logger.debug("applied user config %s", user_file)

    config = UpdateCheckConfig.from_dict(data)
    custom = config.custom_settings()
    if custom:
        logger.info("Update-check settings changed from defaults: %s", ", ".join(f"{k}={v}" for k, v in custom.items()))
    if not config.check_for_updates:
        logger.warning("Update checks are disabled, so you won't be notified of new app or mod updates.")
    return config


def build_aggregator(config: UpdateCheckConfig, session: Optional[requests.Session] = None) -> UpdateAggregator:
    """
    Wire a session, the source adapters, the result cache and the override policy
    together according to `config`.

    The host app is registered in the override policy under its own mod ID with its
    GitHub project as the default key and `app_beta_update_keys` as beta keys, unless
    a configured override for that ID already exists.
    """
    session = session or session_factory(
        user_agent=config.user_agent,
        pool_maxsize=max(10, config.max_workers),
    )
    adapters = build_adapters(config.sources, session, timeout=config.fetch_timeout)
    cache = ResultCache(success_ttl=config.success_ttl, error_ttl=config.error_ttl)

    overrides = config.overrides
    if config.app_mod_id not in overrides:
        overrides = overrides.with_rule(config.app_mod_id, OverrideRule(
            default_update_key=UpdateKey.parse(f"GitHub:{config.github_project_name}"),
            additional_beta_keys=config.app_beta_update_keys,
        ))

    return UpdateAggregator(
        adapters,
        cache,
        overrides,
        max_workers=config.max_workers,
        fetch_timeout=config.fetch_timeout,
        suppressed_mod_ids=config.suppress_update_checks,
        enabled=config.check_for_updates,
    )


def check_app_update(aggregator: UpdateAggregator, config: UpdateCheckConfig) -> Optional[UpdateCheckResult]:
    """
    Check whether a newer version of the host application exists.

    Returns None when update checks are disabled.
    """
    if not config.check_for_updates:
        return None
    return aggregator.check_for_update(
        config.app_mod_id,
        config.app_semantic_version,
        (),
        config.beta_channel_enabled,
    )
