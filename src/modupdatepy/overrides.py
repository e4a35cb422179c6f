"""
overrides.py

Per-mod override rules, looked up case-insensitively by mod ID.

A rule can:
 - allow non-standard version strings ("1.4c") for that mod's candidates,
 - force the info URL shown in the recommendation,
 - supply a default update key when the mod declares none,
 - add extra update keys that are only consulted on the beta channel.

The table is built once and never mutated; `with_rule` returns a new policy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import *

from .exceptions import ConfigurationError
from .update_keys import UpdateKey

logger = logging.getLogger(__name__)

__all__ = ["OverrideRule", "OverridePolicy", "EMPTY_RULE"]


def _coerce_key(value: Union[str, UpdateKey]) -> UpdateKey:
    return value if isinstance(value, UpdateKey) else UpdateKey.parse(value)


@dataclass(frozen=True)
class OverrideRule:
    """
    Override settings for one mod.

    Attributes
    ----------
    allow_non_standard_versions : bool
        Parse this mod's versions in tolerant mode.
    forced_info_url : Optional[str]
        Replaces the winning candidate's URL in the recommendation.
    default_update_key : Optional[UpdateKey]
        Used only when the mod declares no update keys.
    additional_beta_keys : Tuple[UpdateKey, ...]
        Appended to the key list when the beta channel is enabled.
    """
    allow_non_standard_versions: bool = False
    forced_info_url: Optional[str] = None
    default_update_key: Optional[UpdateKey] = None
    additional_beta_keys: Tuple[UpdateKey, ...] = ()

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "OverrideRule":
        if not isinstance(d, dict):
            raise ConfigurationError(f"override rule must be an object, got {type(d).__name__}")

        def pick(camel: str, snake: str, default: Any = None) -> Any:
            return d.get(camel, d.get(snake, default))

        default_key = pick("defaultUpdateKey", "default_update_key")
        beta_keys = pick("additionalBetaKeys", "additional_beta_keys", ()) or ()
        if isinstance(beta_keys, str):
            beta_keys = [beta_keys]
        return cls(
            allow_non_standard_versions=bool(pick("allowNonStandardVersions", "allow_non_standard_versions", False)),
            forced_info_url=pick("forcedInfoUrl", "forced_info_url") or None,
            default_update_key=_coerce_key(default_key) if default_key else None,
            additional_beta_keys=tuple(_coerce_key(k) for k in beta_keys),
        )


EMPTY_RULE = OverrideRule()


class OverridePolicy:
    """
    Immutable, case-insensitive lookup table of override rules.

    Parameters
    ----------
    rules : Mapping[str, OverrideRule], optional
        Rules keyed by mod ID. Later entries win when two IDs differ only by case.

    Example
    -------
    >>> policy = OverridePolicy({"Author.Mod": OverrideRule(forced_info_url="https://example.org")})
    >>> policy.resolve("author.mod").forced_info_url
    'https://example.org'
    """

    def __init__(self, rules: Optional[Mapping[str, OverrideRule]] = None):
        table: Dict[str, OverrideRule] = {}
        for mod_id, rule in (rules or {}).items():
            if not isinstance(rule, OverrideRule):
                raise ConfigurationError(f"override for '{mod_id}' isn't an OverrideRule")
            table[mod_id.strip().lower()] = rule
        self._rules: Mapping[str, OverrideRule] = MappingProxyType(table)

    @classmethod
    def from_dict(cls, mapping: Optional[Mapping[str, Dict[str, Any]]]) -> "OverridePolicy":
        """Build a policy from configuration data (mod ID -> rule object)."""
        if mapping is not None and not isinstance(mapping, Mapping):
            raise ConfigurationError(f"overrides must be an object keyed by mod ID, got {type(mapping).__name__}")
        rules: Dict[str, OverrideRule] = {}
        for mod_id, raw in (mapping or {}).items():
            try:
                rules[mod_id] = OverrideRule.from_dict(raw)
            except ConfigurationError as exc:
                raise ConfigurationError(f"invalid override for '{mod_id}': {exc.message}") from exc
        logger.debug("loaded %d update-check override rules", len(rules))
        return cls(rules)

    def resolve(self, mod_id: str) -> OverrideRule:
        """Return the rule for `mod_id`, or an empty rule if none is configured."""
        return self._rules.get((mod_id or "").strip().lower(), EMPTY_RULE)

    def with_rule(self, mod_id: str, rule: OverrideRule) -> "OverridePolicy":
        """Return a copy of this policy with `rule` set for `mod_id`."""
        rules = dict(self._rules)
        rules[mod_id.strip().lower()] = rule
        return OverridePolicy(rules)

    @property
    def rules(self) -> Mapping[str, OverrideRule]:
        return self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, mod_id: object) -> bool:
        return isinstance(mod_id, str) and mod_id.strip().lower() in self._rules
