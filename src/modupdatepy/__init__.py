"""
modupdatepy package initializer.

This file exposes the high-level public API for the package:
 - UpdateAggregator (main entry point: one recommendation per mod)
 - SemanticVersion, UpdateKey, ModSource (value types)
 - ResultCache, OverridePolicy, OverrideRule (collaborators the aggregator is built from)
 - load_config / build_aggregator (wiring from a JSON config file)
 - exceptions (module with custom exceptions)

Implementation notes:
 - Avoid heavy work at import time; no network access happens until a check runs.
"""

__all__ = [
    "UpdateAggregator",
    "SemanticVersion",
    "UpdateKey",
    "ModSource",
    "ResultCache",
    "OverridePolicy",
    "OverrideRule",
    "UpdateCheckConfig",
    "load_config",
    "build_aggregator",
    "check_app_update",
    "build_adapters",
    "UpdateRecommendation",
    "UpdateCheckResult",
    "ModUpdateRequest",
    "exceptions",
    "__version__",
]

# package version (update as you release)
__version__ = "0.1.0"

# re-export exceptions for convenience
from . import exceptions
from .exceptions import *  # noqa: F401,F403

from .semver import SemanticVersion
from .update_keys import ModSource, UpdateKey
from .types_models import ModUpdateRequest, UpdateCheckResult, UpdateRecommendation
from .cache import ResultCache
from .overrides import OverridePolicy, OverrideRule
from .sources import build_adapters
from .aggregator import UpdateAggregator
from .config import UpdateCheckConfig, build_aggregator, check_app_update, load_config
