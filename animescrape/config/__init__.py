"""Configuration module: settings, per-kind policies and runtime config."""

from animescrape.config.kind_policies import KindPolicy, builtin_policies, load_kind_policies
from animescrape.config.runtime import RuntimeConfig, RuntimeConfigStore
from animescrape.config.settings import FetchSettings

__all__ = [
    "FetchSettings",
    "KindPolicy",
    "RuntimeConfig",
    "RuntimeConfigStore",
    "builtin_policies",
    "load_kind_policies",
]
