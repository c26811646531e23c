"""Per-request-kind policy models and YAML loader.

Each RequestKind belongs to a data-volatility class: search results change
slowly, direct media links expire quickly. The policy for a kind fixes its
cache TTL, the URL template used to expand query targets, and an optional
per-attempt timeout override.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field

from animescrape.models.requests import RequestKind

logger = logging.getLogger(__name__)

DEFAULT_POLICIES_PATH = str(Path(__file__).with_name("kind_policies.yaml"))


class KindPolicy(BaseModel):
    """Caching and URL policy for a single request kind."""

    model_config = ConfigDict(frozen=True)

    cache_ttl_seconds: int = Field(default=3600, ge=1)
    url_template: str | None = None  # e.g. "https://host/search?keyword={query}"
    timeout_seconds: float | None = Field(default=None, gt=0, le=120)


_BUILTIN_POLICIES: dict[RequestKind, KindPolicy] = {
    RequestKind.SEARCH: KindPolicy(cache_ttl_seconds=7200),
    RequestKind.MEDIA_LINKS: KindPolicy(cache_ttl_seconds=1800),
    RequestKind.METADATA: KindPolicy(cache_ttl_seconds=3600),
    RequestKind.PAGE: KindPolicy(cache_ttl_seconds=3600),
}


def builtin_policies() -> dict[RequestKind, KindPolicy]:
    """Return a copy of the built-in per-kind defaults."""
    return dict(_BUILTIN_POLICIES)


def load_kind_policies(yaml_path: str) -> dict[RequestKind, KindPolicy]:
    """Parse a kind policies YAML file into typed KindPolicy objects.

    Args:
        yaml_path: Path to the YAML configuration file.

    Returns:
        A dict with a policy for every RequestKind. Kinds missing from the
        file (or invalid in it) keep their built-in defaults; a missing or
        unparseable file yields the built-in defaults only.
    """
    policies = builtin_policies()
    path = Path(yaml_path)

    if not path.exists():
        logger.warning("Kind policies file not found at %s, using built-in defaults", yaml_path)
        return policies

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        logger.error("Failed to parse kind policies YAML at %s: %s", yaml_path, exc)
        return policies

    if not isinstance(raw, dict) or not isinstance(raw.get("kinds"), dict):
        logger.warning("Kind policies YAML missing 'kinds' key, using built-in defaults")
        return policies

    for name, config in raw["kinds"].items():
        try:
            kind = RequestKind(name)
        except ValueError:
            logger.error("Unknown request kind '%s' in %s, skipping", name, yaml_path)
            continue
        try:
            policies[kind] = KindPolicy.model_validate(config or {})
        except Exception as exc:
            logger.error("Invalid policy for kind '%s': %s, skipping", name, exc)

    return policies
