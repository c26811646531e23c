"""Immutable runtime configuration with validated atomic updates.

``FetchSettings`` is read once at startup. The subset of knobs that may be
tuned while the service runs lives in a frozen ``RuntimeConfig``; the
``RuntimeConfigStore`` swaps in a new validated instance on update and
notifies listeners so components can pick up the change.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from animescrape.config.kind_policies import KindPolicy, load_kind_policies
from animescrape.config.settings import FetchSettings
from animescrape.middleware.error_handler import ValidationError
from animescrape.models.requests import RequestKind

logger = logging.getLogger(__name__)


class RuntimeConfig(BaseModel):
    """Active tunables; never mutated in place."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    request_timeout_seconds: float = Field(default=15.0, gt=0, le=120)
    retry_attempts: int = Field(default=3, ge=1, le=10)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)
    retry_jitter_seconds: float = Field(default=0.0, ge=0)
    rotate_after_failures: int = Field(default=10, ge=1)
    cb_max_failures: int = Field(default=5, ge=1)
    cb_cooldown_seconds: float = Field(default=30.0, gt=0)
    pool_min_size: int = Field(default=5, ge=1)
    pool_max_size: int = Field(default=30, ge=1)
    kind_policies: dict[RequestKind, KindPolicy] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_pool_bounds(self) -> "RuntimeConfig":
        if self.pool_min_size > self.pool_max_size:
            raise ValueError("pool_min_size must not exceed pool_max_size")
        return self

    def policy_for(self, kind: RequestKind) -> KindPolicy:
        """Return the policy for *kind*, falling back to KindPolicy defaults."""
        return self.kind_policies.get(kind) or KindPolicy()

    @classmethod
    def from_settings(cls, settings: FetchSettings) -> "RuntimeConfig":
        return cls(
            request_timeout_seconds=settings.request_timeout_seconds,
            retry_attempts=settings.retry_attempts,
            retry_base_delay_seconds=settings.retry_base_delay_seconds,
            retry_jitter_seconds=settings.retry_jitter_seconds,
            rotate_after_failures=settings.rotate_after_failures,
            cb_max_failures=settings.cb_max_failures,
            cb_cooldown_seconds=settings.cb_cooldown_seconds,
            pool_min_size=settings.pool_min_size,
            pool_max_size=settings.pool_max_size,
            kind_policies=load_kind_policies(settings.kind_policies_path),
        )


class RuntimeConfigStore:
    """Holds the active RuntimeConfig and applies partial updates atomically."""

    def __init__(self, initial: RuntimeConfig | None = None) -> None:
        self._current = initial or RuntimeConfig()
        self._listeners: list[Callable[[RuntimeConfig, RuntimeConfig], None]] = []

    @property
    def current(self) -> RuntimeConfig:
        return self._current

    def subscribe(self, listener: Callable[[RuntimeConfig, RuntimeConfig], None]) -> None:
        """Register ``listener(old, new)``, called after every successful update."""
        self._listeners.append(listener)

    def update(self, partial: dict[str, Any]) -> RuntimeConfig:
        """Validate *partial* against the current config and swap it in.

        ``kind_policies`` entries are merged per kind and per field, so
        ``{"kind_policies": {"search": {"cache_ttl_seconds": 60}}}`` only
        changes the search TTL.

        Raises
        ------
        ValidationError
            On unknown keys or invalid values. The active config is unchanged.
        """
        old = self._current
        merged = old.model_dump()

        for key, value in partial.items():
            if key == "kind_policies" and isinstance(value, dict):
                policies = merged["kind_policies"]
                for kind_name, fields in value.items():
                    try:
                        kind = RequestKind(kind_name)
                    except ValueError:
                        raise ValidationError(
                            f"Unknown request kind '{kind_name}'", field="kind_policies"
                        )
                    base = policies.get(kind, KindPolicy().model_dump())
                    if not isinstance(fields, dict):
                        raise ValidationError(
                            f"Policy for '{kind_name}' must be an object", field="kind_policies"
                        )
                    policies[kind] = {**base, **fields}
            else:
                merged[key] = value

        try:
            new = RuntimeConfig.model_validate(merged)
        except PydanticValidationError as exc:
            raise ValidationError(
                "Invalid configuration update",
                fields=[
                    {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                    for err in exc.errors()
                ],
            )

        self._current = new
        logger.info("Runtime configuration updated: %s", sorted(partial))

        for listener in self._listeners:
            try:
                listener(old, new)
            except Exception:
                logger.exception("Runtime config listener error")

        return new
