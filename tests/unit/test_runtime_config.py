"""Unit tests for RuntimeConfig and RuntimeConfigStore."""

import pytest

from animescrape.config.kind_policies import KindPolicy
from animescrape.config.runtime import RuntimeConfig, RuntimeConfigStore
from animescrape.middleware.error_handler import ValidationError
from animescrape.models.requests import RequestKind


class TestRuntimeConfig:
    def test_from_settings(self, settings):
        config = RuntimeConfig.from_settings(settings)
        assert config.pool_min_size == 1
        assert config.pool_max_size == 10
        assert config.retry_base_delay_seconds == 0.0
        assert set(config.kind_policies) == set(RequestKind)

    def test_policy_for_falls_back_to_defaults(self):
        assert RuntimeConfig().policy_for(RequestKind.PAGE) == KindPolicy()

    def test_frozen(self):
        config = RuntimeConfig()
        with pytest.raises(Exception):
            config.retry_attempts = 9


class TestRuntimeConfigStore:
    def test_update_swaps_in_new_instance(self):
        store = RuntimeConfigStore()
        old = store.current
        new = store.update({"retry_attempts": 5})
        assert new.retry_attempts == 5
        assert store.current is new
        assert old.retry_attempts == 3

    def test_unknown_key_rejected_and_config_unchanged(self):
        store = RuntimeConfigStore()
        before = store.current
        with pytest.raises(ValidationError) as exc_info:
            store.update({"retry_attempts": 4, "bogus": True})
        assert store.current is before
        assert exc_info.value.details["fields"]

    @pytest.mark.parametrize(
        "partial",
        [
            {"retry_attempts": 0},
            {"cb_cooldown_seconds": 0},
            {"request_timeout_seconds": 500},
            {"pool_min_size": 40},
        ],
    )
    def test_invalid_values_rejected(self, partial):
        store = RuntimeConfigStore()
        with pytest.raises(ValidationError):
            store.update(partial)

    def test_kind_policy_merge_is_per_field(self):
        store = RuntimeConfigStore(
            RuntimeConfig(
                kind_policies={
                    RequestKind.SEARCH: KindPolicy(cache_ttl_seconds=7200, url_template="https://h/?q={query}")
                }
            )
        )
        new = store.update({"kind_policies": {"search": {"cache_ttl_seconds": 60}}})
        policy = new.policy_for(RequestKind.SEARCH)
        assert policy.cache_ttl_seconds == 60
        assert policy.url_template == "https://h/?q={query}"

    def test_unknown_kind_rejected(self):
        store = RuntimeConfigStore()
        with pytest.raises(ValidationError):
            store.update({"kind_policies": {"video": {"cache_ttl_seconds": 60}}})

    def test_listeners_notified(self):
        store = RuntimeConfigStore()
        seen = []
        store.subscribe(lambda old, new: seen.append((old.cb_max_failures, new.cb_max_failures)))
        store.update({"cb_max_failures": 2})
        assert seen == [(5, 2)]

    def test_failing_listener_does_not_block_update(self):
        store = RuntimeConfigStore()

        def broken(old, new):
            raise RuntimeError("listener bug")

        store.subscribe(broken)
        assert store.update({"cb_max_failures": 2}).cb_max_failures == 2
