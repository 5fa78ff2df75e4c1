"""Tests for lifecycle configuration merging."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from chatkeep.models.config import (
    DEMO_RETENTION,
    PROD_RETENTION,
    GlobalPolicy,
    LifecycleConfig,
    RetentionPolicy,
    StoreConfig,
    merge_lifecycle_config,
)


class TestDefaults:
    def test_population_defaults(self) -> None:
        cfg = LifecycleConfig.default()
        assert (cfg.prod.archive_after_days, cfg.prod.delete_after_days) == (7, 90)
        assert (cfg.demo.archive_after_days, cfg.demo.delete_after_days) == (1, 14)
        assert cfg.prod.max_active_sessions == 10_000
        assert cfg.demo.max_active_sessions == 1_000

    def test_global_defaults(self) -> None:
        g = LifecycleConfig.default().global_
        assert g.cleanup_schedule == "0 2 * * *"
        assert g.batch_size == 100
        assert g.retry_attempts == 3
        assert g.retry_delay == 5_000

    def test_merge_none_is_defaults(self) -> None:
        assert merge_lifecycle_config() == LifecycleConfig.default()

    def test_store_config_defaults(self) -> None:
        cfg = StoreConfig()
        assert cfg.db_path == "~/.chatkeep/sessions.db"
        assert cfg.wal_mode is True


class TestMerge:
    def test_partial_section_keeps_other_fields(self) -> None:
        cfg = merge_lifecycle_config({"demo": {"archive_after_days": 2}})
        assert cfg.demo.archive_after_days == 2
        assert cfg.demo.delete_after_days == 14
        assert cfg.demo.max_active_sessions == 1_000
        assert cfg.prod == PROD_RETENTION

    def test_sections_merge_independently(self) -> None:
        cfg = merge_lifecycle_config(
            {
                "prod": {"delete_after_days": 30},
                "global": {"retry_attempts": 1, "retry_delay": 0},
            }
        )
        assert cfg.prod.archive_after_days == 7
        assert cfg.prod.delete_after_days == 30
        assert cfg.demo == DEMO_RETENTION
        assert cfg.global_.retry_attempts == 1
        assert cfg.global_.retry_delay == 0
        assert cfg.global_.batch_size == 100

    def test_partial_model_only_overrides_set_fields(self) -> None:
        """A RetentionPolicy override layers only the fields passed explicitly."""
        cfg = merge_lifecycle_config({"demo": RetentionPolicy(delete_after_days=21)})
        assert cfg.demo.archive_after_days == 1
        assert cfg.demo.delete_after_days == 21

    def test_global_alias_accepted(self) -> None:
        cfg = merge_lifecycle_config({"global_": GlobalPolicy(batch_size=50)})
        assert cfg.global_.batch_size == 50
        assert cfg.global_.retry_attempts == 3

    def test_complete_config_returned_unchanged(self) -> None:
        cfg = merge_lifecycle_config({"prod": {"archive_after_days": 3}})
        assert merge_lifecycle_config(cfg) is cfg

    def test_unknown_section_rejected(self) -> None:
        with pytest.raises(ValueError, match="staging"):
            merge_lifecycle_config({"staging": {"archive_after_days": 1}})

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            merge_lifecycle_config({"prod": {"archive_days": 1}})

    def test_bounds_enforced(self) -> None:
        with pytest.raises(ValidationError):
            merge_lifecycle_config({"global": {"retry_attempts": 0}})
        with pytest.raises(ValidationError):
            merge_lifecycle_config({"demo": {"archive_after_days": -1}})

    def test_config_is_immutable(self) -> None:
        cfg = merge_lifecycle_config()
        with pytest.raises(ValidationError):
            cfg.prod.archive_after_days = 1  # type: ignore[misc]

    def test_inverted_windows_are_accepted(self) -> None:
        cfg = merge_lifecycle_config({"demo": {"archive_after_days": 30}})
        assert cfg.demo.is_inverted is True
        assert cfg.prod.is_inverted is False

    def test_policy_for(self) -> None:
        cfg = merge_lifecycle_config()
        assert cfg.policy_for(True) is cfg.demo
        assert cfg.policy_for(False) is cfg.prod
