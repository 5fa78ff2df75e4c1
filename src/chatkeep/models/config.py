"""Configuration models for the session store and its retention lifecycle."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class StoreConfig(BaseModel):
    """Configuration for the SQLite persistence layer."""

    db_path: str = Field(
        default="~/.chatkeep/sessions.db",
        description="Path to the SQLite database file. ~ is expanded at runtime.",
    )

    wal_mode: bool = True
    """Use WAL journal mode for better concurrent read performance."""

    connection_timeout: float = 30.0
    """Seconds to wait for the database connection before raising."""


class RetentionPolicy(BaseModel):
    """
    Retention windows for one session population.

    ``archive_after_days`` is expected to be smaller than ``delete_after_days``.
    An inverted pair is accepted (the lifecycle manager logs a warning) rather
    than rejected, so operators can tighten one window at a time.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    archive_after_days: float = Field(
        default=7,
        ge=0,
        description="Days since the last message after which an active session is archived.",
    )
    delete_after_days: float = Field(
        default=90,
        ge=0,
        description="Days since the last message after which an archived session is deleted.",
    )
    max_active_sessions: int = Field(
        default=10_000,
        ge=1,
        description="Soft ceiling reported to monitoring; not enforced by the store.",
    )

    @property
    def is_inverted(self) -> bool:
        return self.archive_after_days >= self.delete_after_days


class GlobalPolicy(BaseModel):
    """Settings shared by every population."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    cleanup_schedule: str = Field(
        default="0 2 * * *",
        description="Cron expression for the external scheduler. Not interpreted here.",
    )
    batch_size: int = Field(default=100, ge=1)
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Total attempts per sweep, including the first one.",
    )
    retry_delay: int = Field(
        default=5_000,
        ge=0,
        description="Fixed delay between attempts, in milliseconds.",
    )


PROD_RETENTION = RetentionPolicy(archive_after_days=7, delete_after_days=90, max_active_sessions=10_000)
DEMO_RETENTION = RetentionPolicy(archive_after_days=1, delete_after_days=14, max_active_sessions=1_000)


class LifecycleConfig(BaseModel):
    """
    Immutable, process-wide retention configuration.

    Build it with :func:`merge_lifecycle_config` to layer partial overrides on
    the defaults::

        config = merge_lifecycle_config({"demo": {"archive_after_days": 2}})
        assert config.demo.delete_after_days == 14
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    prod: RetentionPolicy = Field(default_factory=lambda: PROD_RETENTION)
    demo: RetentionPolicy = Field(default_factory=lambda: DEMO_RETENTION)
    global_: GlobalPolicy = Field(default_factory=GlobalPolicy, alias="global")

    def policy_for(self, demo: bool) -> RetentionPolicy:
        return self.demo if demo else self.prod

    @classmethod
    def default(cls) -> LifecycleConfig:
        """Return a config instance with all defaults."""
        return cls()


_SECTIONS: dict[str, type[BaseModel]] = {
    "prod": RetentionPolicy,
    "demo": RetentionPolicy,
    "global_": GlobalPolicy,
}


def _section_overrides(value: BaseModel | Mapping[str, Any] | None) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, BaseModel):
        # Only fields the caller actually set count as overrides.
        return value.model_dump(exclude_unset=True)
    return dict(value)


def merge_lifecycle_config(
    overrides: LifecycleConfig | Mapping[str, Any] | None = None,
) -> LifecycleConfig:
    """
    Layer caller-supplied overrides onto the default configuration.

    Each section (``prod``, ``demo``, ``global``) is merged independently and
    field by field: a partial section only replaces the fields it names.

    Args:
        overrides: A complete ``LifecycleConfig`` (returned unchanged), a
            mapping of section name to a partial mapping or model, or None.

    Returns:
        The effective, frozen configuration.

    Raises:
        pydantic.ValidationError: If a field value is out of bounds or a
            section contains an unknown key.
        ValueError: If an unknown section name is supplied.
    """
    if isinstance(overrides, LifecycleConfig):
        return overrides

    raw = dict(overrides or {})
    if "global" in raw:
        raw["global_"] = raw.pop("global")
    unknown = set(raw) - set(_SECTIONS)
    if unknown:
        raise ValueError(f"Unknown lifecycle config section(s): {sorted(unknown)}")

    defaults = LifecycleConfig.default()
    merged: dict[str, BaseModel] = {}
    for name, model_cls in _SECTIONS.items():
        base = getattr(defaults, name).model_dump()
        base.update(_section_overrides(raw.get(name)))
        merged[name] = model_cls.model_validate(base)

    return LifecycleConfig(prod=merged["prod"], demo=merged["demo"], **{"global": merged["global_"]})
