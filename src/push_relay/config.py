"""
Programmatic configuration for the push core.

Nested policy structs are plain dataclasses. ``merge_configuration`` applies a
partial update on top of an existing configuration: top-level keys replace,
nested structs given as mappings are merged field by field, so repeated
``configure()`` calls only override what they set.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Mapping, Optional

from .errors import ConfigurationError
from .types import HookCallable, MetricsAdapter, ProviderAdapter, RateLimiter, StorageAdapter


@dataclass(frozen=True)
class VapidKeys:
    """VAPID credentials (base64url-encoded). Empty until configured."""

    public_key: str = ""
    private_key: str = ""
    subject: Optional[str] = None


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 8
    base_delay_ms: float = 1000
    backoff_factor: float = 2
    max_delay_ms: float = 3_600_000  # 1 hour
    jitter: bool = True


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout_ms: float = 60_000
    half_open_max_attempts: int = 3


@dataclass(frozen=True)
class BatchConfig:
    batch_size: int = 50
    concurrency: int = 10


@dataclass(frozen=True)
class WorkerOptions:
    poll_interval_ms: float = 5000
    concurrency: int = 10
    batch_size: int = 50
    error_backoff_ms: float = 10_000


@dataclass(frozen=True)
class LifecycleHooks:
    """Optional observability callbacks. All are best-effort."""

    on_send: Optional[HookCallable] = None
    on_success: Optional[HookCallable] = None
    on_failure: Optional[HookCallable] = None
    on_retry: Optional[HookCallable] = None


@dataclass
class PushConfiguration:
    vapid_keys: Optional[VapidKeys] = None
    storage_adapter: Optional[StorageAdapter] = None
    provider_adapter: Optional[ProviderAdapter] = None
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    rate_limiter: Optional[RateLimiter] = None
    metrics_adapter: Optional[MetricsAdapter] = None
    circuit_breaker: Optional[CircuitBreakerConfig] = field(default_factory=CircuitBreakerConfig)
    batch_config: BatchConfig = field(default_factory=BatchConfig)
    lifecycle_hooks: LifecycleHooks = field(default_factory=LifecycleHooks)


# Nested structs that accept partial mappings
_NESTED: dict[str, type] = {
    "vapid_keys": VapidKeys,
    "retry_policy": RetryPolicy,
    "circuit_breaker": CircuitBreakerConfig,
    "batch_config": BatchConfig,
    "lifecycle_hooks": LifecycleHooks,
}

_TOP_LEVEL = {f.name for f in fields(PushConfiguration)}


def _merge_nested(name: str, current: Any, update: Any) -> Any:
    cls = _NESTED[name]
    if update is None or isinstance(update, cls):
        return update
    if not isinstance(update, Mapping):
        raise ConfigurationError(
            f"{name} must be a {cls.__name__} or a mapping", {"field": name, "got": type(update).__name__}
        )
    allowed = {f.name for f in fields(cls)}
    unknown = set(update) - allowed
    if unknown:
        raise ConfigurationError(f"Unknown {name} fields: {sorted(unknown)}", {"field": name})
    return replace(current if current is not None else cls(), **update)


def merge_configuration(
    current: Optional[PushConfiguration], updates: Mapping[str, Any]
) -> PushConfiguration:
    """Return a new configuration with ``updates`` applied on top of ``current``.

    Raises:
        ConfigurationError: on unknown keys or malformed nested values
    """
    unknown = set(updates) - _TOP_LEVEL
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")

    base = current if current is not None else PushConfiguration()
    merged: dict[str, Any] = {}
    for key, value in updates.items():
        if key in _NESTED:
            merged[key] = _merge_nested(key, getattr(base, key), value)
        else:
            merged[key] = value
    return replace(base, **merged)
