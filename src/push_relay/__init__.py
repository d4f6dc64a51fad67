"""
push-relay: reliable Web Push delivery.

Retry with exponential backoff, a persisted retry queue drained by a
background worker, a token bucket rate limiter and a circuit breaker in front
of the push transport.

Usage:
    from push_relay import PushCore, VapidKeys, InMemoryStorageAdapter, WebPushProvider

    core = PushCore(
        vapid_keys=VapidKeys(public_key="...", private_key="..."),
        storage_adapter=InMemoryStorageAdapter(),
        provider_adapter=WebPushProvider(WebPushConfig(...)),
    )
    result = await core.send_notification(subscription, {"title": "Hi", "body": "There"})

    async with core.create_worker() as worker:
        ...
"""

from .circuit_breaker import CircuitBreaker, CircuitState
from .config import (
    BatchConfig,
    CircuitBreakerConfig,
    LifecycleHooks,
    PushConfiguration,
    RetryPolicy,
    VapidKeys,
    WorkerOptions,
)
from .core import PushCore
from .errors import (
    CircuitBreakerOpenError,
    ConfigurationError,
    ProviderError,
    PushError,
    RateLimitError,
    ShutdownError,
    StorageError,
    ValidationError,
)
from .models import (
    CreateSubscriptionData,
    NotificationAction,
    NotificationPayload,
    QueueStats,
    RetryEntry,
    SendOptions,
    Subscription,
    SubscriptionFilter,
    SubscriptionKeys,
    SubscriptionStatus,
)
from .providers import WebPushConfig, WebPushProvider
from .rate_limiter import TokenBucketRateLimiter
from .results import BatchResult, ProviderResult, SendResult
from .retry import calculate_backoff_ms, calculate_next_retry, should_retry
from .storage import InMemoryStorageAdapter, PostgresStorageAdapter
from .vapid import generate_vapid_keys, validate_vapid_keys
from .worker import RetryWorker

__version__ = "1.0.0"
__all__ = [
    "PushCore",
    "RetryWorker",
    "CircuitBreaker",
    "CircuitState",
    "TokenBucketRateLimiter",
    "BatchConfig",
    "CircuitBreakerConfig",
    "LifecycleHooks",
    "PushConfiguration",
    "RetryPolicy",
    "VapidKeys",
    "WorkerOptions",
    "PushError",
    "ConfigurationError",
    "ValidationError",
    "ProviderError",
    "StorageError",
    "CircuitBreakerOpenError",
    "RateLimitError",
    "ShutdownError",
    "CreateSubscriptionData",
    "NotificationAction",
    "NotificationPayload",
    "QueueStats",
    "RetryEntry",
    "SendOptions",
    "Subscription",
    "SubscriptionFilter",
    "SubscriptionKeys",
    "SubscriptionStatus",
    "BatchResult",
    "ProviderResult",
    "SendResult",
    "calculate_backoff_ms",
    "calculate_next_retry",
    "should_retry",
    "InMemoryStorageAdapter",
    "PostgresStorageAdapter",
    "WebPushConfig",
    "WebPushProvider",
    "generate_vapid_keys",
    "validate_vapid_keys",
]
