"""
Core runtime for push notifications.

PushCore composes the rate limiter, circuit breaker and retry policy with the
injected storage/provider/metrics adapters and lifecycle hooks:

    caller -> PushCore -> (rate limiter -> circuit breaker -> provider)
           -> storage (last_used_at / retry entry) -> hooks + metrics

Configuration and validation failures raise before any side effect. Every
other failure is returned as a SendResult so batch sends never abort midway.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import fields
from typing import Any, AsyncIterator, Iterable, List, Mapping, Optional, Sequence, Union

from loguru import logger

from .circuit_breaker import CircuitBreaker
from .config import PushConfiguration, WorkerOptions, merge_configuration
from .delivery import deliver
from .errors import ConfigurationError, ProviderError, ShutdownError, ValidationError
from .lifecycle import MetricsEmitter, emit_hook
from .models import NotificationPayload, RetryEntry, SendOptions, Subscription
from .results import BatchResult, SendResult
from .retry import calculate_next_retry, should_retry
from .utils import describe_error, utc_now
from .worker import RetryWorker

PayloadLike = Union[NotificationPayload, Mapping[str, Any]]
OptionsLike = Union[SendOptions, Mapping[str, Any], None]


class _InFlight:
    """Counting wait-group for in-flight operations."""

    def __init__(self) -> None:
        self._count = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def count(self) -> int:
        return self._count

    @asynccontextmanager
    async def track(self) -> AsyncIterator[None]:
        self._count += 1
        self._idle.clear()
        try:
            yield
        finally:
            self._count -= 1
            if self._count == 0:
                self._idle.set()

    async def wait_idle(self) -> None:
        await self._idle.wait()


class PushCore:
    """Send / batch-send / shutdown orchestrator.

    Example:
        core = PushCore()
        core.configure(
            vapid_keys=VapidKeys(public_key=..., private_key=...),
            storage_adapter=InMemoryStorageAdapter(),
            provider_adapter=WebPushProvider(...),
            retry_policy={"max_retries": 5},
        )
        result = await core.send_notification(subscription, {"title": "Hi", "body": "There"})
        await core.shutdown()
    """

    def __init__(self, config: Optional[Mapping[str, Any]] = None, **overrides: Any):
        self._config: Optional[PushConfiguration] = None
        self._circuit_breaker: Optional[CircuitBreaker] = None
        self._shutting_down = False
        self._in_flight = _InFlight()
        if config is not None or overrides:
            self.configure(config, **overrides)

    # --------------- context management

    async def __aenter__(self) -> "PushCore":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.shutdown()

    # --------------- configuration

    def configure(
        self,
        options: Union[PushConfiguration, Mapping[str, Any], None] = None,
        **overrides: Any,
    ) -> None:
        """Merge options into the current configuration.

        Nested structs (retry_policy, circuit_breaker, batch_config, ...) may be
        given as partial mappings; only the fields present are overridden.
        Completeness is checked at send time, not here.
        """
        if isinstance(options, PushConfiguration):
            updates: dict[str, Any] = {f.name: getattr(options, f.name) for f in fields(options)}
        else:
            updates = dict(options or {})
        updates.update(overrides)

        previous = self._config
        self._config = merge_configuration(previous, updates)

        breaker_cfg = self._config.circuit_breaker
        if breaker_cfg is None:
            self._circuit_breaker = None
        elif (
            self._circuit_breaker is None
            or previous is None
            or previous.circuit_breaker != breaker_cfg
        ):
            self._circuit_breaker = CircuitBreaker(breaker_cfg)
            logger.debug(f"Circuit breaker initialized: {breaker_cfg}")

    def get_configuration(self) -> Optional[PushConfiguration]:
        return self._config

    @property
    def circuit_breaker(self) -> Optional[CircuitBreaker]:
        return self._circuit_breaker

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def in_flight(self) -> int:
        return self._in_flight.count

    # --------------- validation

    def _validate_configuration(self) -> PushConfiguration:
        cfg = self._config
        if cfg is None:
            raise ConfigurationError(
                "Push notification system is not configured. Call configure() first."
            )
        if cfg.vapid_keys is None:
            raise ConfigurationError(
                "VAPID keys are required. Provide vapid_keys in configuration.",
                {"missing_field": "vapid_keys"},
            )
        if not cfg.vapid_keys.public_key or not cfg.vapid_keys.private_key:
            raise ConfigurationError(
                "VAPID keys must include both public_key and private_key.",
                {
                    "has_public_key": bool(cfg.vapid_keys.public_key),
                    "has_private_key": bool(cfg.vapid_keys.private_key),
                },
            )
        if cfg.storage_adapter is None:
            raise ConfigurationError(
                "Storage adapter is required. Provide storage_adapter in configuration.",
                {"missing_field": "storage_adapter"},
            )
        if cfg.provider_adapter is None:
            raise ConfigurationError(
                "Provider adapter is required. Provide provider_adapter in configuration.",
                {"missing_field": "provider_adapter"},
            )
        return cfg

    def _ensure_not_shutting_down(self) -> None:
        if self._shutting_down:
            raise ShutdownError(
                "Push notification system is shutting down. No new operations allowed."
            )

    def verify_subscription(self, subscription: Subscription) -> None:
        """Check the subscription carries an endpoint and both encryption keys.

        Raises:
            ValidationError: naming the first missing field
        """
        if not subscription.endpoint or not subscription.endpoint.strip():
            raise ValidationError(
                "Subscription must have an endpoint",
                {"field": "endpoint", "subscription_id": subscription.id},
            )
        if subscription.keys is None:
            raise ValidationError(
                "Subscription must have keys",
                {"field": "keys", "subscription_id": subscription.id},
            )
        if not subscription.keys.p256dh or not subscription.keys.p256dh.strip():
            raise ValidationError(
                "Subscription keys must include p256dh",
                {"field": "keys.p256dh", "subscription_id": subscription.id},
            )
        if not subscription.keys.auth or not subscription.keys.auth.strip():
            raise ValidationError(
                "Subscription keys must include auth",
                {"field": "keys.auth", "subscription_id": subscription.id},
            )

    # --------------- sending

    async def send_notification(
        self,
        subscription: Subscription,
        payload: PayloadLike,
        options: OptionsLike = None,
    ) -> SendResult:
        """Send one notification.

        Raises:
            ShutdownError: shutdown has started
            ConfigurationError: credentials, storage or provider missing
            ValidationError: subscription lacks endpoint or keys
        """
        self._ensure_not_shutting_down()
        cfg = self._validate_configuration()
        async with self._in_flight.track():
            return await self._send(cfg, subscription, _payload(payload), _options(options))

    async def _send(
        self,
        cfg: PushConfiguration,
        subscription: Subscription,
        payload: NotificationPayload,
        options: SendOptions,
    ) -> SendResult:
        metrics = MetricsEmitter(cfg.metrics_adapter)
        hooks = cfg.lifecycle_hooks
        started = time.monotonic()

        await emit_hook(hooks, "on_send", subscription, payload)
        metrics.emit("push.send.attempt")

        self.verify_subscription(subscription)

        try:
            result = await deliver(
                cfg.provider_adapter,
                subscription,
                payload,
                options,
                rate_limiter=cfg.rate_limiter,
                circuit_breaker=self._circuit_breaker,
            )

            if result.success:
                await cfg.storage_adapter.update_subscription(
                    subscription.id, last_used_at=utc_now(), failed_count=0
                )
                await emit_hook(hooks, "on_success", subscription, result)
                metrics.emit("push.send.success")
                metrics.timing("push.send.duration", (time.monotonic() - started) * 1000.0)
                return SendResult(success=True, subscription_id=subscription.id)

            policy = cfg.retry_policy
            if should_retry(result, 0, policy.max_retries):
                entry = RetryEntry(
                    subscription_id=subscription.id,
                    payload=payload,
                    attempt=0,
                    next_retry_at=calculate_next_retry(0, policy, result.retry_after),
                    last_error=describe_error(result.error),
                )
                await cfg.storage_adapter.enqueue_retry(entry)
                await emit_hook(hooks, "on_retry", subscription, 0)
                metrics.emit("push.send.retry_enqueued")
                logger.debug(
                    f"Send to {subscription.id} failed (status={result.status_code}); "
                    f"retry {entry.id} scheduled for {entry.next_retry_at.isoformat()}"
                )
                return SendResult(
                    success=False,
                    subscription_id=subscription.id,
                    error=result.error,
                    enqueued=True,
                )

            error = result.error or ProviderError("Send failed", status_code=result.status_code)
            await emit_hook(hooks, "on_failure", subscription, error)
            metrics.emit("push.send.failure")
            logger.debug(
                f"Send to {subscription.id} failed permanently (status={result.status_code}): {error}"
            )
            return SendResult(
                success=False, subscription_id=subscription.id, error=error, enqueued=False
            )
        except Exception as exc:
            logger.error(f"Send to {subscription.id} errored: {type(exc).__name__}: {exc}")
            await emit_hook(hooks, "on_failure", subscription, exc)
            metrics.emit("push.send.error")
            return SendResult(
                success=False, subscription_id=subscription.id, error=exc, enqueued=False
            )

    async def batch_send(
        self,
        subscriptions: Sequence[Subscription],
        payload: PayloadLike,
        options: OptionsLike = None,
    ) -> BatchResult:
        """Send to many subscriptions in chunks of ``batch_size``.

        Within a chunk, groups of ``concurrency`` sends run concurrently and
        each group completes before the next starts. One failing subscription
        never aborts the batch.
        """
        self._ensure_not_shutting_down()
        cfg = self._validate_configuration()
        payload = _payload(payload)
        options = _options(options)

        async with self._in_flight.track():
            batch_size = max(1, cfg.batch_config.batch_size)
            concurrency = max(1, cfg.batch_config.concurrency)
            outcome = BatchResult(total=len(subscriptions))

            for chunk in _chunks(list(subscriptions), batch_size):
                for group in _chunks(chunk, concurrency):
                    results = await asyncio.gather(
                        *(self._send_isolated(sub, payload, options) for sub in group)
                    )
                    for r in results:
                        outcome.add(r)

            metrics = MetricsEmitter(cfg.metrics_adapter)
            metrics.emit("push.batch.total", outcome.total)
            metrics.emit("push.batch.success", outcome.success)
            metrics.emit("push.batch.failed", outcome.failed)
            metrics.emit("push.batch.retried", outcome.retried)
            logger.info(
                f"Batch send complete: total={outcome.total} success={outcome.success} "
                f"failed={outcome.failed} retried={outcome.retried}"
            )
            return outcome

    async def _send_isolated(
        self, subscription: Subscription, payload: NotificationPayload, options: SendOptions
    ) -> SendResult:
        try:
            return await self.send_notification(subscription, payload, options)
        except Exception as exc:
            logger.debug(
                f"Batch item {getattr(subscription, 'id', '?')} rejected: {type(exc).__name__}: {exc}"
            )
            return SendResult(
                success=False,
                subscription_id=getattr(subscription, "id", ""),
                error=exc,
                enqueued=False,
            )

    # --------------- worker

    def create_worker(self, options: Optional[WorkerOptions] = None) -> RetryWorker:
        """Build a RetryWorker sharing this core's adapters, limiter and breaker.

        The worker reads the breaker through the core, so a later
        ``configure(circuit_breaker=...)`` applies to a running worker too.
        """
        cfg = self._validate_configuration()
        return RetryWorker(
            cfg.storage_adapter,
            cfg.provider_adapter,
            cfg.retry_policy,
            options,
            cfg.metrics_adapter,
            rate_limiter=cfg.rate_limiter,
            breaker_source=lambda: self._circuit_breaker,
        )

    # --------------- shutdown

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Stop accepting work, wait up to ``timeout`` seconds for in-flight
        operations, then close the storage adapter. Idempotent."""
        if self._shutting_down:
            return
        self._shutting_down = True
        logger.info(f"Shutting down push core ({self._in_flight.count} operation(s) in flight)")

        try:
            await asyncio.wait_for(self._in_flight.wait_idle(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Shutdown timeout after {timeout}s; {self._in_flight.count} operation(s) still in flight"
            )

        storage = self._config.storage_adapter if self._config else None
        if storage is not None:
            await storage.close()
        logger.info("Push core shut down")


def _payload(payload: PayloadLike) -> NotificationPayload:
    if isinstance(payload, NotificationPayload):
        return payload
    return NotificationPayload.model_validate(payload)


def _options(options: OptionsLike) -> SendOptions:
    if options is None:
        return SendOptions()
    if isinstance(options, SendOptions):
        return options
    return SendOptions.model_validate(options)


def _chunks(items: List[Subscription], size: int) -> Iterable[List[Subscription]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]
