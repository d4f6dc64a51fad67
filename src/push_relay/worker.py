"""
Background retry worker.

Polls the persisted retry queue, redelivers ready entries with bounded
concurrency, and either acknowledges, re-enqueues or expires them.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from loguru import logger

from .circuit_breaker import CircuitBreaker
from .config import RetryPolicy, WorkerOptions
from .delivery import deliver
from .errors import CircuitBreakerOpenError
from .lifecycle import MetricsEmitter
from .models import RetryEntry, SendOptions, SubscriptionStatus
from .retry import calculate_next_retry, should_retry
from .types import MetricsAdapter, ProviderAdapter, RateLimiter, StorageAdapter
from .utils import describe_error, utc_now

DRAIN_POLL_SEC = 0.1


class RetryWorker:
    """Drains the retry queue in the background.

    Groups of ``options.concurrency`` entries are processed concurrently; groups
    run one after another. ``stop()`` waits for in-flight entries to finish.

    Example:
        async with RetryWorker(storage, provider, RetryPolicy()) as worker:
            ...  # loop runs until the block exits
    """

    def __init__(
        self,
        storage: StorageAdapter,
        provider: ProviderAdapter,
        retry_policy: Optional[RetryPolicy] = None,
        options: Optional[WorkerOptions] = None,
        metrics: Optional[MetricsAdapter] = None,
        *,
        rate_limiter: Optional[RateLimiter] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        breaker_source: Optional[Callable[[], Optional[CircuitBreaker]]] = None,
    ):
        self.storage = storage
        self.provider = provider
        self.retry_policy = retry_policy or RetryPolicy()
        self.options = options or WorkerOptions()
        self.rate_limiter = rate_limiter
        self._circuit_breaker = circuit_breaker
        self._breaker_source = breaker_source
        self._metrics = MetricsEmitter(metrics)

        self._running = False
        self._stop_requested = False
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._processing: set[str] = set()

    # --------------- context management

    async def __aenter__(self) -> "RetryWorker":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    # --------------- lifecycle

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def circuit_breaker(self) -> Optional[CircuitBreaker]:
        """Breaker guarding the transport; read per entry when a source is set."""
        if self._breaker_source is not None:
            return self._breaker_source()
        return self._circuit_breaker

    @property
    def in_flight(self) -> int:
        return len(self._processing)

    def start(self) -> None:
        """Schedule the polling loop on the running event loop."""
        self._mark_running()
        self._task = asyncio.create_task(self._loop(), name="push-relay-retry-worker")

    async def run(self) -> None:
        """Run the polling loop in the foreground until ``stop()`` is called."""
        self._mark_running()
        await self._loop()

    async def stop(self) -> None:
        """Stop polling and wait for in-flight entries to drain."""
        if not self._running:
            return
        self._running = False
        self._stop_requested = True
        if self._stop_event is not None:
            self._stop_event.set()

        while self._processing:
            await asyncio.sleep(DRAIN_POLL_SEC)

        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Retry worker stopped")

    # --------------- processing

    async def process_once(self) -> int:
        """Run a single dequeue/process cycle. Returns the number of entries dequeued."""
        entries = await self.storage.dequeue_retry(self.options.batch_size)
        if entries:
            self._metrics.emit("worker.dequeued", len(entries))
            logger.debug(f"Retry worker dequeued {len(entries)} entr(y/ies)")
            await self._process_with_concurrency(entries)
        return len(entries)

    async def _loop(self) -> None:
        self._metrics.emit("worker.started")
        logger.info(
            f"Retry worker started (poll={self.options.poll_interval_ms}ms, "
            f"concurrency={self.options.concurrency}, batch={self.options.batch_size})"
        )
        while self._running:
            try:
                await self.process_once()
                delay_ms = self.options.poll_interval_ms
            except Exception as exc:
                logger.error(f"Retry worker cycle failed: {type(exc).__name__}: {exc}")
                self._metrics.emit("worker.error")
                delay_ms = self.options.error_backoff_ms

            if self._running:
                await self._sleep(delay_ms)
        self._metrics.emit("worker.stopped")

    async def _process_with_concurrency(self, entries: List[RetryEntry]) -> None:
        size = max(1, self.options.concurrency)
        for group in _chunks(entries, size):
            if self._stop_requested:
                break
            await asyncio.gather(*(self._process_entry(e) for e in group))

    async def _process_entry(self, entry: RetryEntry) -> None:
        self._processing.add(entry.id)
        try:
            self._metrics.emit("worker.retry.processing")

            subscription = await self.storage.get_subscription_by_id(entry.subscription_id)
            if subscription is None:
                await self.storage.ack_retry(entry.id)
                self._metrics.emit("worker.retry.subscription_not_found")
                logger.warning(
                    f"Retry {entry.id} dropped: subscription {entry.subscription_id} no longer exists"
                )
                return

            try:
                result = await deliver(
                    self.provider,
                    subscription,
                    entry.payload,
                    SendOptions(),
                    rate_limiter=self.rate_limiter,
                    circuit_breaker=self.circuit_breaker,
                )
            except CircuitBreakerOpenError as exc:
                # transport never tried; keep the attempt count
                await self._reschedule(
                    entry, entry.attempt, calculate_next_retry(entry.attempt, self.retry_policy), exc
                )
                self._metrics.emit("worker.retry.circuit_open")
                return

            if result.success:
                await self.storage.ack_retry(entry.id)
                await self.storage.update_subscription(
                    subscription.id, last_used_at=utc_now(), failed_count=0
                )
                self._metrics.emit("worker.retry.success")
                logger.debug(f"Retry {entry.id} delivered on attempt {entry.attempt}")
                return

            if should_retry(result, entry.attempt, self.retry_policy.max_retries):
                await self._reschedule(
                    entry,
                    entry.attempt + 1,
                    calculate_next_retry(entry.attempt + 1, self.retry_policy, result.retry_after),
                    result.error,
                )
                self._metrics.emit("worker.retry.re_enqueued")
                return

            await self.storage.ack_retry(entry.id)
            await self.storage.update_subscription(
                subscription.id,
                status=SubscriptionStatus.EXPIRED,
                failed_count=subscription.failed_count + 1,
            )
            self._metrics.emit("worker.retry.max_retries_exceeded")
            logger.warning(
                f"Subscription {subscription.id} expired after {entry.attempt} retr(y/ies): "
                f"{describe_error(result.error)}"
            )
        except Exception as exc:
            logger.error(f"Error processing retry {entry.id}: {type(exc).__name__}: {exc}")
            self._metrics.emit("worker.retry.error")
            # Ack anyway so a poison entry cannot loop forever
            try:
                await self.storage.ack_retry(entry.id)
            except Exception as ack_exc:
                logger.error(f"Error acknowledging retry {entry.id}: {ack_exc}")
        finally:
            self._processing.discard(entry.id)

    async def _reschedule(
        self, entry: RetryEntry, attempt: int, next_retry_at: datetime, error: Optional[BaseException]
    ) -> None:
        successor = RetryEntry(
            subscription_id=entry.subscription_id,
            payload=entry.payload,
            attempt=attempt,
            next_retry_at=next_retry_at,
            last_error=describe_error(error),
            created_at=entry.created_at,
        )
        # Not atomic: a crash between these two calls duplicates the retry
        await self.storage.enqueue_retry(successor)
        await self.storage.ack_retry(entry.id)
        logger.debug(
            f"Retry {entry.id} re-enqueued as {successor.id} "
            f"(attempt {successor.attempt}, next at {successor.next_retry_at.isoformat()})"
        )

    # --------------- internals

    def _mark_running(self) -> None:
        if self._running:
            raise RuntimeError("Worker is already running")
        self._running = True
        self._stop_requested = False
        self._stop_event = asyncio.Event()

    async def _sleep(self, delay_ms: float) -> None:
        """Sleep, waking early when stop() is called."""
        if self._stop_event is None:
            raise RuntimeError("Worker was never started")
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay_ms / 1000.0)
        except asyncio.TimeoutError:
            pass


def _chunks(items: List[RetryEntry], size: int) -> Iterable[List[RetryEntry]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]
