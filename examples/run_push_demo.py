"""
Demo for push-relay with in-memory storage and a flaky transport.

Shows:
- Batch send with bounded concurrency
- Transient failures landing in the retry queue
- Retry worker draining the queue
- Circuit breaker and rate limiter in the send path
- Prometheus metrics (exposed on :8000/metrics)
"""

import asyncio
import random

from loguru import logger
from prometheus_client import start_http_server

from push_relay import (
    CreateSubscriptionData,
    InMemoryStorageAdapter,
    LifecycleHooks,
    ProviderResult,
    PushCore,
    SubscriptionFilter,
    SubscriptionKeys,
    TokenBucketRateLimiter,
    WorkerOptions,
    generate_vapid_keys,
)
from push_relay.errors import ProviderError
from push_relay.metrics import PrometheusMetricsAdapter


class FlakyProvider:
    """Fails ~20% of sends with 503 and ~5% with 410."""

    async def send(self, subscription, payload, options) -> ProviderResult:
        await asyncio.sleep(0.005)  # simulate I/O
        roll = random.random()
        if roll < 0.05:
            return ProviderResult(
                success=False,
                status_code=410,
                error=ProviderError("Subscription expired (410 Gone)", 410, False),
            )
        if roll < 0.25:
            return ProviderResult(
                success=False,
                status_code=503,
                error=ProviderError("Server error (503)", 503, True),
                should_retry=True,
            )
        return ProviderResult(success=True, status_code=201)

    def get_name(self) -> str:
        return "flaky"


def on_retry(subscription, attempt):
    logger.debug(f"Retry scheduled for {subscription.id} (attempt {attempt})")


async def main():
    start_http_server(8000)
    logger.info("Prometheus metrics available at http://localhost:8000/metrics")

    storage = InMemoryStorageAdapter()
    for i in range(200):
        await storage.create_subscription(
            CreateSubscriptionData(
                endpoint=f"https://push.example.com/send/{i}",
                keys=SubscriptionKeys(p256dh=f"p256dh-{i}", auth=f"auth-{i}"),
                user_id=f"user-{i % 20}",
            )
        )

    core = PushCore(
        vapid_keys=generate_vapid_keys(subject="mailto:demo@example.com"),
        storage_adapter=storage,
        provider_adapter=FlakyProvider(),
        metrics_adapter=PrometheusMetricsAdapter(),
        rate_limiter=TokenBucketRateLimiter(capacity=100, refill_rate=500),
        retry_policy={"base_delay_ms": 50, "max_delay_ms": 500, "max_retries": 4},
        circuit_breaker={"failure_threshold": 20, "reset_timeout_ms": 500},
        batch_config={"batch_size": 50, "concurrency": 10},
        lifecycle_hooks=LifecycleHooks(on_retry=on_retry),
    )

    async with core:
        subs = await storage.find_subscriptions(SubscriptionFilter())
        logger.info(f"Sending to {len(subs)} subscriptions...")
        result = await core.batch_send(subs, {"title": "Hello", "body": "From push-relay"})
        logger.info(
            f"Batch: success={result.success} failed={result.failed} retried={result.retried}"
        )

        async with core.create_worker(WorkerOptions(poll_interval_ms=100, concurrency=5)):
            for _ in range(30):
                stats = await storage.get_queue_stats()
                queued = len(await storage.list_retries())
                logger.info(f"Retry queue: ready={stats.pending} total={queued}")
                if queued == 0:
                    break
                await asyncio.sleep(0.5)

        expired = await storage.find_subscriptions(SubscriptionFilter(status="expired"))
        logger.info(f"Expired subscriptions: {len(expired)}")
        logger.info(f"Circuit breaker state: {core.circuit_breaker.state.value}")


if __name__ == "__main__":
    asyncio.run(main())
