"""Outcome records returned by providers, the core and batches."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class ProviderResult:
    """Result of a single provider send attempt.

    Attributes:
        success: Whether the transport accepted the message
        status_code: HTTP status code from the push service, if any
        error: Exception describing the failure
        should_retry: Provider's opinion on retry eligibility
        retry_after: Seconds to wait before retrying (Retry-After override)
    """

    success: bool
    status_code: Optional[int] = None
    error: Optional[BaseException] = None
    should_retry: bool = False
    retry_after: Optional[float] = None


@dataclass(frozen=True)
class SendResult:
    success: bool
    subscription_id: str
    error: Optional[BaseException] = None
    enqueued: bool = False


@dataclass
class BatchResult:
    """Aggregated outcome of a batch send."""

    total: int = 0
    success: int = 0
    failed: int = 0
    retried: int = 0
    results: List[SendResult] = field(default_factory=list)

    def add(self, result: SendResult) -> None:
        self.results.append(result)
        if result.success:
            self.success += 1
        else:
            self.failed += 1
            if result.enqueued:
                self.retried += 1
