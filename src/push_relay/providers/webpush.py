"""Web Push delivery via pywebpush.

Encryption and VAPID signing are delegated to pywebpush; this module only maps
push-service responses onto ProviderResult retry decisions:

- 410 Gone          -> subscription expired, no retry
- 429 Too Many      -> retry, honoring Retry-After
- 5xx               -> retry, honoring Retry-After
- other 4xx         -> client error, no retry
- network / unknown -> retry
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timezone
from email.utils import parsedate_to_datetime
from http import HTTPStatus
from typing import Any, Mapping, Optional

from loguru import logger
from pywebpush import WebPushException, webpush

from ..errors import ConfigurationError, ProviderError
from ..models import NotificationPayload, SendOptions, Subscription
from ..results import ProviderResult
from ..utils import utc_now

# web-push default: four weeks
DEFAULT_TTL_SECONDS = 2_419_200


@dataclass(frozen=True)
class WebPushConfig:
    """Credentials required to sign Web Push requests."""

    vapid_public_key: str
    vapid_private_key: str
    vapid_subject: str
    timeout_seconds: float = 10.0


class WebPushProvider:
    """ProviderAdapter sending through browser push services."""

    name = "web-push"

    def __init__(self, config: WebPushConfig):
        if not config.vapid_private_key or not config.vapid_subject:
            raise ConfigurationError(
                "WebPushProvider requires vapid_private_key and vapid_subject",
                {"has_subject": bool(config.vapid_subject)},
            )
        self._config = config

    def get_name(self) -> str:
        return self.name

    async def send(
        self,
        subscription: Subscription,
        payload: NotificationPayload,
        options: SendOptions,
    ) -> ProviderResult:
        try:
            response = await asyncio.to_thread(self._send_sync, subscription, payload, options)
        except WebPushException as exc:
            response = getattr(exc, "response", None)
            status = _status_code(response)
            retry_after = _retry_after(getattr(response, "headers", None))
            logger.debug(f"Web push to {subscription.endpoint[:60]} failed: status={status}")
            return map_error_to_result(exc, status, retry_after)
        except Exception as exc:
            logger.debug(f"Web push to {subscription.endpoint[:60]} errored: {type(exc).__name__}: {exc}")
            return map_error_to_result(exc, None, None)

        return ProviderResult(success=True, status_code=_status_code(response), should_retry=False)

    def _send_sync(
        self, subscription: Subscription, payload: NotificationPayload, options: SendOptions
    ) -> Any:
        headers: dict[str, str] = {}
        if options.urgency:
            headers["Urgency"] = options.urgency
        if options.topic:
            headers["Topic"] = options.topic
        return webpush(
            subscription_info=subscription.subscription_info(),
            data=payload.to_json(),
            vapid_private_key=self._config.vapid_private_key,
            # pywebpush mutates the claims dict (aud/exp); always pass a fresh one
            vapid_claims={"sub": self._config.vapid_subject},
            ttl=options.ttl if options.ttl is not None else DEFAULT_TTL_SECONDS,
            headers=headers or None,
            timeout=self._config.timeout_seconds,
        )


def map_error_to_result(
    error: BaseException, status_code: Optional[int], retry_after: Optional[float]
) -> ProviderResult:
    """Translate a push-service failure into a retry decision."""
    detail = str(error) or type(error).__name__

    if status_code == HTTPStatus.GONE:
        return ProviderResult(
            success=False,
            status_code=status_code,
            error=ProviderError("Subscription expired (410 Gone)", status_code, False),
            should_retry=False,
        )

    if status_code == HTTPStatus.TOO_MANY_REQUESTS:
        return ProviderResult(
            success=False,
            status_code=status_code,
            error=ProviderError("Rate limited (429 Too Many Requests)", status_code, True),
            should_retry=True,
            retry_after=retry_after,
        )

    if status_code is not None and 500 <= status_code < 600:
        return ProviderResult(
            success=False,
            status_code=status_code,
            error=ProviderError(f"Server error ({status_code}): {detail}", status_code, True),
            should_retry=True,
            retry_after=retry_after,
        )

    if status_code is not None and 400 <= status_code < 500:
        return ProviderResult(
            success=False,
            status_code=status_code,
            error=ProviderError(f"Client error ({status_code}): {detail}", status_code, False),
            should_retry=False,
        )

    return ProviderResult(
        success=False,
        status_code=status_code,
        error=error,
        should_retry=True,
    )


def _status_code(response: Any) -> Optional[int]:
    if response is None:
        return None
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def _retry_after(headers: Optional[Mapping[str, str]]) -> Optional[float]:
    """Parse Retry-After as delta-seconds or an HTTP date."""
    if not headers:
        return None
    raw = headers.get("Retry-After") or headers.get("retry-after")
    if raw is None:
        return None
    raw = str(raw).strip()
    if raw.isdigit():
        return float(raw)
    try:
        when = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - utc_now()).total_seconds())
