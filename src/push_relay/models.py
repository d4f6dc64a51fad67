"""
Pydantic data models for push-relay.

Subscriptions and retry entries are the records storage adapters persist;
payloads and send options travel through the core untouched.
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .utils import generate_id, utc_now


class SubscriptionStatus(str, Enum):
    """Lifecycle status of a subscription."""

    ACTIVE = "active"
    BLOCKED = "blocked"
    EXPIRED = "expired"


class SubscriptionKeys(BaseModel):
    """Encryption key material supplied by the browser push API."""

    p256dh: str = ""
    auth: str = ""


class Subscription(BaseModel):
    """Registered push destination."""

    id: str = Field(default_factory=generate_id)
    endpoint: str = ""
    keys: Optional[SubscriptionKeys] = None
    user_id: Optional[str] = None
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    failed_count: int = 0
    last_used_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    expires_at: Optional[datetime] = None
    metadata: Optional[dict[str, Any]] = None

    @field_validator("failed_count")
    @classmethod
    def _non_negative(cls, v):
        if v < 0:
            raise ValueError("failed_count must be >= 0")
        return v

    def subscription_info(self) -> dict:
        """Shape expected by Web Push libraries."""
        keys = self.keys or SubscriptionKeys()
        return {"endpoint": self.endpoint, "keys": {"p256dh": keys.p256dh, "auth": keys.auth}}


class CreateSubscriptionData(BaseModel):
    endpoint: str
    keys: SubscriptionKeys
    user_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    metadata: Optional[dict[str, Any]] = None


class SubscriptionFilter(BaseModel):
    user_id: Optional[str] = None
    status: Optional[SubscriptionStatus] = None
    ids: Optional[List[str]] = None

    def matches(self, sub: Subscription) -> bool:
        if self.user_id is not None and sub.user_id != self.user_id:
            return False
        if self.status is not None and sub.status != self.status:
            return False
        if self.ids and sub.id not in self.ids:
            return False
        return True


class NotificationAction(BaseModel):
    action: str
    title: str
    icon: Optional[str] = None


class NotificationPayload(BaseModel):
    """Notification content; opaque to the core beyond serialization."""

    title: str
    body: str
    icon: Optional[str] = None
    badge: Optional[str] = None
    data: Optional[dict[str, Any]] = None
    actions: Optional[List[NotificationAction]] = None
    tag: Optional[str] = None
    require_interaction: Optional[bool] = Field(default=None, serialization_alias="requireInteraction")

    def to_json(self) -> str:
        """Serialize for the wire (camelCase keys, unset fields omitted)."""
        return json.dumps(self.model_dump(mode="json", by_alias=True, exclude_none=True))


class SendOptions(BaseModel):
    """Transport hints passed through to the provider unmodified."""

    ttl: Optional[int] = None
    urgency: Optional[Literal["very-low", "low", "normal", "high"]] = None
    topic: Optional[str] = None


class RetryEntry(BaseModel):
    """Queued delivery awaiting its next eligible attempt."""

    id: str = Field(default_factory=generate_id)
    subscription_id: str
    payload: NotificationPayload
    attempt: int = 0
    next_retry_at: datetime
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("attempt")
    @classmethod
    def _validate_attempt(cls, v):
        if v < 0:
            raise ValueError("attempt must be >= 0")
        return v


class QueueStats(BaseModel):
    pending: int = 0
    processing: int = 0
    failed: int = 0
