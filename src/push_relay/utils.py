"""
Small shared helpers.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone


def generate_id() -> str:
    """Generate a UUID string for record identification."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def describe_error(error: BaseException | None) -> str | None:
    """Human-readable one-liner for persisting as last_error."""
    if error is None:
        return None
    return str(error) or type(error).__name__
