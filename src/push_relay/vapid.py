"""
VAPID key generation and validation.

Keys use the Web Push wire encoding: the public key is the uncompressed P-256
point (65 bytes) and the private key the raw 32-byte scalar, both base64url
without padding.
"""

from __future__ import annotations

import base64
import re
from typing import Mapping, Optional, Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from .config import VapidKeys
from .errors import ValidationError

_BASE64URL = re.compile(r"^[A-Za-z0-9_-]+$")


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_vapid_keys(subject: Optional[str] = None) -> VapidKeys:
    """Generate a fresh P-256 VAPID key pair."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    public_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    private_bytes = private_key.private_numbers().private_value.to_bytes(32, "big")

    keys = VapidKeys(
        public_key=_b64url(public_bytes),
        private_key=_b64url(private_bytes),
        subject=subject,
    )
    validate_vapid_keys(keys)
    return keys


def validate_vapid_keys(keys: Union[VapidKeys, Mapping[str, Optional[str]]]) -> None:
    """
    Check both keys are present, non-blank strings in base64url.

    Raises:
        ValidationError: describing the first problem found
    """
    if isinstance(keys, VapidKeys):
        public_key, private_key = keys.public_key, keys.private_key
    else:
        public_key, private_key = keys.get("public_key"), keys.get("private_key")

    for name, value in (("public_key", public_key), ("private_key", private_key)):
        if value is None or value == "":
            raise ValidationError(f"VAPID keys validation failed: {name} is required")
        if not isinstance(value, str):
            raise ValidationError(
                f"VAPID keys validation failed: {name} must be a string",
                {f"{name}_type": type(value).__name__},
            )
        if not value.strip():
            raise ValidationError(f"VAPID keys validation failed: {name} cannot be empty")
        if not _BASE64URL.match(value):
            raise ValidationError(
                f"VAPID keys validation failed: {name} is not in valid base64url format",
                # never echo more than a prefix of key material
                {name: value[:20] + "..."},
            )
