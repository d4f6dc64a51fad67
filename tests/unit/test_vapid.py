"""
Unit tests for VAPID key generation and validation.
"""

import base64

import pytest

from push_relay import VapidKeys
from push_relay.errors import ValidationError
from push_relay.vapid import generate_vapid_keys, validate_vapid_keys


def _decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def test_generated_keys_have_wire_lengths():
    keys = generate_vapid_keys(subject="mailto:ops@example.com")

    public = _decode(keys.public_key)
    assert len(public) == 65
    assert public[0] == 0x04
    assert len(_decode(keys.private_key)) == 32
    assert "=" not in keys.public_key
    assert keys.subject == "mailto:ops@example.com"


def test_generated_keys_are_unique():
    assert generate_vapid_keys().private_key != generate_vapid_keys().private_key


def test_validate_accepts_mapping(vapid_keys):
    validate_vapid_keys({"public_key": vapid_keys.public_key, "private_key": vapid_keys.private_key})
    validate_vapid_keys(vapid_keys)


@pytest.mark.parametrize(
    "keys,message",
    [
        ({"private_key": "abc"}, "public_key is required"),
        ({"public_key": "abc", "private_key": ""}, "private_key is required"),
        ({"public_key": 123, "private_key": "abc"}, "must be a string"),
        ({"public_key": "   ", "private_key": "abc"}, "cannot be empty"),
        ({"public_key": "abc+/=", "private_key": "abc"}, "base64url"),
    ],
)
def test_validate_rejects(keys, message):
    with pytest.raises(ValidationError) as ei:
        validate_vapid_keys(keys)
    assert message in str(ei.value)


def test_validation_error_does_not_echo_full_key():
    bad = "x" * 40 + "!"
    with pytest.raises(ValidationError) as ei:
        validate_vapid_keys(VapidKeys(public_key=bad, private_key="abc"))
    assert ei.value.details["public_key"] == bad[:20] + "..."
