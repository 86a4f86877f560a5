"""PIN hashing and auth token derivation for sync accounts.

The PIN is never stored: only ``sha256(pin + salt)`` is persisted. The auth
token is derived from the sync code and the salt (not the PIN), so a device
that logged in once can keep pushing without the PIN while someone holding
only the public sync code cannot forge a token.
"""
from __future__ import annotations

import hashlib
import uuid

from django.utils.crypto import constant_time_compare

# Domain separation suffix for auth tokens.
AUTH_TOKEN_DOMAIN = 'auth'

# Throwaway material for burn_pin_check(); never matches a real account.
_DUMMY_SALT = '00000000-0000-4000-8000-000000000000'
_DUMMY_HASH = '0' * 64


def _sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode('utf-8')).hexdigest()


def generate_salt() -> str:
    return str(uuid.uuid4())


def derive_pin_hash(pin: str, salt: str) -> str:
    return _sha256_hex(pin + salt)


def verify_pin(pin: str, salt: str, stored_hash: str) -> bool:
    """Timing-safe check of ``pin`` against ``stored_hash``.

    Returns False instead of raising for malformed input, including a stored
    hash of a different length.
    """
    if not isinstance(pin, str) or not isinstance(salt, str) or not isinstance(stored_hash, str):
        return False
    return constant_time_compare(derive_pin_hash(pin, salt), stored_hash)


def derive_auth_token(sync_code: str, salt: str) -> str:
    return _sha256_hex(sync_code + salt + AUTH_TOKEN_DOMAIN)


def verify_auth_token(token: str, sync_code: str, salt: str) -> bool:
    if not isinstance(token, str) or not isinstance(sync_code, str) or not isinstance(salt, str):
        return False
    return constant_time_compare(token, derive_auth_token(sync_code, salt))


def burn_pin_check(pin: str) -> None:
    """Spend the same work as a real PIN check; used when the account is missing."""
    verify_pin(pin if isinstance(pin, str) else '', _DUMMY_SALT, _DUMMY_HASH)
