"""
Credential and token helpers.

Passwords are hashed with bcrypt (cost 10). Every random value comes from
the secrets module.
"""
import hashlib
import hmac
import re
import secrets
import string
from datetime import datetime, timezone
from typing import Optional

import bcrypt

from zpay.database.models import utcnow  # noqa: F401  re-exported for services

LIVE_KEY_PREFIX = "zv_live_"
TEST_KEY_PREFIX = "zv_test_"
WEBHOOK_SECRET_PREFIX = "whsec_"

ZCASH_ADDRESS_PREFIXES = ("t1", "t3", "zs", "zc")

BCRYPT_ROUNDS = 10

_BASE36 = string.digits + string.ascii_lowercase


def _base36(length: int) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def hash_password(password: str) -> str:
    """Hash a plaintext password with bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode(
        "utf-8"
    )


def verify_password(password: str, hashed: Optional[str]) -> bool:
    """Check a plaintext password against a stored bcrypt hash."""
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database
        return False


def generate_api_key(live: bool = False) -> str:
    """
    Generate an API key.

    Live keys (issued after purchase) use 24 url-safe random bytes, test keys
    a 26 character base36 string.
    """
    if live:
        return LIVE_KEY_PREFIX + secrets.token_urlsafe(24)
    return TEST_KEY_PREFIX + _base36(26)


def generate_webhook_secret() -> str:
    return WEBHOOK_SECRET_PREFIX + _base36(32)


def generate_session_token() -> str:
    return secrets.token_urlsafe(32)


def generate_reset_token() -> str:
    return secrets.token_hex(32)


def generate_otp() -> str:
    """Six digit numeric verification code, never starting with zero."""
    return str(100000 + secrets.randbelow(900000))


def is_valid_zcash_address(address: str) -> bool:
    """
    Loose Zcash address check.

    Accepts transparent (t1, t3) and shielded Sapling/Sprout (zs, zc)
    prefixes only; no checksum validation.
    """
    return bool(address) and address.startswith(ZCASH_ADDRESS_PREFIXES)


def make_username(first_name: str) -> str:
    """Build a username from a first name plus a 4 digit suffix."""
    base = re.sub(r"\s+", "", first_name.lower())
    return f"{base}{1000 + secrets.randbelow(9000)}"


def sign_webhook_payload(secret: str, body: bytes) -> str:
    """HMAC-SHA256 hex digest sent in the X-ZPay-Signature header."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from databases without tz support."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)

