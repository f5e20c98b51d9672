"""
Invite token generation and verification.

Tokens are short, high-entropy codes a tenant can type or tap:
12 characters from A-Z0-9 (36^12 ≈ 4.7 × 10^18 combinations).

SECURITY:
- Tokens come from the `secrets` CSPRNG
- Only sha256(token || salt) and the per-token salt are persisted
- Comparisons use hmac.compare_digest
- Nothing in this module logs token material

Property join codes (AAA999) are a much smaller space and are stored in
plain text on the property; they rely on rate limiting and expiry.
"""

import base64
import hashlib
import hmac
import re
import secrets
from dataclasses import dataclass
from typing import Optional

from property_invites.config.invites import DEFAULT_TOKEN_LENGTH

TOKEN_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
SALT_BYTES = 16

_NON_ALPHANUMERIC = re.compile(r"[^A-Za-z0-9]")


@dataclass(frozen=True)
class GeneratedToken:
    """A freshly minted token. `plaintext` must leave the process exactly once."""

    plaintext: str
    token_hash: str
    salt: str

    def __repr__(self) -> str:
        return f"GeneratedToken(token_hash={self.token_hash[:8]}..., salt=...)"


def hash_token(token: str, salt: str) -> str:
    """Return hex sha256(token || salt)."""
    return hashlib.sha256((token + salt).encode("utf-8")).hexdigest()


def _random_chunk() -> str:
    # base64 of random bytes, stripped to alphanumerics and uppercased
    raw = base64.b64encode(secrets.token_bytes(10)).decode("ascii")
    return _NON_ALPHANUMERIC.sub("", raw).upper()


def generate(length: int = DEFAULT_TOKEN_LENGTH) -> GeneratedToken:
    """
    Generate a token, its per-token salt and its salted hash.

    Characters are collected until at least `length` are available, so a
    short normalization pass never yields a short token.
    """
    if length < 1:
        raise ValueError("Token length must be positive")

    collected = ""
    while len(collected) < length:
        collected += _random_chunk()
    plaintext = collected[:length]

    salt = secrets.token_hex(SALT_BYTES)
    return GeneratedToken(
        plaintext=plaintext,
        token_hash=hash_token(plaintext, salt),
        salt=salt,
    )


def verify(candidate: str, token_hash: str, salt: str) -> bool:
    """Recompute sha256(candidate || salt) and compare in constant time."""
    return hmac.compare_digest(hash_token(candidate, salt), token_hash)


def normalize(candidate: Optional[str], length: int = DEFAULT_TOKEN_LENGTH) -> Optional[str]:
    """
    Canonicalize user input.

    Strips surrounding whitespace and uppercases. Returns None when the
    result is not exactly `length` characters from the token alphabet.
    """
    if not candidate or not isinstance(candidate, str):
        return None
    value = candidate.strip().upper()
    if len(value) != length:
        return None
    if any(ch not in TOKEN_ALPHABET for ch in value):
        return None
    return value


def fingerprint(candidate: str, pepper: str) -> str:
    """
    Keyed lookup fingerprint: hex HMAC-SHA256(pepper, candidate).

    Deterministic so it can back a unique index; the salted hash is still
    verified after the lookup.
    """
    return hmac.new(pepper.encode("utf-8"), candidate.encode("utf-8"), hashlib.sha256).hexdigest()


# =============================================================================
# Property join codes
# =============================================================================

PROPERTY_CODE_LETTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
PROPERTY_CODE_DIGITS = "0123456789"

_PROPERTY_CODE_PATTERN = re.compile(r"^[A-Z]{3}[0-9]{3}$")


def generate_property_code() -> str:
    """Three letters then three digits, e.g. "KQZ042"."""
    letters = "".join(secrets.choice(PROPERTY_CODE_LETTERS) for _ in range(3))
    digits = "".join(secrets.choice(PROPERTY_CODE_DIGITS) for _ in range(3))
    return letters + digits


def normalize_property_code(candidate: Optional[str]) -> Optional[str]:
    """Uppercased, trimmed code, or None when it is not AAA999."""
    if not candidate or not isinstance(candidate, str):
        return None
    value = candidate.strip().upper()
    return value if _PROPERTY_CODE_PATTERN.match(value) else None
