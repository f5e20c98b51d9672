"""
Rate limit configuration for invite endpoints.

Token-bucket policies are configurable per endpoint.

Configuration (environment variables):
- RATE_LIMIT_ENABLED:                Kill switch (default: "true")
- RATE_LIMIT_BACKEND:                "redis" or "database" (default: "redis")
- REDIS_URL:                         Redis connection URL (default: "redis://redis:6379/0")
- RATE_LIMIT_VALIDATE_PER_CLIENT:    Bucket size per client key (default: "30")
- RATE_LIMIT_VALIDATE_GLOBAL:        Global bucket size (default: "600")
- RATE_LIMIT_ACCEPT_PER_USER:        Bucket size per identity (default: "10")
- RATE_LIMIT_CREATE_PER_USER:        Bucket size per landlord (default: "20")
- RATE_LIMIT_LINK_CODE_PER_USER:     Property-code link attempts per identity (default: "10")
- RATE_LIMIT_WINDOW_SECONDS:         Refill window (default: "60")
- RATE_LIMIT_STALE_HOURS:            Idle buckets older than this are purged (default: "24")
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

BACKEND_REDIS = "redis"
BACKEND_DATABASE = "database"


@dataclass(frozen=True)
class BucketPolicy:
    """
    Token bucket configuration.

    Attributes:
        max_tokens:     Bucket capacity.
        refill_rate:    Tokens added per window.
        window_seconds: Window length in seconds.
    """

    max_tokens: int
    refill_rate: int
    window_seconds: int

    def __post_init__(self):
        if self.max_tokens < 1 or self.refill_rate < 1 or self.window_seconds < 1:
            raise ValueError("Bucket policy values must be positive")

    @property
    def seconds_per_token(self) -> float:
        return self.window_seconds / self.refill_rate


def is_rate_limit_enabled() -> bool:
    """Check if rate limiting is enabled via environment variable."""
    return os.getenv("RATE_LIMIT_ENABLED", "true").lower() in ("true", "1", "yes")


def get_backend() -> str:
    """Get the configured bucket backend."""
    return os.getenv("RATE_LIMIT_BACKEND", BACKEND_REDIS).lower()


def get_redis_url() -> str:
    return os.getenv("REDIS_URL", "redis://redis:6379/0")


def get_window_seconds() -> int:
    return int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))


def get_stale_hours() -> int:
    return int(os.getenv("RATE_LIMIT_STALE_HOURS", "24"))


def _policy(env_name: str, default: str) -> BucketPolicy:
    size = int(os.getenv(env_name, default))
    return BucketPolicy(max_tokens=size, refill_rate=size, window_seconds=get_window_seconds())


def validate_client_policy() -> BucketPolicy:
    """Per-client bucket in front of public token validation."""
    return _policy("RATE_LIMIT_VALIDATE_PER_CLIENT", "30")


def validate_global_policy() -> BucketPolicy:
    """Global bucket in front of public token validation."""
    return _policy("RATE_LIMIT_VALIDATE_GLOBAL", "600")


def accept_user_policy() -> BucketPolicy:
    """Per-identity bucket in front of invite acceptance."""
    return _policy("RATE_LIMIT_ACCEPT_PER_USER", "10")


def create_user_policy() -> BucketPolicy:
    """Per-landlord bucket in front of invite creation."""
    return _policy("RATE_LIMIT_CREATE_PER_USER", "20")


def link_code_user_policy() -> BucketPolicy:
    """Per-identity bucket in front of property-code linking."""
    return _policy("RATE_LIMIT_LINK_CODE_PER_USER", "10")
