"""
Invite lifecycle configuration.

Defaults mirror the production invite policy:
- 12-character tokens, valid for 48 hours
- Accepted invites soft-deleted 30 days after acceptance
- Never-accepted invites soft-deleted 7 days after expiry
- Property join codes valid for 90 days

Configuration (environment variables):
- INVITE_TTL_HOURS:                    Token lifetime (default: "48")
- INVITE_TOKEN_LENGTH:                 Token length (default: "12")
- INVITE_ACCEPTED_RETENTION_DAYS:      Retention after acceptance (default: "30")
- INVITE_EXPIRED_RETENTION_DAYS:       Retention after expiry (default: "7")
- PROPERTY_CODE_TTL_DAYS:              Lifetime of a property join code (default: "90")
- INVITE_LOOKUP_STRATEGY:              "fingerprint" or "scan" (default: "fingerprint")
- INVITE_TOKEN_PEPPER:                 Server secret for lookup fingerprints (required)
- INVITE_REVEAL_AUTHENTICATED_REASONS: Expired/revoked detail on accept (default: "false")
- INVITE_APP_BASE_URL:                 Deep-link base used in invite emails
- INVITE_EMAIL_WEBHOOK_URL:            Email dispatch endpoint (optional)
- INVITE_EMAIL_API_KEY:                Bearer key for the email endpoint (optional)
"""

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_INVITE_TTL_HOURS = 48
DEFAULT_TOKEN_LENGTH = 12
DEFAULT_ACCEPTED_RETENTION_DAYS = 30
DEFAULT_EXPIRED_RETENTION_DAYS = 7
DEFAULT_PROPERTY_CODE_TTL_DAYS = 90

LOOKUP_STRATEGY_FINGERPRINT = "fingerprint"
LOOKUP_STRATEGY_SCAN = "scan"
LOOKUP_STRATEGIES = frozenset({LOOKUP_STRATEGY_FINGERPRINT, LOOKUP_STRATEGY_SCAN})

# Tokens shorter than this are trivially enumerable.
MINIMUM_TOKEN_LENGTH = 8


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class InviteSettings:
    """Resolved invite configuration."""

    ttl: timedelta = timedelta(hours=DEFAULT_INVITE_TTL_HOURS)
    token_length: int = DEFAULT_TOKEN_LENGTH
    accepted_retention: timedelta = timedelta(days=DEFAULT_ACCEPTED_RETENTION_DAYS)
    expired_retention: timedelta = timedelta(days=DEFAULT_EXPIRED_RETENTION_DAYS)
    property_code_ttl: timedelta = timedelta(days=DEFAULT_PROPERTY_CODE_TTL_DAYS)
    lookup_strategy: str = LOOKUP_STRATEGY_FINGERPRINT
    token_pepper: Optional[str] = None
    reveal_authenticated_reasons: bool = False
    app_base_url: str = "https://app.example.com"
    email_webhook_url: Optional[str] = None
    email_api_key: Optional[str] = None

    def __post_init__(self):
        if self.token_length < MINIMUM_TOKEN_LENGTH:
            raise ValueError(
                f"Invite token length must be at least {MINIMUM_TOKEN_LENGTH}"
            )
        if self.lookup_strategy not in LOOKUP_STRATEGIES:
            raise ValueError(f"Unknown invite lookup strategy: {self.lookup_strategy}")
        # Every invite stores a fingerprint, whichever strategy reads it
        if not self.token_pepper:
            raise ValueError("INVITE_TOKEN_PEPPER environment variable is required")

    def invite_url(self, token: str) -> str:
        """Deep link the invitee opens to validate and accept."""
        return f"{self.app_base_url.rstrip('/')}/invite?t={token}"

    @classmethod
    def from_env(cls) -> "InviteSettings":
        """Load settings from environment variables."""
        return cls(
            ttl=timedelta(hours=int(os.getenv("INVITE_TTL_HOURS", str(DEFAULT_INVITE_TTL_HOURS)))),
            token_length=int(os.getenv("INVITE_TOKEN_LENGTH", str(DEFAULT_TOKEN_LENGTH))),
            accepted_retention=timedelta(
                days=int(os.getenv("INVITE_ACCEPTED_RETENTION_DAYS", str(DEFAULT_ACCEPTED_RETENTION_DAYS)))
            ),
            expired_retention=timedelta(
                days=int(os.getenv("INVITE_EXPIRED_RETENTION_DAYS", str(DEFAULT_EXPIRED_RETENTION_DAYS)))
            ),
            property_code_ttl=timedelta(
                days=int(os.getenv("PROPERTY_CODE_TTL_DAYS", str(DEFAULT_PROPERTY_CODE_TTL_DAYS)))
            ),
            lookup_strategy=os.getenv("INVITE_LOOKUP_STRATEGY", LOOKUP_STRATEGY_FINGERPRINT).lower(),
            token_pepper=os.getenv("INVITE_TOKEN_PEPPER") or None,
            reveal_authenticated_reasons=_env_bool("INVITE_REVEAL_AUTHENTICATED_REASONS", "false"),
            app_base_url=os.getenv("INVITE_APP_BASE_URL", "https://app.example.com"),
            email_webhook_url=os.getenv("INVITE_EMAIL_WEBHOOK_URL") or None,
            email_api_key=os.getenv("INVITE_EMAIL_API_KEY") or None,
        )


_settings: Optional[InviteSettings] = None


def get_invite_settings() -> InviteSettings:
    """Return the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = InviteSettings.from_env()
    return _settings
