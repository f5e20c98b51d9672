"""
Out-of-band invite email dispatch.

The service's responsibility ends at handing the message to a delivery
webhook; rendering and delivery belong to the external email provider.
Dispatch runs after the invite is committed, and a failure never rolls
back creation.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from property_invites.config.invites import InviteSettings, get_invite_settings

logger = logging.getLogger(__name__)

DISPATCH_TIMEOUT_SECONDS = 10.0


class InviteDispatchError(Exception):
    """Raised when the email webhook rejects or cannot receive a message."""
    pass


@dataclass(frozen=True)
class InviteEmail:
    """Payload for one invite email. `invite_url` carries the token."""
    recipient_email: str
    property_name: str
    invite_url: str
    landlord_name: Optional[str] = None

    def __repr__(self) -> str:
        domain = self.recipient_email.split("@", 1)[-1]
        return f"InviteEmail(recipient=***@{domain}, property_name={self.property_name!r})"

    def to_payload(self) -> dict:
        return {
            "recipientEmail": self.recipient_email,
            "propertyName": self.property_name,
            "inviteUrl": self.invite_url,
            "landlordName": self.landlord_name,
        }


class InviteNotifier:
    """Sends invite emails."""

    def send_invite(self, email: InviteEmail) -> None:
        raise NotImplementedError


class NullInviteNotifier(InviteNotifier):
    """Used when no webhook is configured; logs and drops the message."""

    def send_invite(self, email: InviteEmail) -> None:
        logger.info(
            "Invite email dispatch skipped - no webhook configured",
            extra={"recipient_domain": email.recipient_email.split("@", 1)[-1]},
        )


class WebhookInviteNotifier(InviteNotifier):
    """POSTs invite emails as JSON to the delivery webhook."""

    def __init__(
        self,
        webhook_url: str,
        api_key: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        timeout: float = DISPATCH_TIMEOUT_SECONDS,
    ):
        self.webhook_url = webhook_url
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def send_invite(self, email: InviteEmail) -> None:
        try:
            if self._client is not None:
                resp = self._client.post(self.webhook_url, json=email.to_payload(), headers=self._headers())
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    resp = client.post(self.webhook_url, json=email.to_payload(), headers=self._headers())
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise InviteDispatchError(f"Email webhook returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise InviteDispatchError(f"Email webhook unreachable: {type(e).__name__}") from e

        logger.info("Invite email dispatched", extra={"status_code": resp.status_code})


def build_invite_notifier(settings: Optional[InviteSettings] = None) -> InviteNotifier:
    settings = settings or get_invite_settings()
    if settings.email_webhook_url:
        return WebhookInviteNotifier(settings.email_webhook_url, api_key=settings.email_api_key)
    return NullInviteNotifier()
