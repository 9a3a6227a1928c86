"""
Outbound email collaborator.

The core only depends on NotificationSender (`send(message) ->
NotificationResult`). HttpEmailSender talks to a transactional email HTTP
API; Notifier wraps any sender with the retry policy and guarantees the
business flow never sees an exception from email delivery.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from core.environment import FleetSettings, RetryPolicy
from core.prometheus_metrics import prometheus_collector
from core.retry import retry_call
from services.exceptions import NotificationFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailMessage:
    recipient: str
    subject: str
    html_body: str
    kind: str = "generic"  # confirmation | overdue_reminder | pending_mileage | revision_alert


@dataclass(frozen=True)
class NotificationResult:
    success: bool
    error: Optional[str] = None


class NotificationSender(Protocol):
    async def send(self, message: EmailMessage) -> NotificationResult:
        ...


class HttpEmailSender:
    """
    Sends through a JSON email API (Resend-compatible payload) with bearer auth.

    Provider 5xx responses and transport errors raise a retryable
    NotificationFailed; 4xx responses are rejected payloads and are not
    retried.
    """

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str],
        sender: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings: FleetSettings) -> "HttpEmailSender":
        return cls(settings.email_api_url, settings.email_api_key, settings.email_from)

    async def send(self, message: EmailMessage) -> NotificationResult:
        if not self.api_key:
            raise NotificationFailed("Email API key is not configured.", retryable=False)

        payload = {
            "from": self.sender,
            "to": [message.recipient],
            "subject": message.subject,
            "html": message.html_body,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            if self._client is not None:
                response = await self._client.post(self.api_url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.api_url, json=payload, headers=headers)
        except httpx.TransportError as e:
            raise NotificationFailed(f"Email provider unreachable: {e}", retryable=True) from e

        if response.status_code >= 500:
            raise NotificationFailed(
                f"Email provider error {response.status_code}", retryable=True
            )
        if response.status_code >= 400:
            raise NotificationFailed(
                f"Email rejected ({response.status_code}): {response.text[:200]}", retryable=False
            )
        return NotificationResult(success=True)


class Notifier:
    """
    Retry + accounting around a NotificationSender.

    `send` never raises: every failure, including exhausted retries, comes
    back as NotificationResult(success=False, error=...). The caller
    decides whether to log it to the audit trail.
    """

    def __init__(self, sender: NotificationSender, policy: RetryPolicy = RetryPolicy()):
        self.sender = sender
        self.policy = policy

    async def send(self, message: EmailMessage) -> NotificationResult:
        if not message.recipient:
            result = NotificationResult(success=False, error="No recipient address.")
            prometheus_collector.record_notification(message.kind, False)
            return result

        try:
            result = await retry_call(self._send_once, message, policy=self.policy)
        except Exception as e:
            logger.error(
                "Notification failed",
                extra={"kind": message.kind, "recipient": message.recipient, "error": str(e)},
            )
            result = NotificationResult(success=False, error=str(e))

        prometheus_collector.record_notification(message.kind, result.success)
        return result

    async def _send_once(self, message: EmailMessage) -> NotificationResult:
        result = await self.sender.send(message)
        # Senders may report failure instead of raising; treat it as final
        if not result.success:
            raise NotificationFailed(result.error or "Email was not sent.", retryable=False)
        return result
