"""Outbound mail transports.

One channel: Resend. A logging transport stands in when MAIL_DRY_RUN is set.
"""

import asyncio
from abc import ABC, abstractmethod

import resend

from alert_relay.config import Settings, get_settings
from alert_relay.core.errors import ConfigurationError, TransportError
from alert_relay.core.logging import get_logger

logger = get_logger(__name__)


class MailTransport(ABC):
    """Sends one email. Raises on any failure."""

    @abstractmethod
    async def send(
        self,
        destination: str,
        subject: str,
        text: str,
        html: str | None = None,
    ) -> str | None:
        """Send an email and return the provider message id, if any."""


class ResendTransport(MailTransport):
    """Mail transport backed by the Resend API.

    The SDK call runs in a worker thread; a caller timing it out does not
    stop the HTTP request.
    """

    def __init__(self, api_key: str, sender: str) -> None:
        self.api_key = api_key
        self.sender = sender

    async def send(
        self,
        destination: str,
        subject: str,
        text: str,
        html: str | None = None,
    ) -> str | None:
        resend.api_key = self.api_key
        params: dict = {
            "from": self.sender,
            "to": [destination],
            "subject": subject,
            "text": text,
        }
        if html:
            params["html"] = html

        try:
            # The Resend SDK is synchronous
            response = await asyncio.to_thread(resend.Emails.send, params)
        except Exception as e:
            raise TransportError(f"Resend send failed: {e}") from e

        message_id = response.get("id") if isinstance(response, dict) else None
        logger.bind(destination=destination, message_id=message_id).info("email_sent")
        return message_id


class LogTransport(MailTransport):
    """Logs emails instead of sending them."""

    async def send(
        self,
        destination: str,
        subject: str,
        text: str,
        html: str | None = None,
    ) -> str | None:
        logger.bind(destination=destination, subject=subject, chars=len(text)).info(
            "email_dry_run"
        )
        return None


def default_sender(settings: Settings) -> str:
    return settings.mail_from or f"Alerts <alerts@{settings.email_domain}>"


def get_transport(settings: Settings | None = None) -> MailTransport:
    """Build the configured mail transport.

    Raises:
        ConfigurationError: No API key and dry-run is off
    """
    settings = settings or get_settings()
    if settings.mail_dry_run:
        return LogTransport()
    if not settings.resend_api_key:
        raise ConfigurationError("RESEND_API_KEY is not set")
    return ResendTransport(settings.resend_api_key, default_sender(settings))
