"""Notifier - delivers alert messages over email, SMS and push."""
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from ..domain import Channel
from ..errors import ErrorKind
from .email_sender import EmailConfig, EmailSenderService
from .push_sender import PushConfig, PushSenderService
from .sms_sender import SmsConfig, SmsSenderService

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r"^\+?[\d\s\-().]{7,}$")


@dataclass(frozen=True)
class NotifyResult:
    """Outcome of one notification attempt."""
    success: bool
    error: Optional[str] = None


class Notifier(Protocol):
    """Anything that can deliver an alert message on a channel."""

    async def notify(
        self,
        channel: Channel,
        recipients: Sequence[str],
        subject: str,
        body: str,
    ) -> NotifyResult:
        ...


def recipient_channel(recipient: str) -> Channel:
    """Guess the channel a recipient address belongs to."""
    value = recipient.strip()
    if "@" in value:
        return Channel.EMAIL
    if PHONE_PATTERN.match(value) and sum(ch.isdigit() for ch in value) >= 7:
        return Channel.SMS
    return Channel.PUSH


def recipients_for(channel: Channel, recipients: Sequence[str]) -> List[str]:
    """Recipients that match a channel, order preserved."""
    return [r.strip() for r in recipients if r and r.strip() and recipient_channel(r) == channel]


class LoggingNotifier:
    """Logs every message and reports success. Used when no transport is configured."""

    async def notify(self, channel: Channel, recipients: Sequence[str], subject: str, body: str) -> NotifyResult:
        logger.info(f"[{channel.value}] to {', '.join(recipients)}: {subject} - {body}")
        return NotifyResult(success=True)


class ChannelNotifier:
    """Routes notifications to the sender configured for each channel."""

    def __init__(
        self,
        email: Optional[EmailSenderService] = None,
        sms: Optional[SmsSenderService] = None,
        push: Optional[PushSenderService] = None,
    ):
        self.email = email
        self.sms = sms
        self.push = push

    @classmethod
    def from_settings(cls) -> "ChannelNotifier":
        return cls(
            email=EmailSenderService(EmailConfig.from_settings()),
            sms=SmsSenderService(SmsConfig.from_settings()),
            push=PushSenderService(PushConfig.from_settings()),
        )

    @property
    def any_configured(self) -> bool:
        return any([
            self.email is not None and self.email.config.configured,
            self.sms is not None and self.sms.config.configured,
            self.push is not None and self.push.configured,
        ])

    async def notify(self, channel: Channel, recipients: Sequence[str], subject: str, body: str) -> NotifyResult:
        recipients = list(recipients)
        if not recipients:
            return NotifyResult(success=False, error="No recipients")

        if channel == Channel.EMAIL:
            if self.email is None or not self.email.config.configured:
                return self._not_configured(channel)
            ok = await self.email.send_email(recipients, subject, body)
            return NotifyResult(success=ok, error=None if ok else "Email delivery failed")

        if channel == Channel.SMS:
            if self.sms is None or not self.sms.config.configured:
                return self._not_configured(channel)
            sent, failed = await self.sms.send_sms(recipients, f"{subject}: {body}")
            return self._from_counts(channel, sent, failed)

        if channel == Channel.PUSH:
            if self.push is None or not self.push.configured:
                return self._not_configured(channel)
            sent, failed = await self.push.send_to_devices(recipients, subject, body)
            return self._from_counts(channel, sent, failed)

        return NotifyResult(success=False, error=f"Unknown channel: {channel}")

    @staticmethod
    def _not_configured(channel: Channel) -> NotifyResult:
        logger.warning(f"{ErrorKind.NOTIFIER_FAILURE.value}: {channel.value} channel not configured")
        return NotifyResult(success=False, error=f"{channel.value} channel not configured")

    @staticmethod
    def _from_counts(channel: Channel, sent: int, failed: int) -> NotifyResult:
        if sent and not failed:
            return NotifyResult(success=True)
        if sent:
            return NotifyResult(success=True, error=f"{failed} {channel.value} recipient(s) failed")
        return NotifyResult(success=False, error=f"{channel.value} delivery failed for all recipients")
