"""SMS sender service - sends alerts through the Twilio Messages REST API."""
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import httpx

from ..config import settings

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"

# Twilio rejects message bodies above this length
MAX_SMS_LENGTH = 1600


@dataclass
class SmsConfig:
    """Twilio account configuration."""
    account_sid: str = ""
    auth_token: str = ""
    from_number: str = ""

    @property
    def configured(self) -> bool:
        return all([self.account_sid, self.auth_token, self.from_number])

    @classmethod
    def from_settings(cls) -> "SmsConfig":
        return cls(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_from_number,
        )


class SmsSenderService:
    """Service for sending SMS alerts."""

    def __init__(self, config: SmsConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client

    @property
    def messages_url(self) -> str:
        return f"{TWILIO_API_BASE}/Accounts/{self.config.account_sid}/Messages.json"

    async def send_sms(self, recipients: List[str], body: str) -> Tuple[int, int]:
        """Send one message per recipient.

        Returns:
            Tuple of (success_count, failure_count)
        """
        if not self.config.configured:
            logger.warning("SMS not configured - missing Twilio credentials")
            return (0, len(recipients))

        body = body[:MAX_SMS_LENGTH]
        success_count = 0
        failure_count = 0

        for number in recipients:
            if await self._send_one(number, body):
                success_count += 1
            else:
                failure_count += 1

        logger.info(f"SMS sent: {success_count} success, {failure_count} failed")
        return (success_count, failure_count)

    async def _send_one(self, number: str, body: str) -> bool:
        data = {"To": number, "From": self.config.from_number, "Body": body}
        auth = (self.config.account_sid, self.config.auth_token)
        try:
            if self._client is not None:
                response = await self._client.post(self.messages_url, data=data, auth=auth)
            else:
                async with httpx.AsyncClient(timeout=10) as client:
                    response = await client.post(self.messages_url, data=data, auth=auth)
        except httpx.HTTPError as e:
            logger.error(f"Failed to send SMS to {number}: {e}")
            return False

        if response.status_code < 400:
            logger.debug(f"SMS queued for {number}: {response.json().get('sid')}")
            return True

        logger.warning(f"Twilio returned {response.status_code} for {number}: {response.text[:200]}")
        return False
