"""Push notification sender service using APNs for iOS."""
import logging
from dataclasses import dataclass
from typing import Optional, List, Tuple

from aioapns import APNs, NotificationRequest, PushType

from ..config import settings

logger = logging.getLogger(__name__)


@dataclass
class PushConfig:
    """APNs configuration."""
    key_path: str = ""  # Path to .p8 key file
    key_id: str = ""
    team_id: str = ""
    bundle_id: str = ""
    use_sandbox: bool = True  # Use sandbox for development

    @property
    def configured(self) -> bool:
        return all([self.key_path, self.key_id, self.team_id, self.bundle_id])

    @classmethod
    def from_settings(cls) -> "PushConfig":
        return cls(
            key_path=settings.apns_key_path,
            key_id=settings.apns_key_id,
            team_id=settings.apns_team_id,
            bundle_id=settings.apns_bundle_id,
            use_sandbox=settings.apns_use_sandbox,
        )


class PushSenderService:
    """Service for sending push notifications via APNs."""

    def __init__(self, config: Optional[PushConfig] = None):
        self._client: Optional[APNs] = None
        self._config: Optional[PushConfig] = None
        if config is not None:
            self.configure(config)

    @property
    def configured(self) -> bool:
        return self._client is not None

    def configure(self, config: PushConfig):
        """Configure the APNs client."""
        self._config = config
        self._client = None  # Reset client to force reconnection

        if not config.configured:
            logger.info("Push notifications not configured - APNs key settings missing")
            return

        try:
            self._client = APNs(
                key=config.key_path,
                key_id=config.key_id,
                team_id=config.team_id,
                topic=config.bundle_id,
                use_sandbox=config.use_sandbox,
            )
            logger.info(f"APNs client configured (sandbox={config.use_sandbox})")
        except (OSError, ValueError) as e:
            logger.error(f"Failed to configure APNs client: {e}")
            self._client = None

    async def send_notification(
        self,
        device_token: str,
        title: str,
        body: str,
    ) -> bool:
        """Send a push notification to a single device.

        Returns:
            True if notification was sent successfully
        """
        if self._client is None:
            logger.debug("Push notifications not configured, skipping")
            return False

        payload = {"aps": {"alert": {"title": title, "body": body}, "sound": "default"}}

        request = NotificationRequest(
            device_token=device_token,
            message=payload,
            push_type=PushType.ALERT,
        )

        try:
            response = await self._client.send_notification(request)
        except Exception as e:
            logger.error(f"Failed to send push notification: {e}")
            return False

        if response.is_successful:
            logger.info(f"Push notification sent to {device_token[:16]}...")
            return True

        logger.warning(
            f"Push notification failed: {response.description} "
            f"(token: {device_token[:16]}...)"
        )
        return False

    async def send_to_devices(
        self,
        device_tokens: List[str],
        title: str,
        body: str,
    ) -> Tuple[int, int]:
        """Send a push notification to each device token.

        Returns:
            Tuple of (success_count, failure_count)
        """
        if self._client is None:
            return (0, len(device_tokens))

        success_count = 0
        failure_count = 0

        for token in device_tokens:
            if await self.send_notification(token, title, body):
                success_count += 1
            else:
                failure_count += 1

        logger.info(
            f"Push notifications sent: {success_count} success, {failure_count} failed"
        )
        return (success_count, failure_count)
