"""Email sender service - sends alerts via SMTP."""
import asyncio
import logging
import smtplib
import ssl
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import List
from dataclasses import dataclass

from ..config import settings

logger = logging.getLogger(__name__)


@dataclass
class EmailConfig:
    """SMTP configuration for sending emails."""
    host: str
    port: int
    username: str
    password: str
    use_tls: bool = True
    from_address: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.host)

    @classmethod
    def from_settings(cls) -> "EmailConfig":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_address=settings.alert_email_from,
        )


class EmailSenderService:
    """Service for sending email alerts via SMTP."""

    def __init__(self, config: EmailConfig):
        self.config = config

    async def send_email(self, recipients: List[str], subject: str, body: str) -> bool:
        """Send an email to the given recipients.

        smtplib is blocking, so the SMTP session runs in a worker thread.
        Returns True on success, False on failure.
        """
        if not self.config.configured:
            logger.warning("Email not configured - missing SMTP host")
            return False

        recipients = [addr.strip() for addr in recipients if addr and addr.strip()]
        if not recipients:
            logger.warning("No valid email recipients")
            return False

        logger.info(f"Sending email to {len(recipients)} recipient(s): {subject}")
        return await asyncio.to_thread(self._send_blocking, recipients, subject, body)

    def _build_message(self, recipients: List[str], subject: str, body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.config.from_address or self.config.username
        msg["To"] = ", ".join(recipients)  # Header shows all recipients
        msg.attach(MIMEText(body, "plain"))
        return msg

    def _send_blocking(self, recipients: List[str], subject: str, body: str) -> bool:
        config = self.config
        from_addr = config.from_address or config.username
        msg = self._build_message(recipients, subject, body)

        try:
            with smtplib.SMTP(config.host, config.port, timeout=30) as server:
                if config.use_tls:
                    server.starttls(context=ssl.create_default_context())
                if config.username and config.password:
                    server.login(config.username, config.password)
                server.sendmail(from_addr, recipients, msg.as_string())

            logger.info(f"Email sent successfully to {len(recipients)} recipient(s): {subject}")
            return True

        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed for user '{config.username}': {e}")
            return False
        except smtplib.SMTPConnectError as e:
            logger.error(f"Failed to connect to SMTP server {config.host}:{config.port}: {e}")
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(f"Recipients refused by server: {e}")
            return False
        except smtplib.SMTPException as e:
            logger.error(f"SMTP error: {type(e).__name__}: {e}")
            return False
        except (ConnectionRefusedError, TimeoutError) as e:
            logger.error(f"Could not reach {config.host}:{config.port}: {e}")
            return False
        except OSError as e:
            logger.error(f"Network error sending email: {type(e).__name__}: {e}")
            return False
