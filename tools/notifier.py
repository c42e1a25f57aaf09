"""
Notification transports.

Both transports expose the same coroutine:
    send(to, subject, html_body) -> None, raising core.errors.TransportFailure

- EmailNotifier: real SMTP delivery (STARTTLS + login when credentials are set)
- ConsoleNotifier: logs the message instead of sending it (dev only)

build_notifier() picks SMTP when SMTP_HOST is configured, console otherwise.
"""
import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from config.settings import Settings
from core.errors import TransportFailure

logger = logging.getLogger(__name__)


class EmailNotifier:
    def __init__(self, host: str, port: int = 587, user: Optional[str] = None,
                 password: Optional[str] = None, sender_name: str = "Weather App", timeout: float = 30.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = f'"{sender_name}" <{user}>' if user else sender_name
        self.timeout = timeout

    def _build_message(self, to: str, subject: str, html_body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.attach(MIMEText(html_body, "html"))
        return msg

    def _send_sync(self, to: str, subject: str, html_body: str) -> None:
        msg = self._build_message(to, subject, html_body)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.starttls()
            if self.user and self.password:
                server.login(self.user, self.password)
            server.send_message(msg)

    async def send(self, to: str, subject: str, html_body: str) -> None:
        # smtplib is blocking; keep it off the event loop
        try:
            await asyncio.to_thread(self._send_sync, to, subject, html_body)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("[EMAIL FAILED] To %s (%s): %s", to, subject, e)
            raise TransportFailure(f"Failed to send email to {to}") from e
        logger.info("[EMAIL] To %s: %s", to, subject)


class ConsoleNotifier:
    """Dev transport: nothing leaves the process."""

    async def send(self, to: str, subject: str, html_body: str) -> None:
        logger.info("[NOTIFY][console] To %s: %s\n%s", to, subject, html_body)


def build_notifier(settings: Settings):
    if settings.SMTP_HOST:
        return EmailNotifier(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            user=settings.SMTP_USER,
            password=settings.SMTP_PASS,
        )
    logger.warning("SMTP_HOST not configured; emails will be logged to the console.")
    return ConsoleNotifier()
