# services/notification_service.py
import html
import logging
from datetime import datetime
from typing import Optional
from urllib.parse import quote

from models.subscription import Subscription
from models.weather import WeatherSnapshot

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Builds subscriber emails and hands them to a transport.

    Links:
    - confirm:     {api_base_url}/api/confirm/<confirmation_token>
    - unsubscribe: {app_base_url}/api/unsubscribe/<unsubscribe_token>
    """

    def __init__(self, transport, api_base_url: str, app_base_url: Optional[str] = None):
        self.transport = transport
        self.api_base_url = api_base_url.rstrip("/")
        self.app_base_url = (app_base_url or api_base_url).rstrip("/")
        self.sent_notifications = []

    def confirmation_link(self, token: str) -> str:
        return f"{self.api_base_url}/api/confirm/{quote(token, safe='')}"

    def unsubscribe_link(self, token: str) -> str:
        return f"{self.app_base_url}/api/unsubscribe/{quote(token, safe='')}"

    async def send_confirmation(self, email: str, confirmation_token: str) -> None:
        confirm_url = html.escape(self.confirmation_link(confirmation_token))
        body = f"""
        <p>Hello!</p>
        <p>Thank you for subscribing to our weather forecast service.</p>
        <p>Please confirm your subscription by clicking the link below:</p>
        <p><a href="{confirm_url}">{confirm_url}</a></p>
        <p>If you did not subscribe to this service, please ignore this email.</p>
        <p>Best regards,<br/>The Weather App Team</p>
        """
        await self._send(email, "Confirm your subscription", body)
        logger.info("Confirmation email sent to %s", email)

    async def send_forecast(self, subscription: Subscription, weather: WeatherSnapshot) -> None:
        city = html.escape(subscription.city)
        unsubscribe_url = html.escape(self.unsubscribe_link(subscription.unsubscribe_token))
        body = f"""
        <p>Hello!</p>
        <p>Here's the current weather in <b>{city}</b>:</p>
        <ul>
          <li><b>Temperature:</b> {weather.temperature} &deg;C</li>
          <li><b>Humidity:</b> {weather.humidity}%</li>
          <li><b>Description:</b> {html.escape(weather.description)}</li>
        </ul>
        <p>If you no longer wish to receive updates, you can <a href="{unsubscribe_url}">unsubscribe here</a>.</p>
        <p>Have a nice day!</p>
        """
        await self._send(subscription.email, f"Weather Update for {subscription.city}", body)
        logger.info("Forecast email sent to %s (%s)", subscription.email, subscription.city)

    async def _send(self, to: str, subject: str, body: str) -> None:
        # transport raises TransportFailure; nothing is recorded for failed sends
        await self.transport.send(to, subject, body)
        self.sent_notifications.append(
            {"to": to, "subject": subject, "sent_at": datetime.utcnow().isoformat()}
        )
        del self.sent_notifications[:-100]

    def recent_notifications(self):
        """Return the last 20 notifications sent by this process."""
        return self.sent_notifications[-20:]
