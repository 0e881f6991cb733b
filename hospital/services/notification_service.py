"""
Twilio SMS Service
Sends appointment confirmations and reminders to patients
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Optional

from twilio.base.exceptions import TwilioException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from ..core.config import settings
from ..core.exceptions import TransientNotificationError
from ..utils.date_utils import format_appointment_datetime

logger = logging.getLogger(__name__)

TEST_MESSAGE = (
    "This is a test message from your Hospital Management System. "
    "If you received this, Twilio is configured correctly!"
)


def normalize_phone_number(phone_number: Optional[str], default_country_code: str) -> Optional[str]:
    """
    Format a phone number in international (E.164) form.

    Returns None when the number cannot be used: empty, or fewer than
    10 digits without an explicit "+" prefix.
    """
    if not phone_number:
        return None
    raw = str(phone_number).strip()
    digits = re.sub(r"\D", "", raw)
    if not digits:
        return None

    if raw.startswith("+"):
        return f"+{digits}"
    if len(digits) == 10:
        return f"{default_country_code}{digits}"
    if len(digits) > 10:
        # country code digits already present
        return f"+{digits}"
    return None


def render_confirmation(doctor: str, specialization: str, appointment_date, appointment_time: str) -> str:
    when = format_appointment_datetime(appointment_date, appointment_time)
    return (
        f"Your appointment with {doctor} ({specialization}) has been confirmed for {when}. "
        "Thank you for choosing our hospital."
    )


def render_reminder(doctor: str, specialization: str, appointment_date, appointment_time: str) -> str:
    when = format_appointment_datetime(appointment_date, appointment_time)
    return (
        f"Reminder: You have an appointment with {doctor} ({specialization}) on {when}. "
        "Please arrive 15 minutes early."
    )


class NotificationGateway(ABC):
    """Delivers a text message to a phone number. Raises TransientNotificationError on failure."""

    @abstractmethod
    def send(self, to: str, body: str) -> str:
        """Send `body` to `to` and return a provider message id."""


class TwilioNotificationGateway(NotificationGateway):
    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        default_country_code: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.account_sid = account_sid or settings.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token or settings.TWILIO_AUTH_TOKEN
        self.from_number = from_number or settings.TWILIO_PHONE_NUMBER
        self.default_country_code = default_country_code or settings.DEFAULT_COUNTRY_CODE
        self.timeout = timeout or settings.NOTIFICATION_TIMEOUT_SECONDS
        self._client: Optional[Client] = None

    @property
    def client(self) -> Client:
        # Created on first send so the app starts without credentials
        if self._client is None:
            self._client = Client(
                self.account_sid,
                self.auth_token,
                http_client=TwilioHttpClient(timeout=self.timeout),
            )
        return self._client

    def send(self, to: str, body: str) -> str:
        """Send an SMS and return the Twilio message SID."""
        if not self.account_sid or not self.auth_token:
            raise TransientNotificationError("Twilio credentials are not configured")
        if not self.from_number:
            raise TransientNotificationError("Twilio phone number is not configured")

        formatted_number = normalize_phone_number(to, self.default_country_code)
        if not formatted_number:
            raise TransientNotificationError(f"Invalid phone number: {to!r}")

        try:
            message = self.client.messages.create(
                body=body,
                to=formatted_number,
                from_=self.from_number,
            )
        except (TwilioException, OSError) as e:
            # OSError covers connection errors and timeouts from the HTTP layer
            logger.error(f"Error sending SMS to {formatted_number}: {e}")
            raise TransientNotificationError(str(e)) from e

        logger.info(f"SMS sent successfully to {formatted_number}, message SID: {message.sid}")
        return message.sid
