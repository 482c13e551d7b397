"""
SMS Provider

Twilio over its REST API. When credentials are missing the provider stays
usable but every send returns an explicit "not configured" failure.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from .email_provider import SendResult, is_retryable_status

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


def format_phone_e164(phone: str, default_country_code: str = "1") -> str:
    """Normalize a phone number to E.164, assuming North America when no + prefix."""
    cleaned = re.sub(r"[^\d+]", "", phone or "")
    if cleaned.startswith("+"):
        return "+" + re.sub(r"\D", "", cleaned)
    digits = re.sub(r"\D", "", cleaned)
    if default_country_code == "1" and len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return f"+{default_country_code}{digits}"


class SMSProvider(ABC):
    @abstractmethod
    async def send(self, to: str, body: str) -> SendResult:
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        pass


class TwilioSMSProvider(SMSProvider):
    """
    Twilio SMS provider.

    https://www.twilio.com/docs/messaging/api/message-resource#create-a-message-resource
    """

    def __init__(self, account_sid: str, auth_token: str, from_number: str, timeout: float = 30.0):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    async def send(self, to: str, body: str) -> SendResult:
        if not self.is_configured():
            return SendResult(
                success=False,
                error="SMS not configured - missing Twilio credentials",
                retryable=False,
            )

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json",
                    auth=(self.account_sid, self.auth_token),
                    data={
                        "To": format_phone_e164(to),
                        "From": self.from_number,
                        "Body": body,
                    },
                    timeout=self.timeout,
                )

            if response.status_code in (200, 201):
                return SendResult(success=True, message_id=response.json().get("sid"))

            logger.error(f"Twilio API error: {response.status_code} - {response.text}")
            return SendResult(
                success=False,
                error=f"Twilio {response.status_code}: {response.text}",
                retryable=is_retryable_status(response.status_code),
            )

        except httpx.HTTPError as e:
            logger.exception("Failed to send SMS via Twilio")
            return SendResult(success=False, error=str(e))


def get_sms_provider(
    account_sid: Optional[str] = None,
    auth_token: Optional[str] = None,
    from_number: Optional[str] = None,
) -> SMSProvider:
    provider = TwilioSMSProvider(account_sid or "", auth_token or "", from_number or "")
    if not provider.is_configured():
        logger.warning("Twilio credentials not configured, SMS sends will fail")
    return provider
