"""
Email delivery for collection outreach.

Providers, in order of preference:
- Resend (HTTP API)
- SMTP (self-hosted)
- Console, which only logs. Used in development and whenever nothing else
  is configured, so email outreach never fails for lack of a provider.

Every provider returns a SendResult instead of raising; `retryable` tells
the executor whether the action should go back to `scheduled`.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage as MIMEMessage
from typing import List, Optional

import aiosmtplib
import httpx

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
DEFAULT_FROM_EMAIL = "Recoup <billing@recoup.app>"
REFERENCE_HEADER = "X-Recoup-Reference"


@dataclass
class EmailMessage:
    to: str
    subject: str
    html_body: str
    plain_text_body: str
    from_email: Optional[str] = None
    reply_to: Optional[str] = None
    # Scheduled action id. Providers use it to de-duplicate resends.
    reference: Optional[str] = None


@dataclass
class SendResult:
    """Outcome of one email or SMS send."""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = True


def is_retryable_status(status_code: int) -> bool:
    """Rate limiting and server errors are worth retrying; other 4xx are not."""
    return status_code == 429 or status_code >= 500


class EmailProvider(ABC):

    @abstractmethod
    async def send(self, message: EmailMessage) -> SendResult:
        ...

    @abstractmethod
    def is_configured(self) -> bool:
        ...


class ResendProvider(EmailProvider):
    """
    Resend email provider.

    https://resend.com/docs/api-reference/emails/send-email

    The action reference doubles as Resend's idempotency key, so a retry
    after a timeout cannot deliver the same reminder twice.
    """

    def __init__(
        self,
        api_key: str,
        from_email: str = DEFAULT_FROM_EMAIL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.timeout = timeout
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _payload(self, message: EmailMessage) -> dict:
        payload = {
            "from": message.from_email or self.from_email,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html_body,
            "text": message.plain_text_body,
        }
        if message.reply_to:
            payload["reply_to"] = message.reply_to
        if message.reference:
            payload["tags"] = [{"name": "action_id", "value": message.reference}]
        return payload

    async def send(self, message: EmailMessage) -> SendResult:
        if not self.is_configured():
            return SendResult(success=False, error="Resend API key not configured", retryable=False)

        headers = {"Authorization": f"Bearer {self.api_key}"}
        if message.reference:
            headers["Idempotency-Key"] = message.reference

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(RESEND_API_URL, headers=headers, json=self._payload(message))
        except httpx.HTTPError as e:
            logger.error(f"Resend request failed for {message.reference or message.to}: {e}")
            return SendResult(success=False, error=f"Resend request failed: {e}")

        if response.status_code == 200:
            return SendResult(success=True, message_id=response.json().get("id"))

        logger.error(f"Resend API error: {response.status_code} - {response.text}")
        return SendResult(
            success=False,
            error=f"Resend {response.status_code}: {response.text}",
            retryable=is_retryable_status(response.status_code),
        )


class SMTPProvider(EmailProvider):
    """SMTP delivery through aiosmtplib (multipart plain text + HTML)."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_email: str,
        use_tls: bool = True,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email
        self.use_tls = use_tls
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.host and self.username and self.password)

    def build_mime(self, message: EmailMessage) -> MIMEMessage:
        mime = MIMEMessage()
        mime["Subject"] = message.subject
        mime["From"] = message.from_email or self.from_email
        mime["To"] = message.to
        if message.reply_to:
            mime["Reply-To"] = message.reply_to
        if message.reference:
            mime[REFERENCE_HEADER] = message.reference
        mime.set_content(message.plain_text_body)
        mime.add_alternative(message.html_body, subtype="html")
        return mime

    async def send(self, message: EmailMessage) -> SendResult:
        if not self.is_configured():
            return SendResult(success=False, error="SMTP not configured", retryable=False)

        try:
            await aiosmtplib.send(
                self.build_mime(message),
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                use_tls=self.use_tls,
                timeout=self.timeout,
            )
        except aiosmtplib.SMTPRecipientsRefused as e:
            logger.warning(f"SMTP server refused {message.to}: {e}")
            return SendResult(success=False, error=f"Recipient refused: {message.to}", retryable=False)
        except aiosmtplib.SMTPException as e:
            logger.error(f"SMTP send failed for {message.reference or message.to}: {e}")
            return SendResult(success=False, error=str(e))

        return SendResult(success=True, message_id=message.reference)


class ConsoleProvider(EmailProvider):
    """Logs outgoing email and keeps it in `outbox` for inspection."""

    def __init__(self):
        self.outbox: List[EmailMessage] = []

    def is_configured(self) -> bool:
        return True

    async def send(self, message: EmailMessage) -> SendResult:
        self.outbox.append(message)
        logger.info(
            f"[console email] to={message.to} subject={message.subject!r} "
            f"reference={message.reference}\n{message.plain_text_body}"
        )
        return SendResult(success=True, message_id=f"console-{len(self.outbox)}")


def get_email_provider(
    resend_api_key: Optional[str] = None,
    smtp_config: Optional[dict] = None,
    console_mode: bool = False,
    from_email: Optional[str] = None,
    timeout: float = 30.0,
) -> EmailProvider:
    """Resend if a key is set, else SMTP if configured, else the console."""
    if console_mode:
        return ConsoleProvider()
    if resend_api_key:
        return ResendProvider(api_key=resend_api_key, from_email=from_email or DEFAULT_FROM_EMAIL, timeout=timeout)
    if smtp_config:
        return SMTPProvider(**smtp_config, timeout=timeout)

    logger.warning("No email provider configured; outreach email will be logged only")
    return ConsoleProvider()
