"""
Outreach Rendering

Turns stored OutreachContent into channel-ready text:
- substitutes the payment link placeholder
- appends incentive copy (discount deadline, payment plan terms)
- email: wraps the text in the HTML layout with a "Pay Now" button
- SMS: truncates to the channel limit, reserving room for the link
"""

import html
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from recoup.models.base import utcnow
from recoup.plans.content import PAYMENT_LINK_PLACEHOLDER, format_currency
from recoup.schemas.outreach import (
    DepositRequest,
    EarlyPayDiscount,
    OutreachContent,
    PaymentPlanOffer,
)

SMS_MAX_LENGTH = 160
SMS_MAX_LENGTH_WITH_LINK = 120
DEFAULT_SUBJECT = "Payment Reminder"


@dataclass
class RenderedEmail:
    subject: str
    html_body: str
    plain_text_body: str


# =============================================================================
# BASE TEMPLATE
# =============================================================================

BASE_HTML_TEMPLATE = """
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{subject}</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, 'Helvetica Neue', Arial, sans-serif;
            line-height: 1.6;
            color: #1F2937;
            margin: 0;
            padding: 0;
            background-color: #F3F4F6;
        }}
        .container {{
            max-width: 600px;
            margin: 0 auto;
            padding: 20px;
        }}
        .card {{
            background: white;
            border-radius: 8px;
            padding: 24px;
            box-shadow: 0 1px 3px rgba(0, 0, 0, 0.1);
        }}
        .button {{
            display: inline-block;
            padding: 12px 28px;
            background-color: #2563EB;
            color: white !important;
            text-decoration: none;
            border-radius: 6px;
            font-weight: 600;
        }}
        .footer {{
            text-align: center;
            font-size: 12px;
            color: #6B7280;
            padding: 16px 0;
        }}
    </style>
</head>
<body>
    <div class="container">
        <div class="card">
            {content}
            {button}
        </div>
        <div class="footer">If you have already paid, please disregard this message.</div>
    </div>
</body>
</html>
"""

PAY_BUTTON_HTML = """<p style="text-align: center; margin-top: 24px;"><a class="button" href="{url}">Pay Now</a></p>"""


# =============================================================================
# Incentive copy
# =============================================================================

def days_until(expires_at: Optional[datetime], now: datetime) -> int:
    if expires_at is None:
        return 0
    expires_at = expires_at.replace(tzinfo=None)
    return max(0, (expires_at.date() - now.date()).days)


def incentive_copy(incentive, now: datetime) -> Optional[str]:
    if isinstance(incentive, EarlyPayDiscount):
        return (
            f"Special offer: pay within {days_until(incentive.expires_at, now)} days "
            f"and save {incentive.discount_percent:g}% ({format_currency(incentive.discount_amount_cents)})!"
        )
    if isinstance(incentive, PaymentPlanOffer):
        return (
            f"Need flexibility? We're offering a {incentive.months}-month payment plan "
            f"of {format_currency(incentive.monthly_amount_cents)} per month."
        )
    if isinstance(incentive, DepositRequest):
        return f"A {incentive.deposit_percent:g}% deposit is requested to get started."
    return None


def substitute_link(body: str, payment_link: Optional[str]) -> str:
    if payment_link:
        return body.replace(PAYMENT_LINK_PLACEHOLDER, payment_link)
    return body.replace(PAYMENT_LINK_PLACEHOLDER, "(payment link to follow)")


# =============================================================================
# Channels
# =============================================================================

def _body_to_html(text: str) -> str:
    paragraphs = [p for p in text.split("\n\n") if p.strip()]
    return "\n".join(
        f"<p>{html.escape(p).replace(chr(10), '<br>')}</p>" for p in paragraphs
    )


def render_email(
    content: OutreachContent,
    payment_link: Optional[str],
    incentive=None,
    now: Optional[datetime] = None,
) -> RenderedEmail:
    now = now or utcnow()
    subject = content.subject or DEFAULT_SUBJECT
    body = substitute_link(content.body, payment_link)

    extra = incentive_copy(incentive, now)
    if extra:
        body = f"{body}\n\n{extra}"

    button = PAY_BUTTON_HTML.format(url=html.escape(payment_link, quote=True)) if payment_link else ""
    html_body = BASE_HTML_TEMPLATE.format(
        subject=html.escape(subject),
        content=_body_to_html(body),
        button=button,
    )
    return RenderedEmail(subject=subject, html_body=html_body, plain_text_body=body)


def render_sms(content: OutreachContent, payment_link: Optional[str]) -> str:
    """
    Fit an SMS body to the channel limit.

    With a link the text is cut to 120 characters and the link appended on
    its own; without one the whole 160 characters are available.
    """
    body = content.body.replace(PAYMENT_LINK_PLACEHOLDER, "").strip()
    max_length = SMS_MAX_LENGTH_WITH_LINK if payment_link else SMS_MAX_LENGTH
    if len(body) > max_length:
        body = body[:max_length - 3] + "..."
    if payment_link:
        body = f"{body}\n\nPay now: {payment_link}"
    return body


def render_call_notes(content: OutreachContent, talking_points) -> str:
    """Notes for a manual call task."""
    notes = content.body
    if talking_points:
        notes += "\n\n" + "\n".join(f"- {point}" for point in talking_points)
    return notes
