"""
Outreach Content Drafting

Template-based message text for each action type, keyed by tone:
- friendly (approaching / early overdue)
- reminder (moderately overdue)
- urgent (seriously overdue)
- final (severely overdue)

Bodies embed PAYMENT_LINK_PLACEHOLDER where the executor substitutes the
real payment link at send time.
"""

from datetime import date
from typing import List, Optional, Tuple

from recoup.models.action import ActionType, OutreachTone
from recoup.schemas.outreach import EarlyPayDiscount, OutreachContent, PaymentPlanOffer

PAYMENT_LINK_PLACEHOLDER = "[PAYMENT_LINK]"


def format_currency(cents: int) -> str:
    return f"${cents / 100:,.2f}"


def _greeting(client_name: Optional[str]) -> str:
    return f"Hi {client_name}," if client_name else "Hi there,"


# =============================================================================
# Email
# =============================================================================

def draft_email(
    client_name: Optional[str],
    invoice_number: str,
    amount_due_cents: int,
    due_date: date,
    days_overdue: int,
    tone: OutreachTone,
) -> OutreachContent:
    amount = format_currency(amount_due_cents)
    greeting = _greeting(client_name)
    due = due_date.strftime("%B %d, %Y")
    if days_overdue > 0:
        opening = f"We hope this message finds you well. This is a friendly reminder that invoice {invoice_number} for {amount} was due on {due}."
    else:
        opening = f"Just a friendly reminder that invoice {invoice_number} for {amount} is due on {due}."

    templates = {
        OutreachTone.FRIENDLY: (
            f"Payment Reminder - Invoice {invoice_number}"
            if days_overdue > 0 else
            f"Upcoming Payment Reminder - Invoice {invoice_number} Due Soon",
            f"""{greeting}

{opening}

For your convenience, you can pay instantly here: {PAYMENT_LINK_PLACEHOLDER}

If you've already sent payment, please disregard this message.

Thank you for your business!""",
        ),
        OutreachTone.REMINDER: (
            f"Action Needed - Invoice {invoice_number} {days_overdue} Days Past Due",
            f"""{greeting}

We're reaching out regarding invoice {invoice_number} for {amount}, which is now {days_overdue} days past due.

We value your business and want to make it easy to resolve this. You can pay now here: {PAYMENT_LINK_PLACEHOLDER}

If you're experiencing any issues, let's talk - we're here to help.

Thank you for your prompt attention.""",
        ),
        OutreachTone.URGENT: (
            f"Urgent: Invoice {invoice_number} {days_overdue} Days Overdue - Please Respond",
            f"""{greeting}

Invoice {invoice_number} for {amount} is now {days_overdue} days overdue. We need to resolve this as soon as possible.

Please pay here: {PAYMENT_LINK_PLACEHOLDER}
or contact us immediately to discuss payment options.

We're committed to finding a solution that works for both of us.""",
        ),
        OutreachTone.FINAL: (
            f"Final Notice: Invoice {invoice_number} - {amount} Outstanding",
            f"""{greeting}

This is a final notice regarding invoice {invoice_number} for {amount}, now {days_overdue} days overdue.

Please settle the balance today: {PAYMENT_LINK_PLACEHOLDER}

If we don't hear from you, we will need to take further steps to resolve this account.""",
        ),
    }

    subject, body = templates[OutreachTone(tone)]
    return OutreachContent(subject=subject, body=body, tone=tone)


# =============================================================================
# SMS / payment link
# =============================================================================

def draft_sms(
    client_name: Optional[str],
    invoice_number: str,
    amount_due_cents: int,
    days_overdue: int,
    tone: OutreachTone,
) -> OutreachContent:
    amount = format_currency(amount_due_cents)
    name = client_name or "there"
    if days_overdue <= 0:
        body = f"Hi {name}, quick reminder: invoice {invoice_number} for {amount} is due soon. Pay easily with the link below."
    else:
        body = (
            f"Hi {name}, invoice {invoice_number} for {amount} is {days_overdue} days overdue. "
            "Please pay with the link below or call us to discuss options."
        )
    return OutreachContent(body=body, tone=tone)


def draft_payment_link(
    client_name: Optional[str],
    invoice_number: str,
    amount_due_cents: int,
    tone: OutreachTone,
) -> OutreachContent:
    amount = format_currency(amount_due_cents)
    return OutreachContent(
        subject=f"Pay invoice {invoice_number} online",
        body=f"""{_greeting(client_name)}

You can pay invoice {invoice_number} ({amount}) securely in one click: {PAYMENT_LINK_PLACEHOLDER}

Thank you!""",
        tone=tone,
    )


# =============================================================================
# Incentives
# =============================================================================

def draft_discount_offer(
    client_name: Optional[str],
    invoice_number: str,
    amount_due_cents: int,
    incentive: EarlyPayDiscount,
    tone: OutreachTone,
) -> OutreachContent:
    amount = format_currency(amount_due_cents)
    discounted = format_currency(amount_due_cents - incentive.discount_amount_cents)
    percent = f"{incentive.discount_percent:g}"
    return OutreachContent(
        subject=f"Save {percent}% on invoice {invoice_number}",
        body=f"""{_greeting(client_name)}

We'd like to offer you a {percent}% discount ({format_currency(incentive.discount_amount_cents)} off) on your outstanding balance of {amount} for invoice {invoice_number}.

That brings your total to {discounted}. Pay here to take advantage of this offer: {PAYMENT_LINK_PLACEHOLDER}

Thank you for being a valued customer!""",
        tone=tone,
    )


def draft_payment_plan(
    client_name: Optional[str],
    invoice_number: str,
    amount_due_cents: int,
    incentive: PaymentPlanOffer,
    tone: OutreachTone,
) -> OutreachContent:
    amount = format_currency(amount_due_cents)
    return OutreachContent(
        subject=f"Flexible payment options for invoice {invoice_number}",
        body=f"""{_greeting(client_name)}

We understand that managing cash flow can be challenging, so we'd like to offer a payment plan for your outstanding balance of {amount}.

Pay in {incentive.months} monthly installments of {format_currency(incentive.monthly_amount_cents)}. Start with your first installment here: {PAYMENT_LINK_PLACEHOLDER}

Reply to this email if you'd like to adjust the schedule.""",
        tone=tone,
    )


# =============================================================================
# Calls
# =============================================================================

def draft_call_script(
    client_name: Optional[str],
    invoice_number: str,
    amount_due_cents: int,
    days_overdue: int,
    tone: OutreachTone,
) -> Tuple[OutreachContent, List[str]]:
    amount = format_currency(amount_due_cents)
    talking_points = [
        f"Invoice {invoice_number} for {amount} is {days_overdue} days overdue",
        "Ask whether anything is blocking payment",
        "Offer a payment link or a payment plan",
        "Agree on a specific payment date",
    ]
    content = OutreachContent(
        body=f"Call {client_name or 'the client'} about invoice {invoice_number} ({amount}, {days_overdue} days overdue).",
        tone=tone,
    )
    return content, talking_points


def draft_outreach(
    action_type: ActionType,
    *,
    client_name: Optional[str],
    invoice_number: str,
    amount_due_cents: int,
    due_date: date,
    days_overdue: int,
    tone: OutreachTone,
    incentive=None,
) -> Tuple[OutreachContent, List[str]]:
    """Draft content for any action type. Returns (content, call talking points)."""
    action_type = ActionType(action_type)
    if action_type == ActionType.EMAIL:
        return draft_email(client_name, invoice_number, amount_due_cents, due_date, days_overdue, tone), []
    if action_type == ActionType.SMS:
        return draft_sms(client_name, invoice_number, amount_due_cents, days_overdue, tone), []
    if action_type == ActionType.PAYMENT_LINK:
        return draft_payment_link(client_name, invoice_number, amount_due_cents, tone), []
    if action_type == ActionType.DISCOUNT_OFFER:
        return draft_discount_offer(client_name, invoice_number, amount_due_cents, incentive, tone), []
    if action_type == ActionType.PAYMENT_PLAN:
        return draft_payment_plan(client_name, invoice_number, amount_due_cents, incentive, tone), []
    return draft_call_script(client_name, invoice_number, amount_due_cents, days_overdue, tone)
