"""
Outreach execution: providers, rendering, quotas and the batch executor.
"""

from .email_provider import (
    ConsoleProvider,
    EmailMessage,
    EmailProvider,
    ResendProvider,
    SendResult,
    SMTPProvider,
    get_email_provider,
)
from .executor import DispatchJob, DispatchOutcome, OutreachExecutor, OutreachRunSummary
from .payment_links import (
    PaymentLinkDiscount,
    PaymentLinkProvider,
    PaymentLinkResult,
    PlaceholderPaymentLinkProvider,
    StripePaymentLinkProvider,
    get_payment_link_provider,
)
from .rate_limit import ProviderRateLimiter, Quota, RateLimitResult, build_provider_rate_limiter
from .sms_provider import SMSProvider, TwilioSMSProvider, format_phone_e164, get_sms_provider
from .templates import RenderedEmail, render_call_notes, render_email, render_sms

__all__ = [
    "ConsoleProvider",
    "EmailMessage",
    "EmailProvider",
    "ResendProvider",
    "SendResult",
    "SMTPProvider",
    "get_email_provider",
    "DispatchJob",
    "DispatchOutcome",
    "OutreachExecutor",
    "OutreachRunSummary",
    "PaymentLinkDiscount",
    "PaymentLinkProvider",
    "PaymentLinkResult",
    "PlaceholderPaymentLinkProvider",
    "StripePaymentLinkProvider",
    "get_payment_link_provider",
    "ProviderRateLimiter",
    "Quota",
    "RateLimitResult",
    "build_provider_rate_limiter",
    "SMSProvider",
    "TwilioSMSProvider",
    "format_phone_e164",
    "get_sms_provider",
    "RenderedEmail",
    "render_call_notes",
    "render_email",
    "render_sms",
]
