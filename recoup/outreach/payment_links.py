"""
Payment Links

Creates hosted payment links through the Stripe REST API (a one-off price
plus a payment link carrying the invoice id as metadata). Without a secret
key the placeholder provider returns a clearly marked mock link so outreach
can still go out.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

from recoup.errors import ProviderError

logger = logging.getLogger(__name__)

STRIPE_API_BASE = "https://api.stripe.com/v1"
MOCK_PAYMENT_LINK_BASE = "https://pay.stripe.com/mock"


@dataclass
class PaymentLinkDiscount:
    percent: Optional[float] = None
    amount_cents: Optional[int] = None


@dataclass
class PaymentLinkResult:
    url: str
    id: str
    amount_cents: int
    is_placeholder: bool = False


def discounted_amount(amount_cents: int, discount: Optional[PaymentLinkDiscount]) -> int:
    """Amount to charge after a percent or fixed discount. Never below zero."""
    if discount is None:
        return amount_cents
    if discount.percent:
        return max(0, int(round(amount_cents * (1 - discount.percent / 100))))
    if discount.amount_cents:
        return max(0, amount_cents - discount.amount_cents)
    return amount_cents


class PaymentLinkProvider(ABC):
    @abstractmethod
    async def create_payment_link(
        self,
        invoice_id: str,
        amount_cents: int,
        description: str,
        discount: Optional[PaymentLinkDiscount] = None,
    ) -> PaymentLinkResult:
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        pass


class PlaceholderPaymentLinkProvider(PaymentLinkProvider):
    """Used when no payment processor is configured."""

    def is_configured(self) -> bool:
        return False

    async def create_payment_link(
        self,
        invoice_id: str,
        amount_cents: int,
        description: str,
        discount: Optional[PaymentLinkDiscount] = None,
    ) -> PaymentLinkResult:
        return PaymentLinkResult(
            url=f"{MOCK_PAYMENT_LINK_BASE}/{invoice_id}",
            id=f"mock_{invoice_id}",
            amount_cents=discounted_amount(amount_cents, discount),
            is_placeholder=True,
        )


class StripePaymentLinkProvider(PaymentLinkProvider):
    """
    Stripe payment links.

    https://docs.stripe.com/api/payment_links/payment_links/create
    """

    def __init__(self, secret_key: str, currency: str = "usd", timeout: float = 30.0):
        self.secret_key = secret_key
        self.currency = currency
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.secret_key)

    async def _post(self, client: httpx.AsyncClient, path: str, data: dict) -> dict:
        response = await client.post(
            f"{STRIPE_API_BASE}/{path}",
            auth=(self.secret_key, ""),
            data=data,
            timeout=self.timeout,
        )
        if response.status_code != 200:
            retryable = response.status_code == 429 or response.status_code >= 500
            raise ProviderError(f"Stripe {path} failed: {response.status_code} - {response.text}", retryable=retryable)
        return response.json()

    async def create_payment_link(
        self,
        invoice_id: str,
        amount_cents: int,
        description: str,
        discount: Optional[PaymentLinkDiscount] = None,
    ) -> PaymentLinkResult:
        final_amount = discounted_amount(amount_cents, discount)
        if final_amount <= 0:
            raise ProviderError(f"Nothing to charge for invoice {invoice_id}", retryable=False)

        try:
            async with httpx.AsyncClient() as client:
                price = await self._post(client, "prices", {
                    "currency": self.currency,
                    "unit_amount": final_amount,
                    "product_data[name]": description,
                })
                link = await self._post(client, "payment_links", {
                    "line_items[0][price]": price["id"],
                    "line_items[0][quantity]": 1,
                    "metadata[invoice_id]": invoice_id,
                    "metadata[discount_percent]": (discount.percent if discount and discount.percent else ""),
                    "metadata[discount_amount]": (discount.amount_cents if discount and discount.amount_cents else ""),
                })
        except httpx.HTTPError as e:
            raise ProviderError(f"Stripe request failed: {e}") from e

        return PaymentLinkResult(url=link["url"], id=link["id"], amount_cents=final_amount)


def get_payment_link_provider(secret_key: Optional[str] = None, currency: str = "usd") -> PaymentLinkProvider:
    if secret_key:
        logger.info("Using Stripe payment link provider")
        return StripePaymentLinkProvider(secret_key=secret_key, currency=currency)

    logger.warning("Stripe not configured, payment links will be placeholders")
    return PlaceholderPaymentLinkProvider()
