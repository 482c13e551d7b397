"""
QuickBooks payment sync.

Polls QuickBooks Online for Payment records since the lookback date and
applies every line linked to an Invoice we track (`quickbooks_id` or
`external_id`).

Token handling:
- An access token past its expiry is refreshed before the first call
- A 401 during the run triggers one refresh and one retry
- A failed refresh marks the integration `expired`; later runs skip it
  until the user reconnects
Any other API failure marks the integration `error` and is retried on
the next scheduled run.
"""

import base64
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy import select

from recoup.config import settings
from recoup.errors import ProviderError
from recoup.models import Integration, IntegrationStatus, PaymentSource, utcnow
from recoup.outreach.rate_limit import ProviderRateLimiter, build_provider_rate_limiter

from .base import PaymentCandidate, PaymentSyncAdapter, SyncResult

logger = logging.getLogger(__name__)


# ============================================================================
# API CONFIGURATION
# ============================================================================

QUICKBOOKS_TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
QUICKBOOKS_API_BASE_SANDBOX = "https://sandbox-quickbooks.api.intuit.com"
QUICKBOOKS_API_BASE_PRODUCTION = "https://quickbooks.api.intuit.com"


def get_api_base_url(environment: str) -> str:
    if environment == "production":
        return QUICKBOOKS_API_BASE_PRODUCTION
    return QUICKBOOKS_API_BASE_SANDBOX


class TokenExpiredError(ProviderError):
    """QuickBooks rejected the access token."""


class TokenRefreshError(ProviderError):
    """The refresh token is no longer usable."""

    def __init__(self, message: str):
        super().__init__(message, retryable=False)


@dataclass
class QuickBooksPayment:
    payment_id: str
    invoice_ref: str
    amount_cents: int
    paid_on: date
    method: Optional[str] = None


def _to_cents(amount: Any) -> int:
    return int(round(float(amount or 0) * 100))


def normalize_payments(raw_payments: List[Dict[str, Any]]) -> List[QuickBooksPayment]:
    """One entry per invoice line. Payments not linked to an invoice are dropped."""
    payments = []
    for raw in raw_payments:
        txn_date = raw.get("TxnDate")
        if not txn_date:
            continue
        paid_on = date.fromisoformat(txn_date)
        method_ref = raw.get("PaymentMethodRef") or {}

        for line in raw.get("Line", []):
            for linked in line.get("LinkedTxn", []):
                if linked.get("TxnType") != "Invoice":
                    continue
                payments.append(QuickBooksPayment(
                    payment_id=str(raw.get("Id")),
                    invoice_ref=str(linked.get("TxnId")),
                    amount_cents=_to_cents(line.get("Amount")),
                    paid_on=paid_on,
                    method=method_ref.get("name"),
                ))
    return payments


# ============================================================================
# API CLIENT
# ============================================================================

class QuickBooksPaymentsClient:
    """Minimal QuickBooks Online client: token refresh and payment queries."""

    def __init__(
        self,
        access_token: Optional[str],
        refresh_token: Optional[str],
        realm_id: str,
        client_id: str = "",
        client_secret: str = "",
        environment: str = "sandbox",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.realm_id = realm_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = get_api_base_url(environment)
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _basic_auth_header(self) -> str:
        credentials = f"{self.client_id}:{self.client_secret}"
        return f"Basic {base64.b64encode(credentials.encode()).decode()}"

    async def refresh(self) -> Dict[str, Any]:
        """Exchange the refresh token. Returns the token payload."""
        if not self.refresh_token:
            raise TokenRefreshError("No refresh token stored")
        try:
            async with self._client() as client:
                response = await client.post(
                    QUICKBOOKS_TOKEN_URL,
                    data={"grant_type": "refresh_token", "refresh_token": self.refresh_token},
                    headers={
                        "Authorization": self._basic_auth_header(),
                        "Content-Type": "application/x-www-form-urlencoded",
                        "Accept": "application/json",
                    },
                )
        except httpx.HTTPError as e:
            raise ProviderError(f"QuickBooks token refresh request failed: {e}") from e

        if response.status_code != 200:
            raise TokenRefreshError(f"Token refresh failed: {response.status_code} - {response.text}")

        tokens = response.json()
        self.access_token = tokens["access_token"]
        self.refresh_token = tokens.get("refresh_token", self.refresh_token)
        return tokens

    async def query(self, query: str) -> List[Dict[str, Any]]:
        url = f"{self.base_url}/v3/company/{self.realm_id}/query"
        try:
            async with self._client() as client:
                response = await client.get(
                    url,
                    params={"query": query},
                    headers={
                        "Authorization": f"Bearer {self.access_token}",
                        "Accept": "application/json",
                    },
                )
        except httpx.HTTPError as e:
            raise ProviderError(f"QuickBooks request failed: {e}") from e

        if response.status_code == 401:
            raise TokenExpiredError("QuickBooks access token rejected")
        if response.status_code != 200:
            raise ProviderError(f"QuickBooks query error: {response.status_code} - {response.text}")

        query_response = response.json().get("QueryResponse", {})
        for key in query_response:
            if key not in ("startPosition", "maxResults", "totalCount"):
                return query_response.get(key, [])
        return []

    async def get_payments_since(self, since: date) -> List[Dict[str, Any]]:
        return await self.query(
            f"SELECT * FROM Payment WHERE TxnDate >= '{since.isoformat()}' MAXRESULTS 1000"
        )


# ============================================================================
# SYNC ADAPTER
# ============================================================================

class QuickBooksPaymentSync(PaymentSyncAdapter):
    source = PaymentSource.QUICKBOOKS

    def __init__(
        self,
        *args,
        rate_limiter: Optional[ProviderRateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.rate_limiter = rate_limiter or build_provider_rate_limiter(self.config)
        self._transport = transport
        self.integration: Optional[Integration] = None

    @property
    def integration_id(self) -> Optional[str]:
        return self.integration.id if self.integration else None

    async def _load_integration(self) -> Optional[Integration]:
        result = await self.db.execute(
            select(Integration).where(
                Integration.organization_id == self.organization_id,
                Integration.provider == "quickbooks",
                Integration.status.in_([IntegrationStatus.ACTIVE.value, IntegrationStatus.ERROR.value]),
            )
        )
        return result.scalars().first()

    def _build_client(self, integration: Integration) -> QuickBooksPaymentsClient:
        return QuickBooksPaymentsClient(
            access_token=integration.access_token,
            refresh_token=integration.refresh_token,
            realm_id=integration.realm_id,
            client_id=settings.QUICKBOOKS_CLIENT_ID,
            client_secret=settings.QUICKBOOKS_CLIENT_SECRET,
            environment=settings.QUICKBOOKS_ENVIRONMENT,
            timeout=self.config.provider_timeout_seconds,
            transport=self._transport,
        )

    def _throttle(self) -> None:
        result = self.rate_limiter.acquire("quickbooks", self.organization_id)
        if not result.allowed:
            raise ProviderError("QuickBooks API rate limit reached; will retry next run")

    async def _refresh(self, client: QuickBooksPaymentsClient, now: datetime) -> None:
        tokens = await client.refresh()
        self.integration.access_token = client.access_token
        self.integration.refresh_token = client.refresh_token
        if tokens.get("expires_in"):
            self.integration.token_expires_at = now + timedelta(seconds=int(tokens["expires_in"]))
        await self.db.commit()

    async def run(self, now: Optional[datetime] = None) -> SyncResult:
        self.integration = await self._load_integration()
        if self.integration is None:
            return SyncResult(source=self.source.value, status="skipped")

        result = await super().run(now)
        await self.db.refresh(self.integration)

        if result.status in ("success", "partial"):
            self.integration.status = IntegrationStatus.ACTIVE.value
            self.integration.last_sync_status = "success"
            self.integration.sync_error = None
            self.integration.last_sync_at = now or utcnow()
            await self.db.commit()
        return result

    async def discover(self, now: datetime) -> List[PaymentCandidate]:
        client = self._build_client(self.integration)
        since = now.date() - timedelta(days=self.config.payment_sync_lookback_days)

        refreshed = False
        if self.integration.token_expires_at and self.integration.token_expires_at <= now:
            await self._refresh(client, now)
            refreshed = True

        self._throttle()
        try:
            raw = await client.get_payments_since(since)
        except TokenExpiredError:
            if refreshed:
                raise
            await self._refresh(client, now)
            self._throttle()
            raw = await client.get_payments_since(since)

        payments = normalize_payments(raw)
        if not payments:
            return []

        invoices = await self.open_invoices()
        by_ref: Dict[str, Any] = {}
        for inv in invoices:
            for ref in (inv.quickbooks_id, inv.external_id):
                if ref:
                    by_ref.setdefault(ref, inv)

        candidates = []
        for payment in payments:
            invoice = by_ref.get(payment.invoice_ref)
            if invoice is None:
                continue
            candidates.append(PaymentCandidate(
                invoice_id=invoice.id,
                amount_cents=payment.amount_cents,
                paid_at=datetime.combine(payment.paid_on, datetime.min.time()),
                external_reference=f"qb_payment_{payment.payment_id}",
                payment_method=payment.method,
            ))
        return candidates

    async def on_discover_failed(self, error: ProviderError) -> None:
        if isinstance(error, (TokenRefreshError, TokenExpiredError)):
            self.integration.status = IntegrationStatus.EXPIRED.value
            self.integration.sync_error = f"{error}. Please reconnect to QuickBooks."
            logger.warning(f"QuickBooks integration {self.integration.id} expired")
        else:
            self.integration.status = IntegrationStatus.ERROR.value
            self.integration.sync_error = str(error)
        self.integration.last_sync_status = "error"
        self.integration.last_sync_at = utcnow()
        await self.db.commit()
