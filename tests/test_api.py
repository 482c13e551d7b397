"""
API tests for the AR engine routes.

Runs the FastAPI app in-process over httpx with the database dependency
pointed at the in-memory test engine. Routes use the wall clock, so
invoice dates here are relative to today.
"""

import pytest
from datetime import timedelta

import httpx
from fastapi import Request

from recoup.auth.utils import create_access_token, decode_access_token
from recoup.database import get_db
from recoup.main import app
from recoup.middleware.rate_limit import rate_limit_key
from recoup.models import utcnow

PREFIX = "/api/ar-engine"


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
async def api(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(org):
    return {"Authorization": f"Bearer {create_access_token('user_1', org.id)}"}


@pytest.fixture
async def overdue_invoice(make_client, make_invoice):
    client = await make_client()
    return await make_invoice(client, amount_cents=100_000, due_date=utcnow().date() - timedelta(days=10))


# =============================================================================
# Auth
# =============================================================================

class TestAuth:

    def test_token_carries_organization(self, org):
        payload = decode_access_token(create_access_token("user_1", org.id))
        assert payload["sub"] == "user_1"
        assert payload["org_id"] == org.id

    def test_tampered_token_rejected(self, org):
        token = create_access_token("user_1", org.id)
        assert decode_access_token(token[:-2] + "xx") is None

    def test_rate_limit_keyed_by_organization(self, org, auth_headers):
        scope = {
            "type": "http",
            "headers": [(b"authorization", auth_headers["Authorization"].encode())],
            "client": ("10.0.0.1", 5000),
        }
        assert rate_limit_key(Request(scope)) == f"org:{org.id}"

        anonymous = Request({"type": "http", "headers": [], "client": ("10.0.0.1", 5000)})
        assert rate_limit_key(anonymous) == "10.0.0.1"

    @pytest.mark.asyncio
    async def test_missing_token(self, api):
        response = await api.get(f"{PREFIX}/analysis")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_execute_requires_cron_secret_or_token(self, api):
        response = await api.post(f"{PREFIX}/execute", headers={"X-Cron-Secret": "guess"})
        assert response.status_code == 401


# =============================================================================
# Routes
# =============================================================================

class TestAnalysisRoutes:

    @pytest.mark.asyncio
    async def test_analysis_lists_open_invoices(self, api, auth_headers, overdue_invoice):
        response = await api.get(f"{PREFIX}/analysis", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        invoice = data["invoices"][0]
        assert invoice["invoice_id"] == overdue_invoice.id
        assert invoice["days_overdue"] == 10
        assert [a["type"] for a in invoice["recommended_actions"]] == ["email", "payment_link"]

    @pytest.mark.asyncio
    async def test_cash_squeezes_without_bank_accounts(self, api, auth_headers):
        response = await api.get(f"{PREFIX}/cash-squeezes", headers=auth_headers)
        assert response.status_code == 200
        assert response.json() == {"alerts": []}


class TestPlanRoutes:

    @pytest.mark.asyncio
    async def test_generate_review_and_approve(self, api, auth_headers, overdue_invoice):
        generated = await api.post(f"{PREFIX}/plans", headers=auth_headers)
        assert generated.status_code == 200
        plan_id = generated.json()["id"]

        pending = await api.get(f"{PREFIX}/plans/pending", headers=auth_headers)
        assert pending.json()["id"] == plan_id

        approved = await api.post(
            f"{PREFIX}/plans/{plan_id}/approve",
            json={"invoice_ids": [overdue_invoice.id]},
            headers=auth_headers,
        )
        assert approved.status_code == 200
        body = approved.json()
        assert body["approved_invoice_ids"] == [overdue_invoice.id]
        assert body["actions_created"] == 2
        assert body["plan_status"] == "approved"

        again = await api.post(f"{PREFIX}/plans/{plan_id}/approve", json={}, headers=auth_headers)
        assert again.status_code == 400

    @pytest.mark.asyncio
    async def test_no_pending_plan(self, api, auth_headers):
        response = await api.get(f"{PREFIX}/plans/pending", headers=auth_headers)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_plan(self, api, auth_headers):
        response = await api.post(f"{PREFIX}/plans/plan_missing/reject", json={}, headers=auth_headers)
        assert response.status_code == 404


class TestPaymentRoutes:

    @pytest.mark.asyncio
    async def test_manual_payment(self, api, auth_headers, overdue_invoice):
        response = await api.post(
            f"{PREFIX}/payments",
            json={"invoice_id": overdue_invoice.id, "amount_cents": 100_000, "payment_method": "check"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["invoice_status"] == "paid"
        assert data["attribution_type"] == "organic"
        assert data["fee_amount_cents"] == 0
        assert data["duplicate"] is False

        fees = await api.get(f"{PREFIX}/fees", headers=auth_headers)
        assert fees.json()["all_time"]["recovered_cents"] == 100_000

    @pytest.mark.asyncio
    async def test_overpayment_rejected(self, api, auth_headers, overdue_invoice):
        response = await api.post(
            f"{PREFIX}/payments",
            json={"invoice_id": overdue_invoice.id, "amount_cents": 500_000},
            headers=auth_headers,
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_non_positive_amount_rejected_by_schema(self, api, auth_headers, overdue_invoice):
        response = await api.post(
            f"{PREFIX}/payments",
            json={"invoice_id": overdue_invoice.id, "amount_cents": 0},
            headers=auth_headers,
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_invoice(self, api, auth_headers):
        response = await api.post(
            f"{PREFIX}/payments",
            json={"invoice_id": "inv_missing", "amount_cents": 100},
            headers=auth_headers,
        )
        assert response.status_code == 404


class TestActionRoutes:

    @pytest.mark.asyncio
    async def test_unknown_action(self, api, auth_headers):
        retry = await api.post(f"{PREFIX}/actions/act_missing/retry", headers=auth_headers)
        engagement = await api.post(
            f"{PREFIX}/actions/act_missing/engagement",
            json={"engagement": "opened"},
            headers=auth_headers,
        )
        assert retry.status_code == 404
        assert engagement.status_code == 404
