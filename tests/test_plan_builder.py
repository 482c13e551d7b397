"""
Tests for the Action Plan Builder and outreach content drafting.
"""

import pytest
from datetime import date, datetime, timedelta

from recoup.analysis import ClientProfile, InvoiceContext, analyze_invoice
from recoup.errors import MalformedPayloadError
from recoup.models import ActionType, OutreachTone, PlanStatus
from recoup.plans import (
    PAYMENT_LINK_PLACEHOLDER,
    build_action_plan,
    build_invoice_plan,
    draft_outreach,
    format_currency,
    qualifies_for_plan,
)
from recoup.schemas.cashflow import (
    CashSqueezeAlert,
    CashSqueezeRecommendation,
    SqueezeSeverity,
    SqueezeType,
)
from recoup.schemas.outreach import (
    EarlyPayDiscount,
    OutreachContent,
    PaymentPlanOffer,
    build_action_payload,
    parse_action_payload,
)
from recoup.schemas.plan import parse_analysis_snapshot

NOW = datetime(2026, 3, 16, 10, 0, 0)
TODAY = NOW.date()


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def profile():
    return ClientProfile(id="client_1", name="Globex", email="ap@globex.test", phone="+15550100", payment_score=80)


@pytest.fixture
def analyses(profile, config):
    def ctx(invoice_id, days_from_due):
        return InvoiceContext(
            invoice_id=invoice_id,
            invoice_number=invoice_id.upper(),
            organization_id="org_1",
            amount_cents=100_000,
            amount_paid_cents=0,
            due_date=TODAY + timedelta(days=days_from_due),
            status="sent",
            client=profile,
        )

    return {
        "overdue": analyze_invoice(ctx("inv_overdue", -10), NOW, config),
        "future": analyze_invoice(ctx("inv_future", 10), NOW, config),
        "approaching": analyze_invoice(ctx("inv_soon", 2), NOW, config),
        "serious": analyze_invoice(ctx("inv_serious", -30), NOW, config),
    }


# =============================================================================
# Unit Tests - Builder
# =============================================================================

class TestQualification:

    def test_overdue_qualifies(self, analyses, config):
        assert qualifies_for_plan(analyses["overdue"], config)

    def test_urgent_upcoming_qualifies(self, analyses, config):
        assert analyses["approaching"].urgency_score == 22
        assert qualifies_for_plan(analyses["approaching"], config)

    def test_distant_invoice_does_not_qualify(self, analyses, config):
        assert not qualifies_for_plan(analyses["future"], config)


class TestBuildActionPlan:
    """Tests for plan assembly and cached totals."""

    def test_totals_and_draft_status(self, analyses, config):
        plan = build_action_plan(
            "org_1",
            [analyses["overdue"], analyses["future"], analyses["approaching"]],
            [],
            config,
            NOW,
        )

        assert plan.status == PlanStatus.DRAFT
        assert plan.id is None
        assert [p.invoice_id for p in plan.invoice_plans] == ["inv_overdue", "inv_soon"]
        assert plan.total_at_risk_cents == 200_000
        assert plan.projected_recovery_cents == 145_500
        assert plan.projected_fee_cents == 11_640

    def test_fee_projection_uses_configured_percent(self, analyses, config):
        custom = config.with_overrides({"success_fee_percent": 0.10})
        plan = build_action_plan("org_1", [analyses["overdue"]], [], custom, NOW)
        assert plan.projected_fee_cents == 6_550

    def test_proactive_measures_from_targeted_recommendations(self, analyses, config):
        alert = CashSqueezeAlert(
            type=SqueezeType.INVOICE_CLUSTERING,
            severity=SqueezeSeverity.WARNING,
            date=TODAY + timedelta(days=10),
            description="3 invoices due the same day",
            recommendations=[
                CashSqueezeRecommendation(
                    action="Incentivize early payment on largest invoices",
                    potential_impact_cents=1_050_000,
                    target_invoice_ids=["inv_a", "inv_b"],
                    incentive_type="early_pay_discount",
                    discount_percent=3,
                ),
                CashSqueezeRecommendation(action="Accelerate billing for completed work"),
            ],
        )

        plan = build_action_plan("org_1", [analyses["overdue"]], [alert], config, NOW)

        assert plan.cash_squeeze_alerts == [alert]
        assert len(plan.proactive_measures) == 1
        measure = plan.proactive_measures[0]
        assert measure.alert_type == "invoice_clustering"
        assert measure.target_invoice_ids == ["inv_a", "inv_b"]
        assert measure.discount_percent == 3

    def test_invoice_plan_drafts_content_in_stage_tone(self, analyses):
        invoice_plan = build_invoice_plan(analyses["serious"])

        types = [a.type for a in invoice_plan.actions]
        assert types == [ActionType.PAYMENT_PLAN, ActionType.CALL]
        plan_action = invoice_plan.actions[0]
        assert plan_action.payload.type == "payment_plan"
        assert plan_action.payload.content.tone == OutreachTone.URGENT
        assert plan_action.payload.incentive.months == 3
        call_action = invoice_plan.actions[1]
        assert call_action.payload.talking_points
        assert all(a.id.startswith("prop_") for a in invoice_plan.actions)

    def test_snapshot_round_trips_through_json(self, analyses):
        invoice_plan = build_invoice_plan(analyses["overdue"])
        stored = invoice_plan.analysis.model_dump(mode="json")
        assert parse_analysis_snapshot(stored) == invoice_plan.analysis

    def test_snapshot_missing_fields_is_rejected(self, analyses):
        stored = build_invoice_plan(analyses["overdue"]).analysis.model_dump(mode="json")
        del stored["urgency_score"]
        with pytest.raises(MalformedPayloadError):
            parse_analysis_snapshot(stored)


# =============================================================================
# Unit Tests - Content
# =============================================================================

class TestContentDrafting:

    def _draft(self, action_type, tone=OutreachTone.FRIENDLY, days_overdue=10, incentive=None):
        return draft_outreach(
            action_type,
            client_name="Globex",
            invoice_number="INV-1001",
            amount_due_cents=123_456,
            due_date=date(2026, 3, 6),
            days_overdue=days_overdue,
            tone=tone,
            incentive=incentive,
        )

    def test_format_currency(self):
        assert format_currency(100_000) == "$1,000.00"
        assert format_currency(5) == "$0.05"

    @pytest.mark.parametrize("tone", list(OutreachTone))
    def test_emails_carry_link_placeholder(self, tone):
        content, talking_points = self._draft(ActionType.EMAIL, tone=tone)
        assert PAYMENT_LINK_PLACEHOLDER in content.body
        assert "$1,234.56" in content.body
        assert content.subject
        assert talking_points == []

    def test_friendly_reminder_before_due(self):
        content, _ = self._draft(ActionType.EMAIL, days_overdue=0)
        assert "Due Soon" in content.subject

    def test_sms_has_no_placeholder(self):
        content, _ = self._draft(ActionType.SMS)
        assert PAYMENT_LINK_PLACEHOLDER not in content.body
        assert content.subject is None
        assert "10 days overdue" in content.body

    def test_discount_offer_mentions_discounted_total(self):
        offer = EarlyPayDiscount(
            discount_percent=5,
            discount_amount_cents=6_173,
            expires_at=NOW + timedelta(days=7),
        )
        content, _ = self._draft(ActionType.DISCOUNT_OFFER, incentive=offer)
        assert content.subject == "Save 5% on invoice INV-1001"
        assert "$1,172.83" in content.body

    def test_payment_plan_mentions_installments(self):
        offer = PaymentPlanOffer(months=3, monthly_amount_cents=41_152, expires_at=NOW + timedelta(days=14))
        content, _ = self._draft(ActionType.PAYMENT_PLAN, incentive=offer)
        assert "3 monthly installments of $411.52" in content.body

    def test_call_script_has_talking_points(self):
        content, talking_points = self._draft(ActionType.CALL, tone=OutreachTone.FINAL)
        assert len(talking_points) == 4
        assert "INV-1001" in talking_points[0]
        assert content.tone == OutreachTone.FINAL


# =============================================================================
# Unit Tests - Payloads
# =============================================================================

class TestActionPayloads:

    def test_payload_tagged_by_type(self):
        content = OutreachContent(subject="Hi", body="Body", tone=OutreachTone.FRIENDLY)
        payload = build_action_payload(ActionType.EMAIL, content)

        parsed = parse_action_payload(payload.model_dump(mode="json"))

        assert parsed.type == "email"
        assert parsed.content.body == "Body"

    def test_incentive_required_for_offers(self):
        content = OutreachContent(body="Body", tone=OutreachTone.REMINDER)
        with pytest.raises(MalformedPayloadError):
            build_action_payload(ActionType.DISCOUNT_OFFER, content)
        with pytest.raises(MalformedPayloadError):
            build_action_payload(ActionType.PAYMENT_PLAN, content)

    @pytest.mark.parametrize("document", [
        {"type": "fax", "content": {"body": "x", "tone": "friendly"}},
        {"type": "discount_offer", "content": {"body": "x", "tone": "friendly"}},
        {"type": "email"},
        "not a payload",
    ])
    def test_malformed_payloads_rejected(self, document):
        with pytest.raises(MalformedPayloadError):
            parse_action_payload(document)
