"""Action plan building, content drafting and review lifecycle."""

from .builder import build_action_plan, build_invoice_plan, proactive_measures_from, qualifies_for_plan
from .content import PAYMENT_LINK_PLACEHOLDER, draft_outreach, format_currency
from .service import ActionPlanService, ApprovalResult, plan_from_record

__all__ = [
    "build_action_plan",
    "build_invoice_plan",
    "proactive_measures_from",
    "qualifies_for_plan",
    "PAYMENT_LINK_PLACEHOLDER",
    "draft_outreach",
    "format_currency",
    "ActionPlanService",
    "ApprovalResult",
    "plan_from_record",
]
