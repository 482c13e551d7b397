"""
Invoice Analyzer.

Scores open invoices, ranks them by urgency and recommends staged outreach.
"""

from .engine import InvoiceAnalyzer
from .models import ClientProfile, InvoiceAnalysis, InvoiceContext, RecommendedAction
from .policy import (
    analyze_invoice,
    analyze_invoices,
    next_contact_time,
    recommend_actions,
    urgency_score,
)
from .stages import ContactStage, classify_stage, tone_for_stage

__all__ = [
    "InvoiceAnalyzer",
    "ClientProfile",
    "InvoiceAnalysis",
    "InvoiceContext",
    "RecommendedAction",
    "analyze_invoice",
    "analyze_invoices",
    "next_contact_time",
    "recommend_actions",
    "urgency_score",
    "ContactStage",
    "classify_stage",
    "tone_for_stage",
]
