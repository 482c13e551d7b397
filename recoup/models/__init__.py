"""
Consolidated models package.

Explicit imports only. Relationships use string-based forward references.
"""

from recoup.models.base import generate_id, utcnow

from recoup.models.organization import Organization

from recoup.models.invoice import (
    Client,
    Invoice,
    InvoiceStatus,
    OPEN_INVOICE_STATUSES,
)

from recoup.models.banking import BankAccount, BankTransaction

from recoup.models.plan import (
    ActionPlanRecord,
    PlanInvoiceEntry,
    PlanStatus,
    PlanEntryStatus,
    AWAITING_DECISION_STATUSES,
)

from recoup.models.action import (
    ActionType,
    ActionStatus,
    Engagement,
    OutreachTone,
    ScheduledAction,
    ManualTask,
    CommunicationLog,
    EMAIL_ACTION_TYPES,
    PENDING_ACTION_STATUSES,
    ENGAGEMENT_ORDER,
)

from recoup.models.recovery import (
    AttributionType,
    PaymentSource,
    RecoveryStatus,
    BillingCycleStatus,
    RecoveryEvent,
    BillingCycle,
)

from recoup.models.integration import Integration, IntegrationStatus, SyncLog

__all__ = [
    "generate_id",
    "utcnow",
    "Organization",
    "Client",
    "Invoice",
    "InvoiceStatus",
    "OPEN_INVOICE_STATUSES",
    "BankAccount",
    "BankTransaction",
    "ActionPlanRecord",
    "PlanInvoiceEntry",
    "PlanStatus",
    "PlanEntryStatus",
    "AWAITING_DECISION_STATUSES",
    "ActionType",
    "ActionStatus",
    "Engagement",
    "OutreachTone",
    "ScheduledAction",
    "ManualTask",
    "CommunicationLog",
    "EMAIL_ACTION_TYPES",
    "PENDING_ACTION_STATUSES",
    "ENGAGEMENT_ORDER",
    "AttributionType",
    "PaymentSource",
    "RecoveryStatus",
    "BillingCycleStatus",
    "RecoveryEvent",
    "BillingCycle",
    "Integration",
    "IntegrationStatus",
    "SyncLog",
]
