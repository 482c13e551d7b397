"""
Outreach payload schemas.

Incentives and action payloads are tagged unions: every stored document
carries its discriminator (`kind` for incentives, `type` for payloads) and
is reconstructed with a TypeAdapter. Unknown tags or missing fields fail
validation instead of being silently defaulted.
"""

from datetime import datetime
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from recoup.errors import MalformedPayloadError
from recoup.models.action import ActionType, OutreachTone


# =============================================================================
# Incentives
# =============================================================================

class EarlyPayDiscount(BaseModel):
    kind: Literal["early_pay_discount"] = "early_pay_discount"
    discount_percent: float = Field(gt=0, le=100)
    discount_amount_cents: int = Field(ge=0)
    expires_at: datetime
    reason: str = ""


class PaymentPlanOffer(BaseModel):
    kind: Literal["payment_plan"] = "payment_plan"
    months: int = Field(ge=2)
    monthly_amount_cents: int = Field(gt=0)
    expires_at: datetime
    reason: str = ""


class DepositRequest(BaseModel):
    kind: Literal["deposit_request"] = "deposit_request"
    deposit_percent: float = Field(gt=0, le=100)
    expires_at: Optional[datetime] = None
    reason: str = ""


IncentiveOffer = Annotated[
    Union[EarlyPayDiscount, PaymentPlanOffer, DepositRequest],
    Field(discriminator="kind"),
]


# =============================================================================
# Message content
# =============================================================================

class OutreachContent(BaseModel):
    """Rendered-ready message text. Bodies may contain the payment link placeholder."""
    subject: Optional[str] = None
    body: str
    tone: OutreachTone


# =============================================================================
# Action payloads
# =============================================================================

class EmailPayload(BaseModel):
    type: Literal["email"] = "email"
    content: OutreachContent


class SMSPayload(BaseModel):
    type: Literal["sms"] = "sms"
    content: OutreachContent


class CallPayload(BaseModel):
    type: Literal["call"] = "call"
    content: OutreachContent
    talking_points: List[str] = Field(default_factory=list)


class PaymentLinkPayload(BaseModel):
    type: Literal["payment_link"] = "payment_link"
    content: OutreachContent


class DiscountOfferPayload(BaseModel):
    type: Literal["discount_offer"] = "discount_offer"
    content: OutreachContent
    incentive: EarlyPayDiscount


class PaymentPlanPayload(BaseModel):
    type: Literal["payment_plan"] = "payment_plan"
    content: OutreachContent
    incentive: PaymentPlanOffer


ActionPayload = Annotated[
    Union[
        EmailPayload,
        SMSPayload,
        CallPayload,
        PaymentLinkPayload,
        DiscountOfferPayload,
        PaymentPlanPayload,
    ],
    Field(discriminator="type"),
]

action_payload_adapter: TypeAdapter = TypeAdapter(ActionPayload)
incentive_adapter: TypeAdapter = TypeAdapter(IncentiveOffer)


def parse_action_payload(data: Any):
    """Validate a stored payload document. Raises MalformedPayloadError."""
    try:
        return action_payload_adapter.validate_python(data)
    except ValidationError as e:
        raise MalformedPayloadError(f"Invalid action payload: {e.error_count()} error(s)") from e


def build_action_payload(
    action_type: ActionType,
    content: OutreachContent,
    incentive: Optional[Union[EarlyPayDiscount, PaymentPlanOffer, DepositRequest]] = None,
    talking_points: Optional[List[str]] = None,
):
    """Assemble the payload variant for an action type."""
    action_type = ActionType(action_type)
    if action_type == ActionType.EMAIL:
        return EmailPayload(content=content)
    if action_type == ActionType.SMS:
        return SMSPayload(content=content)
    if action_type == ActionType.CALL:
        return CallPayload(content=content, talking_points=talking_points or [])
    if action_type == ActionType.PAYMENT_LINK:
        return PaymentLinkPayload(content=content)
    if action_type == ActionType.DISCOUNT_OFFER:
        if not isinstance(incentive, EarlyPayDiscount):
            raise MalformedPayloadError("discount_offer requires an early_pay_discount incentive")
        return DiscountOfferPayload(content=content, incentive=incentive)
    if not isinstance(incentive, PaymentPlanOffer):
        raise MalformedPayloadError("payment_plan requires a payment_plan incentive")
    return PaymentPlanPayload(content=content, incentive=incentive)
