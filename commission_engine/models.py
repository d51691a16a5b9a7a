"""
Domain Models for the Commission Engine

Enumerations for the CRM vocabulary plus the request/result dataclasses
that flow through the closing pipeline and the billing jobs.
All monetary values use Decimal for precision.
"""

import enum
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from .errors import ValidationError

# =============================================================================
# ENUMERATIONS
# =============================================================================


class Role(str, enum.Enum):
    ADMIN = "admin"
    CLOSER = "closer"
    SDR = "sdr"


class Stage(str, enum.Enum):
    LEAD = "lead"
    QUALIFIED = "qualified"
    PROPOSAL = "proposal"
    NEGOTIATION = "negotiation"
    CLOSED_WON = "closed_won"
    CLOSED_LOST = "closed_lost"


# Funnel position; both closed stages share the last slot
STAGE_ORDER = {
    Stage.LEAD: 0,
    Stage.QUALIFIED: 1,
    Stage.PROPOSAL: 2,
    Stage.NEGOTIATION: 3,
    Stage.CLOSED_WON: 4,
    Stage.CLOSED_LOST: 4,
}


class DealType(str, enum.Enum):
    RETAINER = "retainer"
    PROJECT = "project"


class CommissionType(str, enum.Enum):
    QUALIFICATION = "qualification"
    CLOSING = "closing"
    DELIVERY = "delivery"
    REFERRAL = "referral"


class CommissionStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"


# A closing commission in one of these states blocks reprocessing
PROCESSED_COMMISSION_STATUSES = (CommissionStatus.APPROVED, CommissionStatus.PAID)


class InvoiceStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class LossReason(str, enum.Enum):
    PRICE = "price"
    TIMING = "timing"
    COMPETITOR = "competitor"
    NO_BUDGET = "no_budget"
    NO_FIT = "no_fit"
    OTHER = "other"


@dataclass(frozen=True)
class StageProbabilities:
    """Display probability per stage. Injected wherever a stage is written."""

    lead: int = 10
    qualified: int = 40
    proposal: int = 60
    negotiation: int = 80
    closed_won: int = 100
    closed_lost: int = 0

    def for_stage(self, stage: "Stage") -> int:
        return getattr(self, Stage(stage).value)


def parse_enum(enum_cls, value, field_name: str):
    """Coerce a raw value into an enum member, raising ValidationError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {field_name}: {value!r}. Must be one of: {allowed}")


def parse_date(value, field_name: str) -> date | None:
    """Parse an ISO 'YYYY-MM-DD' string (or pass a date through)."""
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"{field_name} must be an ISO date (YYYY-MM-DD), got: {value!r}")


# =============================================================================
# INPUT MODELS
# =============================================================================


@dataclass
class CloseDealRequest:
    """Request to move a deal to closed_won and run its side effects."""

    deal_id: str
    actor_id: str | None = None
    actual_close_date: date | None = None
    start_recurring: bool = False

    @classmethod
    def from_dict(cls, data: dict, actor_id: str | None = None) -> "CloseDealRequest":
        deal_id = data.get("deal_id")
        if not deal_id:
            raise ValidationError("deal_id is required")
        return cls(
            deal_id=str(deal_id),
            actor_id=actor_id,
            actual_close_date=parse_date(data.get("actual_close_date"), "actual_close_date"),
            start_recurring=bool(data.get("start_recurring", False)),
        )


@dataclass
class MoveDealRequest:
    """Request to move a deal to another pipeline stage."""

    deal_id: str
    actor_id: str
    to_stage: Stage
    loss_reason: LossReason | None = None
    loss_notes: str | None = None
    loss_competitor: str | None = None
    actual_close_date: date | None = None
    start_recurring: bool = False

    @classmethod
    def from_dict(cls, data: dict, actor_id: str) -> "MoveDealRequest":
        deal_id = data.get("deal_id")
        if not deal_id:
            raise ValidationError("deal_id is required")
        if not data.get("to_stage"):
            raise ValidationError("to_stage is required")
        reason = data.get("loss_reason")
        return cls(
            deal_id=str(deal_id),
            actor_id=actor_id,
            to_stage=parse_enum(Stage, data["to_stage"], "to_stage"),
            loss_reason=parse_enum(LossReason, reason, "loss_reason") if reason else None,
            loss_notes=data.get("loss_notes"),
            loss_competitor=data.get("loss_competitor"),
            actual_close_date=parse_date(data.get("actual_close_date"), "actual_close_date"),
            start_recurring=bool(data.get("start_recurring", False)),
        )


# =============================================================================
# OUTPUT / RESULT MODELS
# =============================================================================


@dataclass
class MoveValidation:
    """Decision of the stage-transition validator."""

    allowed: bool
    error: str | None = None
    requires_loss_reason: bool = False
    requires_close_date: bool = False

    def to_dict(self) -> dict:
        result = {"allowed": self.allowed}
        if self.error:
            result["error"] = self.error
        if self.requires_loss_reason:
            result["requires_loss_reason"] = True
        if self.requires_close_date:
            result["requires_close_date"] = True
        return result


@dataclass
class CommissionAmount:
    """A computed commission before it is persisted.

    For tiered rules, percentage is the blended (effective) rate.
    """

    amount: Decimal = Decimal("0")
    percentage: Decimal = Decimal("0")
    is_tiered: bool = False


@dataclass
class CommissionRecord:
    """A commission written by the closing pipeline."""

    id: str
    user_id: str
    commission_type: CommissionType
    status: CommissionStatus
    base_value: Decimal
    percentage: Decimal
    amount: Decimal


@dataclass
class CloseDealResult:
    """Outcome of the deal-closing pipeline."""

    deal_id: str
    actual_close_date: date
    commissions_created: int = 0
    commission_ids: list[str] = field(default_factory=list)
    commissions: list[CommissionRecord] = field(default_factory=list)
    qualification_approved: bool = False
    invoice_created: bool = False
    invoice_number: str | None = None


@dataclass
class MoveResult:
    """Outcome of a stage move."""

    deal_id: str
    from_stage: Stage
    to_stage: Stage
    probability: int
    changed: bool = True
    closing: CloseDealResult | None = None


@dataclass
class InvoiceRunSummary:
    """Summary of one recurring invoice run."""

    month: int
    year: int
    invoices_created: int = 0
    invoice_ids: list[str] = field(default_factory=list)
    invoice_numbers: list[str] = field(default_factory=list)
    already_invoiced: list[str] = field(default_factory=list)
    expired: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    message: str = ""


@dataclass
class LifecycleSummary:
    """Summary of one retainer lifecycle run."""

    hours_reset: int = 0
    rollover_hours: dict[str, Decimal] = field(default_factory=dict)
    hours_usage: dict[str, Decimal] = field(default_factory=dict)
    contract_alerts: list[str] = field(default_factory=list)
    notifications_created: list[str] = field(default_factory=list)
    tasks_created: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
