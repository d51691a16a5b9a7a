"""
Relational schema for the CRM tables the engine reads and writes.

Uniqueness at the storage layer is the authoritative duplicate guard:
- at most one approved/paid closing commission per deal
- at most one invoice per (deal, recurrence_month, recurrence_year)
"""

import enum
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from .calculators.deal_values import calculate_deal_values
from .models import (
    CommissionStatus,
    CommissionType,
    DealType,
    InvoiceStatus,
    LossReason,
    Role,
    Stage,
)

MONEY = Numeric(14, 2)
RATE = Numeric(9, 4)

PROCESSED_CLOSING_WHERE = "commission_type = 'closing' AND status IN ('approved', 'paid')"


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls: type[enum.Enum]) -> Enum:
    # Store the lowercase values, not the member names
    return Enum(
        enum_cls,
        native_enum=False,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class Base(DeclarativeBase):
    pass


class Deal(Base):
    __tablename__ = "deals"
    __table_args__ = (Index("ix_deals_type_stage", "deal_type", "stage"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    company_id: Mapped[str | None] = mapped_column(String(36))

    deal_type: Mapped[DealType] = mapped_column(_enum(DealType), nullable=False, default=DealType.PROJECT)
    stage: Mapped[Stage] = mapped_column(_enum(Stage), nullable=False, default=Stage.LEAD)
    probability: Mapped[int] = mapped_column(Integer, nullable=False, default=10)

    # For retainers, value is derived from monthly_value * contract_duration_months
    value: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    monthly_value: Mapped[Decimal | None] = mapped_column(MONEY)
    contract_duration_months: Mapped[int | None] = mapped_column(Integer)

    owner_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    sdr_id: Mapped[str | None] = mapped_column(String(36), index=True)
    closer_id: Mapped[str | None] = mapped_column(String(36), index=True)

    loss_reason: Mapped[LossReason | None] = mapped_column(_enum(LossReason))
    loss_notes: Mapped[str | None] = mapped_column(Text)
    loss_competitor: Mapped[str | None] = mapped_column(String(255))

    actual_close_date: Mapped[date | None] = mapped_column(Date)

    monthly_hours: Mapped[int | None] = mapped_column(Integer)
    hours_consumed: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=Decimal("0"))
    hours_rollover: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    commissions: Mapped[list["Commission"]] = relationship(back_populates="deal")
    invoices: Mapped[list["Invoice"]] = relationship(back_populates="deal")

    def __repr__(self) -> str:
        return f"<Deal {self.id} {self.title!r} {self.stage.value if self.stage else None}>"


@event.listens_for(Deal, "before_insert")
@event.listens_for(Deal, "before_update")
def _sync_retainer_value(mapper, connection, target: Deal) -> None:
    """Keep value = monthly_value * contract_duration_months for retainers."""
    if (
        target.deal_type == DealType.RETAINER
        and target.monthly_value is not None
        and target.contract_duration_months
    ):
        values = calculate_deal_values(
            target.deal_type, target.value, target.monthly_value, target.contract_duration_months
        )
        target.value = values.total_value


class UserRole(Base):
    __tablename__ = "user_roles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    role: Mapped[Role] = mapped_column(_enum(Role), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class CommissionRule(Base):
    __tablename__ = "commission_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    commission_type: Mapped[CommissionType] = mapped_column(_enum(CommissionType), nullable=False)
    # NULL role / deal_type match any value
    role: Mapped[Role | None] = mapped_column(_enum(Role))
    deal_type: Mapped[DealType | None] = mapped_column(_enum(DealType))
    percentage: Mapped[Decimal | None] = mapped_column(RATE)
    is_tiered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Lower wins when several rules match the same deal
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    tiers: Mapped[list["CommissionTier"]] = relationship(
        back_populates="rule",
        cascade="all, delete-orphan",
        order_by="CommissionTier.min_value",
    )

    def __repr__(self) -> str:
        return f"<CommissionRule {self.name!r} {self.commission_type.value if self.commission_type else None}>"


class CommissionTier(Base):
    __tablename__ = "commission_tiers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    rule_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("commission_rules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    min_value: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    max_value: Mapped[Decimal | None] = mapped_column(MONEY)  # NULL = unbounded
    percentage: Mapped[Decimal] = mapped_column(RATE, nullable=False)

    rule: Mapped[CommissionRule] = relationship(back_populates="tiers")


class Commission(Base):
    __tablename__ = "commissions"
    __table_args__ = (
        Index("ix_commissions_deal_type", "deal_id", "commission_type"),
        Index(
            "uq_commissions_processed_closing",
            "deal_id",
            unique=True,
            sqlite_where=text(PROCESSED_CLOSING_WHERE),
            postgresql_where=text(PROCESSED_CLOSING_WHERE),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    deal_id: Mapped[str] = mapped_column(String(36), ForeignKey("deals.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    rule_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("commission_rules.id"))
    commission_type: Mapped[CommissionType] = mapped_column(_enum(CommissionType), nullable=False)
    base_value: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    # Blended rate for tiered rules; display only, see effective_percentage
    percentage: Mapped[Decimal] = mapped_column(RATE, nullable=False, default=Decimal("0"))
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    status: Mapped[CommissionStatus] = mapped_column(
        _enum(CommissionStatus), nullable=False, default=CommissionStatus.PENDING
    )
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    deal: Mapped[Deal] = relationship(back_populates="commissions")
    rule: Mapped[CommissionRule | None] = relationship()

    @property
    def effective_percentage(self) -> Decimal:
        """Rate recomputed from amount and base rather than the stored column."""
        if not self.base_value:
            return Decimal("0")
        return Decimal(self.amount) / Decimal(self.base_value) * Decimal("100")


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("deal_id", "recurrence_month", "recurrence_year", name="uq_invoices_deal_period"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    deal_id: Mapped[str] = mapped_column(String(36), ForeignKey("deals.id"), nullable=False, index=True)
    company_id: Mapped[str | None] = mapped_column(String(36))
    invoice_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[InvoiceStatus] = mapped_column(
        _enum(InvoiceStatus), nullable=False, default=InvoiceStatus.PENDING
    )
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recurrence_month: Mapped[int | None] = mapped_column(Integer)
    recurrence_year: Mapped[int | None] = mapped_column(Integer)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    deal: Mapped[Deal] = relationship(back_populates="invoices")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str | None] = mapped_column(String(36))  # NULL = system job
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(64), nullable=False)
    changes: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_deal_type", "deal_id", "type"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    deal_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("deals.id"))
    company_id: Mapped[str | None] = mapped_column(String(36))
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Activity(Base):
    """A to-do on a deal, assigned to a user."""

    __tablename__ = "activities"
    __table_args__ = (Index("ix_activities_deal_title", "deal_id", "title"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="task")
    deal_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("deals.id"))
    company_id: Mapped[str | None] = mapped_column(String(36))
    assigned_to: Mapped[str | None] = mapped_column(String(36), index=True)
    created_by: Mapped[str | None] = mapped_column(String(36))
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
