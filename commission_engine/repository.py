"""
Data access for the closing pipeline and billing jobs.

Thin query layer over a Session; callers own the transaction.
"""

from datetime import date, datetime

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session, selectinload

from .models import CommissionStatus, CommissionType, DealType, Role, Stage
from .schema import Activity, Commission, CommissionRule, Deal, Invoice, Notification, UserRole


class CrmRepository:
    def __init__(self, session: Session):
        self.session = session

    # -- deals ---------------------------------------------------------------

    def get_deal(self, deal_id: str, lock: bool = False) -> Deal | None:
        stmt = select(Deal).where(Deal.id == deal_id)
        if lock:
            stmt = stmt.with_for_update()
        return self.session.scalars(stmt).first()

    def mark_closed_won(self, deal: Deal, probability: int, close_date: date) -> bool:
        """
        Compare-and-swap the deal into closed_won.

        Returns False when another request already closed it.
        """
        result = self.session.execute(
            update(Deal)
            .where(Deal.id == deal.id, Deal.stage != Stage.CLOSED_WON)
            .values(stage=Stage.CLOSED_WON, probability=probability, actual_close_date=close_date)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self.session.refresh(deal)
        return True

    def won_retainer_deals(self) -> list[Deal]:
        """All closed_won retainers, with or without a monthly value."""
        stmt = (
            select(Deal)
            .where(Deal.deal_type == DealType.RETAINER, Deal.stage == Stage.CLOSED_WON)
            .order_by(Deal.created_at, Deal.id)
        )
        return list(self.session.scalars(stmt))

    def active_retainer_deals(self) -> list[Deal]:
        stmt = (
            select(Deal)
            .where(
                Deal.deal_type == DealType.RETAINER,
                Deal.stage == Stage.CLOSED_WON,
                Deal.monthly_value.is_not(None),
            )
            .order_by(Deal.created_at, Deal.id)
        )
        return list(self.session.scalars(stmt))

    # -- users ---------------------------------------------------------------

    def get_user_role(self, user_id: str | None) -> Role | None:
        if not user_id:
            return None
        return self.session.scalars(select(UserRole.role).where(UserRole.user_id == user_id)).first()

    # -- commission rules ----------------------------------------------------

    def active_rules(self) -> list[CommissionRule]:
        stmt = (
            select(CommissionRule)
            .where(CommissionRule.is_active.is_(True))
            .options(selectinload(CommissionRule.tiers))
        )
        return list(self.session.scalars(stmt))

    # -- commissions ---------------------------------------------------------

    def closing_commissions(self, deal_id: str) -> list[Commission]:
        stmt = select(Commission).where(
            Commission.deal_id == deal_id,
            Commission.commission_type == CommissionType.CLOSING,
        )
        return list(self.session.scalars(stmt))

    def find_commission(self, deal_id: str, user_id: str, commission_type: CommissionType) -> Commission | None:
        """The newest pending commission, else the newest in any status."""
        stmt = (
            select(Commission)
            .where(
                Commission.deal_id == deal_id,
                Commission.user_id == user_id,
                Commission.commission_type == commission_type,
            )
            .order_by(
                case((Commission.status == CommissionStatus.PENDING, 0), else_=1),
                Commission.created_at.desc(),
            )
        )
        return self.session.scalars(stmt).first()

    # -- invoices ------------------------------------------------------------

    def invoiced_deal_ids(self, deal_ids: list[str], month: int, year: int) -> set[str]:
        """Deals with any invoice for the period, recurring or not."""
        if not deal_ids:
            return set()
        stmt = select(Invoice.deal_id).where(
            Invoice.deal_id.in_(deal_ids),
            Invoice.recurrence_month == month,
            Invoice.recurrence_year == year,
        )
        return set(self.session.scalars(stmt))

    # -- notifications -------------------------------------------------------

    def notification_exists(self, deal_id: str, notification_type: str, since: datetime) -> bool:
        stmt = select(Notification.id).where(
            Notification.deal_id == deal_id,
            Notification.type == notification_type,
            Notification.created_at >= since,
        )
        return self.session.scalars(stmt).first() is not None

    def activity_exists(self, deal_id: str, title: str, since: datetime) -> bool:
        stmt = select(Activity.id).where(
            Activity.deal_id == deal_id,
            Activity.title == title,
            Activity.created_at >= since,
        )
        return self.session.scalars(stmt).first() is not None

    # -- generic -------------------------------------------------------------

    def add_all(self, objects) -> None:
        self.session.add_all(objects)
        self.session.flush()
