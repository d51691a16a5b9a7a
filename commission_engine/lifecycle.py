"""
Retainer Lifecycle

Monthly housekeeping for won retainers:
- reset hours_consumed for the new period (rollover is computed and
  reported, not credited anywhere)
- alert the assigned closer when a contract ends within the alert window
  with a notification and a renewal task, each at most once per deal per
  calendar month
"""

import logging
import math
from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from .audit import AuditLogger
from .calculators import calculate_hours_info, calculate_rollover_hours
from .config import Settings
from .invoicing import contract_end_date
from .models import LifecycleSummary
from .repository import CrmRepository
from .schema import Activity, Notification, utcnow

logger = logging.getLogger(__name__)

CONTRACT_EXPIRING = "contract_expiring"
RENEWAL_TASK_TITLE = "Contract expiring soon"
RENEWAL_TASK_DUE_DAYS = 7


class RetainerLifecycleJob:
    def __init__(self, session_factory, settings: Settings | None = None, clock=None):
        self.session_factory = session_factory
        self.settings = settings or Settings()
        self.clock = clock or utcnow

    def run(self) -> LifecycleSummary:
        now = self.clock()
        summary = LifecycleSummary()

        with self.session_factory() as session, session.begin():
            repo = CrmRepository(session)
            self._reset_hours(session, repo, summary)
            self._contract_alerts(session, repo, now, summary)

            AuditLogger(session).record(
                action="retainer_lifecycle_run",
                resource_type="deals",
                resource_id="batch",
                changes={
                    "hours_reset": summary.hours_reset,
                    "rollover_hours": summary.rollover_hours,
                    "contract_alerts": len(summary.contract_alerts),
                    "notifications_created": len(summary.notifications_created),
                    "tasks_created": len(summary.tasks_created),
                    "errors": len(summary.errors),
                },
                created_at=now,
            )

        logger.info(
            f"Retainer lifecycle completed: hours_reset={summary.hours_reset}, "
            f"alerts={len(summary.contract_alerts)}, notifications={len(summary.notifications_created)}, "
            f"tasks={len(summary.tasks_created)}, "
            f"errors={len(summary.errors)}"
        )
        return summary

    def _reset_hours(self, session, repo: CrmRepository, summary: LifecycleSummary) -> None:
        for deal in repo.active_retainer_deals():
            rollover = Decimal("0")
            usage = None
            if deal.monthly_hours:
                rollover = calculate_rollover_hours(deal.monthly_hours, deal.hours_consumed, deal.hours_rollover)
                usage = calculate_hours_info(deal.monthly_hours, deal.hours_consumed or 0, deal.hours_rollover)
            try:
                with session.begin_nested():
                    deal.hours_consumed = Decimal("0")
            except SQLAlchemyError as e:
                summary.errors.append(f"Hours reset error for deal {deal.id}: {e}")
                continue

            summary.hours_reset += 1
            if usage is not None:
                summary.hours_usage[deal.id] = usage.usage_percentage
            if rollover > 0:
                summary.rollover_hours[deal.id] = rollover

    def _contract_alerts(self, session, repo: CrmRepository, now: datetime, summary: LifecycleSummary) -> None:
        window_end = now + timedelta(days=self.settings.contract_expiry_alert_days)
        month_start = datetime(now.year, now.month, 1, tzinfo=now.tzinfo)

        for deal in repo.won_retainer_deals():
            start = deal.actual_close_date or (deal.created_at.date() if deal.created_at else None)
            if not start or not deal.contract_duration_months or not deal.closer_id:
                continue

            end = contract_end_date(start, deal.contract_duration_months)
            ends_at = datetime(end.year, end.month, end.day, tzinfo=now.tzinfo)
            if not (now < ends_at <= window_end):
                continue

            days_left = math.ceil((ends_at - now).total_seconds() / 86400)
            summary.contract_alerts.append(f"Deal {deal.id} ({deal.title}) expires in {days_left} days")

            if not repo.notification_exists(deal.id, CONTRACT_EXPIRING, month_start):
                self._notify_closer(session, deal, end, days_left, now, summary)
            if not repo.activity_exists(deal.id, RENEWAL_TASK_TITLE, month_start):
                self._create_renewal_task(session, deal, end, days_left, now, summary)

    def _notify_closer(self, session, deal, end: date, days_left: int, now: datetime, summary) -> None:
        try:
            with session.begin_nested():
                session.add(
                    Notification(
                        user_id=deal.closer_id,
                        deal_id=deal.id,
                        company_id=deal.company_id,
                        type=CONTRACT_EXPIRING,
                        title=f"Contract {deal.title!r} renews in {days_left} days",
                        message=(
                            f"The contract {deal.title!r} ends on {end.isoformat()}. "
                            "Get in touch with the client to start the renewal."
                        ),
                        created_at=now,
                    )
                )
        except SQLAlchemyError as e:
            summary.errors.append(f"Notification error for deal {deal.id}: {e}")
            return

        summary.notifications_created.append(f"Notification sent to closer for deal {deal.id}")

    def _create_renewal_task(self, session, deal, end: date, days_left: int, now: datetime, summary) -> None:
        try:
            with session.begin_nested():
                session.add(
                    Activity(
                        title=RENEWAL_TASK_TITLE,
                        description=(
                            f"The contract {deal.title!r} expires in {days_left} days ({end.isoformat()}). "
                            "Schedule a renewal meeting with the client."
                        ),
                        type="task",
                        deal_id=deal.id,
                        company_id=deal.company_id,
                        assigned_to=deal.closer_id,
                        created_by=deal.closer_id,
                        due_date=now + timedelta(days=RENEWAL_TASK_DUE_DAYS),
                        created_at=now,
                    )
                )
        except SQLAlchemyError as e:
            summary.errors.append(f"Renewal task error for deal {deal.id}: {e}")
            return

        summary.tasks_created.append(f"Renewal task assigned to closer for deal {deal.id}")
