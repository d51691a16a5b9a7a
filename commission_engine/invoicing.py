"""
Retainer billing: invoice numbering, contract terms and the monthly
recurring invoice run.

The run is idempotent per (deal, month, year): any invoice already present
for the period, recurring or manual, excludes the deal. The unique index
on (deal_id, recurrence_month, recurrence_year) backs this up when two
runs race.
"""

import logging
from datetime import date, datetime, time

from dateutil.relativedelta import relativedelta
from sqlalchemy.exc import SQLAlchemyError

from .audit import AuditLogger
from .calculators import quantize_money
from .config import Settings
from .errors import InvoiceGenerationError
from .models import InvoiceRunSummary, InvoiceStatus
from .repository import CrmRepository
from .schema import Invoice, utcnow

logger = logging.getLogger(__name__)


# =============================================================================
# NUMBERING
# =============================================================================


def deal_reference(deal_id: str) -> str:
    """First six characters of the deal id, upper-cased."""
    return str(deal_id)[:6].upper()


def first_invoice_number(deal_id: str, year: int, month: int) -> str:
    """INV-{YYYY}{MM}-{DEAL}: the invoice issued when a retainer is won."""
    return f"INV-{year}{month:02d}-{deal_reference(deal_id)}"


def recurring_invoice_number(deal_id: str, year: int, month: int, sequence: int) -> str:
    """INV-{YYYY}{MM}-{DEAL}-{SEQ}: sequence is the position within the run."""
    return f"INV-{year}{month:02d}-{deal_reference(deal_id)}-{sequence:03d}"


# =============================================================================
# CONTRACT TERMS
# =============================================================================


def contract_end_date(start: date, duration_months: int) -> date:
    return start + relativedelta(months=duration_months)


def _start_of_day(day: date, like: datetime) -> datetime:
    return datetime.combine(day, time.min, tzinfo=like.tzinfo)


def is_contract_expired(deal, now: datetime) -> bool:
    """
    actual_close_date + contract_duration_months < now.

    Deals missing either field never expire.
    """
    if not deal.contract_duration_months or not deal.actual_close_date:
        return False
    end = contract_end_date(deal.actual_close_date, deal.contract_duration_months)
    return _start_of_day(end, now) < now


# =============================================================================
# RECURRING RUN
# =============================================================================


class RecurringInvoiceGenerator:
    """
    Creates the current period's invoice for every active retainer.

    Steps:
    1. Fetch closed_won retainer deals with a monthly value
    2. Collect deals already invoiced for the period
    3. Drop invoiced deals and expired contracts
    4. Build invoices (issue day / due day of the month, pending)
    5. Insert the batch and write one audit entry
    A fetch or insert failure aborts the whole run.
    """

    def __init__(self, session_factory, settings: Settings | None = None, clock=None):
        self.session_factory = session_factory
        self.settings = settings or Settings()
        self.clock = clock or utcnow

    def generate(self) -> InvoiceRunSummary:
        now = self.clock()
        month, year = now.month, now.year
        summary = InvoiceRunSummary(month=month, year=year)

        logger.info(f"Generating monthly invoices for {month}/{year}")

        try:
            with self.session_factory() as session, session.begin():
                self._run(session, now, summary)
        except SQLAlchemyError as e:
            logger.error(f"Invoice run for {month}/{year} failed: {str(e)}")
            raise InvoiceGenerationError(f"Failed to generate invoices for {month}/{year}: {e}") from e

        return summary

    def _run(self, session, now: datetime, summary: InvoiceRunSummary) -> None:
        repo = CrmRepository(session)
        month, year = summary.month, summary.year

        # Step 1: Active retainers
        deals = repo.active_retainer_deals()
        logger.info(f"Found {len(deals)} active retainer deals")
        if not deals:
            summary.message = "No active retainer deals found"
            return

        # Step 2: Any invoice for this period blocks a second one
        invoiced = repo.invoiced_deal_ids([d.id for d in deals], month, year)
        logger.info(f"{len(invoiced)} deals already have invoices for {month}/{year}")

        # Step 3: Filter
        to_invoice = []
        for deal in deals:
            if deal.id in invoiced:
                summary.already_invoiced.append(deal.id)
                continue
            if is_contract_expired(deal, now):
                logger.info(f"Deal {deal.id} contract expired, skipping")
                summary.expired.append(deal.id)
                continue
            to_invoice.append(deal)

        if not to_invoice:
            summary.message = "All invoices already generated for this month"
            return

        # Step 4: Build
        issue_date = date(year, month, self.settings.recurring_issue_day)
        due_date = date(year, month, self.settings.recurring_due_day)
        invoices = [
            Invoice(
                deal_id=deal.id,
                company_id=deal.company_id,
                invoice_number=recurring_invoice_number(deal.id, year, month, sequence),
                amount=quantize_money(deal.monthly_value),
                issue_date=issue_date,
                due_date=due_date,
                status=InvoiceStatus.PENDING,
                is_recurring=True,
                recurrence_month=month,
                recurrence_year=year,
                notes=f"Monthly fee {month}/{year} - {deal.title}",
            )
            for sequence, deal in enumerate(to_invoice, start=1)
        ]

        # Step 5: Insert and audit
        repo.add_all(invoices)
        summary.invoices_created = len(invoices)
        summary.invoice_ids = [inv.id for inv in invoices]
        summary.invoice_numbers = [inv.invoice_number for inv in invoices]

        AuditLogger(session).record(
            action="monthly_invoices_generated",
            resource_type="invoices",
            resource_id="batch",
            changes={
                "month": month,
                "year": year,
                "invoices_created": summary.invoices_created,
                "invoice_ids": summary.invoice_ids,
            },
        )

        summary.message = f"Generated {summary.invoices_created} invoices for {month}/{year}"
        logger.info(summary.message)
