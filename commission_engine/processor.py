"""
Deal Closing Processor - Main Orchestrator

Runs the side effects of moving a deal to closed_won through discrete,
testable steps inside a single database transaction.
"""

import logging
from datetime import timedelta
from typing import Any, Dict

from sqlalchemy.exc import IntegrityError

from .audit import AuditLogger
from .calculators import CommissionCalculator, quantize_money, quantize_rate
from .config import Settings
from .errors import BusinessRuleError, NotFoundError
from .invoicing import first_invoice_number
from .models import (
    PROCESSED_COMMISSION_STATUSES,
    CloseDealRequest,
    CloseDealResult,
    CommissionRecord,
    CommissionStatus,
    CommissionType,
    DealType,
    InvoiceStatus,
    Role,
    Stage,
    StageProbabilities,
)
from .output import OutputBuilder
from .permissions import is_deal_owner
from .repository import CrmRepository
from .rules import resolve_rule
from .schema import Commission, Deal, Invoice, utcnow
from .validators import StageTransitionValidator

logger = logging.getLogger(__name__)

# Roles allowed to receive a closing commission
CLOSING_ROLES = (Role.CLOSER, Role.ADMIN)


class DealClosingProcessor:
    """
    Main orchestrator for closing a deal as won.

    Implements a clear pipeline pattern:
    1. Load deal, check preconditions and the actor's right to close it
    2. Resolve closing commission (closer)
    3. Resolve qualification commission (SDR)
    4. Persist commissions
    5. Update deal (compare-and-swap on stage)
    6. Create first retainer invoice
    7. Write audit entry
    Everything up to the audit entry commits or rolls back together; the
    first invoice runs in a savepoint so its failure does not undo the close.
    """

    def __init__(
        self,
        session_factory,
        probabilities: StageProbabilities | None = None,
        settings: Settings | None = None,
        clock=None,
    ):
        self.session_factory = session_factory
        self.probabilities = probabilities or StageProbabilities()
        self.settings = settings or Settings()
        self.clock = clock or utcnow
        self.calculator = CommissionCalculator()
        self.stage_validator = StageTransitionValidator()
        self.output_builder = OutputBuilder()

    def close_deal(self, request: CloseDealRequest) -> CloseDealResult:
        """
        Process a deal through the complete closing pipeline.

        Raises:
            NotFoundError: the deal does not exist
            BusinessRuleError: already closed, commissions already processed,
                or the actor may not move this deal to closed_won
        """
        logger.info(f"Processing deal: {request.deal_id} (requested by {request.actor_id or 'system'})")

        with self.session_factory() as session, session.begin():
            result = self._process(session, request)

        logger.info(
            f"Deal {result.deal_id} closed: {result.commissions_created} commission(s), "
            f"invoice_created={result.invoice_created}"
        )
        return result

    def process_from_dict(self, data: Dict[str, Any], actor_id: str | None = None) -> Dict[str, Any]:
        """
        Close a deal from a raw request body.

        Convenience method for API usage.
        """
        request = CloseDealRequest.from_dict(data, actor_id=actor_id)
        return self.output_builder.close_result(self.close_deal(request))

    def _process(self, session, request: CloseDealRequest) -> CloseDealResult:
        repo = CrmRepository(session)

        # Step 1: Preconditions
        deal = self._load_deal(repo, request.deal_id)
        if request.actor_id:
            self._authorize(repo, deal, request.actor_id)

        rules = repo.active_rules()
        logger.info(f"Found {len(rules)} active commission rules")

        # Step 2: Closer
        commissions = []
        closing = self._closing_commission(repo, deal, rules)
        if closing is not None:
            commissions.append(closing)

        # Step 3: SDR
        qualification, approved_existing = self._qualification_commission(repo, deal, rules)
        if qualification is not None:
            commissions.append(qualification)

        # Step 4: Persist
        self._persist_commissions(repo, commissions)

        # Step 5: Deal update
        close_date = request.actual_close_date or self.clock().date()
        if not repo.mark_closed_won(deal, self.probabilities.closed_won, close_date):
            raise BusinessRuleError("Deal is already closed", reason="deal_already_closed")

        # Step 6: First invoice
        invoice = None
        if deal.deal_type == DealType.RETAINER and request.start_recurring and deal.monthly_value:
            invoice = self._create_first_invoice(session, deal)

        # Step 7: Audit
        result = CloseDealResult(
            deal_id=deal.id,
            actual_close_date=close_date,
            commissions_created=len(commissions),
            commission_ids=[c.id for c in commissions],
            commissions=[self._record(c) for c in commissions],
            qualification_approved=approved_existing,
            invoice_created=invoice is not None,
            invoice_number=invoice.invoice_number if invoice is not None else None,
        )
        AuditLogger(session).record(
            action="deal_closed_won",
            resource_type="deals",
            resource_id=deal.id,
            user_id=request.actor_id,
            changes={
                "commissions_created": result.commissions_created,
                "qualification_approved": result.qualification_approved,
                "invoice_created": result.invoice_created,
                "actual_close_date": close_date,
            },
        )
        return result

    def _load_deal(self, repo: CrmRepository, deal_id: str) -> Deal:
        deal = repo.get_deal(deal_id, lock=True)
        if deal is None:
            raise NotFoundError("Deal", deal_id)

        logger.info(f"Deal found: {deal.title}, type: {deal.deal_type.value}, value: {deal.value}")

        if deal.stage == Stage.CLOSED_WON:
            raise BusinessRuleError("Deal is already closed", reason="deal_already_closed")

        existing = repo.closing_commissions(deal.id)
        processed = [c for c in existing if c.status in PROCESSED_COMMISSION_STATUSES]
        if processed:
            logger.info(f"Deal {deal.id} already has processed commissions, blocking")
            raise BusinessRuleError(
                "Commissions have already been processed for this deal. "
                "Cancel the existing commissions before reprocessing.",
                reason="commissions_already_processed",
                details={"existing_commissions": len(existing)},
            )
        if existing:
            logger.info(f"Found {len(existing)} pending/cancelled closing commission(s) - allowing reprocess")

        return deal

    def _authorize(self, repo: CrmRepository, deal: Deal, actor_id: str) -> None:
        role = repo.get_user_role(actor_id)
        validation = self.stage_validator.validate_move(
            role, deal.stage, Stage.CLOSED_WON, is_deal_owner(deal, actor_id, role)
        )
        if not validation.allowed:
            logger.info(f"User {actor_id} may not close deal {deal.id}: {validation.error}")
            raise BusinessRuleError(validation.error, reason="move_not_allowed")

    def _closing_commission(self, repo: CrmRepository, deal: Deal, rules) -> Commission | None:
        if not deal.closer_id:
            logger.info("No closer assigned to this deal, skipping closing commission")
            return None

        role = repo.get_user_role(deal.closer_id)
        if role not in CLOSING_ROLES:
            role_name = role.value if role else None
            logger.info(f"User {deal.closer_id} has role {role_name!r}, not a closer - skipping closing commission")
            return None

        rule = resolve_rule(rules, CommissionType.CLOSING, Role.CLOSER, deal.deal_type)
        if rule is None:
            logger.info("No closing rule found for this deal type")
            return None

        return self._build_commission(
            deal, rule, deal.closer_id, CommissionType.CLOSING, CommissionStatus.PENDING,
            notes=f"Closing commission - {deal.title}",
        )

    def _qualification_commission(self, repo: CrmRepository, deal: Deal, rules) -> tuple[Commission | None, bool]:
        """Returns (new commission or None, whether an existing one was approved)."""
        if not deal.sdr_id:
            return None, False

        existing = repo.find_commission(deal.id, deal.sdr_id, CommissionType.QUALIFICATION)
        if existing is not None:
            if existing.status == CommissionStatus.PENDING:
                # Amount and percentage stay as originally computed
                existing.status = CommissionStatus.APPROVED
                logger.info(f"Approving existing qualification commission: {existing.id}")
                return None, True
            logger.info(f"Qualification commission {existing.id} is {existing.status.value}, leaving as is")
            return None, False

        logger.info("No existing qualification commission found, creating one")
        rule = resolve_rule(rules, CommissionType.QUALIFICATION, Role.SDR, deal.deal_type)
        if rule is None:
            logger.info("No qualification rule found for this deal type")
            return None, False

        # Auto-approved since the deal is won
        commission = self._build_commission(
            deal, rule, deal.sdr_id, CommissionType.QUALIFICATION, CommissionStatus.APPROVED,
            notes=f"Qualification commission - {deal.title}",
        )
        return commission, False

    def _build_commission(self, deal: Deal, rule, user_id: str, commission_type, status, notes: str):
        computed = self.calculator.calculate(deal.value, rule)
        amount = quantize_money(computed.amount)
        if amount <= 0:
            logger.info(f"Rule {rule.name!r} yields no {commission_type.value} commission for deal {deal.id}")
            return None

        kind = "tiered" if computed.is_tiered else f"fixed ({computed.percentage}%)"
        logger.info(f"{commission_type.value.capitalize()} commission via {rule.name!r}, {kind}: {amount}")

        return Commission(
            deal_id=deal.id,
            user_id=user_id,
            rule_id=rule.id,
            commission_type=commission_type,
            base_value=quantize_money(deal.value),
            percentage=quantize_rate(computed.percentage),
            amount=amount,
            status=status,
            notes=notes,
        )

    def _persist_commissions(self, repo: CrmRepository, commissions: list) -> None:
        if not commissions:
            return
        logger.info(f"Creating {len(commissions)} commission(s)")
        try:
            repo.add_all(commissions)
        except IntegrityError as e:
            # The processed-closing unique index is the final word on duplicates
            raise BusinessRuleError(
                "Commissions have already been processed for this deal.",
                reason="commissions_already_processed",
            ) from e

    def _create_first_invoice(self, session, deal: Deal) -> Invoice | None:
        today = self.clock().date()
        invoice = Invoice(
            deal_id=deal.id,
            company_id=deal.company_id,
            invoice_number=first_invoice_number(deal.id, today.year, today.month),
            amount=quantize_money(deal.monthly_value),
            issue_date=today,
            due_date=today + timedelta(days=self.settings.invoice_due_days),
            status=InvoiceStatus.PENDING,
            is_recurring=True,
            recurrence_month=today.month,
            recurrence_year=today.year,
            notes=f"First monthly fee - {deal.title}",
        )
        try:
            with session.begin_nested():
                session.add(invoice)
        except IntegrityError as e:
            logger.error(f"Error creating invoice for deal {deal.id}: {str(e)}")
            return None

        logger.info("First invoice created for retainer deal")
        return invoice

    @staticmethod
    def _record(commission: Commission) -> CommissionRecord:
        return CommissionRecord(
            id=commission.id,
            user_id=commission.user_id,
            commission_type=commission.commission_type,
            status=commission.status,
            base_value=commission.base_value,
            percentage=commission.percentage,
            amount=commission.amount,
        )
