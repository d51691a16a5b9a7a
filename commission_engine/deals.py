"""
Deal Service

Stage moves and value edits on a deal. Moves into closed_won are handed to
DealClosingProcessor; every other move is a direct update of the deal row.
"""

import logging

from .audit import AuditLogger
from .errors import BusinessRuleError, NotFoundError
from .models import (
    STAGE_ORDER,
    CloseDealRequest,
    DealType,
    LossReason,
    MoveDealRequest,
    MoveResult,
    Stage,
    StageProbabilities,
)
from .permissions import get_read_only_reason, is_deal_owner, is_read_only_for_user
from .processor import DealClosingProcessor
from .repository import CrmRepository
from .schema import Deal
from .validators import InputValidator, StageTransitionValidator

logger = logging.getLogger(__name__)


class DealService:
    def __init__(
        self,
        session_factory,
        closing_processor: DealClosingProcessor | None = None,
        probabilities: StageProbabilities | None = None,
    ):
        self.session_factory = session_factory
        self.probabilities = probabilities or StageProbabilities()
        self.closing_processor = closing_processor or DealClosingProcessor(
            session_factory, probabilities=self.probabilities
        )
        self.stage_validator = StageTransitionValidator()
        self.input_validator = InputValidator()

    def move_deal(self, request: MoveDealRequest) -> MoveResult:
        """
        Move a deal to request.to_stage on behalf of request.actor_id.

        Raises:
            NotFoundError: unknown deal
            BusinessRuleError: the actor's role may not make this move
            ValidationError: closed_lost without a valid loss reason
        """
        with self.session_factory() as session, session.begin():
            repo = CrmRepository(session)
            deal = repo.get_deal(request.deal_id, lock=True)
            if deal is None:
                raise NotFoundError("Deal", request.deal_id)

            from_stage = deal.stage
            if from_stage == request.to_stage:
                return MoveResult(
                    deal_id=deal.id,
                    from_stage=from_stage,
                    to_stage=from_stage,
                    probability=deal.probability,
                    changed=False,
                )

            role = repo.get_user_role(request.actor_id)
            validation = self.stage_validator.validate_move(
                role, from_stage, request.to_stage, is_deal_owner(deal, request.actor_id, role)
            )
            if not validation.allowed:
                logger.info(f"Move {from_stage.value} -> {request.to_stage.value} rejected: {validation.error}")
                raise BusinessRuleError(validation.error, reason="move_not_allowed")

            if request.to_stage != Stage.CLOSED_WON:
                self._apply_move(session, deal, request, validation.requires_loss_reason)
                return MoveResult(
                    deal_id=deal.id,
                    from_stage=from_stage,
                    to_stage=deal.stage,
                    probability=deal.probability,
                )

        # closed_won runs in the closing pipeline's own transaction
        closing = self.closing_processor.close_deal(
            CloseDealRequest(
                deal_id=request.deal_id,
                actor_id=request.actor_id,
                actual_close_date=request.actual_close_date,
                start_recurring=request.start_recurring,
            )
        )
        return MoveResult(
            deal_id=request.deal_id,
            from_stage=from_stage,
            to_stage=Stage.CLOSED_WON,
            probability=self.probabilities.closed_won,
            closing=closing,
        )

    def _apply_move(self, session, deal: Deal, request: MoveDealRequest, requires_loss_reason: bool) -> None:
        from_stage = deal.stage
        changes = {"from_stage": from_stage, "to_stage": request.to_stage}

        if requires_loss_reason:
            deal.loss_reason = self.input_validator.validate_loss(request.loss_reason, request.loss_competitor)
            deal.loss_notes = request.loss_notes
            deal.loss_competitor = request.loss_competitor if deal.loss_reason == LossReason.COMPETITOR else None
            changes["loss_reason"] = deal.loss_reason
        elif from_stage == Stage.CLOSED_LOST:
            # Loss metadata only lives on closed_lost deals
            deal.loss_reason = None
            deal.loss_notes = None
            deal.loss_competitor = None

        if from_stage == Stage.CLOSED_WON:
            deal.actual_close_date = None

        deal.stage = request.to_stage
        deal.probability = self.probabilities.for_stage(request.to_stage)
        changes["direction"] = "backward" if STAGE_ORDER[request.to_stage] < STAGE_ORDER[from_stage] else "forward"

        AuditLogger(session).record(
            action="deal_stage_changed",
            resource_type="deals",
            resource_id=deal.id,
            user_id=request.actor_id,
            changes=changes,
        )
        logger.info(f"Deal {deal.id} moved {from_stage.value} -> {request.to_stage.value}")

    def update_values(self, deal_id: str, actor_id: str, **fields) -> Deal:
        """
        Edit value fields (value, monthly_value, contract_duration_months,
        monthly_hours, hours_rollover). For retainers the stored value is
        recomputed from monthly_value * contract_duration_months on flush.
        """
        allowed = {"value", "monthly_value", "contract_duration_months", "monthly_hours", "hours_rollover"}
        unknown = set(fields) - allowed
        if unknown:
            raise BusinessRuleError(f"Fields cannot be edited here: {', '.join(sorted(unknown))}")

        with self.session_factory() as session, session.begin():
            repo = CrmRepository(session)
            deal = repo.get_deal(deal_id, lock=True)
            if deal is None:
                raise NotFoundError("Deal", deal_id)

            role = repo.get_user_role(actor_id)
            if is_read_only_for_user(deal, actor_id, role):
                raise BusinessRuleError(get_read_only_reason(deal, actor_id, role) or "Not allowed", reason="read_only")

            merged = {
                "value": deal.value,
                "monthly_value": deal.monthly_value,
                "contract_duration_months": deal.contract_duration_months,
                "monthly_hours": deal.monthly_hours,
            }
            merged.update({k: v for k, v in fields.items() if k != "hours_rollover"})
            if deal.deal_type == DealType.PROJECT:
                self.input_validator.validate_deal_values(deal.deal_type, value=merged["value"])
            else:
                self.input_validator.validate_deal_values(deal.deal_type, **merged)

            for name, value in fields.items():
                setattr(deal, name, value)
            session.flush()

            AuditLogger(session).record(
                action="deal_values_updated",
                resource_type="deals",
                resource_id=deal.id,
                user_id=actor_id,
                changes={**fields, "value": deal.value},
            )
            return deal
