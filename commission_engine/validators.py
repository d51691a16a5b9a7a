"""
Validation for the Commission Engine

- StageTransitionValidator: pure role/stage decision for a pipeline move.
- InputValidator: constraints on request data before anything is written.

Input problems raise ValidationError with a clear message; a forbidden move
is reported as MoveValidation(allowed=False) rather than an exception.
"""

from decimal import Decimal

from .errors import ValidationError
from .models import DealType, LossReason, MoveValidation, Role, Stage, parse_enum

SDR_STAGES = (Stage.LEAD, Stage.QUALIFIED)

MAX_DEAL_VALUE = Decimal("999999999.99")
MAX_CONTRACT_MONTHS = 120
MAX_MONTHLY_HOURS = 744


class StageTransitionValidator:
    """Decides whether a role may move a deal between two stages."""

    def validate_move(self, role, from_stage, to_stage, is_owner: bool = False) -> MoveValidation:
        """
        Rules:
        - Admin: any stage, forward or backward.
        - Closer: any stage, only on deals they own or are assigned to.
        - SDR: only between lead and qualified, only on deals they own.
        Moving to closed_lost needs a loss reason; moving to closed_won
        needs a close date. Same-stage moves should be skipped by the caller.
        """
        if role is None or role == "":
            return MoveValidation(allowed=False, error="You must be authenticated")
        try:
            role = Role(role)
        except ValueError:
            return MoveValidation(allowed=False, error="Invalid permission")

        from_stage = parse_enum(Stage, from_stage, "from_stage")
        to_stage = parse_enum(Stage, to_stage, "to_stage")

        match role:
            case Role.ADMIN:
                return self._allowed(to_stage)
            case Role.CLOSER:
                if not is_owner:
                    return MoveValidation(
                        allowed=False, error="Closers can only move deals they own or are assigned to"
                    )
                return self._allowed(to_stage)
            case Role.SDR:
                return self._validate_sdr(from_stage, to_stage, is_owner)

    def _allowed(self, to_stage: Stage) -> MoveValidation:
        return MoveValidation(
            allowed=True,
            requires_loss_reason=to_stage == Stage.CLOSED_LOST,
            requires_close_date=to_stage == Stage.CLOSED_WON,
        )

    def _validate_sdr(self, from_stage: Stage, to_stage: Stage, is_owner: bool) -> MoveValidation:
        if to_stage in (Stage.PROPOSAL, Stage.NEGOTIATION):
            return MoveValidation(allowed=False, error="Only closers can move deals to this stage")
        if to_stage == Stage.CLOSED_WON:
            return MoveValidation(allowed=False, error="Only closers can close deals as won")
        if to_stage == Stage.CLOSED_LOST:
            return MoveValidation(allowed=False, error="SDRs can only move deals between lead and qualified")
        if from_stage not in SDR_STAGES:
            return MoveValidation(allowed=False, error="SDRs cannot move deals that are past qualified")
        if not is_owner:
            return MoveValidation(allowed=False, error="SDRs can only move deals they own")
        return MoveValidation(allowed=True)


_default_validator = StageTransitionValidator()


def validate_move(role, from_stage, to_stage, is_owner: bool = False) -> MoveValidation:
    """Module-level shortcut for StageTransitionValidator.validate_move."""
    return _default_validator.validate_move(role, from_stage, to_stage, is_owner)


class InputValidator:
    """Validates request data according to business rules."""

    def validate_loss(self, loss_reason, loss_competitor: str | None) -> LossReason:
        """A lost deal needs a reason, and a competitor name when lost to one."""
        if not loss_reason:
            raise ValidationError("loss_reason is required when moving a deal to closed_lost")
        reason = parse_enum(LossReason, loss_reason, "loss_reason")
        if reason == LossReason.COMPETITOR and not (loss_competitor or "").strip():
            raise ValidationError("loss_competitor is required when loss_reason is 'competitor'")
        return reason

    def validate_deal_values(
        self,
        deal_type,
        value=None,
        monthly_value=None,
        contract_duration_months: int | None = None,
        monthly_hours: int | None = None,
    ) -> None:
        deal_type = parse_enum(DealType, deal_type, "deal_type")

        if value is not None:
            value = Decimal(str(value))
            if value < 0:
                raise ValidationError(f"value cannot be negative, got: {value}")
            if value > MAX_DEAL_VALUE:
                raise ValidationError(f"value cannot exceed {MAX_DEAL_VALUE}, got: {value}")

        if deal_type == DealType.RETAINER:
            if monthly_value is None or contract_duration_months is None:
                raise ValidationError("Retainer deals require monthly_value and contract_duration_months")

        if monthly_value is not None:
            monthly_value = Decimal(str(monthly_value))
            if monthly_value <= 0:
                raise ValidationError(f"monthly_value must be positive, got: {monthly_value}")

        if contract_duration_months is not None:
            if not (1 <= int(contract_duration_months) <= MAX_CONTRACT_MONTHS):
                raise ValidationError(
                    f"contract_duration_months must be between 1 and {MAX_CONTRACT_MONTHS}, "
                    f"got: {contract_duration_months}"
                )

        if monthly_hours is not None:
            if not (1 <= int(monthly_hours) <= MAX_MONTHLY_HOURS):
                raise ValidationError(
                    f"monthly_hours must be between 1 and {MAX_MONTHLY_HOURS}, got: {monthly_hours}"
                )
