"""
Tests for stage-transition and input validation.
"""

import pytest

from commission_engine.errors import ValidationError
from commission_engine.models import DealType, LossReason, Stage
from commission_engine.validators import InputValidator, StageTransitionValidator, validate_move

ALL_STAGES = list(Stage)


class TestAdminMoves:
    @pytest.mark.parametrize("from_stage", ALL_STAGES)
    @pytest.mark.parametrize("to_stage", ALL_STAGES)
    def test_admin_may_move_anywhere(self, from_stage, to_stage):
        assert validate_move("admin", from_stage, to_stage).allowed is True

    def test_closed_lost_requires_loss_reason(self):
        result = validate_move("admin", Stage.NEGOTIATION, Stage.CLOSED_LOST)

        assert result.requires_loss_reason is True
        assert result.requires_close_date is False

    def test_closed_won_requires_close_date(self):
        result = validate_move("admin", Stage.NEGOTIATION, Stage.CLOSED_WON)

        assert result.requires_close_date is True
        assert result.requires_loss_reason is False


class TestCloserMoves:
    @pytest.mark.parametrize("to_stage", ALL_STAGES)
    def test_owner_may_move_anywhere(self, to_stage):
        assert validate_move("closer", Stage.PROPOSAL, to_stage, is_owner=True).allowed is True

    def test_not_owner_rejected(self):
        result = validate_move("closer", Stage.PROPOSAL, Stage.NEGOTIATION, is_owner=False)

        assert result.allowed is False
        assert "Closers can only move deals" in result.error


class TestSdrMoves:
    @pytest.mark.parametrize(
        "from_stage,to_stage",
        [(Stage.LEAD, Stage.QUALIFIED), (Stage.QUALIFIED, Stage.LEAD)],
    )
    def test_between_lead_and_qualified(self, from_stage, to_stage):
        result = validate_move("sdr", from_stage, to_stage, is_owner=True)

        assert result.allowed is True
        assert result.error is None

    @pytest.mark.parametrize(
        "to_stage,message",
        [
            (Stage.PROPOSAL, "Only closers can move deals to this stage"),
            (Stage.NEGOTIATION, "Only closers can move deals to this stage"),
            (Stage.CLOSED_WON, "Only closers can close deals as won"),
            (Stage.CLOSED_LOST, "SDRs can only move deals between lead and qualified"),
        ],
    )
    def test_closer_stages_rejected(self, to_stage, message):
        result = validate_move("sdr", Stage.QUALIFIED, to_stage, is_owner=True)

        assert result.allowed is False
        assert result.error == message

    @pytest.mark.parametrize("from_stage", [Stage.PROPOSAL, Stage.NEGOTIATION, Stage.CLOSED_WON, Stage.CLOSED_LOST])
    def test_cannot_pull_deal_back_from_closer_stages(self, from_stage):
        result = validate_move("sdr", from_stage, Stage.QUALIFIED, is_owner=True)

        assert result.allowed is False
        assert result.error == "SDRs cannot move deals that are past qualified"

    def test_not_owner_rejected(self):
        result = validate_move("sdr", Stage.LEAD, Stage.QUALIFIED, is_owner=False)

        assert result.allowed is False
        assert result.error == "SDRs can only move deals they own"

    @pytest.mark.parametrize("from_stage", ALL_STAGES)
    @pytest.mark.parametrize("to_stage", ALL_STAGES)
    def test_never_allowed_outside_lead_and_qualified(self, from_stage, to_stage):
        result = validate_move("sdr", from_stage, to_stage, is_owner=True)
        if to_stage not in (Stage.LEAD, Stage.QUALIFIED) or from_stage not in (Stage.LEAD, Stage.QUALIFIED):
            assert result.allowed is False


class TestUnknownRoles:
    @pytest.mark.parametrize("role", [None, ""])
    def test_missing_role(self, role):
        result = validate_move(role, Stage.LEAD, Stage.QUALIFIED, is_owner=True)

        assert result.allowed is False
        assert result.error == "You must be authenticated"

    def test_unknown_role(self):
        result = validate_move("manager", Stage.LEAD, Stage.QUALIFIED, is_owner=True)

        assert result.allowed is False
        assert result.error == "Invalid permission"

    def test_invalid_stage_raises(self):
        with pytest.raises(ValidationError, match="to_stage"):
            StageTransitionValidator().validate_move("admin", Stage.LEAD, "won")


class TestMoveValidationOutput:
    def test_to_dict_omits_unset_flags(self):
        assert validate_move("sdr", Stage.LEAD, Stage.QUALIFIED, is_owner=True).to_dict() == {"allowed": True}

    def test_to_dict_includes_error(self):
        body = validate_move("sdr", Stage.LEAD, Stage.PROPOSAL, is_owner=True).to_dict()
        assert body == {"allowed": False, "error": "Only closers can move deals to this stage"}


class TestInputValidator:
    @pytest.fixture
    def validator(self):
        return InputValidator()

    def test_loss_reason_required(self, validator):
        with pytest.raises(ValidationError, match="loss_reason is required"):
            validator.validate_loss(None, None)

    def test_unknown_loss_reason(self, validator):
        with pytest.raises(ValidationError, match="Invalid loss_reason"):
            validator.validate_loss("bored", None)

    def test_competitor_requires_name(self, validator):
        with pytest.raises(ValidationError, match="loss_competitor"):
            validator.validate_loss("competitor", "  ")

    def test_competitor_with_name(self, validator):
        assert validator.validate_loss("competitor", "Globex") == LossReason.COMPETITOR

    def test_valid_reason(self, validator):
        assert validator.validate_loss(LossReason.PRICE, None) == LossReason.PRICE

    def test_retainer_requires_monthly_value_and_duration(self, validator):
        with pytest.raises(ValidationError, match="Retainer deals require"):
            validator.validate_deal_values(DealType.RETAINER, monthly_value=1000)

    @pytest.mark.parametrize("months", [0, 121])
    def test_duration_bounds(self, validator, months):
        with pytest.raises(ValidationError, match="contract_duration_months"):
            validator.validate_deal_values("retainer", monthly_value=1000, contract_duration_months=months)

    @pytest.mark.parametrize("hours", [0, 745])
    def test_monthly_hours_bounds(self, validator, hours):
        with pytest.raises(ValidationError, match="monthly_hours"):
            validator.validate_deal_values(
                "retainer", monthly_value=1000, contract_duration_months=12, monthly_hours=hours
            )

    def test_negative_value(self, validator):
        with pytest.raises(ValidationError, match="cannot be negative"):
            validator.validate_deal_values("project", value=-1)

    def test_value_upper_bound(self, validator):
        with pytest.raises(ValidationError, match="cannot exceed"):
            validator.validate_deal_values("project", value="1000000000")

    def test_valid_retainer(self, validator):
        validator.validate_deal_values(
            "retainer", value=12000, monthly_value=1000, contract_duration_months=12, monthly_hours=40
        )
