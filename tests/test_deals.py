"""
Tests for pipeline moves and deal value edits.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from commission_engine.deals import DealService
from commission_engine.errors import BusinessRuleError, NotFoundError, ValidationError
from commission_engine.models import DealType, LossReason, MoveDealRequest, Stage
from commission_engine.processor import DealClosingProcessor
from commission_engine.schema import AuditLog, Deal


@pytest.fixture
def service(session_factory, clock):
    return DealService(session_factory, closing_processor=DealClosingProcessor(session_factory, clock=clock))


@pytest.fixture
def sdr_deal(make_deal):
    return make_deal(stage=Stage.LEAD, probability=10, owner_id="sdr-1", sdr_id="sdr-1", closer_id=None)


def load(session_factory, deal_id):
    with session_factory() as session:
        return session.get(Deal, deal_id)


def move(deal, actor_id, to_stage, **kwargs):
    return MoveDealRequest(deal_id=deal.id, actor_id=actor_id, to_stage=to_stage, **kwargs)


@pytest.mark.usefixtures("users")
class TestSdrMoves:
    def test_lead_to_qualified(self, service, sdr_deal, session_factory):
        result = service.move_deal(move(sdr_deal, "sdr-1", Stage.QUALIFIED))

        assert result.changed is True
        assert (result.from_stage, result.to_stage) == (Stage.LEAD, Stage.QUALIFIED)
        assert result.probability == 40
        assert load(session_factory, sdr_deal.id).stage == Stage.QUALIFIED

    def test_audit_records_direction(self, service, sdr_deal, session_factory):
        service.move_deal(move(sdr_deal, "sdr-1", Stage.QUALIFIED))

        with session_factory() as session:
            [entry] = session.scalars(select(AuditLog).where(AuditLog.action == "deal_stage_changed"))
        assert entry.user_id == "sdr-1"
        assert entry.changes == {"from_stage": "lead", "to_stage": "qualified", "direction": "forward"}

    def test_proposal_rejected(self, service, sdr_deal, session_factory):
        with pytest.raises(BusinessRuleError) as exc_info:
            service.move_deal(move(sdr_deal, "sdr-1", Stage.PROPOSAL))

        assert exc_info.value.reason == "move_not_allowed"
        assert exc_info.value.message == "Only closers can move deals to this stage"
        assert load(session_factory, sdr_deal.id).stage == Stage.LEAD

    def test_other_sdr_rejected(self, service, sdr_deal):
        with pytest.raises(BusinessRuleError, match="SDRs can only move deals they own"):
            service.move_deal(move(sdr_deal, "sdr-2", Stage.QUALIFIED))

    def test_sdr_cannot_close_won(self, service, sdr_deal):
        with pytest.raises(BusinessRuleError, match="Only closers can close deals as won"):
            service.move_deal(move(sdr_deal, "sdr-1", Stage.CLOSED_WON))

    def test_user_without_role_rejected(self, service, sdr_deal):
        with pytest.raises(BusinessRuleError, match="You must be authenticated"):
            service.move_deal(move(sdr_deal, "nobody", Stage.QUALIFIED))


@pytest.mark.usefixtures("users")
class TestCloserMoves:
    def test_same_stage_is_a_no_op(self, service, make_deal):
        deal = make_deal()

        result = service.move_deal(move(deal, "closer-1", Stage.NEGOTIATION))

        assert result.changed is False
        assert result.to_stage == Stage.NEGOTIATION

    def test_not_assigned_closer_rejected(self, service, make_deal):
        deal = make_deal()

        with pytest.raises(BusinessRuleError, match="Closers can only move deals"):
            service.move_deal(move(deal, "closer-2", Stage.PROPOSAL))

    def test_closed_lost_requires_reason(self, service, make_deal, session_factory):
        deal = make_deal()

        with pytest.raises(ValidationError, match="loss_reason is required"):
            service.move_deal(move(deal, "closer-1", Stage.CLOSED_LOST))

        assert load(session_factory, deal.id).stage == Stage.NEGOTIATION

    def test_closed_lost_to_competitor_requires_name(self, service, make_deal):
        deal = make_deal()

        with pytest.raises(ValidationError, match="loss_competitor"):
            service.move_deal(move(deal, "closer-1", Stage.CLOSED_LOST, loss_reason=LossReason.COMPETITOR))

    def test_closed_lost_stores_loss_data(self, service, make_deal, session_factory):
        deal = make_deal()

        result = service.move_deal(
            move(
                deal,
                "closer-1",
                Stage.CLOSED_LOST,
                loss_reason=LossReason.COMPETITOR,
                loss_competitor="Globex",
                loss_notes="Cheaper offer",
            )
        )

        assert result.probability == 0
        stored = load(session_factory, deal.id)
        assert stored.stage == Stage.CLOSED_LOST
        assert stored.loss_reason == LossReason.COMPETITOR
        assert stored.loss_competitor == "Globex"
        assert stored.loss_notes == "Cheaper offer"

    def test_competitor_dropped_for_other_reasons(self, service, make_deal, session_factory):
        deal = make_deal()

        service.move_deal(
            move(deal, "closer-1", Stage.CLOSED_LOST, loss_reason=LossReason.PRICE, loss_competitor="Globex")
        )

        assert load(session_factory, deal.id).loss_competitor is None

    @pytest.mark.usefixtures("standard_rules")
    def test_closed_won_runs_closing_pipeline(self, service, make_deal, session_factory):
        deal = make_deal()

        result = service.move_deal(move(deal, "closer-1", Stage.CLOSED_WON))

        assert result.to_stage == Stage.CLOSED_WON
        assert result.probability == 100
        assert result.closing.commissions_created == 2
        assert load(session_factory, deal.id).stage == Stage.CLOSED_WON

    def test_unknown_deal(self, service):
        with pytest.raises(NotFoundError):
            service.move_deal(MoveDealRequest(deal_id="missing", actor_id="closer-1", to_stage=Stage.PROPOSAL))


@pytest.mark.usefixtures("users")
class TestAdminMoves:
    def test_reopen_lost_deal_clears_loss_data(self, service, make_deal, session_factory):
        deal = make_deal(
            stage=Stage.CLOSED_LOST, probability=0, loss_reason=LossReason.TIMING, loss_notes="Next year"
        )

        result = service.move_deal(move(deal, "admin-1", Stage.NEGOTIATION))

        assert result.probability == 80
        stored = load(session_factory, deal.id)
        assert stored.loss_reason is None
        assert stored.loss_notes is None

    def test_reopen_won_deal_clears_close_date(self, service, make_deal, session_factory):
        deal = make_deal(stage=Stage.CLOSED_WON, probability=100, actual_close_date=date(2026, 2, 1))

        service.move_deal(move(deal, "admin-1", Stage.PROPOSAL))

        stored = load(session_factory, deal.id)
        assert stored.stage == Stage.PROPOSAL
        assert stored.actual_close_date is None


class TestMoveDealRequest:
    def test_from_dict(self):
        request = MoveDealRequest.from_dict(
            {"deal_id": "d1", "to_stage": "closed_lost", "loss_reason": "price", "actual_close_date": "2026-03-01"},
            actor_id="closer-1",
        )

        assert request.to_stage == Stage.CLOSED_LOST
        assert request.loss_reason == LossReason.PRICE
        assert request.actual_close_date == date(2026, 3, 1)

    @pytest.mark.parametrize(
        "data,message",
        [
            ({"to_stage": "lead"}, "deal_id is required"),
            ({"deal_id": "d1"}, "to_stage is required"),
            ({"deal_id": "d1", "to_stage": "won"}, "Invalid to_stage"),
            ({"deal_id": "d1", "to_stage": "closed_lost", "loss_reason": "weather"}, "Invalid loss_reason"),
        ],
    )
    def test_invalid(self, data, message):
        with pytest.raises(ValidationError, match=message):
            MoveDealRequest.from_dict(data, actor_id="closer-1")


@pytest.mark.usefixtures("users")
class TestRetainerValue:
    @pytest.fixture
    def retainer(self, make_deal):
        return make_deal(
            deal_type=DealType.RETAINER,
            value=Decimal("0"),
            monthly_value=Decimal("5000"),
            contract_duration_months=12,
        )

    def test_value_derived_on_insert(self, retainer, session_factory):
        assert load(session_factory, retainer.id).value == Decimal("60000")

    def test_monthly_value_change_updates_total(self, service, retainer, session_factory):
        deal = service.update_values(retainer.id, "closer-1", monthly_value=Decimal("6000"))

        assert deal.value == Decimal("72000")
        assert load(session_factory, retainer.id).value == Decimal("72000")

    def test_duration_change_updates_total(self, service, retainer, session_factory):
        service.update_values(retainer.id, "admin-1", contract_duration_months=6)

        assert load(session_factory, retainer.id).value == Decimal("30000")

    def test_direct_value_edit_is_overridden(self, service, retainer, session_factory):
        service.update_values(retainer.id, "closer-1", value=Decimal("1"))

        assert load(session_factory, retainer.id).value == Decimal("60000")

    def test_project_value_edit(self, service, make_deal, session_factory):
        deal = make_deal()

        service.update_values(deal.id, "closer-1", value=Decimal("120000"))

        assert load(session_factory, deal.id).value == Decimal("120000")

    def test_sdr_read_only_after_handoff(self, service, retainer):
        with pytest.raises(BusinessRuleError) as exc_info:
            service.update_values(retainer.id, "sdr-1", monthly_value=Decimal("1"))

        assert exc_info.value.reason == "read_only"
        assert "assigned to a closer" in exc_info.value.message

    def test_invalid_duration(self, service, retainer):
        with pytest.raises(ValidationError, match="contract_duration_months"):
            service.update_values(retainer.id, "closer-1", contract_duration_months=0)

    def test_unknown_field(self, service, retainer):
        with pytest.raises(BusinessRuleError, match="stage"):
            service.update_values(retainer.id, "closer-1", stage=Stage.CLOSED_WON)

    def test_audit_entry(self, service, retainer, session_factory):
        service.update_values(retainer.id, "closer-1", monthly_value=Decimal("6000"))

        with session_factory() as session:
            [entry] = session.scalars(select(AuditLog).where(AuditLog.action == "deal_values_updated"))
        assert entry.changes == {"monthly_value": 6000.0, "value": 72000.0}
