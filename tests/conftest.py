"""Shared fixtures: an in-memory database per test and seed helpers."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from commission_engine.db import create_db_engine, init_db, make_session_factory
from commission_engine.models import CommissionType, DealType, Role, Stage
from commission_engine.schema import CommissionRule, CommissionTier, Deal, UserRole

FIXED_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def seed(session_factory):
    """Insert objects in their own committed transaction."""

    def _seed(*objects):
        with session_factory() as session, session.begin():
            session.add_all(objects)
        return objects[0] if len(objects) == 1 else objects

    return _seed


@pytest.fixture
def make_deal(seed):
    def _make_deal(**kwargs):
        defaults = {
            "title": "Acme rollout",
            "deal_type": DealType.PROJECT,
            "stage": Stage.NEGOTIATION,
            "probability": 80,
            "value": Decimal("100000"),
            "owner_id": "closer-1",
            "sdr_id": "sdr-1",
            "closer_id": "closer-1",
        }
        defaults.update(kwargs)
        return seed(Deal(**defaults))

    return _make_deal


@pytest.fixture
def users(seed):
    """admin-1, closer-1, closer-2, sdr-1, sdr-2 with their roles."""
    seed(
        UserRole(user_id="admin-1", role=Role.ADMIN),
        UserRole(user_id="closer-1", role=Role.CLOSER),
        UserRole(user_id="closer-2", role=Role.CLOSER),
        UserRole(user_id="sdr-1", role=Role.SDR),
        UserRole(user_id="sdr-2", role=Role.SDR),
    )


@pytest.fixture
def standard_rules(seed):
    """10% closing for closers and 5% qualification for SDRs, any deal type."""
    return seed(
        CommissionRule(
            name="Closer standard",
            commission_type=CommissionType.CLOSING,
            role=Role.CLOSER,
            percentage=Decimal("10"),
        ),
        CommissionRule(
            name="SDR standard",
            commission_type=CommissionType.QUALIFICATION,
            role=Role.SDR,
            percentage=Decimal("5"),
        ),
    )


@pytest.fixture
def tiered_rule():
    """Builder for a 0-50k at 5%, 50k-100k at 10%, above 100k at 15% rule."""

    def _tiered_rule(name="Closer tiered", **kwargs) -> CommissionRule:
        rule = CommissionRule(
            name=name,
            commission_type=kwargs.pop("commission_type", CommissionType.CLOSING),
            role=kwargs.pop("role", Role.CLOSER),
            is_tiered=True,
            **kwargs,
        )
        rule.tiers = [
            CommissionTier(min_value=Decimal("0"), max_value=Decimal("50000"), percentage=Decimal("5")),
            CommissionTier(min_value=Decimal("50000"), max_value=Decimal("100000"), percentage=Decimal("10")),
            CommissionTier(min_value=Decimal("100000"), max_value=None, percentage=Decimal("15")),
        ]
        return rule

    return _tiered_rule
