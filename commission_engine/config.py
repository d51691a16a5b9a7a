"""
Runtime configuration for the commission engine.

Values come from environment variables and are read once per process
(warm Lambda invocations reuse the same Settings).
"""

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {raw!r}")


@dataclass(frozen=True)
class Settings:
    """Environment-driven settings."""

    environment: str = "dev"
    database_url: str = "sqlite:///commission_engine.db"
    log_level: str = "INFO"
    port: int = 8080

    # Billing
    invoice_due_days: int = 30  # first retainer invoice, days after close
    recurring_issue_day: int = 1
    recurring_due_day: int = 10

    # Retainer lifecycle
    contract_expiry_alert_days: int = 30

    @classmethod
    def from_env(cls) -> "Settings":
        settings = cls(
            environment=os.environ.get("ENVIRONMENT", "dev"),
            database_url=os.environ.get("DATABASE_URL", "sqlite:///commission_engine.db"),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            port=_env_int("PORT", 8080),
            invoice_due_days=_env_int("INVOICE_DUE_DAYS", 30),
            recurring_issue_day=_env_int("RECURRING_ISSUE_DAY", 1),
            recurring_due_day=_env_int("RECURRING_DUE_DAY", 10),
            contract_expiry_alert_days=_env_int("CONTRACT_EXPIRY_ALERT_DAYS", 30),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.invoice_due_days < 0:
            raise ValueError(f"INVOICE_DUE_DAYS cannot be negative, got: {self.invoice_due_days}")
        # Day 28 is the last day present in every month
        for name, day in (
            ("RECURRING_ISSUE_DAY", self.recurring_issue_day),
            ("RECURRING_DUE_DAY", self.recurring_due_day),
        ):
            if not (1 <= day <= 28):
                raise ValueError(f"{name} must be between 1 and 28, got: {day}")
        if self.contract_expiry_alert_days < 0:
            raise ValueError(
                f"CONTRACT_EXPIRY_ALERT_DAYS cannot be negative, got: {self.contract_expiry_alert_days}"
            )
