"""
Audit trail.

Append-only writes to audit_logs. Values in `changes` are made JSON-safe
(dates as ISO strings, Decimals as floats).
"""

import logging
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from .schema import AuditLog

logger = logging.getLogger(__name__)


def _json_safe(value):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(v) for v in value]
    if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
        return value.value
    return value


class AuditLogger:
    """Writes one audit_logs row per sensitive action."""

    def __init__(self, session: Session):
        self.session = session

    def record(
        self,
        action: str,
        resource_type: str,
        resource_id: str,
        changes: dict | None = None,
        user_id: str | None = None,
        created_at: datetime | None = None,
    ) -> AuditLog:
        """
        Args:
            action: e.g. deal_closed_won, monthly_invoices_generated
            resource_type: deals | invoices | commissions
            resource_id: ID of the primary record, or "batch" for job runs
            changes: free-form dict describing the effect
            user_id: acting user; None for system jobs
        """
        entry = AuditLog(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            changes=_json_safe(changes or {}),
        )
        if created_at is not None:
            entry.created_at = created_at
        self.session.add(entry)
        logger.info(f"Audit: {action} {resource_type}/{resource_id} by {user_id or 'system'}")
        return entry
