"""
Output Builder

Turns engine results into JSON-ready dictionaries for the API and jobs.
"""

from decimal import Decimal

from .models import CloseDealResult, InvoiceRunSummary, LifecycleSummary, MoveResult


def to_money(value: Decimal) -> float:
    """Convert Decimal to float with 2 decimal places."""
    return round(float(value), 2)


class OutputBuilder:
    """Builds response bodies."""

    def close_result(self, result: CloseDealResult) -> dict:
        return {
            "success": True,
            "message": "Deal closed successfully",
            "deal_id": result.deal_id,
            "actual_close_date": result.actual_close_date.isoformat(),
            "commissions_created": result.commissions_created,
            "commission_ids": result.commission_ids,
            "commissions": [
                {
                    "id": c.id,
                    "user_id": c.user_id,
                    "commission_type": c.commission_type.value,
                    "status": c.status.value,
                    "base_value": to_money(c.base_value),
                    "percentage": float(c.percentage),
                    "amount": to_money(c.amount),
                }
                for c in result.commissions
            ],
            "qualification_approved": result.qualification_approved,
            "invoice_created": result.invoice_created,
            "invoice_number": result.invoice_number,
        }

    def move_result(self, result: MoveResult) -> dict:
        output = {
            "success": True,
            "deal_id": result.deal_id,
            "from_stage": result.from_stage.value,
            "to_stage": result.to_stage.value,
            "probability": result.probability,
            "changed": result.changed,
        }
        if result.closing is not None:
            output["closing"] = self.close_result(result.closing)
        return output

    def invoice_summary(self, summary: InvoiceRunSummary) -> dict:
        return {
            "success": not summary.errors,
            "message": summary.message,
            "month": summary.month,
            "year": summary.year,
            "invoices_created": summary.invoices_created,
            "invoice_ids": summary.invoice_ids,
            "invoice_numbers": summary.invoice_numbers,
            "already_invoiced": summary.already_invoiced,
            "expired": summary.expired,
            "errors": summary.errors,
        }

    def lifecycle_summary(self, summary: LifecycleSummary) -> dict:
        return {
            "success": not summary.errors,
            "hours_reset": summary.hours_reset,
            # Reported only; not credited to the next period
            "rollover_hours": {deal_id: to_money(hours) for deal_id, hours in summary.rollover_hours.items()},
            "hours_usage": {deal_id: to_money(usage) for deal_id, usage in summary.hours_usage.items()},
            "contract_alerts": summary.contract_alerts,
            "notifications_created": summary.notifications_created,
            "tasks_created": summary.tasks_created,
            "errors": summary.errors,
        }
