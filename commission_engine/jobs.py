"""
Scheduled job entry points.

Each returns a structured summary; failures are reported in `errors`
rather than raised, so schedulers always get a result to record.

Run from a shell with:  commission-invoices
"""

import json
import logging
import sys

from sqlalchemy.exc import SQLAlchemyError

from .config import Settings
from .db import get_session_factory
from .errors import InvoiceGenerationError
from .invoicing import RecurringInvoiceGenerator
from .lifecycle import RetainerLifecycleJob
from .output import OutputBuilder

logger = logging.getLogger(__name__)

output_builder = OutputBuilder()


def run_monthly_invoices(session_factory=None, settings: Settings | None = None, clock=None) -> dict:
    """Generate this period's retainer invoices: {invoices_created, errors[], ...}."""
    settings = settings or Settings.from_env()
    generator = RecurringInvoiceGenerator(
        session_factory or get_session_factory(settings), settings=settings, clock=clock
    )
    try:
        summary = generator.generate()
    except InvoiceGenerationError as e:
        return {"success": False, "invoices_created": 0, "errors": [str(e)]}
    return output_builder.invoice_summary(summary)


def run_retainer_lifecycle(session_factory=None, settings: Settings | None = None, clock=None) -> dict:
    settings = settings or Settings.from_env()
    job = RetainerLifecycleJob(session_factory or get_session_factory(settings), settings=settings, clock=clock)
    try:
        summary = job.run()
    except SQLAlchemyError as e:
        logger.error(f"Retainer lifecycle error: {str(e)}")
        return {"success": False, "hours_reset": 0, "errors": [str(e)]}
    return output_builder.lifecycle_summary(summary)


def main() -> int:
    """Console entry: generate invoices, print the summary as JSON."""
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level)

    result = run_monthly_invoices(settings=settings)
    print(json.dumps(result, indent=2))
    return 1 if result["errors"] else 0


if __name__ == "__main__":
    sys.exit(main())
