"""
Request handlers shared by the Lambda entry point and the Flask app.

Each handler takes the decoded JSON body (and the actor id where the route
needs one) and returns (status_code, body_dict). Transport concerns such as
headers, base64 bodies and routing stay in the callers.
"""

import logging
from dataclasses import dataclass

from .config import Settings
from .db import get_session_factory
from .deals import DealService
from .errors import BusinessRuleError, InvoiceGenerationError, NotFoundError, ValidationError
from .invoicing import RecurringInvoiceGenerator
from .lifecycle import RetainerLifecycleJob
from .models import MoveDealRequest, Stage, StageProbabilities, parse_enum
from .output import OutputBuilder
from .processor import DealClosingProcessor
from .validators import validate_move

logger = logging.getLogger(__name__)

output_builder = OutputBuilder()


@dataclass
class Services:
    """Everything a request needs, built once per process."""

    settings: Settings
    closing_processor: DealClosingProcessor
    deal_service: DealService
    invoice_generator: RecurringInvoiceGenerator
    lifecycle_job: RetainerLifecycleJob

    @classmethod
    def build(cls, settings: Settings | None = None, session_factory=None, clock=None) -> "Services":
        settings = settings or Settings.from_env()
        session_factory = session_factory or get_session_factory(settings)
        probabilities = StageProbabilities()
        processor = DealClosingProcessor(session_factory, probabilities=probabilities, settings=settings, clock=clock)
        return cls(
            settings=settings,
            closing_processor=processor,
            deal_service=DealService(session_factory, closing_processor=processor, probabilities=probabilities),
            invoice_generator=RecurringInvoiceGenerator(session_factory, settings=settings, clock=clock),
            lifecycle_job=RetainerLifecycleJob(session_factory, settings=settings, clock=clock),
        )


_services: Services | None = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = Services.build()
    return _services


def set_services(services: Services | None) -> None:
    global _services
    _services = services


def unauthorized() -> tuple[int, dict]:
    return 401, {"error": "Authentication required", "status": "unauthorized"}


def handle_validate_move(data: dict) -> tuple[int, dict]:
    """
    Pure stage-transition check.

    Body: {"role", "from_stage", "to_stage", "is_owner"}
    """

    def run():
        from_stage = parse_enum(Stage, data.get("from_stage"), "from_stage")
        to_stage = parse_enum(Stage, data.get("to_stage"), "to_stage")
        validation = validate_move(data.get("role"), from_stage, to_stage, bool(data.get("is_owner", False)))
        return 200, validation.to_dict()

    return _guarded(run)


def handle_move_deal(data: dict, actor_id: str | None) -> tuple[int, dict]:
    if not actor_id:
        return unauthorized()

    def run():
        request = MoveDealRequest.from_dict(data, actor_id=actor_id)
        logger.info(f"Moving deal {request.deal_id} to {request.to_stage.value}")
        result = get_services().deal_service.move_deal(request)
        return 200, output_builder.move_result(result)

    return _guarded(run)


def handle_close_deal(data: dict, actor_id: str | None) -> tuple[int, dict]:
    if not actor_id:
        return unauthorized()

    def run():
        return 200, get_services().closing_processor.process_from_dict(data, actor_id=actor_id)

    return _guarded(run)


def handle_generate_invoices() -> tuple[int, dict]:
    def run():
        summary = get_services().invoice_generator.generate()
        return 200, output_builder.invoice_summary(summary)

    return _guarded(run)


def handle_retainer_lifecycle() -> tuple[int, dict]:
    def run():
        summary = get_services().lifecycle_job.run()
        return 200, output_builder.lifecycle_summary(summary)

    return _guarded(run)


def _guarded(run) -> tuple[int, dict]:
    """Run a handler body and map engine exceptions onto responses."""
    try:
        return run()

    except NotFoundError as e:
        logger.info(f"Not found: {str(e)}")
        return 404, {"error": str(e), "status": "not_found"}

    except BusinessRuleError as e:
        logger.info(f"Rejected ({e.reason}): {e.message}")
        body = {"error": e.message, "status": "rejected", "reason": e.reason}
        body.update(e.details)
        return 400, body

    except (ValidationError, ValueError, KeyError, TypeError) as e:
        # Validation errors from engine (missing fields, invalid types, etc.)
        logger.error(f"Validation error: {str(e)}")
        return 400, {"error": f"Validation error: {str(e)}", "status": "validation_failed"}

    except InvoiceGenerationError as e:
        logger.error(f"Invoice generation failed: {str(e)}")
        return 500, {"error": str(e), "status": "failed", "invoices_created": 0, "errors": [str(e)]}

    except Exception as e:
        # Unexpected errors - log details but return generic message to avoid information disclosure
        logger.error(f"Unexpected processing error: {str(e)}", exc_info=True)
        return 500, {"error": "An unexpected error occurred during processing", "status": "failed"}


__all__ = [
    "Services",
    "get_services",
    "set_services",
    "handle_validate_move",
    "handle_move_deal",
    "handle_close_deal",
    "handle_generate_invoices",
    "handle_retainer_lifecycle",
]
