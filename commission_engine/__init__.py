"""
CRM COMMISSION & BILLING ENGINE
Deal closing, commission rules and recurring retainer invoices.
"""

from .invoicing import RecurringInvoiceGenerator
from .models import CloseDealRequest, CloseDealResult, MoveDealRequest, StageProbabilities
from .processor import DealClosingProcessor
from .validators import validate_move

__all__ = [
    'DealClosingProcessor',
    'RecurringInvoiceGenerator',
    'CloseDealRequest',
    'CloseDealResult',
    'MoveDealRequest',
    'StageProbabilities',
    'validate_move',
]
