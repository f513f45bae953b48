"""Validation engine for extracted fields and assembled transactions."""

from datetime import datetime
from typing import List, Optional, Sequence

from ..models.core import REQUIRED_FIELDS, ExtractedFields, TransactionField, TransactionRecord


class ValidationEngine:
    """Validates extracted notification data"""

    def __init__(self, required_fields: Optional[Sequence[TransactionField]] = None):
        self.required_fields = list(required_fields or REQUIRED_FIELDS)
        self.max_reasonable_amount = 10_000_000_000

    def missing_required_fields(self, extracted: ExtractedFields) -> List[TransactionField]:
        """Return required fields that are absent or blank after trimming"""
        return extracted.missing(self.required_fields)

    def validate_transaction(self, record: TransactionRecord) -> List[str]:
        """Return non-blocking warnings for an assembled transaction"""
        warnings = []

        if record.amount == 0:
            warnings.append("Warning: Transaction amount is zero")
        elif abs(record.amount) > self.max_reasonable_amount:
            warnings.append("Warning: Transaction amount is very large")

        if record.fee < 0:
            warnings.append("Warning: Transaction fee is negative")

        if record.time_parsed:
            current_year = datetime.now().year
            if record.transaction_time.year < 2000 or record.transaction_time.year > current_year + 1:
                warnings.append(f"Warning: Transaction year {record.transaction_time.year} seems unreasonable")

        if not record.sender_name:
            warnings.append("Warning: Sender name is empty")

        return warnings
