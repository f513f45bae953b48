"""Assembles validated transaction records from notification messages."""

import logging
from typing import Optional

from .base import ValueNormalizer
from .html_parser import FieldExtractor
from ..models.core import (
    AssemblyResult,
    AssemblyStatus,
    NotifierConfig,
    RawMessage,
    TransactionField,
    TransactionRecord,
)
from ..utils.error_handler import ErrorCategory, ErrorHandler
from ..utils.validation import ValidationEngine


logger = logging.getLogger(__name__)


class TransactionAssembler:
    """Runs extraction, normalization and validation for one message.

    Messages missing a required field are INCOMPLETE. Records with a negative
    amount are OUTGOING transfers and must not be stored.
    """

    def __init__(self,
                 config: Optional[NotifierConfig] = None,
                 extractor: Optional[FieldExtractor] = None,
                 normalizer: Optional[ValueNormalizer] = None,
                 validation_engine: Optional[ValidationEngine] = None,
                 error_handler: Optional[ErrorHandler] = None):
        self.config = config or NotifierConfig()
        self.extractor = extractor or FieldExtractor(self.config)
        self.normalizer = normalizer or ValueNormalizer()
        self.validation_engine = validation_engine or ValidationEngine()
        self.error_handler = error_handler

    def assemble(self, message: RawMessage) -> AssemblyResult:
        extracted = self.extractor.extract(message.body_markup)

        missing = self.validation_engine.missing_required_fields(extracted)
        if missing:
            missing_names = ', '.join(f.value for f in missing)
            logger.info(f"Message {message.id} is not a complete transaction, missing: {missing_names}")
            if self.error_handler:
                self.error_handler.log_warning(
                    f"Required fields missing: {missing_names}",
                    "MISSING_REQUIRED_FIELD",
                    ErrorCategory.DATA_PARSING,
                    message_id=message.id,
                    context={'missing_fields': [f.value for f in missing]}
                )
            return AssemblyResult(
                status=AssemblyStatus.INCOMPLETE,
                extracted=extracted,
                missing_fields=missing
            )

        amount_raw = extracted.get(TransactionField.AMOUNT, '')
        fee_raw = extracted.get(TransactionField.FEE, '')
        time_raw = extracted.get(TransactionField.TRANSACTION_TIME, '')

        transaction_time = self.normalizer.normalize_datetime(time_raw)
        if transaction_time.is_fallback:
            logger.warning(
                f"Unparseable transaction time '{time_raw}' in message {message.id}, "
                f"using processing time"
            )
            if self.error_handler:
                self.error_handler.log_warning(
                    "Transaction time could not be parsed, using processing time",
                    "DATE_PARSE_FALLBACK",
                    ErrorCategory.DATA_PARSING,
                    message_id=message.id,
                    context={'raw_value': time_raw}
                )

        record = TransactionRecord(
            receiver_account=extracted.get(TransactionField.RECEIVER_ACCOUNT, ''),
            sender_account=extracted.get(TransactionField.SENDER_ACCOUNT, ''),
            transaction_code=extracted.get(TransactionField.TRANSACTION_CODE, ''),
            amount_raw=amount_raw,
            amount=self.normalizer.normalize_amount(amount_raw),
            source_message_id=message.id,
            source_log_position=message.log_position,
            transaction_time=transaction_time.value,
            time_parsed=not transaction_time.is_fallback,
            sender_name=extracted.get(TransactionField.SENDER_NAME, ''),
            sender_bank=extracted.get(TransactionField.SENDER_BANK, ''),
            transaction_type=extracted.get(TransactionField.TRANSACTION_TYPE, ''),
            fee_raw=fee_raw,
            fee=self.normalizer.normalize_amount(fee_raw),
            description=extracted.get(TransactionField.DESCRIPTION, ''),
        )

        if record.amount < 0:
            logger.info(f"Skipping outgoing transfer (negative amount): {record.transaction_code}")
            return AssemblyResult(status=AssemblyStatus.OUTGOING, record=record, extracted=extracted)

        warnings = self.validation_engine.validate_transaction(record)
        for warning in warnings:
            logger.debug(f"{record.transaction_code}: {warning}")

        return AssemblyResult(
            status=AssemblyStatus.ACCEPTED,
            record=record,
            extracted=extracted,
            warnings=warnings
        )
