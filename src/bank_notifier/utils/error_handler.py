"""Error recording and structured logging for the ingestion pipeline."""

import json
import logging
import logging.handlers
import sqlite3
import sys
import traceback
from collections import deque
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional


class ErrorSeverity(Enum):
    """Error severity levels"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification"""
    PROVIDER = "provider"
    SYNC = "sync"
    MESSAGE_FETCH = "message_fetch"
    DATA_PARSING = "data_parsing"
    DATA_VALIDATION = "data_validation"
    PERSISTENCE = "persistence"
    CONFIGURATION = "configuration"
    SYSTEM = "system"


ERROR_CODES = {
    # Mail provider errors
    "PROVIDER_ERROR": "P001",
    "AUTH_EXPIRED": "P002",
    "TOKEN_REFRESH_FAILED": "P003",

    # Change-log position handling
    "POSITION_EXPIRED": "Y001",
    "CURSOR_REPAIRED": "Y002",

    # Per-message fetch errors
    "MESSAGE_NOT_FOUND": "M001",
    "MESSAGE_FETCH_FAILED": "M002",

    # Data parsing errors
    "DATE_PARSE_FALLBACK": "D001",
    "MISSING_REQUIRED_FIELD": "D004",
    "ASSEMBLY_FAILED": "D005",

    # Data validation
    "TRANSACTION_WARNING": "V003",

    # Persistence
    "STORE_FAILED": "R002",

    # Configuration errors
    "INVALID_CONFIG_VALUE": "C004",

    # System errors
    "UNEXPECTED_ERROR": "S999",
}


@dataclass
class ErrorDetail:
    """Detailed error information"""
    timestamp: str
    severity: str
    category: str
    error_code: str
    message: str
    message_id: Optional[str] = None
    field_name: Optional[str] = None
    raw_value: Optional[str] = None
    stack_trace: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return asdict(self)


class JSONFormatter(logging.Formatter):
    def format(self, record):
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        for key in ('error_code', 'category', 'message_id', 'context'):
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, default=str)


class ErrorHandler:
    """Collects pipeline errors and warnings and writes them as structured logs"""

    def __init__(self,
                 log_directory: str = "logs",
                 enable_console: bool = True,
                 enable_file: bool = True,
                 logger_name: str = "bank_notifier.events",
                 max_history: int = 1000):
        """
        Args:
            log_directory: Directory for the daily-rotated JSON-lines files
            enable_console: Echo events to stdout
            enable_file: Write events to files under ``log_directory``
            logger_name: Logger the events are emitted on
            max_history: Errors and warnings kept in memory each; older ones are dropped
        """
        self.log_directory = Path(log_directory)
        self.enable_file = enable_file
        if enable_file:
            self.log_directory.mkdir(parents=True, exist_ok=True)

        self.errors: Deque[ErrorDetail] = deque(maxlen=max_history)
        self.warnings: Deque[ErrorDetail] = deque(maxlen=max_history)
        self.error_codes = dict(ERROR_CODES)

        self._setup_logging(logger_name, enable_console)

    def _setup_logging(self, logger_name: str, enable_console: bool):
        """Set up structured JSON logging"""
        self.logger = logging.getLogger(logger_name)
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False

        for handler in list(self.logger.handlers):
            handler.close()
        self.logger.handlers.clear()

        if self.enable_file:
            # Rotated at midnight; the previous day's file gets a date suffix
            file_handler = logging.handlers.TimedRotatingFileHandler(
                str(self.log_directory / "notifier.jsonl"), when='midnight', encoding='utf-8'
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(JSONFormatter())
            self.logger.addHandler(file_handler)

            error_handler = logging.handlers.TimedRotatingFileHandler(
                str(self.log_directory / "errors.jsonl"), when='midnight', encoding='utf-8'
            )
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(JSONFormatter())
            self.logger.addHandler(error_handler)

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(logging.INFO)
            console_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(levelname)s - %(message)s'
            ))
            self.logger.addHandler(console_handler)

        if not self.logger.handlers:
            self.logger.addHandler(logging.NullHandler())

    def log_error(self,
                  message: str,
                  error_type: str,
                  category: ErrorCategory = ErrorCategory.SYSTEM,
                  message_id: Optional[str] = None,
                  field_name: Optional[str] = None,
                  raw_value: Optional[str] = None,
                  exception: Optional[BaseException] = None,
                  context: Optional[Dict[str, Any]] = None) -> ErrorDetail:
        """Log an error with detailed information"""
        error_code = self.error_codes.get(error_type, "S999")
        stack_trace = None

        if exception:
            stack_trace = ''.join(traceback.format_exception(
                type(exception), exception, exception.__traceback__
            ))

        error_detail = ErrorDetail(
            timestamp=datetime.now().isoformat(),
            severity=ErrorSeverity.ERROR.value,
            category=category.value,
            error_code=error_code,
            message=message,
            message_id=message_id,
            field_name=field_name,
            raw_value=raw_value,
            stack_trace=stack_trace,
            context=context or {}
        )

        self.errors.append(error_detail)

        self.logger.error(
            message,
            extra={
                'error_code': error_code,
                'category': category.value,
                'message_id': message_id,
                'context': context or {}
            }
        )

        return error_detail

    def log_warning(self,
                    message: str,
                    warning_type: str,
                    category: ErrorCategory = ErrorCategory.SYSTEM,
                    message_id: Optional[str] = None,
                    context: Optional[Dict[str, Any]] = None) -> ErrorDetail:
        """Log a warning with detailed information"""
        warning_code = self.error_codes.get(warning_type, "W999")

        warning_detail = ErrorDetail(
            timestamp=datetime.now().isoformat(),
            severity=ErrorSeverity.WARNING.value,
            category=category.value,
            error_code=warning_code,
            message=message,
            message_id=message_id,
            context=context or {}
        )

        self.warnings.append(warning_detail)

        self.logger.warning(
            message,
            extra={
                'error_code': warning_code,
                'category': category.value,
                'message_id': message_id,
                'context': context or {}
            }
        )

        return warning_detail

    def log_info(self, message: str, context: Optional[Dict[str, Any]] = None):
        """Log informational message"""
        self.logger.info(message, extra={'context': context or {}})

    def get_error_summary(self) -> Dict[str, Any]:
        """Get summary of all errors and warnings"""
        errors_by_category: Dict[str, int] = {}
        warnings_by_category: Dict[str, int] = {}

        for error in self.errors:
            errors_by_category[error.category] = errors_by_category.get(error.category, 0) + 1
        for warning in self.warnings:
            warnings_by_category[warning.category] = warnings_by_category.get(warning.category, 0) + 1

        return {
            'total_errors': len(self.errors),
            'total_warnings': len(self.warnings),
            'errors_by_category': errors_by_category,
            'warnings_by_category': warnings_by_category,
            'most_common_errors': self._get_most_common_errors(),
            'messages_with_errors': len(set(e.message_id for e in self.errors if e.message_id)),
        }

    def _get_most_common_errors(self, limit: int = 5) -> List[Dict[str, Any]]:
        """Get most common error types"""
        error_counts: Dict[str, Dict[str, Any]] = {}

        for error in self.errors:
            key = f"{error.error_code}: {error.message}"
            if key not in error_counts:
                error_counts[key] = {
                    'error_code': error.error_code,
                    'message': error.message,
                    'category': error.category,
                    'count': 0
                }
            error_counts[key]['count'] += 1

        sorted_errors = sorted(error_counts.values(), key=lambda x: x['count'], reverse=True)
        return sorted_errors[:limit]

    def generate_error_report(self, output_file: Optional[str] = None) -> str:
        """Write all recorded errors and warnings to a JSON report"""
        if output_file is None:
            self.log_directory.mkdir(parents=True, exist_ok=True)
            output_file = str(self.log_directory / f"error_report_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json")

        report = {
            'report_timestamp': datetime.now().isoformat(),
            'summary': self.get_error_summary(),
            'all_errors': [error.to_dict() for error in self.errors],
            'all_warnings': [warning.to_dict() for warning in self.warnings]
        }

        with open(output_file, 'w', encoding='utf-8') as f:
            json.dump(report, f, indent=2, default=str, ensure_ascii=False)

        self.log_info(f"Error report generated: {output_file}")
        return output_file

    def clear_errors(self):
        """Clear all accumulated errors and warnings"""
        self.errors.clear()
        self.warnings.clear()
        self.log_info("Error history cleared")

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    def get_errors_for_message(self, message_id: str) -> List[ErrorDetail]:
        """Get all errors recorded for a specific mailbox message"""
        return [error for error in self.errors if error.message_id == message_id]


# Convenience functions for common error scenarios
def handle_provider_error(error_handler: ErrorHandler,
                          exception: Exception,
                          context: Optional[Dict[str, Any]] = None) -> ErrorDetail:
    """Record a mail provider failure that aborted a fetch"""
    from ..mailbox.base import AuthExpired

    error_type = "AUTH_EXPIRED" if isinstance(exception, AuthExpired) else "PROVIDER_ERROR"
    return error_handler.log_error(
        f"Mail provider error: {exception}",
        error_type,
        ErrorCategory.PROVIDER,
        exception=exception,
        context=context
    )


def handle_message_error(error_handler: ErrorHandler,
                         message_id: str,
                         exception: Exception,
                         fetching: bool = False) -> ErrorDetail:
    """Record a per-message failure (fetch, assembly or store)"""
    from ..mailbox.base import MessageNotFound, MailboxError

    if isinstance(exception, MessageNotFound):
        error_type, category = "MESSAGE_NOT_FOUND", ErrorCategory.MESSAGE_FETCH
    elif fetching or isinstance(exception, MailboxError):
        error_type, category = "MESSAGE_FETCH_FAILED", ErrorCategory.MESSAGE_FETCH
    elif isinstance(exception, sqlite3.Error):
        error_type, category = "STORE_FAILED", ErrorCategory.PERSISTENCE
    else:
        error_type, category = "ASSEMBLY_FAILED", ErrorCategory.DATA_PARSING

    return error_handler.log_error(
        f"Error processing message {message_id}: {exception}",
        error_type,
        category,
        message_id=message_id,
        exception=exception
    )
