"""Utility functions and helpers"""

from .validation import ValidationEngine
from .config_manager import ConfigManager
from .error_handler import ErrorHandler, ErrorCategory, ErrorSeverity, handle_provider_error, handle_message_error
from .processing_tracker import ProcessingTracker, RunStatistics
from .transaction_store import TransactionStore

__all__ = [
    'ValidationEngine',
    'ConfigManager',
    'ErrorHandler',
    'ErrorCategory',
    'ErrorSeverity',
    'handle_provider_error',
    'handle_message_error',
    'ProcessingTracker',
    'RunStatistics',
    'TransactionStore',
]
