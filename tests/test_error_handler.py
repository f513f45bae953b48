"""Tests for structured error recording."""

import json
import logging.handlers
import sqlite3
import tempfile
import unittest
from pathlib import Path

from bank_notifier.mailbox.base import AuthExpired, MessageNotFound, TransientFetchError
from bank_notifier.utils.error_handler import (
    ErrorCategory,
    ErrorHandler,
    handle_message_error,
    handle_provider_error,
)


class TestErrorHandler(unittest.TestCase):
    """Test cases for ErrorHandler"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.handler = ErrorHandler(log_directory=self.temp_dir, enable_console=False)

    def tearDown(self):
        import shutil
        for handler in list(self.handler.logger.handlers):
            handler.close()
        self.handler.logger.handlers.clear()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_log_error_records_code_and_category(self):
        detail = self.handler.log_error(
            "Store failed", "STORE_FAILED", ErrorCategory.PERSISTENCE, message_id="m1"
        )

        self.assertEqual(detail.error_code, "R002")
        self.assertEqual(detail.category, "persistence")
        self.assertTrue(self.handler.has_errors())
        self.assertEqual(len(self.handler.get_errors_for_message("m1")), 1)

    def test_unknown_error_type_uses_fallback_code(self):
        detail = self.handler.log_error("Odd", "NOT_A_CODE")

        self.assertEqual(detail.error_code, "S999")

    def test_errors_written_as_json_lines(self):
        self.handler.log_error("Provider down", "PROVIDER_ERROR", ErrorCategory.PROVIDER)
        for handler in self.handler.logger.handlers:
            handler.flush()

        error_file = Path(self.temp_dir) / "errors.jsonl"
        self.assertTrue(error_file.exists())

        lines = error_file.read_text(encoding='utf-8').strip().splitlines()
        entry = json.loads(lines[-1])
        self.assertEqual(entry['message'], "Provider down")
        self.assertEqual(entry['error_code'], "P001")
        self.assertEqual(entry['category'], "provider")

    def test_summary_counts_by_category(self):
        self.handler.log_error("a", "MESSAGE_NOT_FOUND", ErrorCategory.MESSAGE_FETCH, message_id="m1")
        self.handler.log_error("a", "MESSAGE_NOT_FOUND", ErrorCategory.MESSAGE_FETCH, message_id="m2")
        self.handler.log_warning("w", "POSITION_EXPIRED", ErrorCategory.SYNC)

        summary = self.handler.get_error_summary()

        self.assertEqual(summary['total_errors'], 2)
        self.assertEqual(summary['total_warnings'], 1)
        self.assertEqual(summary['errors_by_category'], {'message_fetch': 2})
        self.assertEqual(summary['warnings_by_category'], {'sync': 1})
        self.assertEqual(summary['messages_with_errors'], 2)
        self.assertEqual(summary['most_common_errors'][0]['count'], 2)

    def test_generate_error_report(self):
        self.handler.log_error("boom", "UNEXPECTED_ERROR", exception=RuntimeError("boom"))
        report_path = self.handler.generate_error_report()

        with open(report_path, encoding='utf-8') as f:
            report = json.load(f)

        self.assertEqual(report['summary']['total_errors'], 1)
        self.assertIn("RuntimeError", report['all_errors'][0]['stack_trace'])

    def test_log_files_rotate_daily(self):
        rotating = [
            handler for handler in self.handler.logger.handlers
            if isinstance(handler, logging.handlers.TimedRotatingFileHandler)
        ]

        self.assertEqual(len(rotating), 2)
        self.assertTrue(all(handler.when == 'MIDNIGHT' for handler in rotating))

    def test_history_is_capped(self):
        handler = ErrorHandler(enable_console=False, enable_file=False, max_history=3)

        for i in range(5):
            handler.log_error(f"error {i}", "STORE_FAILED")
            handler.log_warning(f"warning {i}", "TRANSACTION_WARNING")

        self.assertEqual([e.message for e in handler.errors], ["error 2", "error 3", "error 4"])
        self.assertEqual(len(handler.warnings), 3)
        self.assertEqual(handler.get_error_summary()['total_errors'], 3)

    def test_clear_errors(self):
        self.handler.log_error("x", "STORE_FAILED")
        self.handler.log_warning("y", "TRANSACTION_WARNING")
        self.handler.clear_errors()

        self.assertFalse(self.handler.has_errors())
        self.assertFalse(self.handler.has_warnings())


class TestConvenienceHandlers(unittest.TestCase):
    """Test cases for the module-level helpers"""

    def setUp(self):
        self.handler = ErrorHandler(enable_console=False, enable_file=False)

    def test_provider_error_codes(self):
        auth = handle_provider_error(self.handler, AuthExpired("expired"))
        other = handle_provider_error(self.handler, TransientFetchError("503"))

        self.assertEqual(auth.error_code, "P002")
        self.assertEqual(other.error_code, "P001")
        self.assertEqual(auth.category, "provider")

    def test_message_error_codes(self):
        missing = handle_message_error(self.handler, "m1", MessageNotFound("m1"))
        transient = handle_message_error(self.handler, "m2", TransientFetchError("timeout"))
        broken = handle_message_error(self.handler, "m3", ValueError("bad markup"))

        self.assertEqual(missing.error_code, "M001")
        self.assertEqual(transient.error_code, "M002")
        self.assertEqual(broken.error_code, "D005")
        self.assertEqual(broken.message_id, "m3")

    def test_undecodable_message_is_a_fetch_failure(self):
        detail = handle_message_error(self.handler, "m4", ValueError("bad payload"), fetching=True)

        self.assertEqual(detail.error_code, "M002")
        self.assertEqual(detail.category, "message_fetch")

    def test_database_error_is_a_store_failure(self):
        detail = handle_message_error(self.handler, "m5", sqlite3.OperationalError("database is locked"))

        self.assertEqual(detail.error_code, "R002")
        self.assertEqual(detail.category, "persistence")


if __name__ == '__main__':
    unittest.main()
