"""Shared fixtures: an in-memory change log and notification builders."""

from typing import Dict, List, Optional

import pytest

from bank_notifier.mailbox.base import (
    AuthExpired,
    ChangeLogClient,
    MessageNotFound,
    PositionExpired,
)
from bank_notifier.models.core import MessageListing, NotifierConfig, RawMessage
from bank_notifier.parsers.assembler import TransactionAssembler
from bank_notifier.utils.error_handler import ErrorHandler
from bank_notifier.utils.ingestion import IngestionOrchestrator
from bank_notifier.utils.sync_controller import SyncController
from bank_notifier.utils.transaction_store import TransactionStore


DEFAULT_VALUES = {
    'Tài khoản nhận': '0123456789',
    'Tài khoản chuyển': '9876543210',
    'Tên người chuyển': 'NGUYEN VAN A',
    'Ngân hàng chuyển': 'Vietcombank',
    'Loại giao dịch': 'Chuyển tiền đến',
    'Mã giao dịch': 'ABC123',
    'Ngày giờ giao dịch': '06/08/2025, 01:50:59',
    'Số tiền': '+2.000 VND',
    'Phí giao dịch': '0 VND',
    'Nội dung giao dịch': 'Thanh toan don hang',
}


def build_notification_html(values: Optional[Dict[str, Optional[str]]] = None) -> str:
    """Render a notification in the sender's nested table layout.

    Labels mapped to None are left out of the document.
    """
    merged = dict(DEFAULT_VALUES)
    merged.update(values or {})
    rows = ''.join(
        f'<tr><td class="label">{label}</td><td class="value">{value}</td></tr>'
        for label, value in merged.items() if value is not None
    )
    return (
        '<html><body>'
        '<p>Thông báo giao dịch</p>'
        f'<table width="100%"><tr><td><table>{rows}</table></td></tr></table>'
        '</body></html>'
    )


class FakeChangeLogClient(ChangeLogClient):
    """Change log held in memory; positions are integer strings"""

    def __init__(self, head: str = "100"):
        self.messages: Dict[str, RawMessage] = {}
        self.order: List[str] = []
        self.head = head
        self.expired_positions = set()
        self.detail_errors: Dict[str, Exception] = {}
        self.list_error: Optional[Exception] = None
        self.auth_failures = 0
        self.refresh_calls = 0
        self.refresh_error: Optional[Exception] = None
        self.calls: List[tuple] = []

    def add_message(self, message: RawMessage) -> RawMessage:
        self.messages[message.id] = message
        self.order.append(message.id)
        self.head = message.log_position
        return message

    def list_new_message_ids(self, since_position: str) -> MessageListing:
        self.calls.append(('list', since_position))
        if self.auth_failures:
            self.auth_failures -= 1
            raise AuthExpired("token expired")
        if self.list_error is not None:
            raise self.list_error
        if since_position in self.expired_positions:
            raise PositionExpired(since_position)
        ids = [
            message_id for message_id in self.order
            if int(self.messages[message_id].log_position) > int(since_position)
        ]
        return MessageListing(ids=ids, current_position=self.head)

    def get_message_detail(self, message_id: str) -> RawMessage:
        self.calls.append(('detail', message_id))
        if message_id in self.detail_errors:
            raise self.detail_errors[message_id]
        if message_id not in self.messages:
            raise MessageNotFound(message_id)
        return self.messages[message_id]

    def get_current_position(self) -> str:
        self.calls.append(('head', None))
        return self.head

    def get_latest_message_id(self) -> Optional[str]:
        self.calls.append(('latest', None))
        return self.order[-1] if self.order else None

    def refresh_credentials(self) -> None:
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error

    def calls_of(self, kind: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == kind]


@pytest.fixture
def config():
    return NotifierConfig()


@pytest.fixture
def make_message():
    """Factory for notification messages"""
    def _make(message_id: str,
              log_position: str,
              values: Optional[Dict[str, Optional[str]]] = None,
              sender: str = 'Cake Digital Bank <no-reply@cake.vn>',
              subject: str = 'Thông báo giao dịch') -> RawMessage:
        return RawMessage(
            id=message_id,
            log_position=log_position,
            subject=subject,
            sender=sender,
            body_markup=build_notification_html(values),
        )
    return _make


@pytest.fixture
def client():
    return FakeChangeLogClient()


@pytest.fixture
def store(tmp_path):
    return TransactionStore(str(tmp_path / 'notifier.db'))


@pytest.fixture
def error_handler(tmp_path):
    return ErrorHandler(log_directory=str(tmp_path / 'logs'), enable_console=False, enable_file=False)


@pytest.fixture
def controller(client, store, config, error_handler):
    return SyncController(client, store, config, error_handler=error_handler)


@pytest.fixture
def orchestrator(controller, store, config, error_handler):
    return IngestionOrchestrator(
        controller,
        TransactionAssembler(config, error_handler=error_handler),
        store,
        error_handler=error_handler
    )


@pytest.fixture
def notification_html():
    """Factory for notification markup"""
    return build_notification_html
