"""Tests for the cursor-based sync controller."""

import binascii

import pytest

from bank_notifier.mailbox.base import AuthExpired, MessageNotFound, TransientFetchError
from bank_notifier.parsers.assembler import TransactionAssembler
from bank_notifier.utils.sync_controller import SyncMode


class TestBootstrap:
    """Starting without a saved position"""

    def test_bootstrap_reads_latest_position_only(self, controller, client, make_message):
        client.add_message(make_message('m1', '101'))
        client.add_message(make_message('m2', '102'))

        batch = controller.fetch_delta(None)

        assert batch.mode is SyncMode.BOOTSTRAP
        assert batch.is_reseed
        assert batch.messages == []
        assert batch.reseed_position == '102'
        assert batch.reseed_items == 0
        assert client.calls_of('latest') == [('latest', None)]
        assert client.calls_of('detail') == [('detail', 'm2')]
        assert client.calls_of('list') == []

    def test_bootstrap_empty_mailbox_uses_log_head(self, controller, client):
        client.head = '500'

        batch = controller.fetch_delta(None)

        assert batch.mode is SyncMode.BOOTSTRAP
        assert batch.reseed_position == '500'

    def test_resolve_start_position_from_cursor(self, controller, store):
        store.set_cursor('120', 0)

        assert controller.resolve_start_position() == '120'

    def test_resolve_start_position_repairs_missing_cursor(self, controller, store, make_message, error_handler):
        store.store(TransactionAssembler().assemble(make_message('m1', '150')).record)

        assert controller.resolve_start_position() == '150'
        assert store.get_cursor().position == '150'
        assert [w.error_code for w in error_handler.warnings] == ['Y002']

    def test_resolve_start_position_empty_store(self, controller, error_handler):
        assert controller.resolve_start_position() is None
        assert not error_handler.has_warnings()


class TestSteadyState:
    """Fetching new messages after a saved position"""

    def test_fetches_new_messages_in_order(self, controller, client, make_message):
        client.add_message(make_message('m1', '101'))
        client.add_message(make_message('m2', '102'))
        client.add_message(make_message('m3', '103'))

        batch = controller.fetch_delta('101')

        assert batch.mode is SyncMode.STEADY
        assert [m.id for m in batch.messages] == ['m2', 'm3']
        assert batch.last_position == '103'
        assert len(batch) == 2

    def test_empty_delta(self, controller, client, make_message):
        client.add_message(make_message('m1', '101'))

        batch = controller.fetch_delta('101')

        assert batch.messages == []
        assert batch.last_position is None
        assert client.calls_of('detail') == []

    def test_non_notifications_are_filtered(self, controller, client, make_message):
        client.add_message(make_message('m1', '101', sender='Newsletter <news@example.com>'))
        client.add_message(make_message('m2', '102'))

        batch = controller.fetch_delta('100')

        assert [m.id for m in batch.messages] == ['m2']
        assert batch.filtered == 1
        assert batch.last_position == '102'

    def test_filtered_message_still_advances_position(self, controller, client, make_message):
        client.add_message(make_message('m1', '101', sender='someone@example.com'))

        batch = controller.fetch_delta('100')

        assert batch.messages == []
        assert batch.last_position == '101'

    def test_detail_failures_are_skipped(self, controller, client, make_message, error_handler):
        client.add_message(make_message('m1', '101'))
        client.add_message(make_message('m2', '102'))
        client.add_message(make_message('m3', '103'))
        client.detail_errors['m2'] = TransientFetchError("timeout")
        client.detail_errors['m3'] = MessageNotFound('m3')

        batch = controller.fetch_delta('100')

        assert [m.id for m in batch.messages] == ['m1']
        assert batch.failed_ids == ['m2', 'm3']
        assert batch.last_position == '101'
        assert len(error_handler.errors) == 2

    def test_undecodable_messages_are_skipped(self, controller, client, make_message, error_handler):
        client.add_message(make_message('m1', '101'))
        client.add_message(make_message('m2', '102'))
        client.add_message(make_message('m3', '103'))
        client.detail_errors['m1'] = ValueError("invalid literal for int() with base 10: ''")
        client.detail_errors['m2'] = binascii.Error("Incorrect padding")

        batch = controller.fetch_delta('100')

        assert [m.id for m in batch.messages] == ['m3']
        assert batch.failed_ids == ['m1', 'm2']
        assert batch.last_position == '103'
        assert [e.error_code for e in error_handler.errors] == ['M002', 'M002']

    def test_all_details_failing_leaves_no_position(self, controller, client, make_message):
        client.add_message(make_message('m1', '101'))
        client.detail_errors['m1'] = TransientFetchError("timeout")

        batch = controller.fetch_delta('100')

        assert batch.last_position is None
        assert batch.failed_ids == ['m1']

    def test_listing_failure_propagates(self, controller, client):
        client.list_error = TransientFetchError("503")

        with pytest.raises(TransientFetchError):
            controller.fetch_delta('100')


class TestRecovery:
    """Saved position no longer retained by the provider"""

    def test_expired_position_reseeds_with_one_latest_fetch(self, controller, client, make_message, error_handler):
        client.add_message(make_message('m1', '101'))
        client.add_message(make_message('m2', '102'))
        client.expired_positions.add('50')

        batch = controller.fetch_delta('50')

        assert batch.mode is SyncMode.RECOVERY
        assert batch.messages == []
        assert batch.start_position == '50'
        assert batch.reseed_position == '102'
        assert batch.reseed_items == 1
        assert len(client.calls_of('latest')) == 1
        assert client.calls_of('detail') == [('detail', 'm2')]
        assert [w.error_code for w in error_handler.warnings] == ['Y001']

    def test_recovery_on_empty_mailbox(self, controller, client):
        client.head = '900'
        client.expired_positions.add('50')

        batch = controller.fetch_delta('50')

        assert batch.mode is SyncMode.RECOVERY
        assert batch.reseed_position == '900'
        assert batch.reseed_items == 0


class TestReauth:
    """Expired credentials"""

    def test_refreshes_once_and_retries(self, controller, client, make_message):
        client.add_message(make_message('m1', '101'))
        client.auth_failures = 1

        batch = controller.fetch_delta('100')

        assert client.refresh_calls == 1
        assert [m.id for m in batch.messages] == ['m1']
        assert len(client.calls_of('list')) == 2

    def test_second_auth_failure_propagates(self, controller, client):
        client.auth_failures = 2

        with pytest.raises(AuthExpired):
            controller.fetch_delta('100')

        assert client.refresh_calls == 1

    def test_auth_failure_on_detail_is_not_counted_as_failed(self, controller, client, make_message):
        client.add_message(make_message('m1', '101'))
        client.detail_errors['m1'] = AuthExpired("token expired")

        with pytest.raises(AuthExpired):
            controller.fetch_delta('100')

        assert client.refresh_calls == 1
        assert len(client.calls_of('detail')) == 2

    def test_refresh_failure_is_recorded(self, controller, client, error_handler):
        client.auth_failures = 1
        client.refresh_error = AuthExpired("invalid_grant")

        with pytest.raises(AuthExpired):
            controller.fetch_delta('100')

        assert [e.error_code for e in error_handler.errors] == ['P003']
        assert len(client.calls_of('list')) == 1


class TestAdvance:
    """Cursor updates"""

    def test_advance_position_replaces_cursor(self, controller, store):
        controller.advance_position('101', 1)
        cursor = controller.advance_position('105', 4)

        assert cursor.position == '105'
        assert store.get_cursor().position == '105'
        assert store.get_cursor().items_at_update == 4
