"""Cursor-based incremental sync against the mailbox change log."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, TypeVar

from ..mailbox.base import (
    AuthExpired,
    ChangeLogClient,
    NotificationFilter,
    PositionExpired,
)
from ..models.core import Cursor, NotifierConfig, RawMessage
from .error_handler import ErrorCategory, ErrorHandler, handle_message_error
from .transaction_store import TransactionStore


logger = logging.getLogger(__name__)

T = TypeVar('T')


class SyncMode(Enum):
    """Which path produced a batch"""
    BOOTSTRAP = "bootstrap"
    STEADY = "steady"
    RECOVERY = "recovery"


@dataclass
class SyncBatch:
    """Messages fetched by one sync step.

    In STEADY mode ``messages`` holds the notifications to process and
    ``last_position`` the log position of the last message fetched. In
    BOOTSTRAP and RECOVERY mode no messages are returned; ``reseed_position``
    is where the cursor must restart and ``reseed_items`` how many messages
    the reseed fetch read.
    """
    mode: SyncMode
    start_position: Optional[str] = None
    messages: List[RawMessage] = field(default_factory=list)
    last_position: Optional[str] = None
    reseed_position: Optional[str] = None
    reseed_items: int = 0
    filtered: int = 0
    failed_ids: List[str] = field(default_factory=list)

    @property
    def is_reseed(self) -> bool:
        return self.mode is not SyncMode.STEADY

    def __len__(self) -> int:
        return len(self.messages)


class SyncController:
    """Reads new notifications since the saved cursor and advances it.

    The controller keeps no state between calls; the durable cursor in the
    store is the only memory. A missing cursor triggers bootstrap and an
    expired one triggers recovery: both restart from the latest notification
    instead of replaying history.
    """

    def __init__(self,
                 client: ChangeLogClient,
                 store: TransactionStore,
                 config: Optional[NotifierConfig] = None,
                 notification_filter: Optional[NotificationFilter] = None,
                 error_handler: Optional[ErrorHandler] = None):
        self.client = client
        self.store = store
        self.config = config or NotifierConfig()
        self.notification_filter = notification_filter or NotificationFilter(
            self.config.sender_domains, self.config.content_keywords
        )
        self.error_handler = error_handler

    def resolve_start_position(self) -> Optional[str]:
        """Saved cursor position, or one repaired from stored transactions"""
        cursor = self.store.get_cursor()
        if cursor is not None:
            return cursor.position

        position = self.store.restore_cursor_from_transactions()
        if position is not None and self.error_handler:
            self.error_handler.log_warning(
                f"Cursor was missing, restored to {position} from the latest stored transaction",
                "CURSOR_REPAIRED",
                ErrorCategory.SYNC,
                context={'position': position}
            )
        return position

    def fetch_delta(self, position: Optional[str]) -> SyncBatch:
        """Fetch everything after ``position``.

        An expired access token is refreshed once and the whole step retried
        once; a second ``AuthExpired`` propagates.

        Raises:
            TransientProviderError: If the change log could not be read
        """
        return self._with_reauth(lambda: self._fetch_delta(position))

    def advance_position(self, last_seen_position: str, item_count: int) -> Cursor:
        """Atomically replace the cursor"""
        return self.store.set_cursor(last_seen_position, item_count)

    def _fetch_delta(self, position: Optional[str]) -> SyncBatch:
        if position is None:
            logger.info("No saved position, bootstrapping from the latest notification")
            return self._reseed(SyncMode.BOOTSTRAP)

        try:
            listing = self.client.list_new_message_ids(position)
        except PositionExpired as e:
            message = (
                f"Position {position} expired; messages between it and the latest "
                f"notification are skipped permanently"
            )
            logger.warning(message)
            if self.error_handler:
                self.error_handler.log_warning(
                    message, "POSITION_EXPIRED", ErrorCategory.SYNC,
                    context={'expired_position': e.position}
                )
            return self._reseed(SyncMode.RECOVERY, position)

        batch = SyncBatch(mode=SyncMode.STEADY, start_position=position)
        if not listing.ids:
            logger.debug(f"No new messages since {position}")
            return batch

        logger.info(f"Found {len(listing.ids)} new messages since {position}")
        for message_id in listing.ids:
            try:
                message = self.client.get_message_detail(message_id)
            except AuthExpired:
                raise
            except Exception as e:
                logger.error(f"Failed to fetch message {message_id}: {e}")
                if self.error_handler:
                    handle_message_error(self.error_handler, message_id, e, fetching=True)
                batch.failed_ids.append(message_id)
                continue

            if message.log_position:
                batch.last_position = message.log_position

            if self.notification_filter.accepts(message):
                batch.messages.append(message)
            else:
                logger.debug(f"Message {message_id} is not a transaction notification")
                batch.filtered += 1

        return batch

    def _reseed(self, mode: SyncMode, expired_position: Optional[str] = None) -> SyncBatch:
        """Find a fresh restart position from the latest notification.

        Exactly one latest-message lookup is made. Its content is discarded;
        only its log position is kept.
        """
        reseed_position = None
        fetched = 0

        latest_id = self.client.get_latest_message_id()
        if latest_id is not None:
            try:
                latest = self.client.get_message_detail(latest_id)
                fetched = 1
                reseed_position = latest.log_position or None
            except AuthExpired:
                raise
            except Exception as e:
                logger.warning(f"Could not read latest message {latest_id}: {e}")

        if reseed_position is None:
            reseed_position = self.client.get_current_position()
            logger.info(f"Using current log head as restart position: {reseed_position}")

        return SyncBatch(
            mode=mode,
            start_position=expired_position,
            reseed_position=reseed_position,
            reseed_items=fetched if mode is SyncMode.RECOVERY else 0,
        )

    def _with_reauth(self, operation: Callable[[], T]) -> T:
        try:
            return operation()
        except AuthExpired as e:
            logger.warning(f"Mail provider rejected credentials ({e}), refreshing and retrying once")
            try:
                self.client.refresh_credentials()
            except AuthExpired as refresh_error:
                if self.error_handler:
                    self.error_handler.log_error(
                        f"Could not refresh mail provider credentials: {refresh_error}",
                        "TOKEN_REFRESH_FAILED",
                        ErrorCategory.PROVIDER,
                        exception=refresh_error
                    )
                raise
            return operation()
