"""Idempotent SQLite persistence for transactions and the sync cursor."""

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from ..models.core import SENDER_TIMEZONE, Cursor, StoreResult, TransactionRecord


logger = logging.getLogger(__name__)

CURSOR_KEY = 1

SCHEMA = """
CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    receiver_account TEXT NOT NULL,
    sender_account TEXT NOT NULL,
    sender_name TEXT NOT NULL DEFAULT '',
    sender_bank TEXT NOT NULL DEFAULT '',
    transaction_type TEXT NOT NULL DEFAULT '',
    transaction_code TEXT NOT NULL,
    transaction_time TEXT NOT NULL,
    time_parsed INTEGER NOT NULL DEFAULT 1,
    amount_raw TEXT NOT NULL,
    amount INTEGER NOT NULL,
    fee_raw TEXT NOT NULL DEFAULT '',
    fee INTEGER NOT NULL DEFAULT 0,
    description TEXT NOT NULL DEFAULT '',
    source_message_id TEXT NOT NULL,
    source_log_position TEXT NOT NULL,
    processed_at TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS ux_transactions_code ON transactions (transaction_code);
CREATE UNIQUE INDEX IF NOT EXISTS ux_transactions_message ON transactions (source_message_id);
CREATE INDEX IF NOT EXISTS ix_transactions_time ON transactions (transaction_time DESC);
CREATE INDEX IF NOT EXISTS ix_transactions_processed ON transactions (processed_at DESC);

CREATE TABLE IF NOT EXISTS sync_cursor (
    singleton_key INTEGER PRIMARY KEY CHECK (singleton_key = 1),
    position TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    items_at_update INTEGER NOT NULL DEFAULT 0,
    active INTEGER NOT NULL DEFAULT 1
);
"""

RECORD_COLUMNS = [
    'receiver_account', 'sender_account', 'sender_name', 'sender_bank',
    'transaction_type', 'transaction_code', 'transaction_time', 'time_parsed',
    'amount_raw', 'amount', 'fee_raw', 'fee', 'description',
    'source_message_id', 'source_log_position', 'processed_at',
]


def _timestamp(value: datetime) -> str:
    return value.isoformat(timespec='microseconds')


class TransactionStore:
    """
    Stores accepted transactions at most once and owns the singleton cursor.

    Transaction code and source message id are both unique. A lookup on
    either key short-circuits repeated stores; the unique indexes catch the
    race where two writers pass the lookup at the same time.
    """

    def __init__(self, db_path: str = "data/bank_notifier.db", busy_timeout: float = 10.0):
        """
        Args:
            db_path: SQLite database file
            busy_timeout: Seconds to wait for a competing writer's lock
        """
        self.db_path = str(db_path)
        self.busy_timeout = busy_timeout
        self.initialize()

    def initialize(self) -> None:
        """Create tables and indexes if missing"""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with self._connection() as conn:
            conn.executescript(SCHEMA)
        logger.debug(f"TransactionStore initialized at {self.db_path}")

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    # Transactions

    def store(self, record: TransactionRecord) -> StoreResult:
        """Insert a transaction unless its code or source message is already stored"""
        with self._connection() as conn:
            existing = self._find_existing(conn, record.transaction_code, record.source_message_id)
            if existing is not None:
                logger.info(f"Transaction already exists: {record.transaction_code}")
                return StoreResult(record=existing, created=False)

            saved = replace(record, processed_at=datetime.now(timezone.utc))
            values = self._record_values(saved)
            try:
                cursor = conn.execute(
                    f"INSERT INTO transactions ({', '.join(RECORD_COLUMNS)}) "
                    f"VALUES ({', '.join('?' for _ in RECORD_COLUMNS)})",
                    [values[column] for column in RECORD_COLUMNS]
                )
            except sqlite3.IntegrityError as e:
                if 'UNIQUE' not in str(e).upper():
                    raise
                logger.warning(f"Duplicate transaction detected: {record.transaction_code}")
                return StoreResult(record=None, created=False)

        saved = replace(saved, id=cursor.lastrowid)
        logger.info(f"Transaction saved: {saved.transaction_code}")
        return StoreResult(record=saved, created=True)

    def _find_existing(self, conn: sqlite3.Connection,
                       transaction_code: str, source_message_id: str) -> Optional[TransactionRecord]:
        row = conn.execute(
            "SELECT * FROM transactions WHERE transaction_code = ? OR source_message_id = ? LIMIT 1",
            (transaction_code, source_message_id)
        ).fetchone()
        return self._row_to_record(row) if row else None

    def get_latest_transaction(self) -> Optional[TransactionRecord]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM transactions ORDER BY processed_at DESC, id DESC LIMIT 1"
            ).fetchone()
        return self._row_to_record(row) if row else None

    def get_recent_transactions(self, limit: int = 10) -> List[TransactionRecord]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM transactions ORDER BY processed_at DESC, id DESC LIMIT ?",
                (limit,)
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def count_transactions(self) -> int:
        with self._connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM transactions").fetchone()[0]

    def get_transaction_stats(self) -> Dict[str, Any]:
        """Totals for today (sender's calendar day) and overall"""
        today_start = datetime.now(SENDER_TIMEZONE).replace(hour=0, minute=0, second=0, microsecond=0)

        with self._connection() as conn:
            total = conn.execute("SELECT COUNT(*) FROM transactions").fetchone()[0]
            today = conn.execute(
                "SELECT COUNT(*) FROM transactions WHERE processed_at >= ?",
                (_timestamp(today_start.astimezone(timezone.utc)),)
            ).fetchone()[0]
            last = conn.execute("SELECT MAX(processed_at) FROM transactions").fetchone()[0]

        return {
            'total_transactions': total,
            'today_transactions': today,
            'last_transaction_time': last,
        }

    def cleanup_old_data(self, days_to_keep: int = 30) -> int:
        """Delete transactions processed more than ``days_to_keep`` days ago.

        The cursor is a single row and is never pruned.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(days=days_to_keep)
        with self._connection() as conn:
            deleted = conn.execute(
                "DELETE FROM transactions WHERE processed_at < ?",
                (_timestamp(cutoff),)
            ).rowcount
        logger.info(f"Cleanup completed: {deleted} transactions deleted")
        return deleted

    # Cursor

    def get_cursor(self) -> Optional[Cursor]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM sync_cursor WHERE singleton_key = ? AND active = 1",
                (CURSOR_KEY,)
            ).fetchone()
        if not row:
            return None
        return Cursor(
            position=row['position'],
            updated_at=datetime.fromisoformat(row['updated_at']),
            items_at_update=row['items_at_update'],
            active=bool(row['active']),
        )

    def set_cursor(self, position: str, items_at_update: int = 0) -> Cursor:
        """Replace the cursor in one statement keyed by the singleton key"""
        cursor = Cursor(
            position=str(position),
            updated_at=datetime.now(timezone.utc),
            items_at_update=items_at_update,
            active=True,
        )
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO sync_cursor (singleton_key, position, updated_at, items_at_update, active)
                VALUES (?, ?, ?, ?, 1)
                ON CONFLICT(singleton_key) DO UPDATE SET
                    position = excluded.position,
                    updated_at = excluded.updated_at,
                    items_at_update = excluded.items_at_update,
                    active = 1
                """,
                (CURSOR_KEY, cursor.position, _timestamp(cursor.updated_at), items_at_update)
            )
        logger.info(f"Cursor updated: {cursor.position} ({items_at_update} items)")
        return cursor

    def restore_cursor_from_transactions(self) -> Optional[str]:
        """Rebuild a missing cursor from the newest transaction's log position.

        A cycle that stored transactions but crashed before saving the cursor
        leaves the cursor empty; the newest transaction's log position is the
        best known restart point.
        """
        logger.info("Cursor is empty, checking stored transactions...")
        latest = self.get_latest_transaction()
        if latest is not None and latest.source_log_position:
            self.set_cursor(latest.source_log_position, 0)
            logger.info(f"Restored cursor from transactions: {latest.source_log_position}")
            return latest.source_log_position

        logger.info("No cursor and no transactions stored")
        return None

    def is_available(self) -> bool:
        try:
            with self._connection() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error as e:
            logger.error(f"Database check failed: {e}")
            return False

    # Row mapping

    def _record_values(self, record: TransactionRecord) -> Dict[str, Any]:
        return {
            'receiver_account': record.receiver_account,
            'sender_account': record.sender_account,
            'sender_name': record.sender_name or '',
            'sender_bank': record.sender_bank or '',
            'transaction_type': record.transaction_type or '',
            'transaction_code': record.transaction_code,
            'transaction_time': _timestamp(record.transaction_time),
            'time_parsed': 1 if record.time_parsed else 0,
            'amount_raw': record.amount_raw,
            'amount': record.amount,
            'fee_raw': record.fee_raw or '',
            'fee': record.fee or 0,
            'description': record.description or '',
            'source_message_id': record.source_message_id,
            'source_log_position': str(record.source_log_position),
            'processed_at': _timestamp(record.processed_at),
        }

    def _row_to_record(self, row: sqlite3.Row) -> TransactionRecord:
        return TransactionRecord(
            id=row['id'],
            receiver_account=row['receiver_account'],
            sender_account=row['sender_account'],
            sender_name=row['sender_name'],
            sender_bank=row['sender_bank'],
            transaction_type=row['transaction_type'],
            transaction_code=row['transaction_code'],
            transaction_time=datetime.fromisoformat(row['transaction_time']),
            time_parsed=bool(row['time_parsed']),
            amount_raw=row['amount_raw'],
            amount=row['amount'],
            fee_raw=row['fee_raw'],
            fee=row['fee'],
            description=row['description'],
            source_message_id=row['source_message_id'],
            source_log_position=row['source_log_position'],
            processed_at=datetime.fromisoformat(row['processed_at']),
        )
