"""
Local ledger store backed by SQLite.

The store is a plain key-value blob table. Two keys are used:

- ``transactions``: JSON array of transaction objects
  (``id, amount, category, type, date, notes, synced``).
- ``lastSyncTime``: ISO-8601 timestamp of the last successful pull.

Every write runs inside a single SQLite transaction so readers only ever observe
the state before or after a write, never a partial one. The schema is verified on
construction and recreated if it is missing or invalid.
"""

import datetime
import enum
import json
import logging
import pathlib
import sqlite3
import threading
import time
from typing import Any, Dict, Iterable, List, Optional

from .model import EPOCH, Transaction, format_timestamp, parse_timestamp
from .retry import exponential_backoff, with_retry
from ..status import status

KV_TABLE = 'kv'
DELETE_ATTEMPTS = 5

KV_SCHEMA: Dict[str, str] = {
    'key': 'TEXT PRIMARY KEY',
    'value': 'TEXT NOT NULL',
    'updated': 'TEXT',
}


class Key(enum.StrEnum):
    """Keys of the ledger key space."""
    Transactions = 'transactions'
    LastSyncTime = 'lastSyncTime'


def now_str() -> str:
    """Return current UTC date and time as an ISO 8601 string.

    Returns:
        str: Current UTC date and time in ISO 8601 format.
    """
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class LedgerStore:
    """Durable key-value persistence of the transaction collection and the last sync marker."""

    def __init__(self, db_path: str | pathlib.Path) -> None:
        """
        Args:
            db_path: Path of the SQLite database file. Parent directories are created.
        """
        self.db_path: pathlib.Path = pathlib.Path(db_path)
        self._lock = threading.RLock()
        self._initialize_schema_if_needed()

    def connection(self) -> sqlite3.Connection:
        """Return a new connection to the ledger database.

        Returns:
            sqlite3.Connection: Database connection object.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(self.db_path), timeout=2.0)
        conn.set_progress_handler(lambda: logging.debug('Waiting on DB lock…'), 1000)
        return conn

    @staticmethod
    def _table_exists_in_conn(conn: sqlite3.Connection, table_name: str) -> bool:
        """Check if a table exists using an existing connection."""
        cursor = conn.execute(
            """SELECT name FROM sqlite_master WHERE type='table' AND name=?""",
            (table_name,)
        )
        return cursor.fetchone() is not None

    def _initialize_schema_if_needed(self) -> None:
        """
        Ensures the database file and the key-value table are valid.
        If the table is missing or has unexpected columns, it is recreated.
        """
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()

            table_is_valid = False
            if self._table_exists_in_conn(conn, KV_TABLE):
                cursor = conn.execute(f'PRAGMA table_info({KV_TABLE})')
                current_columns = {row[1] for row in cursor.fetchall()}
                if set(KV_SCHEMA.keys()).issubset(current_columns):
                    table_is_valid = True
                else:
                    missing_cols = set(KV_SCHEMA.keys()) - current_columns
                    logging.warning(
                        f'Table "{KV_TABLE}" schema is invalid. Missing columns: {missing_cols}. '
                        f'Schema will be recreated.'
                    )

            if not table_is_valid:
                logging.info(f'Creating ledger schema in "{self.db_path}".')
                cols_sql = ', '.join(f'"{name}" {typedef}' for name, typedef in KV_SCHEMA.items())
                with conn:
                    conn.execute(f'DROP TABLE IF EXISTS {KV_TABLE}')
                    conn.execute(f'CREATE TABLE {KV_TABLE} ({cols_sql})')
            else:
                logging.debug('Existing ledger schema is valid.')

        except sqlite3.Error as ex:
            raise status.PersistenceException(f'Could not initialize the ledger database: {ex}') from ex
        finally:
            if conn:
                conn.close()

    def get_item(self, key: str) -> Optional[str]:
        """Return the raw value stored under ``key``, or None if unset.

        Raises:
            status.PersistenceException: If the database cannot be read.
        """
        conn: Optional[sqlite3.Connection] = None
        with self._lock:
            try:
                conn = self.connection()
                row = conn.execute(f'SELECT value FROM {KV_TABLE} WHERE key=?', (str(key),)).fetchone()
                return row[0] if row else None
            except sqlite3.Error as ex:
                raise status.PersistenceException(f'Failed to read "{key}": {ex}') from ex
            finally:
                if conn:
                    conn.close()

    def set_items(self, items: Dict[str, str]) -> None:
        """Write several keys in a single atomic transaction.

        Args:
            items: Mapping of key to raw string value.

        Raises:
            status.PersistenceException: If the write fails. Nothing is written in that case.
        """
        conn: Optional[sqlite3.Connection] = None
        with self._lock:
            try:
                conn = self.connection()
                stamp = now_str()
                with conn:
                    conn.executemany(
                        f'INSERT OR REPLACE INTO {KV_TABLE} (key, value, updated) VALUES (?, ?, ?)',
                        [(str(k), v, stamp) for k, v in items.items()]
                    )
                logging.debug(f'Wrote {", ".join(items.keys())} to the ledger database.')
            except sqlite3.Error as ex:
                raise status.PersistenceException(
                    f'Failed to write {", ".join(items.keys())}: {ex}'
                ) from ex
            finally:
                if conn:
                    conn.close()

    def set_item(self, key: str, value: str) -> None:
        """Write a single key atomically."""
        self.set_items({key: value})

    @staticmethod
    def _encode_transactions(transactions: Iterable[Transaction]) -> str:
        items = [tx.to_dict() for tx in transactions]
        ids = [item['id'] for item in items]
        if len(ids) != len(set(ids)):
            raise status.PersistenceException('Refusing to save a ledger with duplicate transaction ids.')
        return json.dumps(items, ensure_ascii=False)

    def load_all(self) -> List[Transaction]:
        """Load every stored transaction.

        Returns:
            List[Transaction]: Stored transactions in stored order. Empty on first run.

        Raises:
            status.CacheInvalidException: If the stored data cannot be decoded.
            status.PersistenceException: If the database cannot be read.
        """
        raw = self.get_item(Key.Transactions)
        if raw is None:
            logging.debug('No stored transactions found.')
            return []

        try:
            data: Any = json.loads(raw)
            if not isinstance(data, list):
                raise TypeError(f'Expected a JSON array, got {type(data).__name__}')
            transactions = [Transaction.from_dict(item) for item in data]
        except (ValueError, TypeError) as ex:
            raise status.CacheInvalidException(f'Stored transactions are invalid: {ex}') from ex

        logging.debug(f'Loaded {len(transactions)} transactions from the ledger database.')
        return transactions

    def save_all(self, transactions: Iterable[Transaction]) -> None:
        """Replace the stored transaction collection atomically.

        Raises:
            status.PersistenceException: If the write fails.
        """
        self.set_item(Key.Transactions, self._encode_transactions(transactions))

    def get_last_sync_time(self) -> datetime.datetime:
        """Return the last sync marker, or the epoch if it was never set.

        Raises:
            status.CacheInvalidException: If the stored value is not a valid timestamp.
        """
        raw = self.get_item(Key.LastSyncTime)
        if not raw:
            return EPOCH
        try:
            return parse_timestamp(raw)
        except ValueError as ex:
            raise status.CacheInvalidException(f'Stored last sync time is invalid: {ex}') from ex

    def _checked_stamp(self, timestamp: datetime.datetime) -> Optional[str]:
        """Return the encoded marker, or None if it would move the marker backwards."""
        timestamp = parse_timestamp(timestamp)
        current = self.get_last_sync_time()
        if timestamp < current:
            logging.warning(
                f'Ignoring last sync time {format_timestamp(timestamp)}: '
                f'earlier than the stored {format_timestamp(current)}.'
            )
            return None
        return format_timestamp(timestamp)

    def set_last_sync_time(self, timestamp: datetime.datetime) -> None:
        """Advance the last sync marker. Earlier values than the stored one are ignored.

        Raises:
            status.PersistenceException: If the write fails.
        """
        with self._lock:
            value = self._checked_stamp(timestamp)
            if value is not None:
                self.set_item(Key.LastSyncTime, value)

    def save_all_and_stamp(self, transactions: Iterable[Transaction], timestamp: datetime.datetime) -> None:
        """Replace the transaction collection and advance the sync marker in one transaction.

        Raises:
            status.PersistenceException: If the write fails. Neither key is written in that case.
        """
        with self._lock:
            items = {Key.Transactions.value: self._encode_transactions(transactions)}
            value = self._checked_stamp(timestamp)
            if value is not None:
                items[Key.LastSyncTime.value] = value
            self.set_items(items)

    def delete(self) -> None:
        """Delete the ledger database file, retrying while it is locked.

        Raises:
            status.PersistenceException: If unable to remove the database file after retries.
        """
        if not self.db_path.exists():
            logging.debug('No ledger database found to delete.')
            return

        with self._lock:
            try:
                _, attempts = with_retry(
                    self.db_path.unlink,
                    max_attempts=DELETE_ATTEMPTS,
                    backoff=exponential_backoff(1.0, 1.5),
                    sleep=time.sleep,
                    retry_on=(OSError,),
                )
            except status.RetriesExhaustedException as ex:
                raise status.PersistenceException(f'Failed to remove ledger DB {self.db_path}: {ex}') from ex
        logging.info(f'Ledger database removed: {self.db_path} (attempts: {attempts})')
