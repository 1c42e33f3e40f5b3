"""
Transaction Store - persisted log of anchored Sidetree transactions

SQLite-backed, ordered log keyed by transaction number. The store knows
nothing about the ledger: the blockchain observer decides what to append and
where to truncate.

Design:
- transaction_number is the INTEGER PRIMARY KEY, so SQLite keeps rows in
  key order and rejects duplicates
- One persistent connection shared across threads, guarded by a re-entrant lock
- WAL mode for file databases so readers do not block the sync cycle
- Records are immutable; deletes only ever remove a suffix of the log
"""

from __future__ import annotations

import os
import sqlite3
import threading
import logging
from typing import Optional, List

from .blockchain_exceptions import StorageError
from .models import AnchoredTransaction

logger = logging.getLogger(__name__)

SQLITE_URL_PREFIX = "sqlite:///"


def _resolve_db_path(connection_string: str) -> str:
    """Accept a filesystem path, ':memory:' or a sqlite:/// URL."""
    if connection_string.startswith(SQLITE_URL_PREFIX):
        return connection_string[len(SQLITE_URL_PREFIX):] or ":memory:"
    return connection_string


class TransactionStore:
    """
    SQLite-backed store for anchored transactions.

    Schema:
        transaction_number (INTEGER PRIMARY KEY) - composite (height, index) key
        transaction_time - Block height the anchor was observed at
        transaction_time_hash - Block hash at observation time
        anchor_string - Anchor payload without the Sidetree prefix

    Thread Safety:
        All operations run under one re-entrant lock; every write is a single
        committed statement.
    """

    TABLE_NAME = "transactions"

    def __init__(self, connection_string: str):
        """
        Args:
            connection_string: Database file path, ':memory:' or sqlite:/// URL
        """
        self.connection_string = connection_string
        self.db_path = _resolve_db_path(connection_string)
        self._lock = threading.RLock()
        self._db: Optional[sqlite3.Connection] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Open the connection and create the schema if needed."""
        with self._lock:
            if self._db is not None:
                return
            try:
                if self.db_path != ":memory:":
                    os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)
                self._db = sqlite3.connect(self.db_path, check_same_thread=False)
                self._db.row_factory = sqlite3.Row
                if self.db_path != ":memory:":
                    self._db.execute("PRAGMA journal_mode=WAL")
                    self._db.execute("PRAGMA synchronous=NORMAL")
                self._init_schema()
            except sqlite3.Error as e:
                logger.error(
                    "Failed to initialize transaction store",
                    extra={"event": "store.init_failed", "db_path": self.db_path, "error": str(e)},
                )
                raise StorageError(f"Cannot open transaction store: {e}") from e

        logger.info(
            "Transaction store initialized",
            extra={"event": "store.initialized", "db_path": self.db_path},
        )

    def _init_schema(self) -> None:
        self._db.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.TABLE_NAME} (
                transaction_number INTEGER PRIMARY KEY,
                transaction_time INTEGER NOT NULL,
                transaction_time_hash TEXT NOT NULL,
                anchor_string TEXT NOT NULL
            )
        """)
        self._db.commit()

    def close(self) -> None:
        """Release the database connection."""
        with self._lock:
            if self._db is None:
                return
            try:
                self._db.close()
            except sqlite3.Error as e:
                logger.warning(
                    "Failed to close transaction store cleanly",
                    extra={"event": "store.close_error", "error": str(e)},
                )
            finally:
                self._db = None
        logger.info("Transaction store closed", extra={"event": "store.closed"})

    def _conn(self) -> sqlite3.Connection:
        if self._db is None:
            raise StorageError("Transaction store is not initialized")
        return self._db

    @staticmethod
    def _to_record(row: sqlite3.Row) -> AnchoredTransaction:
        return AnchoredTransaction(
            transaction_number=row["transaction_number"],
            transaction_time=row["transaction_time"],
            transaction_time_hash=row["transaction_time_hash"],
            anchor_string=row["anchor_string"],
        )

    def _query(self, sql: str, params: tuple = ()) -> List[AnchoredTransaction]:
        with self._lock:
            try:
                rows = self._conn().execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Transaction store query failed: {e}") from e
        return [self._to_record(row) for row in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add(self, transaction: AnchoredTransaction) -> None:
        """
        Append a transaction.

        A transaction number that is already stored is treated as success, so
        re-processing a block is harmless.
        """
        with self._lock:
            db = self._conn()
            try:
                db.execute(
                    f"""INSERT INTO {self.TABLE_NAME}
                        (transaction_number, transaction_time, transaction_time_hash, anchor_string)
                        VALUES (?, ?, ?, ?)""",
                    (
                        transaction.transaction_number,
                        transaction.transaction_time,
                        transaction.transaction_time_hash,
                        transaction.anchor_string,
                    ),
                )
                db.commit()
            except sqlite3.IntegrityError:
                db.rollback()
                logger.debug(
                    "Transaction already stored",
                    extra={
                        "event": "store.duplicate_ignored",
                        "transaction_number": transaction.transaction_number,
                    },
                )
            except sqlite3.Error as e:
                db.rollback()
                raise StorageError(
                    f"Failed to store transaction {transaction.transaction_number}: {e}",
                    details={"transaction_number": transaction.transaction_number},
                ) from e

    def remove_later_than(self, transaction_number: Optional[int] = None) -> int:
        """
        Delete every transaction with a number greater than `transaction_number`.

        Args:
            transaction_number: Truncation point; None clears the whole store

        Returns:
            Number of transactions removed
        """
        with self._lock:
            db = self._conn()
            try:
                if transaction_number is None:
                    cursor = db.execute(f"DELETE FROM {self.TABLE_NAME}")
                else:
                    cursor = db.execute(
                        f"DELETE FROM {self.TABLE_NAME} WHERE transaction_number > ?",
                        (transaction_number,),
                    )
                removed = cursor.rowcount
                db.commit()
            except sqlite3.Error as e:
                db.rollback()
                raise StorageError(f"Failed to remove transactions: {e}") from e

        logger.info(
            "Removed transactions from store",
            extra={
                "event": "store.truncated",
                "later_than": transaction_number,
                "removed": removed,
            },
        )
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def count(self) -> int:
        with self._lock:
            try:
                row = self._conn().execute(f"SELECT COUNT(*) FROM {self.TABLE_NAME}").fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"Transaction store count failed: {e}") from e
        return row[0] if row else 0

    def get(self, transaction_number: int) -> Optional[AnchoredTransaction]:
        rows = self._query(
            f"SELECT * FROM {self.TABLE_NAME} WHERE transaction_number = ?",
            (transaction_number,),
        )
        return rows[0] if rows else None

    def get_later_than(
        self, since: Optional[int], max_count: int
    ) -> List[AnchoredTransaction]:
        """
        Get up to `max_count` transactions after `since`, oldest first.

        Args:
            since: Exclusive lower bound; None starts from the first transaction
            max_count: Page size
        """
        if max_count <= 0:
            return []
        if since is None:
            return self._query(
                f"SELECT * FROM {self.TABLE_NAME} ORDER BY transaction_number ASC LIMIT ?",
                (max_count,),
            )
        return self._query(
            f"""SELECT * FROM {self.TABLE_NAME}
                WHERE transaction_number > ?
                ORDER BY transaction_number ASC LIMIT ?""",
            (since, max_count),
        )

    def get_last(self) -> Optional[AnchoredTransaction]:
        rows = self._query(
            f"SELECT * FROM {self.TABLE_NAME} ORDER BY transaction_number DESC LIMIT 1"
        )
        return rows[0] if rows else None

    def get_all(self) -> List[AnchoredTransaction]:
        return self._query(f"SELECT * FROM {self.TABLE_NAME} ORDER BY transaction_number ASC")

    def get_exponentially_spaced_sample(self) -> List[AnchoredTransaction]:
        """
        Sample the log newest first at indices n-1, n-2, n-4, n-8, ...

        The gap doubles after every pick and is always at least 1, so the walk
        reaches a negative index for every store size (an empty store yields
        an empty sample).
        """
        transactions = self.get_all()
        sample: List[AnchoredTransaction] = []
        index = len(transactions) - 1
        distance = 1
        while index >= 0:
            sample.append(transactions[index])
            index -= distance
            distance *= 2
        return sample
