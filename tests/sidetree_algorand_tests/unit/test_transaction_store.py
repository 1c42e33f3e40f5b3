"""
Unit tests for the SQLite transaction store.

Tests verify:
- Duplicate inserts are no-ops
- Paging after a transaction number
- Exponentially spaced sampling
- Suffix truncation
- Persistence across reopen
"""

import os
import sqlite3

import pytest

from sidetree_algorand.core.blockchain_exceptions import StorageError
from sidetree_algorand.core.models import AnchoredTransaction
from sidetree_algorand.core.transaction_number import TransactionNumber
from sidetree_algorand.core.transaction_store import TransactionStore


def make_transaction(height: int, index: int = 0, block_hash: str = None) -> AnchoredTransaction:
    return AnchoredTransaction(
        transaction_number=TransactionNumber.construct(height, index),
        transaction_time=height,
        transaction_time_hash=block_hash or f"hash-{height}",
        anchor_string=f"anchor-{height}-{index}",
    )


def fill(store: TransactionStore, heights) -> list:
    transactions = [make_transaction(h) for h in heights]
    for transaction in transactions:
        store.add(transaction)
    return transactions


class TestTransactionStoreLifecycle:
    def test_initialize_creates_database(self, tmp_path):
        db_path = os.path.join(tmp_path, "nested", "tx.db")
        store = TransactionStore(db_path)
        store.initialize()
        try:
            assert os.path.exists(db_path)
            assert store.count() == 0
            assert store.get_last() is None
        finally:
            store.close()

    def test_sqlite_url_connection_string(self, tmp_path):
        db_path = os.path.join(tmp_path, "url.db")
        store = TransactionStore(f"sqlite:///{db_path}")
        assert store.db_path == db_path
        store.initialize()
        store.add(make_transaction(1))
        store.close()
        assert os.path.exists(db_path)

    def test_in_memory_store(self):
        store = TransactionStore(":memory:")
        store.initialize()
        fill(store, [1, 2])
        assert store.count() == 2
        store.close()

    def test_persists_across_reopen(self, tmp_path):
        db_path = os.path.join(tmp_path, "tx.db")
        store = TransactionStore(db_path)
        store.initialize()
        fill(store, [3, 4])
        store.close()

        reopened = TransactionStore(db_path)
        reopened.initialize()
        try:
            assert reopened.count() == 2
            assert reopened.get_last().transaction_time == 4
        finally:
            reopened.close()

    def test_use_after_close_raises(self, tmp_path):
        store = TransactionStore(os.path.join(tmp_path, "tx.db"))
        store.initialize()
        store.close()
        with pytest.raises(StorageError):
            store.count()


class TestTransactionStoreWrites:
    def test_duplicate_add_is_noop(self, store):
        transaction = make_transaction(7, 2)
        store.add(transaction)
        store.add(transaction)
        store.add(
            AnchoredTransaction(
                transaction_number=transaction.transaction_number,
                transaction_time=7,
                transaction_time_hash="other",
                anchor_string="other",
            )
        )
        assert store.count() == 1
        assert store.get(transaction.transaction_number) == transaction

    def test_other_store_errors_propagate(self, store, monkeypatch):
        class BrokenConnection:
            def execute(self, *args, **kwargs):
                raise sqlite3.OperationalError("disk I/O error")

            def rollback(self):
                pass

        monkeypatch.setattr(store, "_db", BrokenConnection())
        with pytest.raises(StorageError):
            store.add(make_transaction(1))

    def test_remove_later_than(self, store):
        fill(store, [1, 2, 3, 4])
        removed = store.remove_later_than(TransactionNumber.construct(2, 0))
        assert removed == 2
        assert [t.transaction_time for t in store.get_all()] == [1, 2]

    def test_remove_later_than_none_clears(self, store):
        fill(store, [1, 2, 3])
        assert store.remove_later_than(None) == 3
        assert store.count() == 0


class TestTransactionStoreReads:
    def test_get_later_than_from_start(self, store):
        fill(store, [5, 1, 3, 9])
        page = store.get_later_than(None, 3)
        assert [t.transaction_time for t in page] == [1, 3, 5]

    def test_get_later_than_is_exclusive_and_bounded(self, store):
        fill(store, [1, 2, 3, 4, 5])
        since = TransactionNumber.construct(2, 0)
        page = store.get_later_than(since, 2)
        assert [t.transaction_time for t in page] == [3, 4]
        assert all(t.transaction_number > since for t in page)

    def test_get_later_than_zero_is_not_from_start(self, store):
        store.add(make_transaction(0))
        store.add(make_transaction(1))
        assert [t.transaction_time for t in store.get_later_than(0, 10)] == [1]
        assert len(store.get_later_than(None, 10)) == 2

    def test_get_last(self, store):
        fill(store, [4, 8, 6])
        assert store.get_last().transaction_time == 8

    def test_get_all_ascending(self, store):
        fill(store, [3, 1, 2])
        assert [t.transaction_time for t in store.get_all()] == [1, 2, 3]


class TestExponentiallySpacedSample:
    @pytest.mark.parametrize(
        "size, expected_indices",
        [
            (0, []),
            (1, [0]),
            (2, [1, 0]),
            (3, [2, 1]),
            (4, [3, 2, 0]),
            (10, [9, 8, 6, 2]),
            (20, [19, 18, 16, 12, 4]),
        ],
    )
    def test_sample_indices(self, store, size, expected_indices):
        transactions = fill(store, range(1, size + 1))
        sample = store.get_exponentially_spaced_sample()
        assert sample == [transactions[i] for i in expected_indices]

    def test_sample_always_terminates_and_is_newest_first(self, store):
        fill(store, range(1, 130))
        sample = store.get_exponentially_spaced_sample()
        numbers = [t.transaction_number for t in sample]
        assert numbers == sorted(numbers, reverse=True)
        assert sample[0] == store.get_last()
        assert len(sample) == 8
