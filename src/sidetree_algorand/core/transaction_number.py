"""
Transaction numbers: the composite ordering key of the transaction log.

A transaction number packs a block height and the index of a transaction
inside that block into one integer. Numbers sort first by height, then by
index, so the log needs no separate sequence counter or timestamp.
"""

from __future__ import annotations

from .blockchain_exceptions import TransactionNumberError

MAX_TRANSACTION_COUNT_IN_BLOCK = 1_000_000
MAX_TRANSACTION_INDEX_IN_BLOCK = MAX_TRANSACTION_COUNT_IN_BLOCK - 1


class TransactionNumber:
    """Encode and decode (height, index) pairs."""

    @staticmethod
    def construct(block_number: int, index_in_block: int) -> int:
        if block_number < 0:
            raise TransactionNumberError(
                f"Block number {block_number} must be non-negative",
                details={"block_number": block_number},
            )
        if not 0 <= index_in_block <= MAX_TRANSACTION_INDEX_IN_BLOCK:
            raise TransactionNumberError(
                f"Transaction index {index_in_block} outside "
                f"[0, {MAX_TRANSACTION_INDEX_IN_BLOCK}]",
                details={"block_number": block_number, "index_in_block": index_in_block},
            )
        return block_number * MAX_TRANSACTION_COUNT_IN_BLOCK + index_in_block

    @staticmethod
    def get_block_number(transaction_number: int) -> int:
        return transaction_number // MAX_TRANSACTION_COUNT_IN_BLOCK

    @staticmethod
    def get_index_in_block(transaction_number: int) -> int:
        return transaction_number % MAX_TRANSACTION_COUNT_IN_BLOCK

    @staticmethod
    def last_in_block(block_number: int) -> int:
        """Highest transaction number any transaction of `block_number` can carry."""
        return TransactionNumber.construct(block_number + 1, 0) - 1
