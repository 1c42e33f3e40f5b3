"""
Blockchain observer: keeps the transaction store consistent with Algorand.

The observer walks the chain block by block, records the first Sidetree
anchor of every block in the transaction store, detects forks by comparing
stored block hashes with the live chain, and rolls the store back to the
last block that is still canonical. It also answers the read queries of a
Sidetree node and owns the write path that anchors new strings.

Reversion probes the store at exponentially spaced positions (newest first),
so locating the fork point costs O(log n) ledger round trips. A pass may drop
more history than strictly necessary; the store is a cache of chain truth and
the next sync rebuilds whatever was dropped.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Iterable, Optional

from .blockchain_exceptions import (
    AnchorServiceError,
    ClientInputError,
    FundingAccountError,
    GenesisBoundaryError,
    HashNotFoundError,
    InsufficientBalanceError,
    LedgerError,
)
from .funding_account import FundingAccount
from .ledger_client import LedgerClient, RoundHashMapperClient
from .models import AnchoredTransaction, BlockchainTime, BlockCursor
from .poll_policy import PollPolicy
from .transaction_number import TransactionNumber
from .transaction_store import TransactionStore

logger = logging.getLogger(__name__)

# Errors a single sync cycle absorbs; the next tick retries from the last cursor
_CYCLE_ERRORS = (
    AnchorServiceError,
    OSError,
    ValueError,
    TypeError,
    RuntimeError,
    KeyError,
    AttributeError,
)


class ObserverState(Enum):
    UNINITIALIZED = "uninitialized"
    SYNCING = "syncing"
    STEADY_POLLING = "steady_polling"
    REVERTING = "reverting"


class BlockchainObserver:
    """Reconciles the transaction store with the live Algorand chain."""

    def __init__(
        self,
        ledger: LedgerClient,
        store: TransactionStore,
        funding_account: FundingAccount,
        *,
        transaction_prefix: str,
        genesis_block_number: int = 0,
        page_size: int = 100,
        round_hash_mapper: Optional[RoundHashMapperClient] = None,
        poll_policy: Optional[PollPolicy] = None,
        block_fetch_delay: float = 0.25,
    ) -> None:
        if not transaction_prefix:
            raise ValueError("transaction_prefix must not be empty")
        if genesis_block_number < 0:
            raise ValueError("genesis_block_number must be non-negative")

        self.ledger = ledger
        self.store = store
        self.funding_account = funding_account
        self.transaction_prefix = transaction_prefix
        self.genesis_block_number = int(genesis_block_number)
        self.page_size = max(1, int(page_size))
        self.round_hash_mapper = round_hash_mapper
        self.poll_policy = poll_policy or PollPolicy()
        self.block_fetch_delay = max(0.0, float(block_fetch_delay))

        self._state = ObserverState.UNINITIALIZED
        self._cursor: Optional[BlockCursor] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._stats_lock = threading.Lock()
        self._consecutive_failures = 0
        self._stats: dict[str, Any] = {
            "cycles": 0,
            "errors": 0,
            "unrecoverable_errors": 0,
            "blocks_processed": 0,
            "transactions_recorded": 0,
            "reversions": 0,
            "last_run": None,
        }

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ObserverState:
        return self._state

    @property
    def cursor(self) -> Optional[BlockCursor]:
        return self._cursor

    def _set_state(self, new_state: ObserverState) -> None:
        if new_state is self._state:
            return
        logger.debug(
            "Observer state %s -> %s",
            self._state.value,
            new_state.value,
            extra={"event": "observer.state", "from": self._state.value, "to": new_state.value},
        )
        self._state = new_state

    def _bump(self, key: str, amount: int = 1) -> None:
        with self._stats_lock:
            self._stats[key] += amount

    def get_stats(self) -> dict[str, Any]:
        with self._stats_lock:
            stats = dict(self._stats)
            stats["consecutive_failures"] = self._consecutive_failures
        cursor = self._cursor
        stats["state"] = self._state.value
        stats["cursor"] = {"height": cursor.height, "hash": cursor.hash} if cursor else None
        stats["polling"] = bool(self._thread and self._thread.is_alive())
        return stats

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def initialize(self, start_polling: bool = True) -> None:
        """
        Open the store, check the funding account and sync to the live tip.

        Raises:
            FundingAccountError: If the funding address has no ledger account
        """
        logger.debug("Initializing transaction store", extra={"event": "observer.init_store"})
        self.store.initialize()

        address = self.funding_account.address
        logger.debug(
            "Checking ledger account for %s",
            address,
            extra={"event": "observer.account_check", "address": address},
        )
        if not self.account_exists(address):
            raise FundingAccountError(
                "Algorand account does not exist", details={"address": address}
            )

        self._set_state(ObserverState.SYNCING)
        last_known = self.store.get_last()
        start_cursor = None
        if last_known:
            start_cursor = BlockCursor(last_known.transaction_time, last_known.transaction_time_hash)
            logger.info(
                "Last known block %s (%s)",
                start_cursor.height,
                start_cursor.hash,
                extra={"event": "observer.resume", "height": start_cursor.height},
            )
        self._cursor = self.process_transactions(start_cursor)
        self._set_state(ObserverState.STEADY_POLLING)

        if start_polling:
            self.start_polling()

    def account_exists(self, address: str) -> bool:
        # algod answers 200 with amount 0 for an address that was never funded
        info = self.ledger.get_account_info(address)
        return info is not None and info.address == address and info.balance > 0

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def verify_block(self, height: int, block_hash: str) -> bool:
        """Return whether `block_hash` is still the canonical hash at `height`."""
        try:
            live_hash = self.ledger.get_block_hash(height)
        except LedgerError as e:
            if e.details.get("status") == 404:
                return False
            raise
        logger.debug(
            "Verified block %s",
            height,
            extra={"event": "observer.verify_block", "height": height, "match": live_hash == block_hash},
        )
        return live_hash == block_hash

    def process_transactions(
        self,
        start_cursor: Optional[BlockCursor] = None,
        end_height: Optional[int] = None,
    ) -> BlockCursor:
        """
        Sync anchors from `start_cursor` (or genesis) up to `end_height` (or the tip).

        Both bounds are inclusive. The start block is re-processed, which is
        harmless because the store ignores duplicate transaction numbers.

        Returns:
            Cursor of the last block processed
        """
        if start_cursor is not None:
            start_height = start_cursor.height
            if not self.verify_block(start_cursor.height, start_cursor.hash):
                logger.warning(
                    "Cursor %s no longer canonical, reverting",
                    start_cursor.height,
                    extra={"event": "observer.fork_detected", "height": start_cursor.height},
                )
                start_height = self.revert_blockchain_cache()
        else:
            start_height = self.genesis_block_number

        if end_height is None:
            end_height = self.ledger.get_tip()

        if start_height < self.genesis_block_number or end_height < self.genesis_block_number:
            raise GenesisBoundaryError(
                "Cannot process transactions before genesis",
                start_height=start_height,
                end_height=end_height,
            )

        logger.info(
            "Processing transactions from %s to %s",
            start_height,
            end_height,
            extra={"event": "observer.sync_start", "start": start_height, "end": end_height},
        )

        heights: Iterable[int] = range(start_height, end_height + 1)
        if start_height > end_height:
            heights = (end_height,)

        cursor: Optional[BlockCursor] = None
        for height in heights:
            cursor = BlockCursor(height, self._process_block(height))
            if self._stop_event.is_set():
                logger.info(
                    "Sync interrupted by shutdown at block %s",
                    height,
                    extra={"event": "observer.sync_interrupted", "height": height},
                )
                break

        logger.info(
            "Finished processing blocks %s to %s",
            start_height,
            cursor.height,
            extra={"event": "observer.sync_done", "start": start_height, "end": cursor.height},
        )
        return cursor

    def _process_block(self, height: int) -> str:
        """Record the first Sidetree anchor of the block at `height`; return its hash."""
        if self.block_fetch_delay:
            self._stop_event.wait(self.block_fetch_delay)

        block = self.ledger.get_block(height)
        self._bump("blocks_processed")

        for index, ledger_txn in enumerate(block.transactions):
            anchor_string = self._extract_anchor(ledger_txn.note)
            if anchor_string is None:
                continue

            transaction = AnchoredTransaction(
                transaction_number=TransactionNumber.construct(height, index),
                transaction_time=height,
                transaction_time_hash=block.hash,
                anchor_string=anchor_string,
            )
            logger.debug(
                "Sidetree transaction found",
                extra={
                    "event": "observer.anchor_found",
                    "height": height,
                    "transaction_number": transaction.transaction_number,
                },
            )
            self.store.add(transaction)
            self._bump("transactions_recorded")
            # Only the first anchor of a block counts
            break

        return block.hash

    def _extract_anchor(self, note: Optional[bytes]) -> Optional[str]:
        if not note:
            return None
        try:
            data = note.decode("utf-8")
        except UnicodeDecodeError:
            return None
        if not data.startswith(self.transaction_prefix):
            return None
        return data[len(self.transaction_prefix):]

    def revert_blockchain_cache(self) -> int:
        """
        Roll the store back to the newest transaction that is still canonical.

        Returns:
            Height of that transaction, or the genesis height if none survives
        """
        previous_state = self._state
        self._set_state(ObserverState.REVERTING)
        self._bump("reversions")
        logger.info("Reverting transactions", extra={"event": "observer.revert_start"})

        try:
            while self.store.count() > 0:
                sample = self.store.get_exponentially_spaced_sample()
                valid = self.first_valid_transaction(sample)

                if valid is not None:
                    self.store.remove_later_than(TransactionNumber.last_in_block(valid.transaction_time))
                    logger.info(
                        "Reverted transactions to block %s",
                        valid.transaction_time,
                        extra={"event": "observer.revert_done", "height": valid.transaction_time},
                    )
                    return valid.transaction_time

                oldest = sample[-1]
                logger.debug(
                    "No sampled transaction is canonical; dropping from block %s",
                    oldest.transaction_time,
                    extra={"event": "observer.revert_step", "height": oldest.transaction_time},
                )
                self.store.remove_later_than(oldest.transaction_number - 1)

            logger.info("Reverted all known transactions", extra={"event": "observer.revert_all"})
            return self.genesis_block_number
        finally:
            self._set_state(
                ObserverState.SYNCING
                if previous_state is not ObserverState.UNINITIALIZED
                else previous_state
            )

    # ------------------------------------------------------------------
    # Poll loop
    # ------------------------------------------------------------------

    def run_poll_cycle(self) -> bool:
        """Sync once from the current cursor to the tip. Returns success."""
        start = time.time()
        try:
            synced_to = self.process_transactions(self._cursor)
        except _CYCLE_ERRORS as exc:
            recoverable = isinstance(exc, AnchorServiceError) and exc.recoverable
            with self._stats_lock:
                self._consecutive_failures += 1
                self._stats["errors"] += 1
                if not recoverable:
                    self._stats["unrecoverable_errors"] += 1
            log = logger.warning if recoverable else logger.error
            log(
                "Blockchain observer cycle failed: %s",
                exc,
                extra={
                    "event": "observer.cycle_failed",
                    "error_type": type(exc).__name__,
                    "recoverable": recoverable,
                },
            )
            return False
        finally:
            with self._stats_lock:
                self._stats["cycles"] += 1
                self._stats["last_run"] = start
            if self._state is not ObserverState.UNINITIALIZED:
                self._set_state(ObserverState.STEADY_POLLING)

        self._cursor = synced_to
        with self._stats_lock:
            self._consecutive_failures = 0
        return True

    def start_polling(self) -> bool:
        if self._thread and self._thread.is_alive():
            return True
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop, name="sidetree-blockchain-observer", daemon=True
        )
        self._thread.start()
        logger.info(
            "Blockchain observer polling started",
            extra={"event": "observer.polling_started", "interval": self.poll_policy.interval_seconds},
        )
        return True

    def stop(self, close_store: bool = True, timeout: float = 5.0) -> None:
        """Cancel the poll task, wait for it, then release the store."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning(
                    "Blockchain observer did not stop within %ss",
                    timeout,
                    extra={"event": "observer.stop_timeout"},
                )
            self._thread = None
            logger.info("Blockchain observer stopped", extra={"event": "observer.polling_stopped"})
        if close_store:
            self.store.close()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_poll_cycle()
            with self._stats_lock:
                failures = self._consecutive_failures
            if self._stop_event.wait(self.poll_policy.next_interval(failures)):
                break

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def time(self, block_hash: Optional[str] = None) -> BlockchainTime:
        """
        Blockchain time of `block_hash`, or the latest time if no hash is given.

        The hash is resolved to a round through the lookup service; the hash
        returned always comes from the ledger itself.
        """
        logger.info(
            "Getting time%s",
            f" of time hash {block_hash}" if block_hash else "",
            extra={"event": "observer.time"},
        )
        if not block_hash:
            height = self.ledger.get_tip()
            return BlockchainTime(time=height, hash=self.ledger.get_block_hash(height))

        height = self.round_hash_mapper.resolve(block_hash) if self.round_hash_mapper else None
        if height is None:
            raise HashNotFoundError(
                "Unable to get block height", details={"hash": block_hash}
            )
        return BlockchainTime(time=height, hash=self.ledger.get_block_hash(height))

    def transactions(
        self, since: Optional[int] = None, block_hash: Optional[str] = None
    ) -> dict[str, Any]:
        """
        Page of anchored transactions after `since`, oldest first.

        `since` and `block_hash` go together: `block_hash` must be the
        canonical hash of the block `since` belongs to.
        """
        if (since is None) != (block_hash is None):
            raise ClientInputError("since and transaction time hash must be given together")

        if since is not None:
            if since < 0:
                raise ClientInputError("since must be non-negative", details={"since": since})
            if not self.verify_block(TransactionNumber.get_block_number(since), block_hash):
                logger.info(
                    "Requested transactions hash mismatched blockchain",
                    extra={"event": "observer.transactions_mismatch", "since": since},
                )
                raise ClientInputError(
                    "Transaction time hash does not match the blockchain",
                    details={"since": since, "hash": block_hash},
                )

        logger.info(
            "Returning transactions since %s",
            f"block {TransactionNumber.get_block_number(since)}" if since is not None else "beginning",
            extra={"event": "observer.transactions", "since": since},
        )
        transactions = self.store.get_later_than(since, self.page_size)
        return {
            "transactions": [transaction.to_dict() for transaction in transactions],
            "moreTransactions": len(transactions) == self.page_size,
        }

    def first_valid_transaction(
        self, candidates: Iterable[AnchoredTransaction]
    ) -> Optional[AnchoredTransaction]:
        """Return the first candidate whose block is still canonical."""
        for candidate in candidates:
            if self.verify_block(candidate.transaction_time, candidate.transaction_time_hash):
                return candidate
        return None

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def write_transaction(self, anchor_string: str) -> str:
        """
        Anchor `anchor_string` in the note of a zero-value self-transfer.

        Returns:
            The id of the submitted transaction

        Raises:
            InsufficientBalanceError: If the balance does not cover the fee
            BroadcastError: If the network rejects the transaction
        """
        logger.info(
            "Anchoring string %s",
            anchor_string,
            extra={"event": "observer.write_start"},
        )
        address = self.funding_account.address
        params = self.ledger.get_write_params()
        account = self.ledger.get_account_info(address)
        balance = account.balance if account else 0

        if balance < params.fee:
            raise InsufficientBalanceError(
                f"Not enough algos to broadcast. Failed to broadcast anchor string {anchor_string}",
                details={"balance": balance, "fee": params.fee},
            )

        note = f"{self.transaction_prefix}{anchor_string}".encode("utf-8")
        signed = self.funding_account.sign_note_transfer(params, note)
        txid = self.ledger.submit_raw_transaction(signed.signed_transaction)

        logger.info(
            "Successfully submitted transaction %s",
            txid,
            extra={"event": "observer.write_done", "txid": txid, "fee": params.fee},
        )
        return txid
