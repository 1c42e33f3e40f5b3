import os

import pytest

from fake_ledger import PREFIX, FakeLedger
from sidetree_algorand.core.blockchain_observer import BlockchainObserver
from sidetree_algorand.core.funding_account import FundingAccount
from sidetree_algorand.core.poll_policy import PollPolicy
from sidetree_algorand.core.transaction_store import TransactionStore


@pytest.fixture
def funding_account():
    return FundingAccount.generate()


@pytest.fixture
def ledger(funding_account):
    chain = FakeLedger()
    chain.accounts[funding_account.address] = 1_000_000
    return chain


@pytest.fixture
def store(tmp_path):
    transaction_store = TransactionStore(os.path.join(tmp_path, "transactions.db"))
    transaction_store.initialize()
    yield transaction_store
    transaction_store.close()


@pytest.fixture
def make_observer(ledger, store, funding_account):
    created = []

    def _make(**kwargs):
        options = {
            "transaction_prefix": PREFIX,
            "genesis_block_number": 0,
            "page_size": 3,
            "poll_policy": PollPolicy(interval_seconds=0.01),
            "block_fetch_delay": 0,
        }
        options.update(kwargs)
        observer = BlockchainObserver(ledger, store, funding_account, **options)
        created.append(observer)
        return observer

    yield _make
    for observer in created:
        observer.stop(close_store=False)
