"""
Unit tests for the blockchain service HTTP routes.

Runs the Flask app against an observer backed by the scripted ledger.
"""

import pytest

from fake_ledger import note
from sidetree_algorand.api import create_app
from sidetree_algorand.core.transaction_number import TransactionNumber


class FakeRoundHashMapper:
    def __init__(self, rounds):
        self.rounds = rounds

    def resolve(self, block_hash):
        return self.rounds.get(block_hash)


@pytest.fixture
def observer(ledger, make_observer):
    for height in (1, 2, 3, 4):
        ledger.set_block(height, [note(f"anchor-{height}")])
    observer = make_observer(round_hash_mapper=FakeRoundHashMapper({"known": 2}))
    observer.initialize(start_polling=False)
    return observer


@pytest.fixture
def client(observer):
    app = create_app(observer)
    app.config["TESTING"] = True
    return app.test_client()


class TestTransactionRoutes:
    def test_get_transactions_from_start(self, client):
        resp = client.get("/transactions")
        assert resp.status_code == 200
        body = resp.get_json()
        assert [t["anchorString"] for t in body["transactions"]] == ["anchor-1", "anchor-2", "anchor-3"]
        assert body["moreTransactions"] is True

    def test_get_transactions_since(self, client):
        since = TransactionNumber.construct(2, 0)
        resp = client.get(f"/transactions?since={since}&transaction-time-hash=hash-2")
        assert resp.status_code == 200
        body = resp.get_json()
        assert [t["transactionTime"] for t in body["transactions"]] == [3, 4]
        assert body["moreTransactions"] is False

    @pytest.mark.parametrize(
        "query",
        [
            "since=abc&transaction-time-hash=hash-1",
            "since=1000000",
            "transaction-time-hash=hash-1",
            "since=1000000&transaction-time-hash=wrong",
        ],
    )
    def test_get_transactions_bad_request(self, client, query):
        resp = client.get(f"/transactions?{query}")
        assert resp.status_code == 400
        assert resp.get_json() == {"code": "bad_request"}

    def test_write_transaction(self, client, ledger):
        resp = client.post("/transactions", json={"anchorFileHash": "QmNewAnchor"})
        assert resp.status_code == 200
        assert resp.get_json() == {"transactionId": "TXID1"}
        assert len(ledger.submitted) == 1

    @pytest.mark.parametrize("payload", [{}, {"anchorFileHash": ""}, {"anchorFileHash": 5}])
    def test_write_transaction_invalid_body(self, client, ledger, payload):
        resp = client.post("/transactions", json=payload)
        assert resp.status_code == 400
        assert ledger.submitted == []

    def test_write_transaction_without_funds(self, client, ledger, funding_account):
        ledger.accounts[funding_account.address] = 0
        resp = client.post("/transactions", json={"anchorFileHash": "QmNewAnchor"})
        assert resp.status_code == 500
        assert resp.get_json() == {"code": "insufficient_funds"}
        assert ledger.submitted == []

    def test_first_valid(self, client, ledger):
        ledger.fork_from(4)
        candidates = [
            {
                "transactionNumber": TransactionNumber.construct(4, 0),
                "transactionTime": 4,
                "transactionTimeHash": "hash-4",
                "anchorString": "anchor-4",
            },
            {
                "transactionNumber": TransactionNumber.construct(3, 0),
                "transactionTime": 3,
                "transactionTimeHash": "hash-3",
                "anchorString": "anchor-3",
            },
        ]
        resp = client.post("/transactions/firstValid", json={"transactions": candidates})
        assert resp.status_code == 200
        assert resp.get_json() == candidates[1]

    def test_first_valid_none(self, client, ledger):
        ledger.fork_from(1)
        candidates = [
            {
                "transactionNumber": TransactionNumber.construct(1, 0),
                "transactionTime": 1,
                "transactionTimeHash": "hash-1",
            }
        ]
        resp = client.post("/transactions/firstValid", json={"transactions": candidates})
        assert resp.status_code == 200
        assert resp.data == b""

    def test_first_valid_invalid_body(self, client):
        resp = client.post("/transactions/firstValid", json={"transactions": "nope"})
        assert resp.status_code == 400


class TestTimeRoutes:
    def test_latest_time(self, client):
        resp = client.get("/time")
        assert resp.status_code == 200
        assert resp.get_json() == {"time": 4, "hash": "hash-4"}

    def test_time_of_hash(self, client):
        resp = client.get("/time/known")
        assert resp.status_code == 200
        assert resp.get_json() == {"time": 2, "hash": "hash-2"}

    def test_time_of_unknown_hash(self, client):
        resp = client.get("/time/unknown")
        assert resp.status_code == 400
        assert resp.get_json() == {"code": "hash_not_found"}

    def test_ledger_failure_is_server_error(self, client, ledger):
        ledger.fail_blocks.add(ledger.tip)
        resp = client.get("/time")
        assert resp.status_code == 500
        assert resp.get_json() == {"code": "ledger_unavailable"}


def test_unknown_path_is_bad_request(client):
    resp = client.get("/nothing-here")
    assert resp.status_code == 400
    assert resp.data == b""
