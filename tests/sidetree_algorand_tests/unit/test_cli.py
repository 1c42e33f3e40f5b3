"""
Unit tests for the command line entry point.
"""

import os

from click.testing import CliRunner

from sidetree_algorand.cli.main import build_observer, cli
from sidetree_algorand.core.config import ServiceConfig
from sidetree_algorand.core.funding_account import FundingAccount


def test_generate_mnemonic():
    result = CliRunner().invoke(cli, ["generate-mnemonic"])
    assert result.exit_code == 0
    assert "Address" in result.output


def test_serve_fails_without_configuration(tmp_path, monkeypatch):
    for key in list(os.environ):
        if key.startswith("SIDETREE_ALGORAND_"):
            monkeypatch.delenv(key)
    result = CliRunner().invoke(cli, ["serve", "--config", os.path.join(tmp_path, "missing.json")])
    assert result.exit_code == 1
    assert "Missing required configuration" in result.output


def test_build_observer_wires_config(tmp_path):
    funding_account = FundingAccount.generate()
    config = ServiceConfig(
        algod_token="token",
        algod_server="http://localhost",
        algod_port="4001",
        algo_round_hash_mapper_url="http://mapper/round",
        algorand_mnemonic=funding_account.to_mnemonic(),
        sidetree_transaction_prefix="sidetree:",
        database_path=os.path.join(tmp_path, "tx.db"),
        genesis_block_number=9,
        transaction_fetch_page_size=25,
        transaction_poll_period_seconds=15,
    )
    observer = build_observer(config)

    assert observer.funding_account.address == funding_account.address
    assert observer.ledger.algod_address == "http://localhost:4001"
    assert observer.round_hash_mapper.base_url == "http://mapper/round"
    assert observer.genesis_block_number == 9
    assert observer.page_size == 25
    assert observer.poll_policy.next_interval(0) == 15
    assert observer.store.db_path == config.database_path
