#!/usr/bin/env python3
"""
Sidetree-Algorand command line entry point.

Commands:
- serve: sync the transaction store and serve the blockchain service API
- generate-mnemonic: create a new funding account
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel

from ..api.routes import create_app
from ..core.blockchain_exceptions import AnchorServiceError, ConfigurationError
from ..core.blockchain_observer import BlockchainObserver
from ..core.config import ServiceConfig, load_config
from ..core.funding_account import FundingAccount
from ..core.ledger_client import AlgodLedgerClient, RoundHashMapperClient
from ..core.logging_config import setup_logging
from ..core.transaction_store import TransactionStore

logger = logging.getLogger(__name__)
console = Console()


def _cli_fail(exc: Exception, exit_code: int = 1) -> None:
    """Centralized CLI error handler for consistent messaging."""
    logger.error("CLI error: %s", exc, exc_info=True)
    console.print(f"[bold red]Error:[/] {exc}")
    sys.exit(exit_code)


def build_observer(config: ServiceConfig) -> BlockchainObserver:
    """Wire the ledger clients, store and funding account described by `config`."""
    funding_account = FundingAccount.from_mnemonic(config.algorand_mnemonic)
    ledger = AlgodLedgerClient(config.algod_token, config.algod_server, config.algod_port)
    mapper = RoundHashMapperClient(
        config.algo_round_hash_mapper_url,
        timeout=config.request_timeout_seconds,
        max_retries=config.request_max_retries,
    )
    return BlockchainObserver(
        ledger,
        TransactionStore(config.database_path),
        funding_account,
        transaction_prefix=config.sidetree_transaction_prefix,
        genesis_block_number=config.genesis_block_number,
        page_size=config.transaction_fetch_page_size,
        round_hash_mapper=mapper,
        poll_policy=config.poll_policy(),
        block_fetch_delay=config.block_fetch_delay_seconds,
    )


@click.group()
def cli():
    """Sidetree blockchain service for Algorand."""


@cli.command("serve")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="Path to algorand-config.json")
@click.option("--host", default="0.0.0.0", show_default=True)
def serve(config_path: Optional[str], host: str):
    """Sync anchored transactions and serve the blockchain service API."""
    try:
        config = load_config(config_path)
    except ConfigurationError as exc:
        _cli_fail(exc)
        return

    setup_logging(
        name="sidetree_algorand",
        log_file=config.log_file,
        level=config.log_level,
        environment=config.environment,
        secrets=[config.algorand_mnemonic, config.algod_token],
    )
    logger.info(
        "Sidetree-Algorand service configuration",
        extra={"event": "service.config", "config": config.redacted()},
    )

    try:
        observer = build_observer(config)
    except ConfigurationError as exc:
        console.print("Is your mnemonic valid? Try using the one generated below:")
        console.print(FundingAccount.generate().to_mnemonic())
        _cli_fail(exc)
        return

    try:
        observer.initialize()
    except AnchorServiceError as exc:
        logger.critical(
            "Sidetree-Algorand node initialization failed: %s",
            exc,
            extra={"event": "service.init_failed", "code": exc.code},
        )
        observer.stop()
        _cli_fail(exc)
        return

    app = create_app(observer)
    console.print(f"Sidetree-Algorand node running on port: {config.port}")
    try:
        app.run(host=host, port=config.port, use_reloader=False)
    finally:
        observer.stop()


@cli.command("generate-mnemonic")
def generate_mnemonic():
    """Generate a new funding account and print its mnemonic."""
    funding_account = FundingAccount.generate()
    console.print(
        Panel(
            f"[bold]Address:[/] {funding_account.address}\n\n"
            f"[bold]Mnemonic:[/] {funding_account.to_mnemonic()}",
            title="New Algorand funding account",
        )
    )


def main():
    return cli()


if __name__ == "__main__":
    sys.exit(main() or 0)
