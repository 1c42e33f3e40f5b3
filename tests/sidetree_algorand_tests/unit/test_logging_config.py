"""
Unit tests for structured JSON logging setup.
"""

import json
import logging
import os

import pytest

from sidetree_algorand.core.logging_config import setup_logging


@pytest.fixture
def log_name():
    name = "sidetree_algorand_logging_test"
    yield name
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def test_writes_json_lines_with_context(tmp_path, log_name):
    log_file = os.path.join(tmp_path, "logs", "service.json")
    logger = setup_logging(
        name=log_name,
        log_file=log_file,
        level="DEBUG",
        environment="test",
        enable_console=False,
    )
    logging.getLogger(f"{log_name}.observer").info(
        "Processing transactions", extra={"event": "observer.sync_start", "start": 5}
    )

    with open(log_file, encoding="utf-8") as handle:
        record = json.loads(handle.readline())

    assert logger.level == logging.DEBUG
    assert record["message"] == "Processing transactions"
    assert record["event"] == "observer.sync_start"
    assert record["start"] == 5
    assert record["environment"] == "test"
    assert record["service"] == log_name
    assert record["level"] == "info"
    assert "timestamp" in record
    assert record["source"]["function"] == "test_writes_json_lines_with_context"


def test_repeated_setup_does_not_duplicate_handlers(log_name):
    setup_logging(name=log_name)
    logger = setup_logging(name=log_name)
    assert len(logger.handlers) == 1


def test_unknown_level_rejected(log_name):
    with pytest.raises(ValueError):
        setup_logging(name=log_name, level="LOUD")


def test_secrets_are_masked(tmp_path, log_name):
    log_file = os.path.join(tmp_path, "service.json")
    mnemonic = "abandon " * 24 + "invest"
    setup_logging(
        name=log_name,
        log_file=log_file,
        enable_console=False,
        secrets=[mnemonic, "algod-token", None],
    )
    logging.getLogger(log_name).warning("Bad mnemonic %s with token %s", mnemonic, "algod-token")

    with open(log_file, encoding="utf-8") as handle:
        record = json.loads(handle.readline())

    assert record["message"] == "Bad mnemonic *** with token ***"
