"""
Sidetree-Algorand - Structured Logging Configuration

One JSON object per line, built by python-json-logger. Module loggers pass
structured fields through `extra={"event": ...}`; the formatter stamps each
record with the service context so lines can be shipped to a log aggregator
unchanged.

The funding mnemonic and algod token are known at startup; when passed to
`setup_logging` they are masked in every message that reaches a handler.

Usage:
    from sidetree_algorand.core.logging_config import setup_logging

    setup_logging(
        name="sidetree_algorand",
        log_file="/var/log/sidetree-algorand/service.json",
        level="INFO",
        secrets=[config.algorand_mnemonic, config.algod_token],
    )
"""

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pythonjsonlogger import jsonlogger

MASK = "***"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding timestamp, environment, service, level and source."""

    def __init__(
        self,
        fmt: str = "%(timestamp)s %(level)s %(name)s %(message)s",
        environment: Optional[str] = None,
        service_name: str = "sidetree_algorand",
    ):
        super().__init__(fmt=fmt)
        self.environment = environment or "production"
        self.service_name = service_name

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.setdefault("timestamp", None)
        if not log_record["timestamp"]:
            log_record["timestamp"] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        log_record["level"] = record.levelname.lower()
        log_record["environment"] = self.environment
        log_record["service"] = self.service_name
        log_record["source"] = {
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }


class SecretMaskingFilter(logging.Filter):
    """Replaces known secret strings in the rendered message."""

    def __init__(self, secrets: Iterable[Optional[str]]):
        super().__init__()
        # Longest first so a secret containing another is masked whole
        self.secrets: List[str] = sorted({s for s in secrets if s}, key=len, reverse=True)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        message = record.getMessage()
        masked = message
        for secret in self.secrets:
            masked = masked.replace(secret, MASK)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def _attach(logger: logging.Logger, handler: logging.Handler, level: int,
            formatter: logging.Formatter, masking: SecretMaskingFilter) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(masking)
    logger.addHandler(handler)


def setup_logging(
    name: str = "sidetree_algorand",
    log_file: Optional[str] = None,
    level: str = "INFO",
    environment: str = "production",
    enable_console: bool = True,
    max_bytes: int = 100 * 1024 * 1024,
    backup_count: int = 10,
    secrets: Iterable[Optional[str]] = (),
) -> logging.Logger:
    """
    Configure JSON logging on the `name` logger.

    Module loggers below `name` (e.g. `sidetree_algorand.core.blockchain_observer`)
    propagate to the handlers installed here. Calling this again replaces them.

    Args:
        name: Root logger of the service
        log_file: Rotating JSON log file, in addition to stdout
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        environment: Value of the `environment` field on every line
        enable_console: Whether to log to stdout
        max_bytes: Size at which the log file rotates
        backup_count: Rotated files kept
        secrets: Strings masked in every message

    Raises:
        ValueError: If `level` is not a logging level name
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = CustomJsonFormatter(environment=environment, service_name=name.split(".")[0])
    masking = SecretMaskingFilter(secrets)

    if enable_console:
        _attach(logger, logging.StreamHandler(sys.stdout), numeric_level, formatter, masking)

    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            rotating = logging.handlers.RotatingFileHandler(
                log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
            )
        except OSError as e:
            logger.warning(
                "Could not open log file %s: %s",
                log_file,
                e,
                extra={"event": "logging.file_handler_failed"},
            )
        else:
            _attach(logger, rotating, numeric_level, formatter, masking)

    return logger
