"""
Sidetree-Algorand Service Configuration

Configuration comes from a JSON file (the algorand-config.json
format, camelCase keys) with environment variable overrides.

- File path: SIDETREE_ALGORAND_CONFIG_FILE_PATH (default json/algorand-config.json)
- Overrides: SIDETREE_ALGORAND_<FIELD_NAME>, e.g. SIDETREE_ALGORAND_PORT=3000

SECURITY NOTICE:
- The funding mnemonic is a secret; prefer SIDETREE_ALGORAND_ALGORAND_MNEMONIC
  over committing it to the config file
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import MISSING, dataclass, fields
from typing import Any, Optional

from .blockchain_exceptions import ConfigurationError
from .poll_policy import PollPolicy

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "SIDETREE_ALGORAND_CONFIG_FILE_PATH"
DEFAULT_CONFIG_PATH = os.path.join("json", "algorand-config.json")
ENV_PREFIX = "SIDETREE_ALGORAND_"

# Config file keys that do not map to a field name by case conversion alone
_LEGACY_KEYS = {
    "algoRoundHashMapperURL": "algo_round_hash_mapper_url",
    "mongoDbConnectionString": "database_path",
    "databaseConnectionString": "database_path",
    "requestTimeoutInMilliseconds": "request_timeout_seconds",
    "transactionPollPeriodInSeconds": "transaction_poll_period_seconds",
}


@dataclass
class ServiceConfig:
    algod_token: str
    algod_server: str
    algo_round_hash_mapper_url: str
    algorand_mnemonic: str
    sidetree_transaction_prefix: str
    database_path: str
    algod_port: str = ""
    port: int = 3000
    genesis_block_number: int = 0
    transaction_fetch_page_size: int = 100
    request_timeout_seconds: float = 5.0
    request_max_retries: int = 3
    transaction_poll_period_seconds: float = 60.0
    block_fetch_delay_seconds: float = 0.25
    poll_failure_backoff: float = 1.0
    max_poll_period_seconds: float = 600.0
    log_level: str = "INFO"
    log_file: Optional[str] = None
    environment: str = "production"

    def poll_policy(self) -> PollPolicy:
        return PollPolicy(
            interval_seconds=self.transaction_poll_period_seconds,
            failure_backoff=self.poll_failure_backoff,
            max_interval_seconds=max(self.max_poll_period_seconds, self.transaction_poll_period_seconds),
        )

    def redacted(self) -> dict[str, Any]:
        """Configuration as a dict with secrets masked, for startup logging."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        for secret in ("algod_token", "algorand_mnemonic"):
            if data.get(secret):
                data[secret] = "***"
        return data


def _snake_case(key: str) -> str:
    out = []
    for char in key:
        if char.isupper():
            out.append("_")
            out.append(char.lower())
        else:
            out.append(char)
    return "".join(out).lstrip("_")


def _normalize_keys(raw: dict[str, Any]) -> dict[str, Any]:
    normalized: dict[str, Any] = {}
    for key, value in raw.items():
        name = _LEGACY_KEYS.get(key, _snake_case(key))
        if key == "requestTimeoutInMilliseconds" and value is not None:
            value = float(value) / 1000.0
        normalized[name] = value
    return normalized


def _coerce(name: str, value: Any, annotation: str) -> Any:
    if value is None:
        return None
    try:
        if annotation == "int":
            return int(value)
        if annotation == "float":
            return float(value)
        if annotation in ("str", "Optional[str]"):
            return str(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {name}: {value!r}") from e
    return value


def load_config(path: Optional[str] = None, env: Optional[dict[str, str]] = None) -> ServiceConfig:
    """
    Load the service configuration.

    Args:
        path: JSON config file; falls back to SIDETREE_ALGORAND_CONFIG_FILE_PATH
        env: Environment mapping (defaults to os.environ)

    Raises:
        ConfigurationError: If the file is unreadable or required values are missing
    """
    env = dict(os.environ if env is None else env)
    path = path or env.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH

    values: dict[str, Any] = {}
    if os.path.exists(path):
        try:
            with open(path, "r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Config file {path} must contain a JSON object")
        values.update(_normalize_keys(raw))
    else:
        logger.warning(
            "Config file %s not found, using environment only",
            path,
            extra={"event": "config.file_missing", "path": path},
        )

    known = {f.name: f for f in fields(ServiceConfig)}
    for name in known:
        env_value = env.get(f"{ENV_PREFIX}{name.upper()}")
        if env_value is not None and env_value.strip() != "":
            values[name] = env_value.strip()

    unknown = sorted(set(values) - set(known))
    if unknown:
        logger.warning(
            "Ignoring unknown config keys: %s",
            ", ".join(unknown),
            extra={"event": "config.unknown_keys", "keys": unknown},
        )

    kwargs = {
        name: _coerce(name, values[name], str(field_def.type))
        for name, field_def in known.items()
        if name in values
    }
    missing = [
        name
        for name, field_def in known.items()
        if field_def.default is MISSING and field_def.default_factory is MISSING
        and kwargs.get(name) in (None, "")
    ]
    if missing:
        raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

    config = ServiceConfig(**kwargs)
    if config.genesis_block_number < 0:
        raise ConfigurationError("genesis_block_number must be non-negative")
    if config.transaction_fetch_page_size <= 0:
        raise ConfigurationError("transaction_fetch_page_size must be positive")
    return config
