"""
Ledger access for the anchoring service.

Defines the LedgerClient interface the observer depends on, the response
schemas every remote answer is validated into, and two concrete clients:

- AlgodLedgerClient talks to an algod node through py-algorand-sdk
- RoundHashMapperClient resolves block hashes to rounds through the separate
  round/hash mapper HTTP service

Nothing untyped crosses this boundary: SDK dictionaries are parsed into
pydantic models here, and transport or schema failures become LedgerError.
"""

from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import requests
from algosdk.error import AlgodHTTPError
from algosdk.v2client import algod
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from requests import RequestException

from .blockchain_exceptions import BroadcastError, LedgerError

logger = logging.getLogger(__name__)


# ==================== Response Schemas ====================


class NodeStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    last_round: int = Field(alias="last-round", ge=0)


class BlockHashResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    block_hash: str = Field(alias="blockHash", min_length=1)


class LedgerTransaction(BaseModel):
    """A transaction inside a block; only the note matters to Sidetree."""

    note: Optional[bytes] = None


class LedgerBlock(BaseModel):
    round: int = Field(ge=0)
    hash: str = Field(min_length=1)
    transactions: list[LedgerTransaction] = Field(default_factory=list)


class AccountInfo(BaseModel):
    address: str
    balance: int = Field(ge=0)


class WriteParams(BaseModel):
    """Per-write network parameters. Fetched fresh for every write."""

    fee: int = Field(ge=0)
    first_round: int = Field(ge=0)
    last_round: int = Field(ge=0)
    genesis_id: str
    genesis_hash: str


class RoundLookupResponse(BaseModel):
    round: int = Field(ge=0)


def _validate(model: type[BaseModel], payload: Any, what: str) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise LedgerError(
            f"Malformed {what} response from ledger",
            details={"errors": e.errors(include_url=False)},
        ) from e


# ==================== Interface ====================


class LedgerClient(ABC):
    """Read and write access to the ledger used by the blockchain observer."""

    @abstractmethod
    def get_tip(self) -> int:
        """Return the current (latest) block height."""

    @abstractmethod
    def get_block(self, height: int) -> LedgerBlock:
        """Return the block at `height` with its canonical hash."""

    def get_block_hash(self, height: int) -> str:
        """Return the canonical hash at `height`."""
        return self.get_block(height).hash

    @abstractmethod
    def get_account_info(self, address: str) -> Optional[AccountInfo]:
        """Return the account at `address`, or None if the ledger has none."""

    @abstractmethod
    def get_write_params(self) -> WriteParams:
        """Return fee, validity window and genesis identifiers for a new write."""

    @abstractmethod
    def submit_raw_transaction(self, signed_transaction: str) -> str:
        """Broadcast a base64 msgpack signed transaction and return its id."""


# ==================== Algorand ====================


class AlgodLedgerClient(LedgerClient):
    """LedgerClient backed by an algod node."""

    def __init__(
        self,
        algod_token: str,
        algod_server: str,
        algod_port: str | int | None = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        address = algod_server.rstrip("/")
        if algod_port:
            address = f"{address}:{algod_port}"
        self.algod_address = address
        self.client = algod.AlgodClient(algod_token, address, headers=headers)

    def _call(self, what: str, fn, *args, **kwargs) -> Any:
        try:
            return fn(*args, **kwargs)
        except AlgodHTTPError as e:
            raise LedgerError(
                f"algod {what} failed: {e}",
                details={"status": getattr(e, "code", None)},
            ) from e
        except (OSError, ValueError) as e:
            raise LedgerError(f"algod {what} failed: {e}") from e

    def get_tip(self) -> int:
        status = _validate(NodeStatus, self._call("status", self.client.status), "status")
        return status.last_round

    def get_block_hash(self, height: int) -> str:
        payload = self._call(
            "block hash", self.client.algod_request, "GET", f"/blocks/{height}/hash"
        )
        return _validate(BlockHashResponse, payload, "block hash").block_hash

    def get_block(self, height: int) -> LedgerBlock:
        """
        Fetch the block at `height` together with its hash.

        algod serves the body and the hash from separate endpoints. The hash is
        read before and after the body; a mismatch means the round changed
        between reads and the block is refused.
        """
        block_hash = self.get_block_hash(height)
        payload = self._call("block", self.client.block_info, height)
        if not isinstance(payload, dict) or not isinstance(payload.get("block"), dict):
            raise LedgerError(f"Malformed block response for round {height}")

        transactions = []
        for entry in payload["block"].get("txns") or []:
            txn = entry.get("txn", {}) if isinstance(entry, dict) else {}
            note_b64 = txn.get("note")
            note = None
            if note_b64:
                try:
                    note = base64.b64decode(note_b64)
                except (ValueError, TypeError) as e:
                    raise LedgerError(f"Undecodable note in round {height}") from e
            transactions.append({"note": note})

        if self.get_block_hash(height) != block_hash:
            raise LedgerError(
                f"Block hash at round {height} changed while reading the block",
                details={"round": height},
            )

        return _validate(
            LedgerBlock,
            {"round": height, "hash": block_hash, "transactions": transactions},
            "block",
        )

    def get_account_info(self, address: str) -> Optional[AccountInfo]:
        try:
            payload = self.client.account_info(address)
        except AlgodHTTPError as e:
            if getattr(e, "code", None) == 404:
                return None
            raise LedgerError(f"algod account lookup failed: {e}") from e
        except (OSError, ValueError) as e:
            raise LedgerError(f"algod account lookup failed: {e}") from e
        if not isinstance(payload, dict):
            raise LedgerError("Malformed account response from ledger")
        return _validate(
            AccountInfo,
            {"address": payload.get("address"), "balance": payload.get("amount", 0)},
            "account",
        )

    def get_write_params(self) -> WriteParams:
        params = self._call("suggested params", self.client.suggested_params)
        fee = params.min_fee if params.min_fee is not None else params.fee
        return _validate(
            WriteParams,
            {
                "fee": fee,
                "first_round": params.first,
                "last_round": params.last,
                "genesis_id": params.gen,
                "genesis_hash": params.gh,
            },
            "suggested params",
        )

    def submit_raw_transaction(self, signed_transaction: str) -> str:
        try:
            txid = self.client.send_raw_transaction(signed_transaction)
        except AlgodHTTPError as e:
            raise BroadcastError(f"Transaction rejected by network: {e}") from e
        except (OSError, ValueError) as e:
            raise BroadcastError(f"Could not broadcast transaction: {e}") from e
        if not txid:
            raise BroadcastError("Network returned no transaction id")
        return txid


class RoundHashMapperClient:
    """Resolves block hashes to rounds via the round/hash mapper service."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 5.0,
        max_retries: int = 3,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = max(0.1, float(timeout))
        self.max_retries = max(1, int(max_retries))
        self.session = session or requests.Session()

    def resolve(self, block_hash: str) -> Optional[int]:
        """
        Look up the round of `block_hash`.

        Returns:
            The round, or None if the mapper does not know the hash

        Raises:
            LedgerError: If the mapper is unreachable after all retries
        """
        url = f"{self.base_url}/{block_hash}"
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                resp = self.session.get(url, timeout=self.timeout)
                if resp.status_code == 404:
                    return None
                resp.raise_for_status()
                payload = resp.json()
                break
            except RequestException as exc:
                last_error = exc
                logger.warning(
                    "Round lookup request failed",
                    extra={
                        "event": "ledger.round_lookup_error",
                        "attempt": attempt,
                        "error": str(exc),
                    },
                )
            except ValueError as exc:
                raise LedgerError("Round lookup returned invalid JSON") from exc
        else:
            raise LedgerError(f"Round lookup failed for {block_hash}: {last_error}")

        if not isinstance(payload, dict) or payload.get("round") is None:
            return None
        return _validate(RoundLookupResponse, payload, "round lookup").round
