"""
Exception hierarchy for the Sidetree-Algorand anchoring service.

Provides typed exceptions for ledger access, storage, reconciliation and the
write path so callers can separate client mistakes from recoverable ledger
trouble and from fatal startup conditions.
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class AnchorServiceError(Exception):
    """Base exception for all anchoring service errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the operation can be retried
    """

    code = "internal_error"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable


# ==================== Client Input Errors ====================


class ClientInputError(AnchorServiceError):
    """Raised when a caller supplies inconsistent or unverifiable input.

    Examples: `since` without `hash`, or a `(since, hash)` pair that no
    longer matches the canonical chain. Never changes service state.
    """

    code = "bad_request"


class HashNotFoundError(ClientInputError):
    """Raised when a block hash cannot be resolved to a round."""

    code = "hash_not_found"


# ==================== Write Path Errors ====================


class InsufficientBalanceError(AnchorServiceError):
    """Raised when the funding account cannot pay the transaction fee."""

    code = "insufficient_funds"


class BroadcastError(AnchorServiceError):
    """Raised when the network rejects a submitted transaction."""

    code = "broadcast_failed"


# ==================== Ledger Errors ====================


class LedgerError(AnchorServiceError):
    """Raised when the ledger node or lookup service fails or misbehaves.

    Covers transport failures and responses that do not match the expected
    schema. Recoverable: the next poll cycle retries.
    """

    code = "ledger_unavailable"

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class FundingAccountError(AnchorServiceError):
    """Raised when the funding account does not exist on the ledger."""

    code = "funding_account_missing"


# ==================== Sync Errors ====================


class GenesisBoundaryError(AnchorServiceError):
    """Raised when a sync range starts or ends before the genesis round."""

    code = "before_genesis"

    def __init__(
        self,
        message: str,
        start_height: Optional[int] = None,
        end_height: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.start_height = start_height
        self.end_height = end_height


class TransactionNumberError(AnchorServiceError):
    """Raised when a transaction number cannot represent a height/index pair."""

    code = "invalid_transaction_number"


# ==================== Storage Errors ====================


class StorageError(AnchorServiceError):
    """Raised when transaction store operations fail."""

    code = "storage_error"


# ==================== Configuration Errors ====================


class ConfigurationError(AnchorServiceError):
    """Raised when required configuration is missing or invalid."""

    code = "configuration_error"
