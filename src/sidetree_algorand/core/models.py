"""
Domain records shared by the store, the observer and the API layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class AnchoredTransaction:
    """A Sidetree anchor string observed in an Algorand block."""

    transaction_number: int
    transaction_time: int
    transaction_time_hash: str
    anchor_string: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "transactionNumber": self.transaction_number,
            "transactionTime": self.transaction_time,
            "transactionTimeHash": self.transaction_time_hash,
            "anchorString": self.anchor_string,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnchoredTransaction":
        """Build a record from its camelCase wire form."""
        return cls(
            transaction_number=int(data["transactionNumber"]),
            transaction_time=int(data["transactionTime"]),
            transaction_time_hash=str(data["transactionTimeHash"]),
            anchor_string=str(data.get("anchorString", "")),
        )


@dataclass(frozen=True)
class BlockCursor:
    """Height and hash of the last block fully processed."""

    height: int
    hash: str


@dataclass(frozen=True)
class BlockchainTime:
    time: int
    hash: str

    def to_dict(self) -> dict[str, Any]:
        return {"time": self.time, "hash": self.hash}
