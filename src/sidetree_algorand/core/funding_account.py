"""
The funding credential used to sign anchoring transactions.

Loaded once from a mnemonic at startup and immutable afterwards. The secret
key never leaves this object and is never persisted by the service.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from algosdk import account, encoding, mnemonic, transaction
from algosdk import error as algo_error

from .blockchain_exceptions import ConfigurationError
from .ledger_client import WriteParams

# Validity window used when the network does not suggest one
DEFAULT_VALIDITY_ROUNDS = 1000


@dataclass(frozen=True)
class SignedTransfer:
    txid: str
    signed_transaction: str  # base64 msgpack, ready for submission


@dataclass(frozen=True)
class FundingAccount:
    address: str
    private_key: str = field(repr=False)

    @classmethod
    def from_mnemonic(cls, passphrase: str) -> "FundingAccount":
        try:
            private_key = mnemonic.to_private_key(passphrase.strip())
        except (
            algo_error.WrongMnemonicLengthError,
            algo_error.WrongChecksumError,
            ValueError,
            KeyError,
        ) as e:
            raise ConfigurationError(f"Invalid Algorand mnemonic: {e}") from e
        return cls(address=account.address_from_private_key(private_key), private_key=private_key)

    @classmethod
    def generate(cls) -> "FundingAccount":
        private_key, address = account.generate_account()
        return cls(address=address, private_key=private_key)

    def to_mnemonic(self) -> str:
        return mnemonic.from_private_key(self.private_key)

    def sign_note_transfer(self, params: WriteParams, note: bytes) -> SignedTransfer:
        """Build and sign a zero-value payment to ourselves carrying `note`."""
        last_round = params.last_round
        if last_round <= params.first_round:
            last_round = params.first_round + DEFAULT_VALIDITY_ROUNDS
        suggested = transaction.SuggestedParams(
            fee=params.fee,
            first=params.first_round,
            last=last_round,
            gh=params.genesis_hash,
            gen=params.genesis_id,
            flat_fee=True,
        )
        txn = transaction.PaymentTxn(self.address, suggested, self.address, 0, note=note)
        signed = txn.sign(self.private_key)
        return SignedTransfer(txid=txn.get_txid(), signed_transaction=encoding.msgpack_encode(signed))
