"""
Wallet data models.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, Field

from chainwallet.bitcoin.transaction import OutPoint, Transaction
from chainwallet.models import KeychainKind


@dataclass(frozen=True)
class Confirmed:
    """Transaction anchored in the block at anchor_height/anchor_hash."""

    anchor_height: int
    anchor_hash: str


@dataclass(frozen=True)
class Unconfirmed:
    """Transaction seen only in the mempool, first at first_seen (unix seconds)."""

    first_seen: int


ChainPosition = Confirmed | Unconfirmed


@dataclass
class UTXOInfo:
    """Unspent wallet output with wallet context"""

    txid: str
    vout: int
    value: int
    script: bytes
    keychain: KeychainKind
    derivation_index: int
    chain_position: ChainPosition
    confirmations: int
    is_coinbase: bool = False

    @property
    def outpoint(self) -> OutPoint:
        return OutPoint(self.txid, self.vout)

    @property
    def is_change(self) -> bool:
        return self.keychain == KeychainKind.INTERNAL

    @property
    def is_confirmed(self) -> bool:
        return isinstance(self.chain_position, Confirmed)


@dataclass
class TxInfo:
    """Information on a wallet transaction."""

    txid: str
    tx: Transaction
    spent: int  # sum of owned inputs
    received: int  # sum of owned outputs
    confirmations: int
    chain_position: ChainPosition
    fee: int | None = None  # None unless every prevout is known

    @property
    def raw(self) -> bytes:
        return self.tx.serialize()

    @property
    def net(self) -> int:
        return self.received - self.spent


@dataclass
class Balance:
    """Balance in satoshis."""

    immature: int = 0  # immature coinbase balance
    trusted_pending: int = 0  # unconfirmed change or self-signed outputs
    untrusted_pending: int = 0  # other unconfirmed outputs
    confirmed: int = 0

    @property
    def trusted_spendable(self) -> int:
        return self.confirmed + self.trusted_pending

    @property
    def total(self) -> int:
        return self.immature + self.trusted_pending + self.untrusted_pending + self.confirmed


@dataclass
class AddressInfo:
    index: int
    address: str
    keychain: KeychainKind = KeychainKind.EXTERNAL


@dataclass
class CoinSelection:
    """Result of coin selection"""

    utxos: list[UTXOInfo]
    total_value: int
    change_value: int
    fee: int


class Recipient(BaseModel):
    """Intended amount and destination address for a transaction output."""

    address: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0, description="Amount to send in sats")

    model_config = {"frozen": True}
