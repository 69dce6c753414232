"""
Pytest configuration and fixtures for chainwallet tests.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from chainwallet.bitcoin.block import Block, BlockHeader
from chainwallet.bitcoin.transaction import (
    NULL_TXID,
    NULL_VOUT,
    OutPoint,
    Transaction,
    TxIn,
    TxOut,
)
from chainwallet.constants import GENESIS_HASHES
from chainwallet.models import KeychainKind, NetworkType
from chainwallet.wallet.bip32 import Bip86Descriptor
from chainwallet.wallet.chain import ChainIndex
from chainwallet.wallet.graph import TransactionGraph
from chainwallet.wallet.header import WalletHeader
from chainwallet.wallet.keychain import KeychainIndex
from chainwallet.wallet.service import WalletService

TEST_ENTROPY = bytes(range(16))

# P2TR output not owned by any test wallet
FOREIGN_SCRIPT = bytes([0x51, 0x20]) + bytes.fromhex("aa" * 32)

OP_RETURN = b"\x6a"


class ChainFactory:
    """
    Builds transactions and blocks through the library's own serializers.

    Keeps track of a tip so blocks can be chained with correct parent hashes.
    """

    def __init__(self, genesis_hash: str):
        self.tip_hash = genesis_hash
        self.height = 0
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    def foreign_outpoint(self) -> OutPoint:
        """Outpoint of some transaction the wallet has never seen."""
        return OutPoint(self._next().to_bytes(32, "big").hex(), 0)

    def coinbase(self, height: int, outputs: list[TxOut] | None = None) -> Transaction:
        # BIP34 height push keeps coinbase txids unique
        script_sig = bytes([0x03]) + height.to_bytes(3, "little") + bytes([self._next() % 256])
        return Transaction(
            version=2,
            inputs=[TxIn(OutPoint(NULL_TXID, NULL_VOUT), script_sig)],
            outputs=outputs or [TxOut(0, OP_RETURN)],
        )

    def pay(self, script: bytes, value: int) -> Transaction:
        """Transaction paying value to script from a foreign input."""
        return self.spend([self.foreign_outpoint()], [TxOut(value, script)])

    def spend(self, prevouts: list[OutPoint], outputs: list[TxOut]) -> Transaction:
        # Distinct locktimes keep otherwise identical spends distinct
        return Transaction(
            version=2,
            inputs=[TxIn(op, sequence=0xFFFFFFFD) for op in prevouts],
            outputs=outputs,
            locktime=self._next(),
        )

    def block(
        self,
        transactions: list[Transaction],
        height: int | None = None,
        prev_hash: str | None = None,
    ) -> Block:
        """A block with a coinbase followed by transactions, not advancing the tip."""
        height = self.height + 1 if height is None else height
        header = BlockHeader(
            version=0x20000000,
            prev_hash=prev_hash or self.tip_hash,
            merkle_root="00" * 32,
            time=1_700_000_000 + height,
            bits=0x207FFFFF,
            nonce=self._next(),
        )
        return Block(header, [self.coinbase(height), *transactions])

    def next_block(self, *transactions: Transaction) -> tuple[int, bytes]:
        """Extend the tip; returns (height, raw block)."""
        block = self.block(list(transactions))
        self.height += 1
        self.tip_hash = block.hash
        return self.height, block.serialize()

    def rewind(self, height: int, block_hash: str) -> None:
        self.height = height
        self.tip_hash = block_hash


@pytest.fixture
def test_mnemonic() -> str:
    """Test mnemonic (BIP39 test vector)"""
    return (
        "abandon abandon abandon abandon abandon abandon "
        "abandon abandon abandon abandon abandon about"
    )


@pytest.fixture
def header() -> WalletHeader:
    return WalletHeader(entropy=TEST_ENTROPY, network=NetworkType.REGTEST)


@pytest.fixture
def descriptors(header: WalletHeader) -> dict[KeychainKind, Bip86Descriptor]:
    return header.descriptors()


@pytest.fixture
def keychain_index(descriptors: dict[KeychainKind, Bip86Descriptor]) -> KeychainIndex:
    return KeychainIndex(descriptors, lookahead=10)


@pytest.fixture
def graph(keychain_index: KeychainIndex) -> TransactionGraph:
    return TransactionGraph(keychain_index)


@pytest.fixture
def regtest_genesis() -> str:
    return GENESIS_HASHES[NetworkType.REGTEST]


@pytest.fixture
def chain(regtest_genesis: str) -> ChainIndex:
    return ChainIndex(regtest_genesis)


@pytest.fixture
def factory(regtest_genesis: str) -> ChainFactory:
    return ChainFactory(regtest_genesis)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "wallet.dat"


@pytest.fixture
def wallet(db_path: Path):
    """Fresh regtest wallet with a small lookahead."""
    service = WalletService.create(db_path, "regtest", lookahead=20)
    yield service
    service.close()


@pytest.fixture
def foreign_script() -> bytes:
    return FOREIGN_SCRIPT
