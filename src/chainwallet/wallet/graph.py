"""
Transaction graph: every wallet-relevant transaction and where it sits in
the chain.

UTXOs, balances and history are derived from the graph on each query rather
than stored, so they always agree with the current chain positions.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from chainwallet.bitcoin.transaction import OutPoint, Transaction, TxOut
from chainwallet.constants import COINBASE_MATURITY
from chainwallet.errors import ChainError
from chainwallet.models import KeychainKind
from chainwallet.wallet.chain import ChainIndex
from chainwallet.wallet.keychain import KeychainIndex
from chainwallet.wallet.models import (
    Balance,
    ChainPosition,
    Confirmed,
    TxInfo,
    Unconfirmed,
    UTXOInfo,
)


@dataclass
class TxRecord:
    txid: str
    tx: Transaction
    chain_position: ChainPosition

    @property
    def raw(self) -> bytes:
        return self.tx.serialize()

    @property
    def inputs(self) -> list[OutPoint]:
        return [inp.prevout for inp in self.tx.inputs]

    @property
    def outputs(self) -> list[TxOut]:
        return self.tx.outputs


@dataclass
class GraphSnapshot:
    txs: dict[str, Transaction]
    anchors: dict[str, Confirmed]
    first_seen: dict[str, int]
    spends: dict[OutPoint, set[str]]
    trusted: set[str]


def confirmations_at(position: ChainPosition, tip_height: int) -> int:
    """
    Confirmation count of a position seen from tip_height.

    Floors at 0 because the tip can transiently sit below an anchor while a
    reorg is being processed.
    """
    if isinstance(position, Unconfirmed):
        return 0
    return max(0, 1 + tip_height - position.anchor_height)


class TransactionGraph:
    """
    Known transactions (confirmed and unconfirmed) indexed by txid and by
    the outpoints they spend.

    An unconfirmed transaction that double-spends a confirmed one, or an
    unconfirmed one first seen later, is treated as replaced, as are its
    descendants. Replaced transactions stay in the graph but neither create
    nor spend UTXOs and are left out of balances and history.
    """

    def __init__(self, index: KeychainIndex):
        self.index = index
        # insertion order of this dict is the history tie-break order
        self._txs: dict[str, Transaction] = {}
        self._anchors: dict[str, Confirmed] = {}
        self._first_seen: dict[str, int] = {}
        self._spends: dict[OutPoint, set[str]] = {}
        self._trusted: set[str] = set()

    def __len__(self) -> int:
        return len(self._txs)

    def __contains__(self, txid: object) -> bool:
        return txid in self._txs

    def get(self, txid: str) -> TxRecord | None:
        tx = self._txs.get(txid)
        if tx is None:
            return None
        return TxRecord(txid, tx, self.chain_position(txid))

    def chain_position(self, txid: str) -> ChainPosition:
        anchor = self._anchors.get(txid)
        if anchor is not None:
            return anchor
        return Unconfirmed(self._first_seen.get(txid, 0))

    def first_seen(self, txid: str) -> int | None:
        return self._first_seen.get(txid)

    def is_trusted(self, txid: str) -> bool:
        return txid in self._trusted

    # Relevance

    def owned_output(self, outpoint: OutPoint) -> TxOut | None:
        """The output at outpoint if it is known and pays a wallet script."""
        tx = self._txs.get(outpoint.txid)
        if tx is None or outpoint.vout >= len(tx.outputs):
            return None
        txout = tx.outputs[outpoint.vout]
        if not self.index.is_mine(txout.script):
            return None
        return txout

    def is_relevant(self, tx: Transaction) -> bool:
        """Whether tx pays to a wallet script or spends a wallet output."""
        if any(self.index.is_mine(out.script) for out in tx.outputs):
            return True
        return any(self.owned_output(inp.prevout) is not None for inp in tx.inputs)

    # Mutation

    def _insert_tx(self, tx: Transaction, txid: str) -> bool:
        if txid in self._txs:
            return False

        self._txs[txid] = tx
        if not tx.is_coinbase:
            for inp in tx.inputs:
                self._spends.setdefault(inp.prevout, set()).add(txid)
        for out in tx.outputs:
            self.index.match_script(out.script)

        logger.debug(f"Added transaction {txid} to graph")
        return True

    def insert_confirmed(
        self, tx: Transaction, height: int, block_hash: str, chain: ChainIndex
    ) -> bool:
        """
        Record tx as confirmed in the block (height, block_hash).

        The block must already be in the chain. A transaction that is already
        anchored to a block still in the chain keeps that anchor.

        Returns:
            True if the graph changed
        """
        if not chain.contains(height, block_hash):
            raise ChainError(f"Block {block_hash} at height {height} is not in the chain")

        txid = tx.txid
        changed = self._insert_tx(tx, txid)

        anchor = Confirmed(height, block_hash)
        current = self._anchors.get(txid)
        if current == anchor:
            return changed
        if current is not None and chain.contains(current.anchor_height, current.anchor_hash):
            return changed

        self._anchors[txid] = anchor
        return True

    def insert_unconfirmed(self, tx: Transaction, first_seen: int) -> bool:
        """
        Record tx as seen in the mempool at first_seen.

        Confirmed transactions are left untouched. Otherwise the stored
        timestamp only ever moves forward.

        Returns:
            True if the graph changed
        """
        txid = tx.txid
        changed = self._insert_tx(tx, txid)

        if txid in self._anchors:
            return changed

        current = self._first_seen.get(txid)
        if current is None or first_seen > current:
            self._first_seen[txid] = first_seen
            return True
        return changed

    def disconnect_block(self, height: int, now: int) -> list[str]:
        """
        Revert every transaction anchored at height or above to unconfirmed.

        A reverted transaction keeps its original first-seen time when it was
        seen in the mempool, otherwise it is stamped with now.

        Returns:
            Txids that were reverted
        """
        reverted = [
            txid for txid, anchor in self._anchors.items() if anchor.anchor_height >= height
        ]
        for txid in reverted:
            del self._anchors[txid]
            self._first_seen.setdefault(txid, now)

        if reverted:
            logger.info(f"Reverted {len(reverted)} transaction(s) to unconfirmed")
        return reverted

    def mark_trusted(self, txid: str) -> bool:
        """Mark a transaction the wallet signed itself; its pending outputs are trusted."""
        if txid in self._trusted:
            return False
        self._trusted.add(txid)
        return True

    def restore_tx(
        self,
        tx: Transaction,
        anchor: Confirmed | None,
        first_seen: int | None,
    ) -> None:
        """Re-insert a persisted transaction with its stored position."""
        txid = tx.txid
        self._insert_tx(tx, txid)
        if anchor is not None:
            self._anchors[txid] = anchor
        if first_seen is not None:
            self._first_seen[txid] = first_seen

    def snapshot(self) -> GraphSnapshot:
        return GraphSnapshot(
            txs=dict(self._txs),
            anchors=dict(self._anchors),
            first_seen=dict(self._first_seen),
            spends={op: set(txids) for op, txids in self._spends.items()},
            trusted=set(self._trusted),
        )

    def restore(self, snapshot: GraphSnapshot) -> None:
        self._txs = dict(snapshot.txs)
        self._anchors = dict(snapshot.anchors)
        self._first_seen = dict(snapshot.first_seen)
        self._spends = {op: set(txids) for op, txids in snapshot.spends.items()}
        self._trusted = set(snapshot.trusted)

    # Canonical view

    def _canonical_txids(self) -> set[str]:
        canonical: dict[str, bool] = {}
        visiting: set[str] = set()

        def sort_key(txid: str) -> tuple[int, str]:
            return self._first_seen.get(txid, 0), txid

        def visit(txid: str) -> bool:
            if txid in canonical:
                return canonical[txid]
            if txid in self._anchors:
                canonical[txid] = True
                return True
            if txid in visiting:
                return False

            visiting.add(txid)
            result = True
            tx = self._txs[txid]
            for inp in tx.inputs:
                parent = inp.prevout.txid
                if parent in self._txs and not visit(parent):
                    result = False
                    break
                for other in self._spends.get(inp.prevout, ()):
                    if other == txid:
                        continue
                    if other in self._anchors or (
                        sort_key(other) > sort_key(txid) and visit(other)
                    ):
                        result = False
                        break
                if not result:
                    break
            visiting.discard(txid)

            canonical[txid] = result
            return result

        return {txid for txid in self._txs if visit(txid)}

    # Queries

    def sent_and_received(self, tx: Transaction) -> tuple[int, int]:
        """
        (spent, received): the value of wallet outputs spent by tx's inputs
        and the value of tx's outputs paying wallet scripts.
        """
        spent = 0
        for inp in tx.inputs:
            txout = self.owned_output(inp.prevout)
            if txout is not None:
                spent += txout.value

        received = sum(out.value for out in tx.outputs if self.index.is_mine(out.script))
        return spent, received

    def fee(self, tx: Transaction) -> int | None:
        """Fee paid by tx, or None if it is a coinbase or a prevout is unknown."""
        if tx.is_coinbase:
            return None
        input_value = 0
        for inp in tx.inputs:
            parent = self._txs.get(inp.prevout.txid)
            if parent is None or inp.prevout.vout >= len(parent.outputs):
                return None
            input_value += parent.outputs[inp.prevout.vout].value
        return input_value - sum(out.value for out in tx.outputs)

    def confirmations(self, txid: str, tip_height: int) -> int:
        return confirmations_at(self.chain_position(txid), tip_height)

    def list_utxos(self, tip_height: int) -> list[UTXOInfo]:
        """Unspent wallet outputs, most confirmed first, then by insertion order."""
        canonical = self._canonical_txids()
        spent: set[OutPoint] = set()
        for txid in canonical:
            tx = self._txs[txid]
            if not tx.is_coinbase:
                spent.update(inp.prevout for inp in tx.inputs)

        utxos: list[UTXOInfo] = []
        for txid, tx in self._txs.items():
            if txid not in canonical:
                continue
            position = self.chain_position(txid)
            for vout, out in enumerate(tx.outputs):
                found = self.index.index_of(out.script)
                if found is None or OutPoint(txid, vout) in spent:
                    continue
                keychain, derivation_index = found
                utxos.append(
                    UTXOInfo(
                        txid=txid,
                        vout=vout,
                        value=out.value,
                        script=out.script,
                        keychain=keychain,
                        derivation_index=derivation_index,
                        chain_position=position,
                        confirmations=confirmations_at(position, tip_height),
                        is_coinbase=tx.is_coinbase,
                    )
                )

        utxos.sort(key=lambda u: u.confirmations, reverse=True)
        return utxos

    def transactions(self, tip_height: int) -> list[TxInfo]:
        """Wallet transaction history, most confirmed first, then by insertion order."""
        canonical = self._canonical_txids()
        history: list[TxInfo] = []
        for txid, tx in self._txs.items():
            if txid not in canonical:
                continue
            position = self.chain_position(txid)
            spent, received = self.sent_and_received(tx)
            history.append(
                TxInfo(
                    txid=txid,
                    tx=tx,
                    spent=spent,
                    received=received,
                    confirmations=confirmations_at(position, tip_height),
                    chain_position=position,
                    fee=self.fee(tx),
                )
            )

        history.sort(key=lambda t: t.confirmations, reverse=True)
        return history

    def balance(self, tip_height: int, maturity: int = COINBASE_MATURITY) -> Balance:
        balance = Balance()
        for utxo in self.list_utxos(tip_height):
            if utxo.is_confirmed:
                if utxo.is_coinbase and utxo.confirmations < maturity:
                    balance.immature += utxo.value
                else:
                    balance.confirmed += utxo.value
            elif utxo.keychain == KeychainKind.INTERNAL or utxo.txid in self._trusted:
                balance.trusted_pending += utxo.value
            else:
                balance.untrusted_pending += utxo.value
        return balance
