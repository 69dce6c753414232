"""
Wallet service: the coordinator over chain, keychain and transaction graph.

Derivation path: m/86'/{coin_type}'/0'/{change}/{index}
- change: 0 (external/receive), 1 (internal/change)
- index: address index

All wallet state sits behind a single lock. Every operation holds it for its
full duration, including the database write, so readers never observe a
chain and graph that disagree. Mutating operations stage their changes and
commit them as the last step; if the commit fails the in-memory state is
rolled back to what it was before the call.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from chainwallet.bitcoin.address import address_to_script, script_to_address
from chainwallet.bitcoin.block import Block
from chainwallet.bitcoin.encoding import hex_to_hash
from chainwallet.bitcoin.transaction import Transaction
from chainwallet.constants import DEFAULT_LOOKAHEAD, GENESIS_HASHES
from chainwallet.errors import (
    CreateTxError,
    DecodeError,
    LoadDatabaseError,
    LoadError,
    LoadMismatchError,
    NoRecipientsError,
    ParseGenesisHashError,
    ParseNetworkError,
    SignTxError,
    WalletError,
    WalletInitError,
)
from chainwallet.models import KeychainKind, NetworkType
from chainwallet.wallet.builder import TransactionBuilder
from chainwallet.wallet.chain import BlockId, ChainIndex, Checkpoint
from chainwallet.wallet.graph import GraphSnapshot, TransactionGraph
from chainwallet.wallet.header import WalletHeader
from chainwallet.wallet.keychain import KeychainIndex, KeychainSnapshot
from chainwallet.wallet.models import (
    AddressInfo,
    Balance,
    Confirmed,
    Recipient,
    TxInfo,
    UTXOInfo,
)
from chainwallet.wallet.signing import is_finalized, sign_transaction
from chainwallet.wallet.storage import StagedDelta, WalletStore, remove_database

_Snapshot = tuple[Checkpoint, KeychainSnapshot, GraphSnapshot]


def parse_genesis_hash(value: str) -> str:
    try:
        hex_to_hash(value)
    except ValueError as e:
        raise ParseGenesisHashError(f"failed to parse genesis hash: {e}") from e
    return value.lower()


class WalletService:
    """
    Local wallet tracking blocks and mempool transactions that pay to or
    spend from its BIP86 addresses.

    Use create() for a new wallet or load() for an existing one.
    """

    def __init__(
        self,
        header: WalletHeader,
        store: WalletStore,
        chain: ChainIndex,
        index: KeychainIndex,
        graph: TransactionGraph,
    ):
        self._header = header
        self._store = store
        self._chain = chain
        self._index = index
        self._graph = graph
        self._lock = threading.Lock()
        self.builder = TransactionBuilder()

    # Lifecycle

    @classmethod
    def create(
        cls,
        db_path: str | Path,
        network: str | NetworkType,
        genesis_hash: str | None = None,
        lookahead: int = DEFAULT_LOOKAHEAD,
        mnemonic: str | None = None,
    ) -> WalletService:
        """
        Create a wallet database with fresh random entropy.

        Args:
            db_path: Path of the database file, which must not exist
            network: Bitcoin network name
            genesis_hash: Genesis block hash; defaults to the network's genesis
            lookahead: Scripts derived beyond the last revealed index
            mnemonic: Restore from this backup phrase instead of new entropy

        Raises:
            CreateError: no database file is left behind
        """
        try:
            network = NetworkType.parse(network)
        except ValueError as e:
            raise ParseNetworkError(f"failed to parse network type string: {e}") from e

        genesis = parse_genesis_hash(genesis_hash or GENESIS_HASHES[network])

        try:
            if mnemonic is None:
                header = WalletHeader.new(network)
            else:
                header = WalletHeader.from_mnemonic(mnemonic, network)
        except ValueError as e:
            raise WalletInitError(f"failed to init wallet: {e}") from e

        path = Path(db_path)
        store = WalletStore.create(path, header.encode())

        try:
            descriptors = header.descriptors()
            index = KeychainIndex(descriptors, lookahead)
            chain = ChainIndex(genesis)
            graph = TransactionGraph(index)
            store.commit(
                StagedDelta(
                    descriptors={k: str(d) for k, d in descriptors.items()},
                    blocks={0: genesis},
                    next_unrevealed={k: 0 for k in descriptors},
                )
            )
        except (WalletError, ValueError) as e:
            store.close()
            remove_database(path)
            raise WalletInitError(f"failed to init wallet: {e}") from e

        logger.info(f"Created {network.value} wallet at {path}")
        return cls(header, store, chain, index, graph)

    @classmethod
    def load(
        cls,
        db_path: str | Path,
        genesis_hash: str | None = None,
        network: str | NetworkType | None = None,
        lookahead: int = DEFAULT_LOOKAHEAD,
    ) -> WalletService:
        """
        Load a wallet database.

        The header is verified first, then the descriptors rebuilt from its
        entropy are checked against the persisted ones, then the optional
        genesis_hash and network are checked against the persisted wallet.

        Raises:
            LoadError
        """
        path = Path(db_path)
        store = WalletStore.open(path)
        try:
            header = WalletHeader.decode(store.read_header())
            persisted = store.read_delta()
            service = cls._restore(header, store, persisted, lookahead)

            if network is not None:
                try:
                    expected_network = NetworkType.parse(network)
                except ValueError as e:
                    raise LoadMismatchError(str(e)) from e
                if expected_network != header.network:
                    raise LoadMismatchError(
                        f"wallet network {header.network.value} does not match "
                        f"expected {expected_network.value}"
                    )

            if genesis_hash is not None and genesis_hash.lower() != service._chain.genesis_hash:
                raise LoadMismatchError(
                    f"wallet genesis hash {service._chain.genesis_hash} does not match "
                    f"expected {genesis_hash}"
                )
        except LoadError:
            store.close()
            raise

        logger.info(
            f"Loaded {header.network.value} wallet at {path}: "
            f"tip {service._chain.tip.height}, {len(service._graph)} transactions"
        )
        return service

    @classmethod
    def _restore(
        cls,
        header: WalletHeader,
        store: WalletStore,
        persisted: StagedDelta,
        lookahead: int,
    ) -> WalletService:
        descriptors = header.descriptors()
        for keychain, descriptor in descriptors.items():
            if persisted.descriptors.get(keychain) != str(descriptor):
                raise LoadMismatchError(
                    f"{keychain.value} descriptor does not match the wallet header"
                )

        blocks = {h: block_hash for h, block_hash in persisted.blocks.items() if block_hash}
        try:
            chain = ChainIndex.from_blocks(blocks)
        except ValueError as e:
            raise LoadMismatchError(str(e)) from e

        index = KeychainIndex(descriptors, lookahead)
        for keychain, next_unrevealed in persisted.next_unrevealed.items():
            if next_unrevealed > 0:
                index.reveal_to(keychain, next_unrevealed - 1)

        graph = TransactionGraph(index)
        for txid, raw in persisted.txs.items():
            try:
                tx = Transaction.deserialize(raw)
            except DecodeError as e:
                raise LoadDatabaseError(f"failed to decode stored tx {txid}: {e}") from e
            anchor = persisted.anchors.get(txid)
            graph.restore_tx(
                tx,
                Confirmed(*anchor) if anchor is not None else None,
                persisted.first_seen.get(txid),
            )
        for txid in persisted.trusted:
            graph.mark_trusted(txid)

        return cls(header, store, chain, index, graph)

    def close(self) -> None:
        with self._lock:
            self._store.close()

    def __enter__(self) -> WalletService:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Staging

    def _snapshot(self) -> _Snapshot:
        return self._chain.snapshot(), self._index.snapshot(), self._graph.snapshot()

    def _rollback(self, snapshot: _Snapshot) -> None:
        chain, index, graph = snapshot
        self._chain.restore(chain)
        self._index.restore(index)
        self._graph.restore(graph)

    @contextmanager
    def _staged(self) -> Iterator[StagedDelta]:
        """
        Run a mutation and commit its delta.

        Any error inside the block or from the commit restores the state
        from before the block.
        """
        snapshot = self._snapshot()
        delta = StagedDelta()
        try:
            yield delta
            for keychain in self._index.keychains:
                next_unrevealed = self._index.next_unrevealed(keychain)
                if next_unrevealed != snapshot[1].next_unrevealed[keychain]:
                    delta.next_unrevealed[keychain] = next_unrevealed
            self._store.commit(delta)
        except Exception:
            self._rollback(snapshot)
            raise

    def _stage_tx(self, delta: StagedDelta, txid: str) -> None:
        record = self._graph.get(txid)
        assert record is not None
        delta.txs[txid] = record.raw
        position = record.chain_position
        if isinstance(position, Confirmed):
            delta.anchors[txid] = (position.anchor_height, position.anchor_hash)
        else:
            delta.anchors[txid] = None
        first_seen = self._graph.first_seen(txid)
        if first_seen is not None:
            delta.first_seen[txid] = first_seen

    # Chain updates

    def apply_block(self, height: int, raw_block: bytes) -> list[str]:
        """
        Apply a consensus-serialized block at height.

        The first block applied on top of genesis is connected without
        checking its parent hash, so a wallet can start syncing from any
        height it trusts. Every later block must extend the tip.

        Returns:
            Txids of wallet transactions the wallet had not seen before

        Raises:
            DecodeError: raw_block is malformed
            CannotConnectError: the block does not link to the tip; the caller
                should supply missing blocks or disconnect_from() a reorg
            DatabaseWriteError: nothing was applied
        """
        with self._lock:
            try:
                block = Block.deserialize(raw_block)
            except DecodeError as e:
                logger.warning(f"Failed to decode block at height {height}: {e}")
                raise

            with self._staged() as delta:
                if self._chain.connect_block(height, block.hash, block.prev_hash):
                    delta.blocks[height] = block.hash

                new_txids: list[str] = []
                for tx in block.transactions:
                    if not self._graph.is_relevant(tx):
                        continue
                    txid = tx.txid
                    is_new = txid not in self._graph
                    if self._graph.insert_confirmed(tx, height, block.hash, self._chain):
                        self._stage_tx(delta, txid)
                        if is_new:
                            new_txids.append(txid)

            logger.info(
                f"Applied block {block.hash} at height {height}: "
                f"{len(new_txids)} new wallet transaction(s)"
            )
            return new_txids

    def apply_mempool(self, transactions: list[tuple[bytes, int]]) -> list[str]:
        """
        Apply unconfirmed transactions as (raw_tx, first_seen_unix) pairs.

        All transactions are decoded before anything is applied. A
        transaction spending an output of another transaction in the same
        batch is recognized regardless of batch order.

        Returns:
            Txids of wallet transactions the wallet had not seen before
        """
        with self._lock:
            decoded: list[tuple[Transaction, int]] = []
            for raw, first_seen in transactions:
                try:
                    decoded.append((Transaction.deserialize(raw), first_seen))
                except DecodeError as e:
                    logger.warning(f"Failed to decode mempool transaction: {e}")
                    raise

            with self._staged() as delta:
                new_txids: list[str] = []
                pending = decoded
                progress = True
                while pending and progress:
                    progress = False
                    remaining: list[tuple[Transaction, int]] = []
                    for tx, first_seen in pending:
                        if not self._graph.is_relevant(tx):
                            remaining.append((tx, first_seen))
                            continue
                        progress = True
                        txid = tx.txid
                        is_new = txid not in self._graph
                        if self._graph.insert_unconfirmed(tx, first_seen):
                            self._stage_tx(delta, txid)
                            if is_new:
                                new_txids.append(txid)
                    pending = remaining

            if new_txids:
                logger.info(f"Applied {len(new_txids)} new mempool transaction(s)")
            return new_txids

    def disconnect_from(self, height: int) -> list[str]:
        """
        Disconnect every block at height and above.

        Transactions confirmed in those blocks become unconfirmed again.

        Returns:
            Txids reverted to unconfirmed
        """
        with self._lock:
            with self._staged() as delta:
                removed = self._chain.disconnect_from(height)
                for cp in removed:
                    delta.blocks[cp.height] = None
                reverted = self._graph.disconnect_block(height, now=int(time.time()))
                for txid in reverted:
                    self._stage_tx(delta, txid)
            return reverted

    # Addresses

    def _address_info(self, keychain: KeychainKind, index: int) -> AddressInfo:
        script = self._index.derive(keychain, index)
        return AddressInfo(index, script_to_address(script, self._header.network), keychain)

    def reveal_next_address(self, keychain: KeychainKind = KeychainKind.EXTERNAL) -> AddressInfo:
        """Reveal a never-used address. The reveal is persisted before returning."""
        with self._lock:
            with self._staged():
                index = self._index.reveal_next(keychain)
            return self._address_info(keychain, index)

    def last_unused_address(self, keychain: KeychainKind = KeychainKind.EXTERNAL) -> AddressInfo:
        """Lowest address no known transaction uses. Does not reveal anything."""
        with self._lock:
            return self._address_info(keychain, self._index.last_unused(keychain))

    def peek_address(
        self, index: int, keychain: KeychainKind = KeychainKind.EXTERNAL
    ) -> AddressInfo:
        with self._lock:
            return self._address_info(keychain, index)

    # Queries

    @property
    def network(self) -> NetworkType:
        return self._header.network

    @property
    def genesis_hash(self) -> str:
        with self._lock:
            return self._chain.genesis_hash

    @property
    def tip(self) -> BlockId:
        with self._lock:
            return self._chain.tip.block_id

    @property
    def tip_height(self) -> int:
        with self._lock:
            return self._chain.tip.height

    def recent_blocks(self, count: int) -> list[BlockId]:
        with self._lock:
            return self._chain.recent_blocks(count)

    def balance(self) -> Balance:
        with self._lock:
            return self._graph.balance(self._chain.tip.height)

    def utxos(self) -> list[UTXOInfo]:
        with self._lock:
            return self._graph.list_utxos(self._chain.tip.height)

    def transactions(self) -> list[TxInfo]:
        with self._lock:
            return self._graph.transactions(self._chain.tip.height)

    def mnemonic_words(self) -> list[str]:
        return self._header.mnemonic_words()

    # Spending

    def _parse_recipients(
        self, recipients: list[Recipient] | list[tuple[str, int]]
    ) -> list[tuple[bytes, int]]:
        parsed: list[tuple[bytes, int]] = []
        for item in recipients:
            if isinstance(item, Recipient):
                recipient = item
            else:
                try:
                    recipient = Recipient(address=item[0], amount=item[1])
                except ValidationError as e:
                    raise CreateTxError(f"Invalid recipient {item!r}: {e}") from e
            script = address_to_script(recipient.address, self._header.network)
            parsed.append((script, recipient.amount))
        return parsed

    def build_transaction(
        self, fee_rate: int, recipients: list[Recipient] | list[tuple[str, int]]
    ) -> bytes:
        """
        Build and sign a transaction paying recipients.

        Spends confirmed outputs and trusted pending ones. Change goes to an
        internal address.

        Args:
            fee_rate: Fee rate in sat/vbyte
            recipients: Recipient models or (address, amount) pairs

        Returns:
            Finalized consensus-serialized transaction, ready to broadcast

        Raises:
            CreateTxError
        """
        if not recipients:
            raise NoRecipientsError()

        with self._lock:
            parsed = self._parse_recipients(recipients)
            tip_height = self._chain.tip.height

            with self._staged() as delta:
                change_index = self._index.last_unused(KeychainKind.INTERNAL)
                change_script = self._index.derive(KeychainKind.INTERNAL, change_index)

                spendable = [
                    u
                    for u in self._graph.list_utxos(tip_height)
                    if u.is_confirmed or u.is_change or self._graph.is_trusted(u.txid)
                ]
                template = self.builder.build(
                    spendable, fee_rate, parsed, change_script, locktime=tip_height
                )
                if template.change_vout is not None:
                    self._index.reveal_to(KeychainKind.INTERNAL, change_index)

                signing_keys: list[bytes | None] = [
                    self._index.signing_key(u.keychain, u.derivation_index)
                    for u in template.inputs
                ]
                sign_transaction(template.tx, template.prevouts, signing_keys)

                # Every input is a wallet output, so this only fails on a bug
                if not is_finalized(template.tx, template.prevouts):
                    logger.critical("Signed transaction is not finalized")
                    raise SignTxError("tx should always be finalized")

                txid = template.tx.txid
                self._graph.mark_trusted(txid)
                delta.trusted.add(txid)

            logger.info(
                f"Created transaction {txid}: {len(template.inputs)} input(s), "
                f"fee {template.fee} sats"
            )
            return template.tx.serialize()
