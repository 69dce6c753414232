"""
Checkpoint chain: the wallet's view of the confirmed block chain.

Checkpoints are immutable and linked from tip to genesis, so a tip reference
is a complete snapshot of the chain and older nodes are shared between
snapshots.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from loguru import logger

from chainwallet.errors import CannotConnectError, InvalidHeightError


@dataclass(frozen=True)
class BlockId:
    """A block height and block hash. This identifies a block."""

    height: int
    hash: str


@dataclass(frozen=True, eq=False)
class Checkpoint:
    height: int
    hash: str
    prev: Checkpoint | None = None

    @property
    def block_id(self) -> BlockId:
        return BlockId(self.height, self.hash)

    def __iter__(self) -> Iterator[Checkpoint]:
        """Walk from this checkpoint back to genesis."""
        cp: Checkpoint | None = self
        while cp is not None:
            yield cp
            cp = cp.prev

    def get(self, height: int) -> Checkpoint | None:
        for cp in self:
            if cp.height == height:
                return cp
            if cp.height < height:
                return None
        return None


class ChainIndex:
    """
    Reorg-capable sequence of block checkpoints.

    The index never picks between competing chains: blocks that do not link
    to the current tip raise CannotConnectError, and the caller reorganizes by
    calling disconnect_from() and then connecting the replacement blocks.
    """

    def __init__(self, genesis_hash: str):
        self._tip = Checkpoint(0, genesis_hash)

    @classmethod
    def from_blocks(cls, blocks: dict[int, str]) -> ChainIndex:
        """Rebuild a chain from persisted {height: hash}; height 0 is required."""
        if 0 not in blocks:
            raise ValueError("Chain has no genesis checkpoint")
        chain = cls(blocks[0])
        for height in sorted(blocks):
            if height == 0:
                continue
            chain._tip = Checkpoint(height, blocks[height], chain._tip)
        return chain

    @property
    def tip(self) -> Checkpoint:
        return self._tip

    @property
    def genesis_hash(self) -> str:
        genesis = self._tip.get(0)
        assert genesis is not None
        return genesis.hash

    def get(self, height: int) -> Checkpoint | None:
        return self._tip.get(height)

    def contains(self, height: int, block_hash: str) -> bool:
        cp = self._tip.get(height)
        return cp is not None and cp.hash == block_hash

    def recent_blocks(self, count: int) -> list[BlockId]:
        """The most recent checkpoints, tip first."""
        result: list[BlockId] = []
        for cp in self._tip:
            if len(result) >= count:
                break
            result.append(cp.block_id)
        return result

    def __len__(self) -> int:
        return sum(1 for _ in self._tip)

    def connect_block(self, height: int, block_hash: str, prev_hash: str) -> bool:
        """
        Connect a block on top of the current tip.

        While the tip is genesis, any block above height 0 connects directly
        to genesis without checking prev_hash. This lets a wallet start
        syncing from a trusted height instead of from genesis.

        Returns:
            True if a checkpoint was added, False if the block was already present

        Raises:
            CannotConnectError: the block conflicts with an existing checkpoint
                or its parent is not the checkpoint at height - 1
            InvalidHeightError: height is negative
        """
        if height < 0:
            raise InvalidHeightError(f"Invalid block height: {height}")

        existing = self._tip.get(height)
        if existing is not None:
            if existing.hash == block_hash:
                return False
            logger.warning(
                f"Block {block_hash} at height {height} conflicts with checkpoint {existing.hash}"
            )
            raise CannotConnectError(height)

        # Genesis always exists, so height 0 never gets past the check above
        if self._tip.height == 0:
            self._tip = Checkpoint(height, block_hash, self._tip)
            logger.debug(f"Bootstrapped chain at height {height} ({block_hash})")
            return True

        if height < self._tip.height:
            raise CannotConnectError(height)

        parent = self._tip
        if parent.height != height - 1 or parent.hash != prev_hash:
            raise CannotConnectError(height - 1)

        self._tip = Checkpoint(height, block_hash, parent)
        return True

    def disconnect_from(self, height: int) -> list[Checkpoint]:
        """
        Remove every checkpoint at height and above.

        Returns:
            The removed checkpoints, highest first

        Raises:
            InvalidHeightError: height is below 1; genesis is never removed
        """
        if height < 1:
            raise InvalidHeightError("Cannot disconnect the genesis checkpoint")

        removed: list[Checkpoint] = []
        tip = self._tip
        while tip.height >= height:
            removed.append(tip)
            assert tip.prev is not None
            tip = tip.prev
        self._tip = tip

        if removed:
            logger.info(f"Disconnected {len(removed)} block(s) from height {height}")
        return removed

    def snapshot(self) -> Checkpoint:
        return self._tip

    def restore(self, snapshot: Checkpoint) -> None:
        self._tip = snapshot
