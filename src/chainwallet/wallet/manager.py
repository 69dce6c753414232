"""
Wallet manager: owns the wallet's place in the data directory and feeds it
blocks and mempool transactions from the host node.

Notification handlers never raise. The node keeps running when the wallet
rejects an update; the failure is logged instead.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from chainwallet.config import WalletSettings
from chainwallet.constants import DEFAULT_WALLET_DIR, DEFAULT_WALLET_FILENAME
from chainwallet.errors import WalletError
from chainwallet.wallet.service import WalletService


def wallet_dir(data_dir: str | Path) -> Path:
    return Path(data_dir) / DEFAULT_WALLET_DIR


def wallet_exists(data_dir: str | Path) -> bool:
    """Whether the wallet directory exists under data_dir."""
    return wallet_dir(data_dir).is_dir()


class WalletManager:
    """Creates or loads the wallet at <data_dir>/bdkwallet/default.dat."""

    def __init__(self, wallet: WalletService, db_path: Path):
        self.wallet = wallet
        self.db_path = db_path

    @classmethod
    def open(cls, settings: WalletSettings) -> WalletManager:
        """
        Load the wallet in the configured data directory, creating it first
        if the database file does not exist.
        """
        directory = wallet_dir(settings.data_dir)
        directory.mkdir(parents=True, exist_ok=True)
        db_path = directory / DEFAULT_WALLET_FILENAME

        if db_path.exists():
            wallet = WalletService.load(
                db_path,
                genesis_hash=settings.genesis_hash,
                network=settings.network,
                lookahead=settings.lookahead,
            )
        else:
            wallet = WalletService.create(
                db_path,
                settings.network,
                genesis_hash=settings.genesis_hash,
                lookahead=settings.lookahead,
            )

        logger.info("Started the wallet manager")
        return cls(wallet, db_path)

    def notify_new_transactions(self, transactions: list[tuple[bytes, int]]) -> list[str]:
        """Apply mempool transactions; returns new wallet txids, or [] on failure."""
        try:
            return self.wallet.apply_mempool(transactions)
        except WalletError as e:
            logger.error(f"Failed to apply mempool txs to the wallet: {e}")
            return []

    def handle_block_connected(self, height: int, raw_block: bytes) -> list[str]:
        """Apply a connected block; returns new wallet txids, or [] on failure."""
        try:
            return self.wallet.apply_block(height, raw_block)
        except WalletError as e:
            logger.critical(f"Couldn't apply block {height} to the wallet: {e}")
            return []

    def handle_block_disconnected(self, height: int) -> list[str]:
        try:
            return self.wallet.disconnect_from(height)
        except WalletError as e:
            logger.critical(f"Couldn't disconnect block {height} from the wallet: {e}")
            return []

    def close(self) -> None:
        self.wallet.close()
