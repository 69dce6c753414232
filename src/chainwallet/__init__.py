"""
chainwallet - Local Bitcoin wallet engine

Tracks BIP86 taproot addresses against blocks and mempool transactions fed in
by a host node, and builds signed transactions spending from them.
"""

__version__ = "0.1.0"

from chainwallet.config import WalletSettings, get_settings
from chainwallet.errors import (
    CannotConnectError,
    ChainError,
    CreateError,
    CreateTxError,
    DatabaseWriteError,
    DecodeError,
    InsufficientFundsError,
    LoadError,
    WalletError,
)
from chainwallet.models import KeychainKind, NetworkType
from chainwallet.wallet.manager import WalletManager
from chainwallet.wallet.service import WalletService

__all__ = [
    "CannotConnectError",
    "ChainError",
    "CreateError",
    "CreateTxError",
    "DatabaseWriteError",
    "DecodeError",
    "InsufficientFundsError",
    "KeychainKind",
    "LoadError",
    "NetworkType",
    "WalletError",
    "WalletManager",
    "WalletService",
    "WalletSettings",
    "get_settings",
]
