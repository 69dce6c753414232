"""
Wallet components.

- ChainIndex: the wallet's view of the best chain
- KeychainIndex: BIP86 scripts for the external and internal keychains
- TransactionGraph: wallet transactions and their chain positions
- TransactionBuilder: coin selection and unsigned transaction templates
- WalletService: coordinates the above and persists them
"""

from chainwallet.wallet.builder import LargestFirst, OldestFirst, TransactionBuilder
from chainwallet.wallet.chain import BlockId, ChainIndex
from chainwallet.wallet.graph import TransactionGraph
from chainwallet.wallet.keychain import KeychainIndex
from chainwallet.wallet.models import AddressInfo, Balance, Recipient, TxInfo, UTXOInfo
from chainwallet.wallet.service import WalletService

__all__ = [
    "AddressInfo",
    "Balance",
    "BlockId",
    "ChainIndex",
    "KeychainIndex",
    "LargestFirst",
    "OldestFirst",
    "Recipient",
    "TransactionBuilder",
    "TransactionGraph",
    "TxInfo",
    "UTXOInfo",
    "WalletService",
]
