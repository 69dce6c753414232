"""
Bitcoin and wallet constants.

Dust and maturity values follow Bitcoin Core policy:
- STANDARD_DUST_LIMIT: dust limit for a P2PKH output at the default relay fee
- COINBASE_MATURITY: confirmations before a block reward can be spent
"""

from __future__ import annotations

from chainwallet.models import NetworkType

# Bitcoin network dust limits
STANDARD_DUST_LIMIT = 546  # satoshis

# Outputs worth this much or less are not worth creating as change
DEFAULT_DUST_THRESHOLD = STANDARD_DUST_LIMIT

COINBASE_MATURITY = 100

# Number of not-yet-revealed scripts derived ahead of the last revealed index
DEFAULT_LOOKAHEAD = 101

# Wallet database header
DB_MAGIC = b"utreexod.bdk.345e94cf"
ENTROPY_LEN = 16  # 12 words

DEFAULT_WALLET_DIR = "bdkwallet"
DEFAULT_WALLET_FILENAME = "default.dat"

GENESIS_HASHES: dict[NetworkType, str] = {
    NetworkType.MAINNET: "000000000019d6689c085ae165831e934ff763ae46a2a6c172b3f1b60a8ce26f",
    NetworkType.TESTNET: "000000000933ea01ad0ee984209779baaec3ced90fa3f408719526f8d77f4943",
    NetworkType.SIGNET: "00000008819873e925422c1ff0f99f7cc9bbb232af63a077a480a3633bee1ef6",
    NetworkType.REGTEST: "0f9188f13cb7b2c71f2a335e3a4fc328bf5beb436012afca590b1a11466e2206",
}

# Bech32 human readable parts
BECH32_HRP: dict[NetworkType, str] = {
    NetworkType.MAINNET: "bc",
    NetworkType.TESTNET: "tb",
    NetworkType.SIGNET: "tb",
    NetworkType.REGTEST: "bcrt",
}

# Base58 version bytes: (P2PKH, P2SH)
BASE58_VERSIONS: dict[NetworkType, tuple[int, int]] = {
    NetworkType.MAINNET: (0x00, 0x05),
    NetworkType.TESTNET: (0x6F, 0xC4),
    NetworkType.SIGNET: (0x6F, 0xC4),
    NetworkType.REGTEST: (0x6F, 0xC4),
}

# nSequence signalling replaceability (BIP125) with no relative locktime
SEQUENCE_RBF = 0xFFFFFFFD
