"""
Wallet header: the first record of the wallet database.

Record layout (all integers little-endian):

    [u32 length][21-byte magic][16-byte entropy][u32 network id]

The entropy is the root of every wallet key. It is generated once when the
wallet is created and never changes.
"""

from __future__ import annotations

import secrets
import struct
from dataclasses import dataclass

from mnemonic import Mnemonic

from chainwallet.constants import DB_MAGIC, ENTROPY_LEN
from chainwallet.errors import HeaderVersionError, ParseHeaderError, ReadHeaderError
from chainwallet.models import KeychainKind, NetworkType
from chainwallet.wallet.bip32 import Bip86Descriptor, HDKey

HEADER_BODY_LEN = len(DB_MAGIC) + ENTROPY_LEN + 4


@dataclass(frozen=True)
class WalletHeader:
    entropy: bytes
    network: NetworkType
    version: bytes = DB_MAGIC

    @classmethod
    def new(cls, network: NetworkType) -> WalletHeader:
        """Fresh header with random entropy."""
        return cls(entropy=secrets.token_bytes(ENTROPY_LEN), network=network)

    @classmethod
    def from_mnemonic(cls, words: str | list[str], network: NetworkType) -> WalletHeader:
        """Header recovered from a 12-word backup phrase."""
        phrase = words if isinstance(words, str) else " ".join(words)
        mnemo = Mnemonic("english")
        if not mnemo.check(phrase):
            raise ValueError("Invalid BIP39 mnemonic phrase")
        entropy = bytes(mnemo.to_entropy(phrase))
        if len(entropy) != ENTROPY_LEN:
            raise ValueError(f"Mnemonic must encode {ENTROPY_LEN} bytes of entropy")
        return cls(entropy=entropy, network=network)

    def encode(self) -> bytes:
        body = DB_MAGIC + self.entropy + struct.pack("<I", self.network.header_id)
        return struct.pack("<I", len(body)) + body

    @classmethod
    def decode(cls, data: bytes) -> WalletHeader:
        """
        Parse a header record.

        Raises:
            ReadHeaderError: the record is shorter than its length prefix
            ParseHeaderError: the body is malformed
            HeaderVersionError: the magic does not match this wallet version
        """
        if len(data) < 4:
            raise ReadHeaderError("failed to read wallet header: missing length prefix")
        (length,) = struct.unpack("<I", data[:4])
        if len(data) < 4 + length:
            raise ReadHeaderError(
                f"failed to read wallet header: expected {length} bytes, got {len(data) - 4}"
            )

        body = data[4 : 4 + length]
        if len(body) != HEADER_BODY_LEN:
            raise ParseHeaderError(
                f"failed to decode wallet header: body is {len(body)} bytes, "
                f"expected {HEADER_BODY_LEN}"
            )

        magic_end = len(DB_MAGIC)
        version = body[:magic_end]
        entropy = body[magic_end : magic_end + ENTROPY_LEN]
        (network_id,) = struct.unpack("<I", body[magic_end + ENTROPY_LEN :])

        try:
            network = NetworkType.from_header_id(network_id)
        except ValueError as e:
            raise ParseHeaderError(f"failed to decode wallet header: {e}") from e

        if version != DB_MAGIC:
            raise HeaderVersionError()

        return cls(entropy=entropy, network=network, version=version)

    def master_key(self) -> HDKey:
        return HDKey.from_seed(self.entropy)

    def descriptor(self, keychain: KeychainKind) -> Bip86Descriptor:
        return Bip86Descriptor(self.master_key(), self.network, keychain)

    def descriptors(self) -> dict[KeychainKind, Bip86Descriptor]:
        master = self.master_key()
        return {k: Bip86Descriptor(master, self.network, k) for k in KeychainKind}

    def mnemonic_words(self) -> list[str]:
        return Mnemonic("english").to_mnemonic(self.entropy).split()

    def __repr__(self) -> str:
        # Never print the entropy
        return f"WalletHeader(network={self.network.value!r})"
