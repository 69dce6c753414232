"""
BIP32 HD key derivation.
Implements BIP86 (single-key Taproot) output derivation.
"""

from __future__ import annotations

import hashlib
import hmac

from coincurve import PrivateKey, PublicKey

from chainwallet.bitcoin.address import p2tr_script
from chainwallet.bitcoin.encoding import tagged_hash
from chainwallet.models import KeychainKind, NetworkType

# secp256k1 curve order
SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)

HARDENED = 0x80000000


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


class HDKey:
    """
    Hierarchical Deterministic Key for Bitcoin.
    Implements BIP32 private derivation.
    """

    def __init__(self, private_key: PrivateKey, chain_code: bytes, depth: int = 0):
        self._private_key = private_key
        self._public_key = private_key.public_key
        self.chain_code = chain_code
        self.depth = depth

    @property
    def private_key(self) -> PrivateKey:
        return self._private_key

    @property
    def public_key(self) -> PublicKey:
        return self._public_key

    @property
    def fingerprint(self) -> bytes:
        return hash160(self.get_public_key_bytes())[:4]

    @classmethod
    def from_seed(cls, seed: bytes) -> HDKey:
        """Create master HD key from seed (16 to 64 bytes)."""
        if not 16 <= len(seed) <= 64:
            raise ValueError(f"Invalid seed length: {len(seed)}")

        hmac_result = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
        key_bytes = hmac_result[:32]
        chain_code = hmac_result[32:]

        private_key = PrivateKey(key_bytes)

        return cls(private_key, chain_code, depth=0)

    def derive(self, path: str) -> HDKey:
        """
        Derive child key from path notation (e.g., "m/86'/0'/0'/0/0")
        ' indicates hardened derivation
        """
        if not path.startswith("m"):
            raise ValueError("Path must start with 'm'")

        parts = path.split("/")[1:]
        key = self

        for part in parts:
            if not part:
                continue

            hardened = part.endswith("'") or part.endswith("h")
            index = int(part.rstrip("'h"))

            if hardened:
                index += HARDENED

            key = key.derive_child(index)

        return key

    def derive_child(self, index: int) -> HDKey:
        """Derive a child key at the given index"""
        if index >= HARDENED:
            data = b"\x00" + self._private_key.secret + index.to_bytes(4, "big")
        else:
            data = self.get_public_key_bytes() + index.to_bytes(4, "big")

        hmac_result = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        key_offset = hmac_result[:32]
        child_chain = hmac_result[32:]

        offset_int = int.from_bytes(key_offset, "big")
        if offset_int >= SECP256K1_N:
            raise ValueError("Invalid child key")

        parent_key_int = int.from_bytes(self._private_key.secret, "big")
        child_key_int = (parent_key_int + offset_int) % SECP256K1_N

        if child_key_int == 0:
            raise ValueError("Invalid child key")

        child_private_key = PrivateKey(child_key_int.to_bytes(32, "big"))

        return HDKey(child_private_key, child_chain, depth=self.depth + 1)

    def get_private_key_bytes(self) -> bytes:
        return self._private_key.secret

    def get_public_key_bytes(self, compressed: bool = True) -> bytes:
        return self._public_key.format(compressed=compressed)


def taproot_output_key(internal_pubkey: bytes) -> bytes:
    """
    BIP86 output key: the internal key tweaked with an empty script tree.

    Args:
        internal_pubkey: 33-byte compressed public key

    Returns:
        32-byte x-only output key
    """
    xonly = internal_pubkey[1:]
    tweak = tagged_hash("TapTweak", xonly)
    if int.from_bytes(tweak, "big") >= SECP256K1_N:
        raise ValueError("Taproot tweak out of range")

    # lift_x: the internal key is always taken with even Y
    even_key = PublicKey(b"\x02" + xonly)
    return even_key.add(tweak).format(compressed=True)[1:]


def taproot_tweak_private_key(secret: bytes) -> bytes:
    """Private key matching taproot_output_key() for this key's public key."""
    key = PrivateKey(secret)
    pubkey = key.public_key.format(compressed=True)

    secret_int = int.from_bytes(secret, "big")
    if pubkey[0] == 0x03:
        secret_int = SECP256K1_N - secret_int

    tweak = int.from_bytes(tagged_hash("TapTweak", pubkey[1:]), "big")
    tweaked = (secret_int + tweak) % SECP256K1_N
    if tweaked == 0:
        raise ValueError("Invalid tweaked key")
    return tweaked.to_bytes(32, "big")


class Bip86Descriptor:
    """
    Single-key Taproot descriptor for one keychain.

    Derivation path: m/86'/{coin_type}'/0'/{branch}/{index}
    - coin_type: 0 on mainnet, 1 on every test network
    - branch: 0 (external/receive), 1 (internal/change)
    """

    def __init__(self, master_key: HDKey, network: NetworkType, keychain: KeychainKind):
        self.network = NetworkType.parse(network)
        self.keychain = keychain
        self.coin_type = 0 if self.network == NetworkType.MAINNET else 1
        self.master_fingerprint = master_key.fingerprint

        self.account_path = f"m/86'/{self.coin_type}'/0'"
        account_key = master_key.derive(self.account_path)
        self._branch_key = account_key.derive_child(keychain.branch)
        self._account_pubkey = account_key.get_public_key_bytes()

    def key_at(self, index: int) -> HDKey:
        if not 0 <= index < HARDENED:
            raise ValueError(f"Derivation index out of range: {index}")
        return self._branch_key.derive_child(index)

    def output_key_at(self, index: int) -> bytes:
        return taproot_output_key(self.key_at(index).get_public_key_bytes())

    def script_at(self, index: int) -> bytes:
        return p2tr_script(self.output_key_at(index))

    def signing_key_at(self, index: int) -> bytes:
        """Tweaked private key that signs key-path spends of script_at(index)."""
        return taproot_tweak_private_key(self.key_at(index).get_private_key_bytes())

    def __str__(self) -> str:
        origin = f"{self.master_fingerprint.hex()}/86'/{self.coin_type}'/0'"
        return f"tr([{origin}]{self._account_pubkey.hex()}/{self.keychain.branch}/*)"
