"""
Bitcoin address encoding and decoding.

Supports:
- P2TR (bech32m, witness v1)
- P2WPKH / P2WSH (bech32, witness v0)
- P2PKH / P2SH (base58check)
"""

from __future__ import annotations

import base58
import bech32

from chainwallet.constants import BASE58_VERSIONS, BECH32_HRP
from chainwallet.errors import InvalidAddressError
from chainwallet.models import NetworkType


def p2tr_script(output_key: bytes) -> bytes:
    """Create P2TR scriptPubKey (OP_1 <32-byte-xonly-key>)"""
    if len(output_key) != 32:
        raise ValueError(f"Invalid x-only key length: {len(output_key)}")
    return bytes([0x51, 0x20]) + output_key


def is_p2tr_script(script: bytes) -> bool:
    return len(script) == 34 and script[0] == 0x51 and script[1] == 0x20


def _witness_program(script: bytes) -> tuple[int, bytes] | None:
    """Split a segwit scriptPubKey into (version, program), or None."""
    if len(script) < 4 or len(script) > 42:
        return None
    if script[0] == 0x00:
        version = 0
    elif 0x51 <= script[0] <= 0x60:
        version = script[0] - 0x50
    else:
        return None
    if script[1] != len(script) - 2:
        return None
    return version, script[2:]


def script_to_address(script: bytes, network: NetworkType) -> str:
    """Convert a scriptPubKey to its address string on the given network."""
    network = NetworkType.parse(network)

    witness = _witness_program(script)
    if witness is not None:
        version, program = witness
        result = bech32.encode(BECH32_HRP[network], version, program)
        if result is None:
            raise ValueError(f"Failed to encode witness program: {script.hex()}")
        return result

    p2pkh_version, p2sh_version = BASE58_VERSIONS[network]

    # OP_DUP OP_HASH160 <20> OP_EQUALVERIFY OP_CHECKSIG
    if len(script) == 25 and script[:3] == b"\x76\xa9\x14" and script[23:] == b"\x88\xac":
        return base58.b58encode_check(bytes([p2pkh_version]) + script[3:23]).decode("ascii")

    # OP_HASH160 <20> OP_EQUAL
    if len(script) == 23 and script[:2] == b"\xa9\x14" and script[22] == 0x87:
        return base58.b58encode_check(bytes([p2sh_version]) + script[2:22]).decode("ascii")

    raise ValueError(f"Unsupported scriptPubKey: {script.hex()}")


def address_to_script(address: str, network: NetworkType) -> bytes:
    """
    Convert an address to scriptPubKey, requiring it to belong to network.

    Raises:
        InvalidAddressError: if the address does not decode or is for
            another network
    """
    network = NetworkType.parse(network)
    hrp = BECH32_HRP[network]

    lowered = address.lower()
    if lowered.startswith(("bc1", "tb1", "bcrt1")):
        if not lowered.startswith(hrp + "1"):
            raise InvalidAddressError(
                f"Address {address} is not valid for network {network.value}"
            )

        witver, witprog = bech32.decode(hrp, address)
        if witver is None or witprog is None:
            raise InvalidAddressError(f"Invalid bech32 address: {address}")

        program = bytes(witprog)
        if witver == 0:
            if len(program) not in (20, 32):
                raise InvalidAddressError(f"Invalid witness v0 program length: {len(program)}")
            return bytes([0x00, len(program)]) + program
        return bytes([0x50 + witver, len(program)]) + program

    try:
        decoded = base58.b58decode_check(address)
    except ValueError as e:
        raise InvalidAddressError(f"Invalid address {address}: {e}") from e

    if len(decoded) != 21:
        raise InvalidAddressError(f"Invalid base58 payload length: {len(decoded)}")

    version = decoded[0]
    payload = decoded[1:]
    p2pkh_version, p2sh_version = BASE58_VERSIONS[network]

    if version == p2pkh_version:
        return bytes([0x76, 0xA9, 0x14]) + payload + bytes([0x88, 0xAC])
    if version == p2sh_version:
        return bytes([0xA9, 0x14]) + payload + bytes([0x87])

    raise InvalidAddressError(f"Address {address} is not valid for network {network.value}")
