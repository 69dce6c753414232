"""
Bitcoin transaction signing utilities for P2TR key-path inputs.
"""

from __future__ import annotations

import struct

from coincurve import PrivateKey
from coincurve.keys import PublicKeyXOnly

from chainwallet.bitcoin.encoding import encode_var_bytes, sha256, tagged_hash
from chainwallet.bitcoin.transaction import Transaction, TxOut
from chainwallet.errors import SignTxError

SIGHASH_DEFAULT = 0x00
SIGHASH_ALL = 0x01


def compute_sighash_taproot(
    tx: Transaction,
    input_index: int,
    prevouts: list[TxOut],
    sighash_type: int = SIGHASH_DEFAULT,
) -> bytes:
    """
    BIP341 signature hash for a key-path spend.

    Args:
        tx: The transaction being signed
        input_index: Index of the input to sign
        prevouts: The outputs spent by every input, in input order
        sighash_type: SIGHASH_DEFAULT or SIGHASH_ALL

    Returns:
        32-byte message to sign
    """
    if input_index >= len(tx.inputs):
        raise SignTxError("Input index out of range")
    if len(prevouts) != len(tx.inputs):
        raise SignTxError(f"Expected {len(tx.inputs)} prevouts, got {len(prevouts)}")
    if sighash_type not in (SIGHASH_DEFAULT, SIGHASH_ALL):
        raise SignTxError(f"Unsupported sighash type: {sighash_type}")

    sha_prevouts = sha256(b"".join(inp.prevout.serialize() for inp in tx.inputs))
    sha_amounts = sha256(b"".join(struct.pack("<Q", out.value) for out in prevouts))
    sha_scriptpubkeys = sha256(b"".join(encode_var_bytes(out.script) for out in prevouts))
    sha_sequences = sha256(b"".join(struct.pack("<I", inp.sequence) for inp in tx.inputs))
    sha_outputs = sha256(b"".join(out.serialize() for out in tx.outputs))

    spend_type = 0x00  # key path, no annex

    sig_msg = (
        bytes([0x00, sighash_type])  # epoch, hash type
        + struct.pack("<i", tx.version)
        + struct.pack("<I", tx.locktime)
        + sha_prevouts
        + sha_amounts
        + sha_scriptpubkeys
        + sha_sequences
        + sha_outputs
        + bytes([spend_type])
        + struct.pack("<I", input_index)
    )
    return tagged_hash("TapSighash", sig_msg)


def sign_p2tr_input(
    tx: Transaction,
    input_index: int,
    prevouts: list[TxOut],
    tweaked_secret: bytes,
    sighash_type: int = SIGHASH_DEFAULT,
) -> bytes:
    """Sign a P2TR key-path input using coincurve.

    Args:
        tx: The transaction to sign
        input_index: Index of the input to sign
        prevouts: The outputs spent by every input, in input order
        tweaked_secret: 32-byte private key already tweaked for the output key
        sighash_type: Sighash type (default SIGHASH_DEFAULT)

    Returns:
        64-byte Schnorr signature, with the sighash byte appended unless DEFAULT
    """
    sighash = compute_sighash_taproot(tx, input_index, prevouts, sighash_type)

    # Zero auxiliary randomness keeps signatures reproducible
    signature = PrivateKey(tweaked_secret).sign_schnorr(sighash, bytes(32))

    if sighash_type == SIGHASH_DEFAULT:
        return signature
    return signature + bytes([sighash_type])


def verify_p2tr_input(tx: Transaction, input_index: int, prevouts: list[TxOut]) -> bool:
    """Check the key-path witness of an input against the output it spends."""
    witness = tx.inputs[input_index].witness
    script = prevouts[input_index].script
    if len(witness) != 1 or len(script) != 34:
        return False

    signature = witness[0]
    if len(signature) == 64:
        sighash_type = SIGHASH_DEFAULT
    elif len(signature) == 65 and signature[64] != SIGHASH_DEFAULT:
        sighash_type = signature[64]
        signature = signature[:64]
    else:
        return False

    sighash = compute_sighash_taproot(tx, input_index, prevouts, sighash_type)
    return PublicKeyXOnly(script[2:]).verify(signature, sighash)


def sign_transaction(
    tx: Transaction,
    prevouts: list[TxOut],
    signing_keys: list[bytes | None],
) -> int:
    """
    Add key-path witnesses to every input that has a signing key.

    Args:
        tx: The unsigned transaction, modified in place
        prevouts: The outputs spent by every input, in input order
        signing_keys: Tweaked private key per input, or None to leave it unsigned

    Returns:
        Number of inputs signed
    """
    if len(signing_keys) != len(tx.inputs):
        raise SignTxError(f"Expected {len(tx.inputs)} signing keys, got {len(signing_keys)}")

    signed = 0
    for index, secret in enumerate(signing_keys):
        if secret is None:
            continue
        try:
            signature = sign_p2tr_input(tx, index, prevouts, secret)
        except ValueError as e:
            raise SignTxError(f"Failed to sign input {index}: {e}") from e
        tx.inputs[index].witness = [signature]
        signed += 1
    return signed


def is_finalized(tx: Transaction, prevouts: list[TxOut]) -> bool:
    """True when every input carries a valid key-path witness."""
    return all(verify_p2tr_input(tx, i, prevouts) for i in range(len(tx.inputs)))
