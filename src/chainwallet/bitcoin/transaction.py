"""
Bitcoin transaction model and consensus serialization.

Txids are kept as hex strings in RPC (display) byte order and reversed when
serialized, as Bitcoin Core prints them.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

from chainwallet.bitcoin.encoding import (
    ByteReader,
    encode_var_bytes,
    encode_varint,
    hash256,
    hash_to_hex,
)
from chainwallet.errors import DecodeError

NULL_TXID = "00" * 32
NULL_VOUT = 0xFFFFFFFF


@dataclass(frozen=True, order=True)
class OutPoint:
    txid: str
    vout: int

    def serialize(self) -> bytes:
        return bytes.fromhex(self.txid)[::-1] + struct.pack("<I", self.vout)

    @property
    def is_null(self) -> bool:
        return self.txid == NULL_TXID and self.vout == NULL_VOUT

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass
class TxIn:
    prevout: OutPoint
    script_sig: bytes = b""
    sequence: int = 0xFFFFFFFF
    witness: list[bytes] = field(default_factory=list)

    def serialize(self) -> bytes:
        return (
            self.prevout.serialize()
            + encode_var_bytes(self.script_sig)
            + struct.pack("<I", self.sequence)
        )


@dataclass
class TxOut:
    value: int
    script: bytes

    def serialize(self) -> bytes:
        return struct.pack("<Q", self.value) + encode_var_bytes(self.script)


@dataclass(eq=False)
class Transaction:
    version: int
    inputs: list[TxIn]
    outputs: list[TxOut]
    locktime: int = 0

    @property
    def has_witness(self) -> bool:
        return any(inp.witness for inp in self.inputs)

    @property
    def is_coinbase(self) -> bool:
        return len(self.inputs) == 1 and self.inputs[0].prevout.is_null

    def serialize(self, include_witness: bool = True) -> bytes:
        with_witness = include_witness and self.has_witness

        result = struct.pack("<i", self.version)
        if with_witness:
            result += b"\x00\x01"

        result += encode_varint(len(self.inputs))
        for inp in self.inputs:
            result += inp.serialize()

        result += encode_varint(len(self.outputs))
        for out in self.outputs:
            result += out.serialize()

        if with_witness:
            for inp in self.inputs:
                result += encode_varint(len(inp.witness))
                for item in inp.witness:
                    result += encode_var_bytes(item)

        result += struct.pack("<I", self.locktime)
        return result

    @property
    def txid(self) -> str:
        """Double SHA256 of the non-witness serialization, display order."""
        return hash_to_hex(hash256(self.serialize(include_witness=False)))

    @property
    def wtxid(self) -> str:
        return hash_to_hex(hash256(self.serialize()))

    @property
    def weight(self) -> int:
        base_size = len(self.serialize(include_witness=False))
        total_size = len(self.serialize())
        return base_size * 3 + total_size

    @property
    def vsize(self) -> int:
        return (self.weight + 3) // 4

    @classmethod
    def read_from(cls, reader: ByteReader) -> Transaction:
        version = reader.read_i32()

        segwit = False
        if reader.peek(1) == b"\x00":
            marker_flag = reader.read(2)
            if marker_flag != b"\x00\x01":
                raise DecodeError(f"Invalid segwit marker/flag: {marker_flag.hex()}")
            segwit = True

        input_count = reader.read_varint()
        if input_count > reader.remaining:
            raise DecodeError(f"Input count {input_count} exceeds remaining data")
        inputs: list[TxIn] = []
        for _ in range(input_count):
            txid = hash_to_hex(reader.read(32))
            vout = reader.read_u32()
            script_sig = reader.read_var_bytes()
            sequence = reader.read_u32()
            inputs.append(TxIn(OutPoint(txid, vout), script_sig, sequence))

        output_count = reader.read_varint()
        if output_count > reader.remaining:
            raise DecodeError(f"Output count {output_count} exceeds remaining data")
        outputs: list[TxOut] = []
        for _ in range(output_count):
            value = reader.read_u64()
            script = reader.read_var_bytes()
            outputs.append(TxOut(value, script))

        if segwit:
            for inp in inputs:
                stack_count = reader.read_varint()
                if stack_count > reader.remaining:
                    raise DecodeError(f"Witness item count {stack_count} exceeds remaining data")
                inp.witness = [reader.read_var_bytes() for _ in range(stack_count)]
            if not any(inp.witness for inp in inputs):
                raise DecodeError("Segwit transaction without witness data")

        locktime = reader.read_u32()
        return cls(version, inputs, outputs, locktime)

    @classmethod
    def deserialize(cls, raw: bytes) -> Transaction:
        """Decode a consensus-serialized transaction; trailing bytes are an error."""
        reader = ByteReader(raw)
        tx = cls.read_from(reader)
        reader.finish()
        return tx
