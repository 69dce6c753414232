"""
Bitcoin block header and block wire format.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

from chainwallet.bitcoin.encoding import ByteReader, encode_varint, hash256, hash_to_hex
from chainwallet.bitcoin.transaction import Transaction
from chainwallet.errors import DecodeError

HEADER_SIZE = 80


@dataclass
class BlockHeader:
    version: int
    prev_hash: str
    merkle_root: str
    time: int
    bits: int
    nonce: int

    def serialize(self) -> bytes:
        return (
            struct.pack("<i", self.version)
            + bytes.fromhex(self.prev_hash)[::-1]
            + bytes.fromhex(self.merkle_root)[::-1]
            + struct.pack("<III", self.time, self.bits, self.nonce)
        )

    @property
    def hash(self) -> str:
        return hash_to_hex(hash256(self.serialize()))

    @classmethod
    def read_from(cls, reader: ByteReader) -> BlockHeader:
        version = reader.read_i32()
        prev_hash = hash_to_hex(reader.read(32))
        merkle_root = hash_to_hex(reader.read(32))
        time = reader.read_u32()
        bits = reader.read_u32()
        nonce = reader.read_u32()
        return cls(version, prev_hash, merkle_root, time, bits, nonce)


@dataclass
class Block:
    header: BlockHeader
    transactions: list[Transaction] = field(default_factory=list)

    @property
    def hash(self) -> str:
        return self.header.hash

    @property
    def prev_hash(self) -> str:
        return self.header.prev_hash

    def serialize(self) -> bytes:
        result = self.header.serialize() + encode_varint(len(self.transactions))
        for tx in self.transactions:
            result += tx.serialize()
        return result

    @classmethod
    def deserialize(cls, raw: bytes) -> Block:
        """
        Decode a consensus-serialized block.

        The whole buffer must be consumed: truncated data and trailing bytes
        both raise DecodeError.
        """
        reader = ByteReader(raw)
        header = BlockHeader.read_from(reader)
        tx_count = reader.read_varint()
        if tx_count == 0:
            raise DecodeError("Block contains no transactions")
        if tx_count > reader.remaining:
            raise DecodeError(f"Transaction count {tx_count} exceeds remaining data")
        transactions = [Transaction.read_from(reader) for _ in range(tx_count)]
        reader.finish()
        return cls(header, transactions)
