"""
Consensus encoding helpers: hashes, varints and a strict finite reader.
"""

from __future__ import annotations

import hashlib
import struct

from chainwallet.errors import DecodeError


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def tagged_hash(tag: str, data: bytes) -> bytes:
    """BIP340 tagged hash: SHA256(SHA256(tag) || SHA256(tag) || data)."""
    tag_hash = hashlib.sha256(tag.encode("utf-8")).digest()
    return hashlib.sha256(tag_hash + tag_hash + data).digest()


def encode_varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + struct.pack("<H", value)
    if value <= 0xFFFFFFFF:
        return b"\xfe" + struct.pack("<I", value)
    return b"\xff" + struct.pack("<Q", value)


def encode_var_bytes(data: bytes) -> bytes:
    return encode_varint(len(data)) + data


def hash_to_hex(digest: bytes) -> str:
    """Internal byte order digest to display (RPC) order hex."""
    return digest[::-1].hex()


def hex_to_hash(value: str) -> bytes:
    """Display (RPC) order hex to internal byte order digest."""
    digest = bytes.fromhex(value)
    if len(digest) != 32:
        raise ValueError(f"Invalid hash length: {len(digest)}")
    return digest[::-1]


class ByteReader:
    """
    Reader over a finite buffer.

    Every read raises DecodeError instead of returning short data, and
    finish() rejects trailing bytes.
    """

    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def read(self, length: int) -> bytes:
        if length < 0 or self.offset + length > len(self.data):
            raise DecodeError(
                f"Unexpected end of data: wanted {length} bytes at offset {self.offset}, "
                f"{self.remaining} available"
            )
        chunk = self.data[self.offset : self.offset + length]
        self.offset += length
        return chunk

    def peek(self, length: int) -> bytes:
        return self.data[self.offset : self.offset + length]

    def read_u8(self) -> int:
        return self.read(1)[0]

    def read_u32(self) -> int:
        return struct.unpack("<I", self.read(4))[0]

    def read_i32(self) -> int:
        return struct.unpack("<i", self.read(4))[0]

    def read_u64(self) -> int:
        return struct.unpack("<Q", self.read(8))[0]

    def read_varint(self) -> int:
        first = self.read_u8()
        if first < 0xFD:
            return first
        if first == 0xFD:
            value = struct.unpack("<H", self.read(2))[0]
            minimum = 0xFD
        elif first == 0xFE:
            value = struct.unpack("<I", self.read(4))[0]
            minimum = 0x10000
        else:
            value = struct.unpack("<Q", self.read(8))[0]
            minimum = 0x100000000
        if value < minimum:
            raise DecodeError(f"Non-canonical varint at offset {self.offset}")
        return value

    def read_var_bytes(self) -> bytes:
        length = self.read_varint()
        if length > self.remaining:
            raise DecodeError(f"Length prefix {length} exceeds remaining {self.remaining} bytes")
        return self.read(length)

    def finish(self) -> None:
        if self.remaining:
            raise DecodeError(f"{self.remaining} trailing bytes after end of data")
