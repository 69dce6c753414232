"""
Core enums shared by every chainwallet module.
"""

from __future__ import annotations

from enum import Enum


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"

    @property
    def header_id(self) -> int:
        """Numeric identifier written into the wallet header record."""
        return _NETWORK_IDS[self]

    @classmethod
    def from_header_id(cls, value: int) -> NetworkType:
        for network, network_id in _NETWORK_IDS.items():
            if network_id == value:
                return network
        raise ValueError(f"Unknown network id: {value}")

    @classmethod
    def parse(cls, value: str | NetworkType) -> NetworkType:
        """
        Parse a network name.

        Accepts the enum values plus "bitcoin" as an alias for mainnet,
        case-insensitively.
        """
        if isinstance(value, NetworkType):
            return value
        name = value.strip().lower()
        if name == "bitcoin":
            return cls.MAINNET
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unknown network: {value!r}") from None


_NETWORK_IDS: dict[NetworkType, int] = {
    NetworkType.MAINNET: 0,
    NetworkType.TESTNET: 1,
    NetworkType.SIGNET: 2,
    NetworkType.REGTEST: 3,
}


class KeychainKind(str, Enum):
    EXTERNAL = "external"
    INTERNAL = "internal"

    @property
    def branch(self) -> int:
        """BIP32 change branch for this keychain (0 receive, 1 change)."""
        return 0 if self is KeychainKind.EXTERNAL else 1
