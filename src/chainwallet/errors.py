"""
Wallet error taxonomy.

Every fallible wallet operation raises a subclass of WalletError. The
intermediate classes group errors by the kind of operation that failed, so
callers can catch e.g. every LoadError without listing the individual causes.
"""

from __future__ import annotations


class WalletError(Exception):
    pass


# Creation


class CreateError(WalletError):
    pass


class ParseNetworkError(CreateError):
    pass


class ParseGenesisHashError(CreateError):
    pass


class CreateDatabaseError(CreateError):
    pass


class WalletInitError(CreateError):
    pass


# Loading


class LoadError(WalletError):
    pass


class LoadDatabaseError(LoadError):
    pass


class ReadHeaderError(LoadError):
    """The header record is missing or truncated."""


class ParseHeaderError(LoadError):
    """The header record has the right length but an invalid body."""


class HeaderVersionError(LoadError):
    def __init__(self, message: str = "wallet header version unsupported"):
        super().__init__(message)


class LoadMismatchError(LoadError):
    """Persisted wallet does not match the network or genesis expected by the caller."""


# Chain updates


class ChainError(WalletError):
    pass


class DecodeError(ChainError):
    """Raw block or transaction bytes could not be decoded."""


class CannotConnectError(ChainError):
    """
    A block does not link to the wallet's checkpoint chain.

    try_include_height is the height the caller should supply (or disconnect
    from) before retrying.
    """

    def __init__(self, try_include_height: int, message: str | None = None):
        self.try_include_height = try_include_height
        if message is None:
            message = (
                f"block cannot connect with wallet's chain, "
                f"try include height {try_include_height}"
            )
        super().__init__(message)


class InvalidHeightError(ChainError):
    """Height outside the range the operation accepts."""


# Persistence


class DatabaseError(WalletError):
    pass


class DatabaseWriteError(DatabaseError):
    pass


# Transaction building


class CreateTxError(WalletError):
    pass


class NoRecipientsError(CreateTxError):
    def __init__(self, message: str = "must have at least one recipient"):
        super().__init__(message)


class InvalidAddressError(CreateTxError):
    pass


class OutputBelowDustError(CreateTxError):
    def __init__(self, value: int, threshold: int):
        self.value = value
        self.threshold = threshold
        super().__init__(f"Output value {value} is below dust threshold {threshold}")


class InsufficientFundsError(CreateTxError):
    def __init__(self, needed: int, available: int):
        self.needed = needed
        self.available = available
        super().__init__(f"Insufficient funds: need {needed}, have {available}")


class InvalidFeeRateError(CreateTxError):
    def __init__(self, fee_rate: int):
        self.fee_rate = fee_rate
        super().__init__(f"Invalid fee rate: {fee_rate}")


class SignTxError(CreateTxError):
    pass
