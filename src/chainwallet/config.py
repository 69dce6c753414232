"""
Configuration management using pydantic-settings.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from chainwallet.constants import DEFAULT_LOOKAHEAD, DEFAULT_WALLET_DIR, DEFAULT_WALLET_FILENAME


class WalletSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CHAINWALLET_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    data_dir: Path = Path.home() / ".chainwallet"
    network: Literal["mainnet", "testnet", "signet", "regtest"] = "mainnet"
    lookahead: int = Field(DEFAULT_LOOKAHEAD, ge=0)

    # Defaults to the network's genesis block
    genesis_hash: str | None = None

    log_level: str = "INFO"

    def wallet_dir(self) -> Path:
        return self.data_dir / DEFAULT_WALLET_DIR

    def wallet_path(self) -> Path:
        return self.wallet_dir() / DEFAULT_WALLET_FILENAME


def get_settings(**overrides: object) -> WalletSettings:
    return WalletSettings(**overrides)
