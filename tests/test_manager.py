"""
Tests for settings and the wallet manager.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from chainwallet.bitcoin.address import address_to_script
from chainwallet.config import WalletSettings, get_settings
from chainwallet.errors import LoadMismatchError
from chainwallet.wallet.manager import WalletManager, wallet_dir, wallet_exists


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch) -> None:
    # Keep stray .env files and CHAINWALLET_ variables out of the settings
    monkeypatch.chdir(tmp_path)
    for name in ("DATA_DIR", "NETWORK", "LOOKAHEAD", "GENESIS_HASH", "LOG_LEVEL"):
        monkeypatch.delenv(f"CHAINWALLET_{name}", raising=False)


@pytest.fixture
def settings(tmp_path: Path) -> WalletSettings:
    return get_settings(data_dir=tmp_path / "node", network="regtest", lookahead=20)


class TestSettings:
    def test_defaults(self) -> None:
        settings = WalletSettings()
        assert settings.network == "mainnet"
        assert settings.lookahead == 101
        assert settings.genesis_hash is None

    def test_wallet_path(self, settings: WalletSettings, tmp_path: Path) -> None:
        assert settings.wallet_path() == tmp_path / "node" / "bdkwallet" / "default.dat"

    def test_environment(self, monkeypatch, tmp_path: Path) -> None:
        monkeypatch.setenv("CHAINWALLET_NETWORK", "signet")
        monkeypatch.setenv("CHAINWALLET_DATA_DIR", str(tmp_path / "env"))
        monkeypatch.setenv("CHAINWALLET_LOOKAHEAD", "7")
        settings = get_settings()
        assert settings.network == "signet"
        assert settings.data_dir == tmp_path / "env"
        assert settings.lookahead == 7

    def test_overrides_beat_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("CHAINWALLET_NETWORK", "signet")
        assert get_settings(network="testnet").network == "testnet"

    def test_dotenv_file(self, tmp_path: Path) -> None:
        (tmp_path / ".env").write_text("CHAINWALLET_LOG_LEVEL=DEBUG\n")
        assert get_settings().log_level == "DEBUG"

    def test_invalid_network(self) -> None:
        with pytest.raises(ValidationError):
            get_settings(network="moonnet")

    def test_negative_lookahead(self) -> None:
        with pytest.raises(ValidationError):
            get_settings(lookahead=-1)


class TestWalletManager:
    def test_creates_then_loads(self, settings: WalletSettings) -> None:
        assert not wallet_exists(settings.data_dir)

        manager = WalletManager.open(settings)
        assert manager.db_path == settings.wallet_path()
        assert wallet_exists(settings.data_dir)
        words = manager.wallet.mnemonic_words()
        manager.wallet.reveal_next_address()
        manager.close()

        reopened = WalletManager.open(settings)
        try:
            assert reopened.wallet.mnemonic_words() == words
            assert reopened.wallet.reveal_next_address().index == 1
        finally:
            reopened.close()

    def test_network_mismatch(self, settings: WalletSettings) -> None:
        WalletManager.open(settings).close()
        mainnet = get_settings(data_dir=settings.data_dir, network="mainnet")
        with pytest.raises(LoadMismatchError):
            WalletManager.open(mainnet)

    def test_wallet_dir(self, tmp_path: Path) -> None:
        assert wallet_dir(tmp_path) == tmp_path / "bdkwallet"
        (tmp_path / "bdkwallet").mkdir()
        assert wallet_exists(tmp_path)


class TestHandlers:
    @pytest.fixture
    def manager(self, settings: WalletSettings):
        m = WalletManager.open(settings)
        yield m
        m.close()

    def test_block_connected(self, manager: WalletManager, factory) -> None:
        address = manager.wallet.reveal_next_address()
        tx = factory.pay(address_to_script(address.address, manager.wallet.network), 50_000)
        height, raw = factory.next_block(tx)
        assert manager.handle_block_connected(height, raw) == [tx.txid]

    def test_bad_block_is_logged_not_raised(self, manager: WalletManager, factory) -> None:
        assert manager.handle_block_connected(1, b"not a block") == []
        manager.handle_block_connected(*factory.next_block())
        factory.next_block()
        # Gap at height 2
        assert manager.handle_block_connected(*factory.next_block()) == []
        assert manager.wallet.tip_height == 1

    def test_mempool(self, manager: WalletManager, factory) -> None:
        address = manager.wallet.reveal_next_address()
        tx = factory.pay(address_to_script(address.address, manager.wallet.network), 50_000)
        assert manager.notify_new_transactions([(tx.serialize(), 10)]) == [tx.txid]
        assert manager.notify_new_transactions([(b"\x00", 10)]) == []

    def test_block_disconnected(self, manager: WalletManager, factory) -> None:
        address = manager.wallet.reveal_next_address()
        tx = factory.pay(address_to_script(address.address, manager.wallet.network), 50_000)
        manager.handle_block_connected(*factory.next_block(tx))
        assert manager.handle_block_disconnected(1) == [tx.txid]
        assert manager.handle_block_disconnected(0) == []
