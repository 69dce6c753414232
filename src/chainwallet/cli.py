"""
chainwallet CLI - Create a wallet, feed it blocks and mempool transactions, and spend.
"""

from __future__ import annotations

import sys
import time
from pathlib import Path

import typer
from loguru import logger

from chainwallet.config import WalletSettings, get_settings
from chainwallet.errors import WalletError
from chainwallet.models import KeychainKind
from chainwallet.wallet.models import Recipient
from chainwallet.wallet.service import WalletService

app = typer.Typer(
    name="chainwallet",
    help="Local Bitcoin wallet engine",
    add_completion=False,
)


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


DataDirOption = typer.Option(None, "--data-dir", "-d", help="Data directory")
NetworkOption = typer.Option(None, "--network", "-n", help="Bitcoin network")
LogLevelOption = typer.Option(None, "--log-level", "-l")


def _settings(
    data_dir: Path | None, network: str | None, log_level: str | None
) -> WalletSettings:
    overrides = {"data_dir": data_dir, "network": network, "log_level": log_level}
    try:
        settings = get_settings(**{k: v for k, v in overrides.items() if v is not None})
    except ValueError as e:
        typer.echo(f"Invalid settings: {e}", err=True)
        raise typer.Exit(1)
    setup_logging(settings.log_level)
    return settings


def _open_wallet(settings: WalletSettings, network: str | None) -> WalletService:
    """Load the configured wallet; the network is only checked when given explicitly."""
    path = settings.wallet_path()
    if not path.exists():
        logger.error(f"No wallet at {path}; run 'chainwallet create' first")
        raise typer.Exit(1)
    try:
        return WalletService.load(
            path,
            genesis_hash=settings.genesis_hash,
            network=network,
            lookahead=settings.lookahead,
        )
    except WalletError as e:
        logger.error(f"Failed to load wallet: {e}")
        raise typer.Exit(1)


def _read_hex(value: str) -> bytes:
    try:
        return bytes.fromhex(value.strip())
    except ValueError:
        logger.error("Expected hex-encoded data")
        raise typer.Exit(1)


def _parse_recipient(value: str) -> Recipient:
    address, sep, amount = value.rpartition(":")
    if not sep:
        logger.error(f"Recipient must be ADDRESS:AMOUNT, got {value!r}")
        raise typer.Exit(1)
    try:
        return Recipient(address=address, amount=int(amount))
    except ValueError as e:
        logger.error(f"Invalid recipient {value!r}: {e}")
        raise typer.Exit(1)


def _format_sats(value: int) -> str:
    return f"{value:>15,} sats ({value / 1e8:.8f} BTC)"


@app.command()
def create(
    data_dir: Path | None = DataDirOption,
    network: str | None = NetworkOption,
    mnemonic: str | None = typer.Option(
        None, "--mnemonic", envvar="MNEMONIC", help="Restore from a 12-word BIP39 mnemonic"
    ),
    log_level: str | None = LogLevelOption,
) -> None:
    """Create a new wallet in the data directory."""
    settings = _settings(data_dir, network, log_level)
    path = settings.wallet_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        wallet = WalletService.create(
            path,
            settings.network,
            genesis_hash=settings.genesis_hash,
            lookahead=settings.lookahead,
            mnemonic=mnemonic,
        )
    except WalletError as e:
        logger.error(f"Failed to create wallet: {e}")
        raise typer.Exit(1)

    with wallet:
        address = wallet.last_unused_address()
        typer.echo(f"Created {wallet.network.value} wallet at {path}")
        typer.echo(f"First receive address: {address.address}")
        if mnemonic is None:
            typer.echo("\n" + "=" * 80)
            typer.echo("WALLET MNEMONIC - WRITE THIS DOWN AND KEEP IT SAFE!")
            typer.echo("=" * 80)
            typer.echo(f"\n{' '.join(wallet.mnemonic_words())}\n")
            typer.echo("=" * 80 + "\n")


@app.command()
def info(
    data_dir: Path | None = DataDirOption,
    network: str | None = NetworkOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Show wallet network, chain tip and transaction count."""
    settings = _settings(data_dir, network, log_level)
    with _open_wallet(settings, network) as wallet:
        tip = wallet.tip
        typer.echo(f"Wallet:       {settings.wallet_path()}")
        typer.echo(f"Network:      {wallet.network.value}")
        typer.echo(f"Genesis:      {wallet.genesis_hash}")
        typer.echo(f"Tip:          {tip.height} ({tip.hash})")
        typer.echo(f"Transactions: {len(wallet.transactions())}")


@app.command()
def address(
    fresh: bool = typer.Option(False, "--fresh", help="Reveal a never-used address"),
    peek: int | None = typer.Option(None, "--peek", help="Show the address at this index"),
    change: bool = typer.Option(False, "--change", help="Use the internal keychain"),
    data_dir: Path | None = DataDirOption,
    network: str | None = NetworkOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Show a receive address (the lowest unused one by default)."""
    settings = _settings(data_dir, network, log_level)
    keychain = KeychainKind.INTERNAL if change else KeychainKind.EXTERNAL
    with _open_wallet(settings, network) as wallet:
        try:
            if peek is not None:
                entry = wallet.peek_address(peek, keychain)
            elif fresh:
                entry = wallet.reveal_next_address(keychain)
            else:
                entry = wallet.last_unused_address(keychain)
        except (WalletError, ValueError) as e:
            logger.error(f"Failed to derive address: {e}")
            raise typer.Exit(1)
        typer.echo(f"{entry.keychain.value}/{entry.index}: {entry.address}")


@app.command()
def balance(
    data_dir: Path | None = DataDirOption,
    network: str | None = NetworkOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Show the wallet balance."""
    settings = _settings(data_dir, network, log_level)
    with _open_wallet(settings, network) as wallet:
        bal = wallet.balance()
        typer.echo(f"Confirmed:         {_format_sats(bal.confirmed)}")
        typer.echo(f"Trusted pending:   {_format_sats(bal.trusted_pending)}")
        typer.echo(f"Untrusted pending: {_format_sats(bal.untrusted_pending)}")
        typer.echo(f"Immature:          {_format_sats(bal.immature)}")
        typer.echo(f"Total:             {_format_sats(bal.total)}")


@app.command()
def utxos(
    data_dir: Path | None = DataDirOption,
    network: str | None = NetworkOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """List unspent wallet outputs."""
    settings = _settings(data_dir, network, log_level)
    with _open_wallet(settings, network) as wallet:
        entries = wallet.utxos()
        if not entries:
            typer.echo("No UTXOs")
            return
        for utxo in entries:
            typer.echo(
                f"{utxo.txid}:{utxo.vout}  {utxo.value:>15,} sats  "
                f"{utxo.confirmations:>6} conf  {utxo.keychain.value}/{utxo.derivation_index}"
            )


@app.command()
def history(
    data_dir: Path | None = DataDirOption,
    network: str | None = NetworkOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """List wallet transactions, most confirmed first."""
    settings = _settings(data_dir, network, log_level)
    with _open_wallet(settings, network) as wallet:
        entries = wallet.transactions()
        if not entries:
            typer.echo("No transactions")
            return
        for tx in entries:
            fee = f"fee {tx.fee:,}" if tx.fee is not None else "fee ?"
            typer.echo(f"{tx.txid}  {tx.net:>+15,} sats  {tx.confirmations:>6} conf  {fee}")


@app.command()
def mnemonic(
    data_dir: Path | None = DataDirOption,
    network: str | None = NetworkOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Print the wallet's BIP39 recovery phrase."""
    settings = _settings(data_dir, network, log_level)
    with _open_wallet(settings, network) as wallet:
        typer.echo(" ".join(wallet.mnemonic_words()))


@app.command("apply-block")
def apply_block(
    height: int = typer.Argument(..., help="Block height"),
    block_hex: str = typer.Argument(..., help="Hex-encoded block"),
    data_dir: Path | None = DataDirOption,
    network: str | None = NetworkOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Apply a block to the wallet."""
    settings = _settings(data_dir, network, log_level)
    raw = _read_hex(block_hex)
    with _open_wallet(settings, network) as wallet:
        try:
            txids = wallet.apply_block(height, raw)
        except WalletError as e:
            logger.error(f"Failed to apply block: {e}")
            raise typer.Exit(1)
        for txid in txids:
            typer.echo(txid)


@app.command("apply-mempool")
def apply_mempool(
    tx_hex: list[str] = typer.Argument(..., help="Hex-encoded transactions"),
    first_seen: int | None = typer.Option(
        None, "--first-seen", help="Unix time the transactions were seen (default: now)"
    ),
    data_dir: Path | None = DataDirOption,
    network: str | None = NetworkOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Apply unconfirmed transactions to the wallet."""
    settings = _settings(data_dir, network, log_level)
    seen = first_seen if first_seen is not None else int(time.time())
    batch = [(_read_hex(value), seen) for value in tx_hex]
    with _open_wallet(settings, network) as wallet:
        try:
            txids = wallet.apply_mempool(batch)
        except WalletError as e:
            logger.error(f"Failed to apply mempool transactions: {e}")
            raise typer.Exit(1)
        for txid in txids:
            typer.echo(txid)


@app.command()
def disconnect(
    height: int = typer.Argument(..., help="Lowest height to disconnect"),
    data_dir: Path | None = DataDirOption,
    network: str | None = NetworkOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Disconnect every block at and above a height."""
    settings = _settings(data_dir, network, log_level)
    with _open_wallet(settings, network) as wallet:
        try:
            reverted = wallet.disconnect_from(height)
        except WalletError as e:
            logger.error(f"Failed to disconnect blocks: {e}")
            raise typer.Exit(1)
        typer.echo(f"Tip is now {wallet.tip_height}; {len(reverted)} transaction(s) unconfirmed")


@app.command()
def send(
    to: list[str] = typer.Option(..., "--to", "-t", help="Recipient as ADDRESS:AMOUNT_SATS"),
    fee_rate: int = typer.Option(1, "--fee-rate", "-f", help="Fee rate in sat/vB"),
    data_dir: Path | None = DataDirOption,
    network: str | None = NetworkOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Build and sign a transaction; prints the raw transaction hex."""
    settings = _settings(data_dir, network, log_level)
    recipients = [_parse_recipient(value) for value in to]
    with _open_wallet(settings, network) as wallet:
        try:
            raw = wallet.build_transaction(fee_rate, recipients)
        except WalletError as e:
            logger.error(f"Failed to build transaction: {e}")
            raise typer.Exit(1)
        typer.echo(raw.hex())


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
