"""
Transaction builder: coin selection, fee estimation and the unsigned
transaction template.

The builder holds no wallet state. Given the same UTXOs, fee rate and
recipients it always produces the same transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from chainwallet.bitcoin.encoding import encode_varint
from chainwallet.bitcoin.transaction import Transaction, TxIn, TxOut
from chainwallet.constants import COINBASE_MATURITY, DEFAULT_DUST_THRESHOLD, SEQUENCE_RBF
from chainwallet.errors import (
    InsufficientFundsError,
    InvalidFeeRateError,
    NoRecipientsError,
    OutputBelowDustError,
)
from chainwallet.wallet.models import CoinSelection, UTXOInfo

# Version, locktime (4 bytes each) plus the segwit marker and flag (witness data)
TX_OVERHEAD_WEIGHT = (4 + 4) * 4 + 2

# Outpoint, empty scriptSig, sequence; witness: item count, length, 64-byte signature
P2TR_INPUT_WEIGHT = (32 + 4 + 1 + 4) * 4 + (1 + 1 + 64)


def output_weight(script: bytes) -> int:
    return (8 + len(encode_varint(len(script))) + len(script)) * 4


def estimate_weight(num_inputs: int, output_scripts: list[bytes]) -> int:
    """Weight of a transaction spending num_inputs P2TR key-path inputs."""
    return (
        TX_OVERHEAD_WEIGHT
        + len(encode_varint(num_inputs)) * 4
        + len(encode_varint(len(output_scripts))) * 4
        + num_inputs * P2TR_INPUT_WEIGHT
        + sum(output_weight(script) for script in output_scripts)
    )


def calculate_tx_fee(num_inputs: int, output_scripts: list[bytes], fee_rate: int) -> int:
    """
    Calculate transaction fee based on estimated vsize.

    P2TR key-path inputs: 57.5 vbytes each
    P2TR outputs: 43 vbytes, P2WPKH outputs: 31 vbytes
    Overhead: ~10.5 vbytes
    """
    vsize = (estimate_weight(num_inputs, output_scripts) + 3) // 4
    return vsize * fee_rate


class CoinSelector(Protocol):
    """Orders candidate UTXOs; the builder takes them in this order until funded."""

    def order(self, candidates: list[UTXOInfo]) -> list[UTXOInfo]: ...


class LargestFirst:
    """Spend the largest outputs first, keeping the input count low."""

    def order(self, candidates: list[UTXOInfo]) -> list[UTXOInfo]:
        return sorted(candidates, key=lambda u: (-u.value, u.txid, u.vout))


class OldestFirst:
    """Spend the most confirmed outputs first."""

    def order(self, candidates: list[UTXOInfo]) -> list[UTXOInfo]:
        return sorted(candidates, key=lambda u: (-u.confirmations, u.txid, u.vout))


@dataclass
class TxTemplate:
    """Unsigned transaction plus what is needed to sign it."""

    tx: Transaction
    selection: CoinSelection
    inputs: list[UTXOInfo]  # in transaction input order
    change_vout: int | None

    @property
    def prevouts(self) -> list[TxOut]:
        return [TxOut(u.value, u.script) for u in self.inputs]

    @property
    def fee(self) -> int:
        return self.selection.fee


class TransactionBuilder:
    def __init__(
        self,
        selector: CoinSelector | None = None,
        dust_threshold: int = DEFAULT_DUST_THRESHOLD,
        coinbase_maturity: int = COINBASE_MATURITY,
    ):
        self.selector = selector or LargestFirst()
        self.dust_threshold = dust_threshold
        self.coinbase_maturity = coinbase_maturity

    def is_spendable(self, utxo: UTXOInfo) -> bool:
        return not (utxo.is_coinbase and utxo.confirmations < self.coinbase_maturity)

    def select_coins(
        self,
        utxos: list[UTXOInfo],
        fee_rate: int,
        output_scripts: list[bytes],
        target: int,
        change_script: bytes,
    ) -> tuple[CoinSelection, bool]:
        """
        Take UTXOs in selector order until they pay target plus fee.

        Returns:
            (selection, has_change)

        Raises:
            InsufficientFundsError: if all candidates together cannot pay
        """
        candidates = self.selector.order([u for u in utxos if self.is_spendable(u)])

        selected: list[UTXOInfo] = []
        total = 0
        for utxo in candidates:
            selected.append(utxo)
            total += utxo.value

            fee = calculate_tx_fee(len(selected), output_scripts, fee_rate)
            if total < target + fee:
                continue

            fee_with_change = calculate_tx_fee(
                len(selected), output_scripts + [change_script], fee_rate
            )
            change = total - target - fee_with_change
            if change > self.dust_threshold:
                return CoinSelection(selected, total, change, fee_with_change), True

            # Leftover too small for a change output goes to the miner
            return CoinSelection(selected, total, 0, total - target), False

        needed = target + calculate_tx_fee(max(len(candidates), 1), output_scripts, fee_rate)
        raise InsufficientFundsError(needed, total)

    def build(
        self,
        utxos: list[UTXOInfo],
        fee_rate: int,
        recipients: list[tuple[bytes, int]],
        change_script: bytes,
        locktime: int = 0,
    ) -> TxTemplate:
        """
        Build an unsigned transaction paying recipients from utxos.

        Args:
            utxos: Candidate wallet outputs
            fee_rate: Fee rate in sat/vbyte
            recipients: (scriptPubKey, amount) pairs
            change_script: Script for the change output, if one is needed
            locktime: nLockTime of the transaction

        Returns:
            TxTemplate with inputs and outputs sorted per BIP69
        """
        if not recipients:
            raise NoRecipientsError()
        if fee_rate < 0:
            raise InvalidFeeRateError(fee_rate)

        for _, amount in recipients:
            if amount < self.dust_threshold:
                raise OutputBelowDustError(amount, self.dust_threshold)

        target = sum(amount for _, amount in recipients)
        output_scripts = [script for script, _ in recipients]
        selection, has_change = self.select_coins(
            utxos, fee_rate, output_scripts, target, change_script
        )

        outputs = [TxOut(amount, script) for script, amount in recipients]
        change_output = None
        if has_change:
            change_output = TxOut(selection.change_value, change_script)
            outputs.append(change_output)

        inputs = sorted(selection.utxos, key=lambda u: (u.txid, u.vout))
        outputs.sort(key=lambda o: (o.value, o.script))

        tx = Transaction(
            version=2,
            inputs=[TxIn(u.outpoint, sequence=SEQUENCE_RBF) for u in inputs],
            outputs=outputs,
            locktime=locktime,
        )

        change_vout = None
        if change_output is not None:
            change_vout = next(i for i, out in enumerate(outputs) if out is change_output)

        logger.debug(
            f"Built tx: {len(inputs)} inputs, {len(outputs)} outputs, "
            f"fee={selection.fee}, change={selection.change_value}"
        )
        return TxTemplate(tx, selection, inputs, change_vout)
