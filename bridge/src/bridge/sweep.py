"""
Deposit sweep reconciliation.

A sweep consolidates revealed deposits (and the wallet's current main UTXO,
if any) into a single output locked to the wallet. The Bitcoin fee is split
evenly across the deposit inputs only; the main UTXO passes through whole.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from btccore.models import UTXO
from btccore.script import extract_pubkey_hash
from btccore.tx import BitcoinTx
from loguru import logger

from bridge.bank import Bank
from bridge.config import BridgeConfig
from bridge.errors import MalformedInputError, ReconciliationError, StaleProofError
from bridge.events import DepositsSwept
from bridge.fees import split_evenly
from bridge.models import WalletState
from bridge.state import BridgeState, deposit_key, main_utxo_hash


@dataclass
class SweptDeposit:
    key: bytes
    depositor: str
    amount: int
    tx_fee: int
    treasury_fee: int

    @property
    def credited_amount(self) -> int:
        return self.amount - self.tx_fee - self.treasury_fee


@dataclass
class SweepOutcome:
    sweep_tx_hash: bytes
    wallet_pubkey_hash: bytes
    output_value: int
    vault: str | None
    deposits: list[SweptDeposit] = field(default_factory=list)
    spent_main_utxo: UTXO | None = None

    @property
    def total_tx_fee(self) -> int:
        return sum(d.tx_fee for d in self.deposits)

    @property
    def total_treasury_fee(self) -> int:
        return sum(d.treasury_fee for d in self.deposits)

    @property
    def new_main_utxo(self) -> UTXO:
        return UTXO(
            transaction_hash=self.sweep_tx_hash, output_index=0, value=self.output_value
        )


def process_sweep_tx_output(sweep_tx: BitcoinTx) -> tuple[bytes, int]:
    """
    Returns:
        (wallet public key hash, output value) of the single sweep output
    """
    outputs = sweep_tx.outputs
    if len(outputs) != 1:
        raise MalformedInputError("Sweep transaction must have a single output")

    wallet_pubkey_hash = extract_pubkey_hash(outputs[0].script)
    if not wallet_pubkey_hash:
        raise MalformedInputError("Output must be P2PKH or P2WPKH")
    return wallet_pubkey_hash, outputs[0].value


def process_deposit_sweep(
    state: BridgeState,
    config: BridgeConfig,
    sweep_tx: BitcoinTx,
    sweep_tx_hash: bytes,
    main_utxo: UTXO | None,
    vault: str | None = None,
) -> SweepOutcome:
    """
    Match sweep inputs against revealed deposits and the main UTXO.

    Raises:
        MalformedInputError: Wrong output count or non wallet output
        WalletStateError: Wallet is not Live or MovingFunds
        ReconciliationError: Unknown inputs, missing main UTXO, fee too high
        StaleProofError: An input is a deposit that was already swept
    """
    wallet_pubkey_hash, output_value = process_sweep_tx_output(sweep_tx)

    wallet = state.require_wallet_state(
        wallet_pubkey_hash,
        WalletState.LIVE,
        WalletState.MOVING_FUNDS,
        message="Wallet must be in Live or MovingFunds state",
    )
    # Replays are reported as such before the main UTXO pointer is compared
    for index, tx_input in enumerate(sweep_tx.inputs):
        deposit = state.deposits.get(
            deposit_key(tx_input.prev_tx_hash, tx_input.prev_output_index)
        )
        if deposit is not None and deposit.is_swept:
            raise StaleProofError(f"Deposit at input {index} already swept")
    if main_utxo is not None:
        state.require_unspent(main_utxo)

    resolved_main_utxo = state.resolve_main_utxo(wallet, main_utxo)
    vault = vault.lower() if vault else None

    outcome = SweepOutcome(
        sweep_tx_hash=sweep_tx_hash,
        wallet_pubkey_hash=wallet_pubkey_hash,
        output_value=output_value,
        vault=vault,
    )

    main_utxo_found = False
    seen_keys: set[bytes] = set()
    deposit_amounts: list[tuple[bytes, str, int, int]] = []

    for index, tx_input in enumerate(sweep_tx.inputs):
        key = deposit_key(tx_input.prev_tx_hash, tx_input.prev_output_index)
        deposit = state.deposits.get(key)

        if deposit is not None:
            if deposit.is_swept or key in seen_keys:
                raise StaleProofError(f"Deposit at input {index} already swept")
            if deposit.wallet_pubkey_hash != wallet_pubkey_hash:
                raise ReconciliationError(
                    f"Deposit at input {index} was revealed for another wallet"
                )
            if deposit.vault != vault:
                raise ReconciliationError(
                    f"Deposit at input {index} should be routed to another vault"
                )
            seen_keys.add(key)
            deposit_amounts.append((key, deposit.depositor, deposit.amount, deposit.treasury_fee))
            logger.debug(f"Sweep input {index}: deposit of {deposit.amount} sats")
        elif (
            resolved_main_utxo is not None
            and tx_input.outpoint == resolved_main_utxo.outpoint
        ):
            if main_utxo_found:
                raise ReconciliationError("Main UTXO referenced by more than one input")
            main_utxo_found = True
            outcome.spent_main_utxo = resolved_main_utxo
            logger.debug(f"Sweep input {index}: main UTXO of {resolved_main_utxo.value} sats")
        else:
            raise ReconciliationError(f"Unknown input type at index {index}")

    if not deposit_amounts:
        raise ReconciliationError("Sweep transaction must process at least one deposit")

    if resolved_main_utxo is not None and not main_utxo_found:
        raise ReconciliationError("Expected main UTXO not present in sweep transaction inputs")

    main_utxo_value = resolved_main_utxo.value if main_utxo_found else 0
    inputs_total = main_utxo_value + sum(amount for _, _, amount, _ in deposit_amounts)
    if output_value > inputs_total:
        raise ReconciliationError(
            f"Sweep output {output_value} exceeds inputs total {inputs_total}"
        )

    fee = inputs_total - output_value
    fee_shares = split_evenly(fee, len(deposit_amounts))
    max_fee = config.deposit.tx_max_fee
    for (key, depositor, amount, deposit_treasury_fee), fee_share in zip(
        deposit_amounts, fee_shares
    ):
        if fee_share > max_fee:
            raise ReconciliationError(
                f"Transaction fee is too high: {fee_share} > {max_fee} per deposit"
            )
        if fee_share + deposit_treasury_fee > amount:
            raise ReconciliationError("Deposit amount does not cover its fees")
        outcome.deposits.append(
            SweptDeposit(
                key=key,
                depositor=depositor,
                amount=amount,
                tx_fee=fee_share,
                treasury_fee=deposit_treasury_fee,
            )
        )

    return outcome


def settle_deposit_sweep(
    state: BridgeState,
    bank: Bank,
    config: BridgeConfig,
    outcome: SweepOutcome,
    now: int,
) -> None:
    """
    Credit the sweep through the bank, then record it.

    State is only written once every bank call has returned, so a failing
    bank leaves the deposits unswept and the main UTXO unchanged.
    """
    depositors = [d.depositor for d in outcome.deposits]
    amounts = [d.credited_amount for d in outcome.deposits]
    if outcome.vault is not None:
        bank.increase_balance_and_call(outcome.vault, depositors, amounts)
    else:
        bank.increase_balances(depositors, amounts)
    if outcome.total_treasury_fee > 0:
        bank.increase_balance(config.treasury_address, outcome.total_treasury_fee)

    for swept in outcome.deposits:
        state.deposits[swept.key].swept_at = now

    if outcome.spent_main_utxo is not None:
        state.mark_spent(outcome.spent_main_utxo)

    wallet = state.get_wallet(outcome.wallet_pubkey_hash)
    wallet.main_utxo_hash = main_utxo_hash(outcome.new_main_utxo)

    state.events.append(
        DepositsSwept(
            wallet_pubkey_hash=outcome.wallet_pubkey_hash, sweep_tx_hash=outcome.sweep_tx_hash
        )
    )
    logger.info(
        f"Swept {len(outcome.deposits)} deposit(s) into wallet "
        f"{outcome.wallet_pubkey_hash.hex()}: credited {sum(amounts)} sats, "
        f"tx fee {outcome.total_tx_fee}, treasury fee {outcome.total_treasury_fee}"
    )
