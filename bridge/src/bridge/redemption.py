"""
Redemption requests, proofs and timeouts.

A redeemer escrows ledger balance and names a Bitcoin output script. The
wallet pays all pending requests in one transaction spending its main UTXO,
optionally returning change to itself. The proof of that transaction burns
the escrowed balance. Requests the wallet fails to honour in time are
refunded and the wallet is told to move its funds elsewhere.

Every output must match a request or be the change; anything else would
let the wallet pay arbitrary destinations while redeemers are burned.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from btccore.models import UTXO
from btccore.script import classify_output_script, is_wallet_script
from btccore.tx import BitcoinTx
from loguru import logger

from bridge.bank import Bank
from bridge.config import BridgeConfig
from bridge.errors import (
    MalformedInputError,
    ReconciliationError,
    StaleProofError,
)
from bridge.events import RedemptionRequested, RedemptionsCompleted, RedemptionTimedOut
from bridge.fees import treasury_fee
from bridge.models import RedemptionRequest, WalletState
from bridge.state import BridgeState, main_utxo_hash, redemption_key
from bridge.wallets import move_to_moving_funds, process_wallet_outbound_input


@dataclass
class RedemptionRequestOutcome:
    key: bytes
    wallet_pubkey_hash: bytes
    redeemer_output_script: bytes
    request: RedemptionRequest


@dataclass
class RedemptionOutcome:
    redemption_tx_hash: bytes
    wallet_pubkey_hash: bytes
    spent_main_utxo: UTXO
    change_utxo: UTXO | None = None
    settled_keys: list[bytes] = field(default_factory=list)
    late_fulfilled_keys: list[bytes] = field(default_factory=list)
    total_burnable_value: int = 0
    total_treasury_fee: int = 0
    total_tx_fee: int = 0


@dataclass
class RedemptionTimeoutOutcome:
    key: bytes
    wallet_pubkey_hash: bytes
    redeemer_output_script: bytes
    request: RedemptionRequest


def validate_redeemer_output_script(script: bytes, wallet_pubkey_hash: bytes) -> None:
    """
    Raises:
        MalformedInputError: If the script is non-standard or pays the wallet itself
    """
    script_type, payload = classify_output_script(script)
    if script_type is None:
        raise MalformedInputError("Redeemer output script must be a standard type")
    if payload == wallet_pubkey_hash:
        raise MalformedInputError("Redeemer output script must not point to the wallet PKH")


def process_redemption_request(
    state: BridgeState,
    config: BridgeConfig,
    wallet_pubkey_hash: bytes,
    main_utxo: UTXO,
    redeemer: str,
    redeemer_output_script: bytes,
    amount: int,
    now: int,
) -> RedemptionRequestOutcome:
    wallet = state.require_wallet_state(
        wallet_pubkey_hash, WalletState.LIVE, message="Wallet must be in Live state"
    )
    main_utxo = state.require_main_utxo(wallet, main_utxo)

    validate_redeemer_output_script(redeemer_output_script, wallet_pubkey_hash)

    params = config.redemption
    if amount < params.dust_threshold:
        raise ReconciliationError(
            f"Redemption amount too small: {amount} < {params.dust_threshold}"
        )

    key = redemption_key(wallet_pubkey_hash, redeemer_output_script)
    if key in state.timed_out_redemptions:
        raise StaleProofError("Redemption has been timed out")
    if key in state.pending_redemptions:
        raise ReconciliationError(
            "There is a pending redemption request from this wallet to the same address"
        )

    fee = treasury_fee(amount, params.treasury_fee_divisor)
    request = RedemptionRequest(
        redeemer=redeemer,
        requested_amount=amount,
        treasury_fee=fee,
        tx_max_fee=params.tx_max_fee,
        requested_at=now,
    )
    if request.redeemable_amount <= request.tx_max_fee:
        raise ReconciliationError("Redemption amount does not cover the transaction fee")

    if wallet.pending_redemptions_value + request.redeemable_amount > main_utxo.value:
        raise ReconciliationError("Insufficient wallet funds")

    return RedemptionRequestOutcome(
        key=key,
        wallet_pubkey_hash=wallet_pubkey_hash,
        redeemer_output_script=redeemer_output_script,
        request=request,
    )


def settle_redemption_request(
    state: BridgeState, bank: Bank, config: BridgeConfig, outcome: RedemptionRequestOutcome
) -> None:
    request = outcome.request
    # Escrow first: a failing transfer must leave the request unrecorded
    bank.transfer_balance_from(request.redeemer, config.bridge_address, request.requested_amount)

    wallet = state.get_wallet(outcome.wallet_pubkey_hash)
    wallet.pending_redemptions_value += request.redeemable_amount
    state.pending_redemptions[outcome.key] = request

    state.events.append(
        RedemptionRequested(
            wallet_pubkey_hash=outcome.wallet_pubkey_hash,
            redeemer_output_script=outcome.redeemer_output_script,
            redeemer=request.redeemer,
            requested_amount=request.requested_amount,
            treasury_fee=request.treasury_fee,
            tx_max_fee=request.tx_max_fee,
        )
    )
    logger.info(
        f"Redemption requested from wallet {outcome.wallet_pubkey_hash.hex()}: "
        f"{request.requested_amount} sats to {outcome.redeemer_output_script.hex()}"
    )


def process_redemption_proof(
    state: BridgeState,
    config: BridgeConfig,
    redemption_tx: BitcoinTx,
    redemption_tx_hash: bytes,
    main_utxo: UTXO | None,
    wallet_pubkey_hash: bytes,
) -> RedemptionOutcome:
    """
    Reconcile a redemption transaction against pending requests.

    The first positive-value output paying the wallet's own P2PKH or P2WPKH
    script is the change; every other output must pay a pending or
    timed-out request within its accepted value range.
    """
    main_utxo = process_wallet_outbound_input(
        state, redemption_tx, wallet_pubkey_hash, main_utxo
    )
    state.require_wallet_state(
        wallet_pubkey_hash,
        WalletState.LIVE,
        WalletState.MOVING_FUNDS,
        message="Wallet must be in Live or MovingFunds state",
    )

    outcome = RedemptionOutcome(
        redemption_tx_hash=redemption_tx_hash,
        wallet_pubkey_hash=wallet_pubkey_hash,
        spent_main_utxo=main_utxo,
    )

    outputs_total = 0
    for index, output in enumerate(redemption_tx.outputs):
        outputs_total += output.value

        if (
            outcome.change_utxo is None
            and output.value > 0
            and is_wallet_script(output.script, wallet_pubkey_hash)
        ):
            outcome.change_utxo = UTXO(
                transaction_hash=redemption_tx_hash, output_index=index, value=output.value
            )
            logger.debug(f"Redemption output {index}: change of {output.value} sats")
            continue

        key = redemption_key(wallet_pubkey_hash, output.script)
        pending = state.pending_redemptions.get(key)

        if pending is not None and key not in outcome.settled_keys:
            if not pending.accepts_output_value(output.value):
                raise ReconciliationError(
                    f"Output {index} value {output.value} is not within the permissible range "
                    f"[{pending.redeemable_amount - pending.tx_max_fee}, "
                    f"{pending.redeemable_amount}]"
                )
            outcome.settled_keys.append(key)
            outcome.total_burnable_value += pending.redeemable_amount
            outcome.total_treasury_fee += pending.treasury_fee
            logger.debug(f"Redemption output {index}: pending request for {output.value} sats")
            continue

        timed_out = state.timed_out_redemptions.get(key)
        if timed_out is not None:
            if not timed_out.accepts_output_value(output.value):
                raise ReconciliationError(
                    f"Output {index} value {output.value} is not within the permissible range "
                    f"of its timed out request"
                )
            # The redeemer was refunded at timeout time, nothing is burned here
            outcome.late_fulfilled_keys.append(key)
            logger.debug(f"Redemption output {index}: timed out request for {output.value} sats")
            continue

        raise ReconciliationError(
            f"Output {index} is not a change output nor a pending or timed out redemption"
        )

    if not outcome.settled_keys and not outcome.late_fulfilled_keys:
        raise ReconciliationError("Redemption transaction must process at least one redemption")

    if outputs_total > main_utxo.value:
        raise ReconciliationError("Redemption outputs exceed the main UTXO value")
    outcome.total_tx_fee = main_utxo.value - outputs_total
    if outcome.total_tx_fee > config.redemption.tx_max_total_fee:
        raise ReconciliationError(
            f"Transaction fee is too high: {outcome.total_tx_fee} > "
            f"{config.redemption.tx_max_total_fee}"
        )

    return outcome


def settle_redemption_proof(
    state: BridgeState, bank: Bank, config: BridgeConfig, outcome: RedemptionOutcome
) -> None:
    """
    Pay the treasury, burn the redeemed value, then record the proof.

    Both bank calls run before any state write. The treasury transfer goes
    first so a rejected transfer leaves nothing burned.
    """
    if outcome.total_treasury_fee > 0:
        bank.transfer_balance(
            config.bridge_address, config.treasury_address, outcome.total_treasury_fee
        )
    if outcome.total_burnable_value > 0:
        bank.decrease_balance(config.bridge_address, outcome.total_burnable_value)

    state.mark_spent(outcome.spent_main_utxo)
    for key in outcome.settled_keys:
        del state.pending_redemptions[key]

    wallet = state.get_wallet(outcome.wallet_pubkey_hash)
    wallet.main_utxo_hash = (
        main_utxo_hash(outcome.change_utxo) if outcome.change_utxo is not None else None
    )
    wallet.pending_redemptions_value -= outcome.total_burnable_value

    state.events.append(
        RedemptionsCompleted(
            wallet_pubkey_hash=outcome.wallet_pubkey_hash,
            redemption_tx_hash=outcome.redemption_tx_hash,
        )
    )
    logger.info(
        f"Redemptions completed for wallet {outcome.wallet_pubkey_hash.hex()}: "
        f"{len(outcome.settled_keys)} settled, {len(outcome.late_fulfilled_keys)} late, "
        f"burned {outcome.total_burnable_value} sats, tx fee {outcome.total_tx_fee}"
    )


def process_redemption_timeout(
    state: BridgeState,
    config: BridgeConfig,
    wallet_pubkey_hash: bytes,
    redeemer_output_script: bytes,
    now: int,
) -> RedemptionTimeoutOutcome:
    key = redemption_key(wallet_pubkey_hash, redeemer_output_script)
    request = state.pending_redemptions.get(key)
    if request is None:
        if key in state.timed_out_redemptions:
            raise StaleProofError("Redemption request already timed out")
        raise ReconciliationError("Redemption request does not exist")

    if now <= request.requested_at + config.redemption.timeout:
        raise ReconciliationError("Redemption request has not timed out")

    state.require_wallet_state(
        wallet_pubkey_hash,
        WalletState.LIVE,
        WalletState.MOVING_FUNDS,
        WalletState.TERMINATED,
        message="Wallet must be in Live, MovingFunds or Terminated state",
    )
    return RedemptionTimeoutOutcome(
        key=key,
        wallet_pubkey_hash=wallet_pubkey_hash,
        redeemer_output_script=redeemer_output_script,
        request=request,
    )


def settle_redemption_timeout(
    state: BridgeState,
    bank: Bank,
    config: BridgeConfig,
    outcome: RedemptionTimeoutOutcome,
    now: int,
) -> None:
    request = outcome.request
    bank.transfer_balance(config.bridge_address, request.redeemer, request.requested_amount)

    del state.pending_redemptions[outcome.key]
    state.timed_out_redemptions[outcome.key] = request

    wallet = state.get_wallet(outcome.wallet_pubkey_hash)
    wallet.pending_redemptions_value -= request.redeemable_amount

    state.events.append(
        RedemptionTimedOut(
            wallet_pubkey_hash=outcome.wallet_pubkey_hash,
            redeemer_output_script=outcome.redeemer_output_script,
        )
    )
    logger.warning(
        f"Redemption timed out for wallet {outcome.wallet_pubkey_hash.hex()}, "
        f"refunded {request.requested_amount} sats to {request.redeemer}"
    )

    if wallet.state == WalletState.LIVE:
        move_to_moving_funds(state, wallet, now)
