"""
Moving funds between wallets.

A wallet asked to move its funds first commits to an ordered list of
target wallets, then spends its main UTXO into one output per target.
The proof must match the commitment exactly and split the value evenly.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from btccore.models import UTXO
from btccore.script import extract_pubkey_hash
from btccore.tx import BitcoinTx
from loguru import logger

from bridge.config import BridgeConfig
from bridge.errors import MalformedInputError, ReconciliationError, StaleProofError
from bridge.events import (
    MovingFundsCommitmentSubmitted,
    MovingFundsCompleted,
    MovingFundsTimedOut,
)
from bridge.fees import is_evenly_distributed
from bridge.models import WalletState
from bridge.registry import WalletRegistry
from bridge.state import BridgeState, target_wallets_hash
from bridge.wallets import begin_closing, close, process_wallet_outbound_input, terminate


@dataclass
class MovingFundsCommitmentOutcome:
    wallet_pubkey_hash: bytes
    target_wallets: list[bytes]
    commitment_hash: bytes


@dataclass
class MovingFundsOutcome:
    moving_funds_tx_hash: bytes
    wallet_pubkey_hash: bytes
    spent_main_utxo: UTXO
    target_wallets: list[bytes] = field(default_factory=list)
    output_values: list[int] = field(default_factory=list)
    total_tx_fee: int = 0


def expected_target_wallets_count(
    state: BridgeState, config: BridgeConfig, source: bytes, balance: int
) -> int:
    live_targets = len([pkh for pkh in state.live_wallets() if pkh != source])
    needed = math.ceil(balance / config.wallet.max_btc_transfer)
    return min(live_targets, needed)


def process_moving_funds_commitment(
    state: BridgeState,
    config: BridgeConfig,
    wallet_pubkey_hash: bytes,
    main_utxo: UTXO | None,
    target_wallets: list[bytes],
) -> MovingFundsCommitmentOutcome:
    """
    Validate the list of wallets the source will move its funds to.

    Targets must be Live, distinct from the source, strictly ascending
    and exactly as many as the balance requires (bounded by the number of
    Live wallets available).
    """
    wallet = state.require_wallet_state(
        wallet_pubkey_hash,
        WalletState.MOVING_FUNDS,
        message="Source wallet must be in MovingFunds state",
    )
    if wallet.pending_redemptions_value > 0:
        raise ReconciliationError("Source wallet must handle all pending redemptions first")
    if wallet.moving_funds_target_wallets_commitment_hash is not None:
        raise StaleProofError("Target wallets commitment already submitted")

    main_utxo = state.require_main_utxo(wallet, main_utxo)

    expected = expected_target_wallets_count(state, config, wallet_pubkey_hash, main_utxo.value)
    if expected == 0:
        raise ReconciliationError("No Live wallets available to move funds to")
    if len(target_wallets) != expected:
        raise ReconciliationError(
            f"Submitted target wallets count is other than expected: "
            f"{len(target_wallets)} != {expected}"
        )

    previous = b""
    for target in target_wallets:
        if len(target) != 20:
            raise MalformedInputError("Target wallet public key hash must have 20 bytes")
        if target == wallet_pubkey_hash:
            raise ReconciliationError(
                "Submitted target wallet cannot be equal to the source wallet"
            )
        if target <= previous:
            raise ReconciliationError("Submitted target wallets must be in ascending order")
        target_wallet = state.wallets.get(target)
        if target_wallet is None or target_wallet.state != WalletState.LIVE:
            raise ReconciliationError(f"Submitted target wallet {target.hex()} must be Live")
        previous = target

    return MovingFundsCommitmentOutcome(
        wallet_pubkey_hash=wallet_pubkey_hash,
        target_wallets=list(target_wallets),
        commitment_hash=target_wallets_hash(target_wallets),
    )


def settle_moving_funds_commitment(
    state: BridgeState, outcome: MovingFundsCommitmentOutcome
) -> None:
    wallet = state.get_wallet(outcome.wallet_pubkey_hash)
    wallet.moving_funds_target_wallets_commitment_hash = outcome.commitment_hash
    state.events.append(
        MovingFundsCommitmentSubmitted(
            wallet_pubkey_hash=outcome.wallet_pubkey_hash,
            target_wallets=outcome.target_wallets,
        )
    )
    logger.info(
        f"Wallet {outcome.wallet_pubkey_hash.hex()} committed to move funds to "
        f"{len(outcome.target_wallets)} wallet(s)"
    )


def process_moving_funds_proof(
    state: BridgeState,
    config: BridgeConfig,
    moving_funds_tx: BitcoinTx,
    moving_funds_tx_hash: bytes,
    main_utxo: UTXO | None,
    wallet_pubkey_hash: bytes,
) -> MovingFundsOutcome:
    main_utxo = process_wallet_outbound_input(
        state, moving_funds_tx, wallet_pubkey_hash, main_utxo
    )

    outcome = MovingFundsOutcome(
        moving_funds_tx_hash=moving_funds_tx_hash,
        wallet_pubkey_hash=wallet_pubkey_hash,
        spent_main_utxo=main_utxo,
    )
    for index, output in enumerate(moving_funds_tx.outputs):
        target = extract_pubkey_hash(output.script)
        if not target:
            raise MalformedInputError(
                f"Output {index}: target wallet public key hash must have 20 bytes"
            )
        outcome.target_wallets.append(target)
        outcome.output_values.append(output.value)

    wallet = state.require_wallet_state(
        wallet_pubkey_hash,
        WalletState.MOVING_FUNDS,
        message="Wallet must be in MovingFunds state",
    )
    commitment = wallet.moving_funds_target_wallets_commitment_hash
    if commitment is None:
        raise ReconciliationError("Target wallets commitment must be submitted before")
    if target_wallets_hash(outcome.target_wallets) != commitment:
        raise ReconciliationError("Target wallets don't correspond to the commitment")

    outputs_total = sum(outcome.output_values)
    if outputs_total > main_utxo.value:
        raise ReconciliationError("Moving funds outputs exceed the main UTXO value")
    outcome.total_tx_fee = main_utxo.value - outputs_total
    if outcome.total_tx_fee > config.moving_funds.tx_max_total_fee:
        raise ReconciliationError(
            f"Transaction fee is too high: {outcome.total_tx_fee} > "
            f"{config.moving_funds.tx_max_total_fee}"
        )

    if not is_evenly_distributed(outcome.output_values):
        raise ReconciliationError("Transaction amount is not distributed evenly")

    return outcome


def settle_moving_funds_proof(state: BridgeState, outcome: MovingFundsOutcome, now: int) -> None:
    state.mark_spent(outcome.spent_main_utxo)

    wallet = state.get_wallet(outcome.wallet_pubkey_hash)
    wallet.main_utxo_hash = None
    wallet.moving_funds_target_wallets_commitment_hash = None
    begin_closing(state, wallet, now)

    state.events.append(
        MovingFundsCompleted(
            wallet_pubkey_hash=outcome.wallet_pubkey_hash,
            moving_funds_tx_hash=outcome.moving_funds_tx_hash,
        )
    )
    logger.info(
        f"Wallet {outcome.wallet_pubkey_hash.hex()} moved "
        f"{sum(outcome.output_values)} sats to {len(outcome.target_wallets)} wallet(s), "
        f"tx fee {outcome.total_tx_fee}"
    )


def process_moving_funds_timeout(
    state: BridgeState, config: BridgeConfig, wallet_pubkey_hash: bytes, now: int
) -> None:
    wallet = state.require_wallet_state(
        wallet_pubkey_hash,
        WalletState.MOVING_FUNDS,
        message="Wallet must be in MovingFunds state",
    )
    requested_at = wallet.moving_funds_requested_at or 0
    if now <= requested_at + config.moving_funds.timeout:
        raise ReconciliationError("Moving funds has not timed out yet")


def settle_moving_funds_timeout(
    state: BridgeState, registry: WalletRegistry, wallet_pubkey_hash: bytes
) -> None:
    wallet = state.get_wallet(wallet_pubkey_hash)
    terminate(state, wallet)
    registry.close_wallet(wallet_pubkey_hash)
    state.events.append(MovingFundsTimedOut(wallet_pubkey_hash=wallet_pubkey_hash))


def process_wallet_closing_period(
    state: BridgeState, config: BridgeConfig, wallet_pubkey_hash: bytes, now: int
) -> None:
    wallet = state.require_wallet_state(
        wallet_pubkey_hash, WalletState.CLOSING, message="Wallet must be in Closing state"
    )
    started_at = wallet.closing_started_at or 0
    if now <= started_at + config.wallet.closing_period:
        raise ReconciliationError("Closing period has not elapsed yet")


def settle_wallet_closing_period(
    state: BridgeState, registry: WalletRegistry, wallet_pubkey_hash: bytes
) -> None:
    wallet = state.get_wallet(wallet_pubkey_hash)
    close(state, wallet)
    registry.close_wallet(wallet_pubkey_hash)
