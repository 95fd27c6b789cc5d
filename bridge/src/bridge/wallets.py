"""
Wallet lifecycle transitions driven by the bridge.
"""

from __future__ import annotations

from btccore.models import UTXO
from btccore.tx import BitcoinTx
from loguru import logger

from bridge.errors import MalformedInputError, ReconciliationError
from bridge.events import WalletStateChanged
from bridge.models import Wallet, WalletState
from bridge.state import BridgeState


def _set_state(state: BridgeState, wallet: Wallet, new_state: WalletState) -> None:
    logger.info(
        f"Wallet {wallet.pubkey_hash.hex()}: {wallet.state.value} -> {new_state.value}"
    )
    wallet.state = new_state
    state.events.append(
        WalletStateChanged(wallet_pubkey_hash=wallet.pubkey_hash, state=new_state.value)
    )


def begin_closing(state: BridgeState, wallet: Wallet, now: int) -> None:
    wallet.closing_started_at = now
    _set_state(state, wallet, WalletState.CLOSING)


def move_to_moving_funds(state: BridgeState, wallet: Wallet, now: int) -> None:
    """
    Ask a wallet to hand its funds over to other wallets.

    A wallet without a main UTXO has nothing to move and starts closing
    right away.
    """
    if not wallet.has_main_utxo:
        begin_closing(state, wallet, now)
        return
    wallet.moving_funds_requested_at = now
    _set_state(state, wallet, WalletState.MOVING_FUNDS)


def terminate(state: BridgeState, wallet: Wallet) -> None:
    _set_state(state, wallet, WalletState.TERMINATED)


def close(state: BridgeState, wallet: Wallet) -> None:
    _set_state(state, wallet, WalletState.CLOSED)


def process_wallet_outbound_input(
    state: BridgeState, tx: BitcoinTx, wallet_pubkey_hash: bytes, main_utxo: UTXO | None
) -> UTXO:
    """
    Check that an outbound transaction spends exactly the wallet's main UTXO.

    Raises:
        StaleProofError: If the supplied main UTXO was already spent
        ReconciliationError: If the pointer or the input doesn't match
    """
    if main_utxo is not None:
        state.require_unspent(main_utxo)
    wallet = state.get_wallet(wallet_pubkey_hash)
    main_utxo = state.require_main_utxo(wallet, main_utxo)

    inputs = tx.inputs
    if len(inputs) != 1:
        raise MalformedInputError("Outbound transaction must have a single input")
    if inputs[0].outpoint != main_utxo.outpoint:
        raise ReconciliationError(
            "Outbound transaction input must point to the wallet's main UTXO"
        )
    return main_utxo
