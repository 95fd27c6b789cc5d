"""
Deposit reveal.

A depositor funds a P2SH or P2WSH output locked with the deposit script,
then publishes the script parameters here. The bridge rebuilds the script,
checks it against the funding output and records the deposit so a later
sweep can credit it.
"""

from __future__ import annotations

from dataclasses import dataclass

from btccore.constants import LOCKTIME_THRESHOLD
from btccore.crypto import compressed_pubkey_hash, hash160, sha256
from btccore.script import ScriptType, build_deposit_script, classify_output_script
from btccore.tx import BitcoinTx, TxOutput, extract_output_at_index
from loguru import logger

from bridge.config import BridgeConfig
from bridge.errors import MalformedInputError, ReconciliationError, StaleProofError
from bridge.events import DepositRevealed
from bridge.fees import treasury_fee
from bridge.models import DepositRequest, RevealInfo, WalletState
from bridge.state import BridgeState, deposit_key


@dataclass
class DepositRevealOutcome:
    key: bytes
    funding_tx_hash: bytes
    deposit: DepositRequest
    reveal: RevealInfo


def build_reveal_script(reveal: RevealInfo) -> bytes:
    return build_deposit_script(
        depositor=reveal.depositor_bytes,
        blinding_factor=reveal.blinding_factor,
        wallet_pubkey_hash=reveal.wallet_pubkey_hash,
        refund_pubkey_hash=compressed_pubkey_hash(reveal.refund_pubkey),
        refund_locktime=reveal.refund_locktime,
    )


def validate_refund_locktime(reveal: RevealInfo, reveal_ahead_period: int, now: int) -> None:
    locktime = reveal.refund_locktime_value
    if locktime < LOCKTIME_THRESHOLD:
        raise MalformedInputError("Refund locktime must be a value >= 500M")
    if reveal_ahead_period > 0 and now + reveal_ahead_period > locktime:
        raise ReconciliationError("Deposit refund locktime is too close")


def process_deposit_reveal(
    state: BridgeState,
    config: BridgeConfig,
    funding_tx: BitcoinTx,
    reveal: RevealInfo,
    now: int,
) -> DepositRevealOutcome:
    """
    Validate a deposit reveal without touching state.

    Raises:
        WalletStateError: If the target wallet is not Live
        MalformedInputError: If the funding output is not a deposit output
        ReconciliationError: If the output doesn't match the revealed script
        StaleProofError: If the funding output was already revealed
    """
    state.require_wallet_state(
        reveal.wallet_pubkey_hash,
        WalletState.LIVE,
        message="Wallet must be in Live state",
    )

    if reveal.vault is not None and not config.is_vault_trusted(reveal.vault):
        raise ReconciliationError(f"Vault {reveal.vault} is not trusted")

    validate_refund_locktime(reveal, config.deposit.reveal_ahead_period, now)

    funding_tx.validate()
    output = TxOutput.parse(
        extract_output_at_index(funding_tx.output_vector, reveal.funding_output_index)
    )

    script = build_reveal_script(reveal)
    script_type, script_hash = classify_output_script(output.script)
    if script_type == ScriptType.P2SH:
        expected = hash160(script)
    elif script_type == ScriptType.P2WSH:
        expected = sha256(script)
    else:
        raise MalformedInputError("Funding output must be P2SH or P2WSH")

    if script_hash != expected:
        raise ReconciliationError("Wrong deposit script hash in funding output")

    funding_tx_hash = funding_tx.hash()
    key = deposit_key(funding_tx_hash, reveal.funding_output_index)
    if key in state.deposits:
        raise StaleProofError("Deposit already revealed")

    if output.value < config.deposit.dust_threshold:
        raise ReconciliationError(
            f"Deposit amount too small: {output.value} < {config.deposit.dust_threshold}"
        )

    deposit = DepositRequest(
        depositor=reveal.depositor,
        amount=output.value,
        wallet_pubkey_hash=reveal.wallet_pubkey_hash,
        vault=reveal.vault.lower() if reveal.vault else None,
        treasury_fee=treasury_fee(output.value, config.deposit.treasury_fee_divisor),
        revealed_at=now,
    )
    return DepositRevealOutcome(
        key=key, funding_tx_hash=funding_tx_hash, deposit=deposit, reveal=reveal
    )


def settle_deposit_reveal(state: BridgeState, outcome: DepositRevealOutcome) -> None:
    state.deposits[outcome.key] = outcome.deposit
    reveal = outcome.reveal
    state.events.append(
        DepositRevealed(
            wallet_pubkey_hash=reveal.wallet_pubkey_hash,
            funding_tx_hash=outcome.funding_tx_hash,
            funding_output_index=reveal.funding_output_index,
            depositor=reveal.depositor,
            amount=outcome.deposit.amount,
            blinding_factor=reveal.blinding_factor,
            refund_pubkey_hash=compressed_pubkey_hash(reveal.refund_pubkey),
            refund_locktime=reveal.refund_locktime,
            vault=reveal.vault,
        )
    )
    logger.info(
        f"Deposit revealed: {outcome.funding_tx_hash[::-1].hex()}:"
        f"{reveal.funding_output_index} amount={outcome.deposit.amount} "
        f"wallet={reveal.wallet_pubkey_hash.hex()}"
    )
