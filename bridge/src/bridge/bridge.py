"""
Bridge facade.

Each public operation runs under a single lock: the proof is verified, the
matching reconciler validates the transaction against state and returns an
outcome, and only then is the outcome applied. A rejected submission leaves
the bridge untouched.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager

from btccore.models import UTXO
from btccore.spv import DifficultyRelay, ProofVerifier, SPVProof, SPVProofError
from btccore.tx import BitcoinTx, BitcoinTxError
from loguru import logger

from bridge.bank import Bank
from bridge.config import BridgeConfig, BridgeSettings, get_settings
from bridge.deposit import process_deposit_reveal, settle_deposit_reveal
from bridge.errors import (
    BridgeError,
    MalformedInputError,
    ProofVerificationError,
    ReconciliationError,
)
from bridge.events import EventLog, NewWalletRegistered
from bridge.models import RevealInfo, Wallet, WalletState
from bridge.moving_funds import (
    process_moving_funds_commitment,
    process_moving_funds_proof,
    process_moving_funds_timeout,
    process_wallet_closing_period,
    settle_moving_funds_commitment,
    settle_moving_funds_proof,
    settle_moving_funds_timeout,
    settle_wallet_closing_period,
)
from bridge.redemption import (
    process_redemption_proof,
    process_redemption_request,
    process_redemption_timeout,
    settle_redemption_proof,
    settle_redemption_request,
    settle_redemption_timeout,
)
from bridge.registry import WalletRegistry
from bridge.state import BridgeState
from bridge.sweep import process_deposit_sweep, settle_deposit_sweep


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except BitcoinTxError as e:
        logger.warning(f"{operation} rejected: malformed transaction: {e}")
        raise MalformedInputError(str(e)) from e
    except SPVProofError as e:
        logger.warning(f"{operation} rejected: invalid proof: {e}")
        raise ProofVerificationError(str(e)) from e
    except BridgeError as e:
        logger.warning(f"{operation} rejected: {e}")
        raise


class Bridge:
    """
    Reconciles proven Bitcoin transactions with the bridge's bookkeeping.

    Args:
        config: Bridge parameters
        relay: Source of current and previous epoch difficulty
        bank: Balance ledger credited on sweeps and debited on redemptions
        registry: Wallet registry told when a wallet is closed or terminated
    """

    def __init__(
        self,
        config: BridgeConfig,
        relay: DifficultyRelay,
        bank: Bank,
        registry: WalletRegistry,
        state: BridgeState | None = None,
    ):
        self.config = config
        self.verifier = ProofVerifier(relay, config.tx_proof_difficulty_factor)
        self.bank = bank
        self.registry = registry
        self.state = state or BridgeState()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        relay: DifficultyRelay,
        bank: Bank,
        registry: WalletRegistry,
        settings: BridgeSettings | None = None,
    ) -> Bridge:
        """Build a bridge configured from BRIDGE_* environment settings."""
        settings = settings or get_settings()
        return cls(settings.to_config(), relay, bank, registry)

    @property
    def events(self) -> EventLog:
        return self.state.events

    def wallet(self, wallet_pubkey_hash: bytes) -> Wallet | None:
        return self.state.wallets.get(wallet_pubkey_hash)

    def _verify(self, tx: BitcoinTx, proof: SPVProof) -> bytes:
        return self.verifier.validate_proof(tx, proof)

    def on_new_wallet_created(self, wallet_pubkey_hash: bytes, now: int | None = None) -> Wallet:
        """Register a wallet the registry has just created as Live."""
        now = _now(now)
        with self._lock, _translate_errors("Wallet registration"):
            if len(wallet_pubkey_hash) != 20:
                raise MalformedInputError("Wallet public key hash must have 20 bytes")
            if wallet_pubkey_hash in self.state.wallets:
                raise ReconciliationError(
                    f"Wallet {wallet_pubkey_hash.hex()} is already registered"
                )
            wallet = Wallet(pubkey_hash=wallet_pubkey_hash, state=WalletState.LIVE, created_at=now)
            self.state.wallets[wallet_pubkey_hash] = wallet
            self.state.events.append(NewWalletRegistered(wallet_pubkey_hash=wallet_pubkey_hash))
            logger.info(f"New wallet registered: {wallet_pubkey_hash.hex()}")
            return wallet

    def reveal_deposit(
        self, funding_tx: BitcoinTx, reveal: RevealInfo, now: int | None = None
    ) -> bytes:
        """
        Record a deposit made to a wallet.

        Returns:
            Deposit key
        """
        now = _now(now)
        with self._lock, _translate_errors("Deposit reveal"):
            outcome = process_deposit_reveal(self.state, self.config, funding_tx, reveal, now)
            settle_deposit_reveal(self.state, outcome)
            return outcome.key

    def submit_deposit_sweep_proof(
        self,
        sweep_tx: BitcoinTx,
        proof: SPVProof,
        main_utxo: UTXO | None = None,
        vault: str | None = None,
        now: int | None = None,
    ) -> UTXO:
        """
        Credit the deposits consumed by a proven sweep transaction.

        Returns:
            The wallet's new main UTXO
        """
        now = _now(now)
        with self._lock, _translate_errors("Deposit sweep proof"):
            sweep_tx_hash = self._verify(sweep_tx, proof)
            outcome = process_deposit_sweep(
                self.state, self.config, sweep_tx, sweep_tx_hash, main_utxo, vault
            )
            settle_deposit_sweep(self.state, self.bank, self.config, outcome, now)
            return outcome.new_main_utxo

    def request_redemption(
        self,
        wallet_pubkey_hash: bytes,
        main_utxo: UTXO,
        redeemer: str,
        redeemer_output_script: bytes,
        amount: int,
        now: int | None = None,
    ) -> bytes:
        """
        Escrow amount from redeemer and ask the wallet to pay it out.

        Returns:
            Redemption key
        """
        now = _now(now)
        with self._lock, _translate_errors("Redemption request"):
            outcome = process_redemption_request(
                self.state,
                self.config,
                wallet_pubkey_hash,
                main_utxo,
                redeemer,
                redeemer_output_script,
                amount,
                now,
            )
            settle_redemption_request(self.state, self.bank, self.config, outcome)
            return outcome.key

    def submit_redemption_proof(
        self,
        redemption_tx: BitcoinTx,
        proof: SPVProof,
        main_utxo: UTXO,
        wallet_pubkey_hash: bytes,
    ) -> UTXO | None:
        """
        Settle the requests paid by a proven redemption transaction.

        Returns:
            The change output as the wallet's new main UTXO, or None
        """
        with self._lock, _translate_errors("Redemption proof"):
            redemption_tx_hash = self._verify(redemption_tx, proof)
            outcome = process_redemption_proof(
                self.state,
                self.config,
                redemption_tx,
                redemption_tx_hash,
                main_utxo,
                wallet_pubkey_hash,
            )
            settle_redemption_proof(self.state, self.bank, self.config, outcome)
            return outcome.change_utxo

    def notify_redemption_timeout(
        self, wallet_pubkey_hash: bytes, redeemer_output_script: bytes, now: int | None = None
    ) -> None:
        now = _now(now)
        with self._lock, _translate_errors("Redemption timeout"):
            outcome = process_redemption_timeout(
                self.state, self.config, wallet_pubkey_hash, redeemer_output_script, now
            )
            settle_redemption_timeout(self.state, self.bank, self.config, outcome, now)

    def submit_moving_funds_commitment(
        self,
        wallet_pubkey_hash: bytes,
        main_utxo: UTXO,
        target_wallets: list[bytes],
    ) -> bytes:
        """
        Returns:
            Hash of the committed target wallets list
        """
        with self._lock, _translate_errors("Moving funds commitment"):
            outcome = process_moving_funds_commitment(
                self.state, self.config, wallet_pubkey_hash, main_utxo, target_wallets
            )
            settle_moving_funds_commitment(self.state, outcome)
            return outcome.commitment_hash

    def submit_moving_funds_proof(
        self,
        moving_funds_tx: BitcoinTx,
        proof: SPVProof,
        main_utxo: UTXO,
        wallet_pubkey_hash: bytes,
        now: int | None = None,
    ) -> None:
        """Confirm a wallet handed its whole balance to its committed targets."""
        now = _now(now)
        with self._lock, _translate_errors("Moving funds proof"):
            moving_funds_tx_hash = self._verify(moving_funds_tx, proof)
            outcome = process_moving_funds_proof(
                self.state,
                self.config,
                moving_funds_tx,
                moving_funds_tx_hash,
                main_utxo,
                wallet_pubkey_hash,
            )
            settle_moving_funds_proof(self.state, outcome, now)

    def notify_moving_funds_timeout(
        self, wallet_pubkey_hash: bytes, now: int | None = None
    ) -> None:
        now = _now(now)
        with self._lock, _translate_errors("Moving funds timeout"):
            process_moving_funds_timeout(self.state, self.config, wallet_pubkey_hash, now)
            settle_moving_funds_timeout(self.state, self.registry, wallet_pubkey_hash)

    def notify_wallet_closing_period_elapsed(
        self, wallet_pubkey_hash: bytes, now: int | None = None
    ) -> None:
        now = _now(now)
        with self._lock, _translate_errors("Wallet closing"):
            process_wallet_closing_period(self.state, self.config, wallet_pubkey_hash, now)
            settle_wallet_closing_period(self.state, self.registry, wallet_pubkey_hash)


def _now(now: int | None) -> int:
    return int(time.time()) if now is None else now
