"""
Bridge state aggregate.

All records are keyed by pure functions of their Bitcoin identity, so the
same deposit, request or UTXO always maps to the same slot.
"""

from __future__ import annotations

from btccore.crypto import sha256
from btccore.models import UTXO

from bridge.errors import ReconciliationError, StaleProofError, WalletStateError
from bridge.events import EventLog
from bridge.models import DepositRequest, RedemptionRequest, Wallet, WalletState


def utxo_key(tx_hash: bytes, output_index: int) -> bytes:
    return sha256(tx_hash + output_index.to_bytes(4, "little"))


def deposit_key(funding_tx_hash: bytes, funding_output_index: int) -> bytes:
    return utxo_key(funding_tx_hash, funding_output_index)


def redemption_key(wallet_pubkey_hash: bytes, output_script: bytes) -> bytes:
    return sha256(sha256(output_script) + wallet_pubkey_hash)


def main_utxo_hash(utxo: UTXO) -> bytes:
    return sha256(utxo.serialize())


def target_wallets_hash(target_wallets: list[bytes]) -> bytes:
    return sha256(b"".join(target_wallets))


class BridgeState:
    """
    Everything the bridge owns.

    Deposits and spent UTXO markers are never deleted; they are what makes
    replaying a settled proof fail.
    """

    def __init__(self) -> None:
        self.wallets: dict[bytes, Wallet] = {}
        self.deposits: dict[bytes, DepositRequest] = {}
        self.pending_redemptions: dict[bytes, RedemptionRequest] = {}
        self.timed_out_redemptions: dict[bytes, RedemptionRequest] = {}
        self.spent_main_utxos: set[bytes] = set()
        self.events = EventLog()

    def get_wallet(self, wallet_pubkey_hash: bytes) -> Wallet:
        wallet = self.wallets.get(wallet_pubkey_hash)
        if wallet is None:
            raise WalletStateError(f"Unknown wallet {wallet_pubkey_hash.hex()}")
        return wallet

    def require_wallet_state(
        self, wallet_pubkey_hash: bytes, *states: WalletState, message: str | None = None
    ) -> Wallet:
        wallet = self.get_wallet(wallet_pubkey_hash)
        if wallet.state not in states:
            expected = " or ".join(s.value for s in states)
            raise WalletStateError(
                message or f"Wallet {wallet_pubkey_hash.hex()} must be in {expected} state"
            )
        return wallet

    def live_wallets(self) -> list[bytes]:
        return sorted(pkh for pkh, w in self.wallets.items() if w.state == WalletState.LIVE)

    def resolve_main_utxo(self, wallet: Wallet, main_utxo: UTXO | None) -> UTXO | None:
        """
        Check the supplied main UTXO against the wallet's stored pointer.

        Returns:
            main_utxo when the wallet has one, None when it has none

        Raises:
            ReconciliationError: If the data does not hash to the stored pointer
        """
        if wallet.main_utxo_hash is None:
            return None
        return self.require_main_utxo(wallet, main_utxo)

    def require_main_utxo(self, wallet: Wallet, main_utxo: UTXO | None) -> UTXO:
        if wallet.main_utxo_hash is None:
            raise ReconciliationError(f"No main UTXO for wallet {wallet.pubkey_hash.hex()}")
        if main_utxo is None or main_utxo_hash(main_utxo) != wallet.main_utxo_hash:
            raise ReconciliationError("Invalid main UTXO data")
        return main_utxo

    def require_unspent(self, utxo: UTXO) -> bytes:
        key = utxo_key(utxo.transaction_hash, utxo.output_index)
        if key in self.spent_main_utxos:
            raise StaleProofError(f"Main UTXO {utxo.txid}:{utxo.output_index} already spent")
        return key

    def mark_spent(self, utxo: UTXO) -> None:
        self.spent_main_utxos.add(utxo_key(utxo.transaction_hash, utxo.output_index))
