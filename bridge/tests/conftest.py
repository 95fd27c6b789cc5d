"""
Pytest configuration and fixtures for bridge tests.

Proofs are built around synthetic blocks mined at regtest difficulty; the
difficulty scale is patched so those headers carry non-zero work.
"""

from __future__ import annotations

import pytest
from btccore import spv
from btccore.crypto import hash160, sha256
from btccore.models import UTXO, NetworkType
from btccore.proofgen import build_spv_proof
from btccore.script import build_deposit_script, deposit_locking_script, p2wpkh_script
from btccore.spv import SPVProof, StaticDifficultyRelay
from btccore.tx import BitcoinTx, TxInput, TxOutput
from coincurve import PrivateKey

from bridge.bank import InMemoryBank
from bridge.bridge import Bridge
from bridge.config import (
    BridgeConfig,
    DepositParameters,
    RedemptionParameters,
    WalletParameters,
)
from bridge.models import RevealInfo
from bridge.registry import InMemoryWalletRegistry

NOW = 1_700_000_000
DAY = 24 * 60 * 60

WALLET_PKH = bytes.fromhex("8db50eb52063ea9d98b3eac91489a90f738986f6")
DEPOSITOR = "0x934b98637ca318a4d6e7ca6ffd1690b8e77df637"
VAULT = "0x" + "ea" * 20
REFUND_PUBKEY = PrivateKey(b"\x01" * 32).public_key.format(compressed=True)


class BridgeHarness:
    """Builds funding, sweep and outbound transactions against a Bridge."""

    def __init__(self, bridge: Bridge, bank: InMemoryBank, registry: InMemoryWalletRegistry):
        self.bridge = bridge
        self.bank = bank
        self.registry = registry
        self._nonce = 0

    @property
    def state(self):
        return self.bridge.state

    def register_wallet(self, wallet_pubkey_hash: bytes = WALLET_PKH) -> bytes:
        self.bridge.on_new_wallet_created(wallet_pubkey_hash, now=NOW)
        return wallet_pubkey_hash

    def reveal_info(
        self,
        wallet_pubkey_hash: bytes = WALLET_PKH,
        blinding_factor: bytes | None = None,
        vault: str | None = None,
        refund_locktime: int = NOW + 30 * DAY,
        funding_output_index: int = 0,
        depositor: str = DEPOSITOR,
    ) -> RevealInfo:
        self._nonce += 1
        return RevealInfo(
            funding_output_index=funding_output_index,
            depositor=depositor,
            blinding_factor=blinding_factor or self._nonce.to_bytes(8, "big"),
            wallet_pubkey_hash=wallet_pubkey_hash,
            refund_pubkey=REFUND_PUBKEY,
            refund_locktime=refund_locktime.to_bytes(4, "little"),
            vault=vault,
        )

    def funding_tx(self, reveal: RevealInfo, amount: int, witness: bool = True) -> BitcoinTx:
        script = build_deposit_script(
            depositor=reveal.depositor_bytes,
            blinding_factor=reveal.blinding_factor,
            wallet_pubkey_hash=reveal.wallet_pubkey_hash,
            refund_pubkey_hash=hash160(reveal.refund_pubkey),
            refund_locktime=reveal.refund_locktime,
        )
        outputs = [
            TxOutput(value=1_000, script=p2wpkh_script(b"\x33" * 20))
            for _ in range(reveal.funding_output_index)
        ]
        outputs.append(TxOutput(value=amount, script=deposit_locking_script(script, witness)))
        return BitcoinTx.from_parts(
            [TxInput(prev_tx_hash=sha256(reveal.blinding_factor), prev_output_index=0)],
            outputs,
        )

    def deposit(
        self, amount: int, wallet_pubkey_hash: bytes = WALLET_PKH, vault: str | None = None
    ) -> UTXO:
        """Fund and reveal a deposit, returning its outpoint."""
        reveal = self.reveal_info(wallet_pubkey_hash, vault=vault)
        funding_tx = self.funding_tx(reveal, amount)
        self.bridge.reveal_deposit(funding_tx, reveal, now=NOW)
        return UTXO(transaction_hash=funding_tx.hash(), output_index=0, value=amount)

    def sweep_tx(
        self,
        deposits: list[UTXO],
        fee: int,
        wallet_pubkey_hash: bytes = WALLET_PKH,
        main_utxo: UTXO | None = None,
    ) -> BitcoinTx:
        spent = ([main_utxo] if main_utxo else []) + deposits
        inputs = [
            TxInput(prev_tx_hash=u.transaction_hash, prev_output_index=u.output_index)
            for u in spent
        ]
        total = sum(u.value for u in spent)
        return BitcoinTx.from_parts(
            inputs, [TxOutput(value=total - fee, script=p2wpkh_script(wallet_pubkey_hash))]
        )

    def prove(self, tx: BitcoinTx, confirmations: int = 6) -> SPVProof:
        return build_spv_proof(tx, confirmations=confirmations)

    def sweep(
        self,
        deposits: list[UTXO],
        fee: int,
        wallet_pubkey_hash: bytes = WALLET_PKH,
        main_utxo: UTXO | None = None,
        vault: str | None = None,
    ) -> UTXO:
        tx = self.sweep_tx(deposits, fee, wallet_pubkey_hash, main_utxo)
        return self.bridge.submit_deposit_sweep_proof(
            tx, self.prove(tx), main_utxo, vault=vault, now=NOW
        )

    def fund_wallet(self, amount: int, wallet_pubkey_hash: bytes = WALLET_PKH) -> UTXO:
        """Give a registered wallet a main UTXO worth exactly amount."""
        deposit = self.deposit(amount, wallet_pubkey_hash)
        return self.sweep([deposit], fee=0, wallet_pubkey_hash=wallet_pubkey_hash)

    def outbound_tx(self, main_utxo: UTXO, outputs: list[TxOutput]) -> BitcoinTx:
        return BitcoinTx.from_parts(
            [
                TxInput(
                    prev_tx_hash=main_utxo.transaction_hash,
                    prev_output_index=main_utxo.output_index,
                )
            ],
            outputs,
        )


@pytest.fixture(autouse=True)
def easy_difficulty(monkeypatch: pytest.MonkeyPatch) -> int:
    """Regtest headers weigh 2 instead of 0."""
    monkeypatch.setattr(spv, "DIFF1_TARGET", 1 << 256)
    return 2


@pytest.fixture
def config() -> BridgeConfig:
    """Regtest parameters with small dust thresholds and one trusted vault."""
    return BridgeConfig(
        network=NetworkType.REGTEST,
        trusted_vaults=[VAULT],
        tx_proof_difficulty_factor=6,
        deposit=DepositParameters(dust_threshold=100_000, treasury_fee_divisor=2000),
        redemption=RedemptionParameters(
            dust_threshold=10_000,
            treasury_fee_divisor=2000,
            tx_max_fee=1_000,
            tx_max_total_fee=10_000,
        ),
        wallet=WalletParameters(max_btc_transfer=110_000),
    )


@pytest.fixture
def bank() -> InMemoryBank:
    """Empty in-memory bank."""
    return InMemoryBank()


@pytest.fixture
def registry() -> InMemoryWalletRegistry:
    """In-memory wallet registry."""
    return InMemoryWalletRegistry()


@pytest.fixture
def bridge(config, bank, registry, easy_difficulty) -> Bridge:
    """Bridge whose relay reports regtest difficulty for both epochs."""
    return Bridge(config, StaticDifficultyRelay(easy_difficulty), bank, registry)


@pytest.fixture
def harness(bridge, bank, registry) -> BridgeHarness:
    """Harness around the bridge with WALLET_PKH registered."""
    h = BridgeHarness(bridge, bank, registry)
    h.register_wallet()
    return h
