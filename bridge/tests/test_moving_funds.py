"""
Tests for moving funds commitments, proofs and wallet lifecycle timeouts.
"""

from __future__ import annotations

import pytest
from btccore.models import UTXO
from btccore.script import p2pkh_script, p2sh_script, p2wpkh_script
from btccore.tx import BitcoinTx, TxInput, TxOutput

from bridge.errors import (
    MalformedInputError,
    ReconciliationError,
    StaleProofError,
    WalletStateError,
)
from bridge.events import MovingFundsCompleted, MovingFundsTimedOut
from bridge.models import WalletState
from bridge.state import target_wallets_hash
from bridge.wallets import move_to_moving_funds

NOW = 1_700_000_000
DAY = 24 * 60 * 60
WALLET_PKH = bytes.fromhex("8db50eb52063ea9d98b3eac91489a90f738986f6")
TARGETS = [bytes([i]) * 20 for i in (0x11, 0x22, 0x33)]


@pytest.fixture
def main_utxo(harness) -> UTXO:
    """Source wallet in MovingFunds holding 305,000 sats, three Live targets."""
    for target in TARGETS:
        harness.register_wallet(target)
    utxo = harness.fund_wallet(305_000)
    move_to_moving_funds(harness.state, harness.state.wallets[WALLET_PKH], NOW)
    return utxo


@pytest.fixture
def committed(harness, main_utxo) -> UTXO:
    """Main UTXO of a source wallet that has committed to TARGETS."""
    harness.bridge.submit_moving_funds_commitment(WALLET_PKH, main_utxo, TARGETS)
    return main_utxo


def moving_funds_tx(harness, main_utxo, values, targets=TARGETS) -> BitcoinTx:
    outputs = [
        TxOutput(value=value, script=p2wpkh_script(target))
        for target, value in zip(targets, values)
    ]
    return harness.outbound_tx(main_utxo, outputs)


def submit(harness, tx, main_utxo, now=NOW) -> None:
    harness.bridge.submit_moving_funds_proof(
        tx, harness.prove(tx), main_utxo, WALLET_PKH, now=now
    )


class TestCommitment:
    """Tests for moving funds commitments."""

    def test_commitment_recorded(self, harness, main_utxo) -> None:
        """Test the commitment hash is stored on the wallet."""
        commitment = harness.bridge.submit_moving_funds_commitment(
            WALLET_PKH, main_utxo, TARGETS
        )
        assert commitment == target_wallets_hash(TARGETS)
        wallet = harness.state.wallets[WALLET_PKH]
        assert wallet.moving_funds_target_wallets_commitment_hash == commitment

    def test_target_count(self, harness, main_utxo) -> None:
        """Test the target count follows the wallet balance."""
        with pytest.raises(ReconciliationError, match="other than expected: 2 != 3"):
            harness.bridge.submit_moving_funds_commitment(WALLET_PKH, main_utxo, TARGETS[:2])

    def test_target_count_bounded_by_live_wallets(self, harness, main_utxo, config) -> None:
        """Test the target count is capped by Live wallets."""
        config.wallet.max_btc_transfer = 1_000
        harness.bridge.submit_moving_funds_commitment(WALLET_PKH, main_utxo, TARGETS)

    def test_ascending_order(self, harness, main_utxo) -> None:
        """Test targets must be in ascending order."""
        with pytest.raises(ReconciliationError, match="ascending order"):
            harness.bridge.submit_moving_funds_commitment(
                WALLET_PKH, main_utxo, [TARGETS[1], TARGETS[0], TARGETS[2]]
            )

    def test_source_not_a_target(self, harness, main_utxo) -> None:
        """Test the source wallet cannot be a target."""
        with pytest.raises(ReconciliationError, match="equal to the source"):
            harness.bridge.submit_moving_funds_commitment(
                WALLET_PKH, main_utxo, [TARGETS[0], TARGETS[1], WALLET_PKH]
            )

    def test_targets_must_be_live(self, harness, main_utxo) -> None:
        """Test every target must be Live."""
        with pytest.raises(ReconciliationError, match="must be Live"):
            harness.bridge.submit_moving_funds_commitment(
                WALLET_PKH, main_utxo, [TARGETS[0], TARGETS[1], b"\x44" * 20]
            )

    def test_target_length(self, harness, main_utxo) -> None:
        """Test targets must be 20-byte key hashes."""
        with pytest.raises(MalformedInputError, match="20 bytes"):
            harness.bridge.submit_moving_funds_commitment(
                WALLET_PKH, main_utxo, [TARGETS[0], TARGETS[1], b"\x44" * 32]
            )

    def test_no_live_wallets(self, harness, main_utxo) -> None:
        """Test a commitment needs at least one Live wallet."""
        for target in TARGETS:
            harness.state.wallets[target].state = WalletState.CLOSING
        with pytest.raises(ReconciliationError, match="No Live wallets"):
            harness.bridge.submit_moving_funds_commitment(WALLET_PKH, main_utxo, [])

    def test_single_use(self, harness, committed) -> None:
        """Test a wallet commits once."""
        with pytest.raises(StaleProofError, match="already submitted"):
            harness.bridge.submit_moving_funds_commitment(WALLET_PKH, committed, TARGETS)

    def test_pending_redemptions_block_commitment(self, harness, main_utxo) -> None:
        """Test pending redemptions block a commitment."""
        harness.state.wallets[WALLET_PKH].pending_redemptions_value = 1
        with pytest.raises(ReconciliationError, match="pending redemptions"):
            harness.bridge.submit_moving_funds_commitment(WALLET_PKH, main_utxo, TARGETS)

    def test_source_must_be_moving_funds(self, harness, main_utxo) -> None:
        """Test only a MovingFunds wallet commits."""
        harness.state.wallets[WALLET_PKH].state = WalletState.LIVE
        with pytest.raises(WalletStateError, match="MovingFunds"):
            harness.bridge.submit_moving_funds_commitment(WALLET_PKH, main_utxo, TARGETS)


class TestMovingFundsProof:
    """Tests for moving funds proofs."""

    def test_even_split(self, harness, committed) -> None:
        """Test 300,003 sats over three targets must pay 100,001 each."""
        tx = moving_funds_tx(harness, committed, [100_001] * 3)

        submit(harness, tx, committed)

        wallet = harness.state.wallets[WALLET_PKH]
        assert wallet.state == WalletState.CLOSING
        assert wallet.closing_started_at == NOW
        assert wallet.main_utxo_hash is None
        assert wallet.moving_funds_target_wallets_commitment_hash is None
        assert isinstance(harness.bridge.events[-1], MovingFundsCompleted)

    def test_remainder_within_range(self, harness, committed) -> None:
        """Test shares may carry the remainder."""
        tx = moving_funds_tx(harness, committed, [100_002, 100_001, 100_001])
        submit(harness, tx, committed)

    @pytest.mark.parametrize(
        "values", [[100_000, 100_001, 100_002], [100_003, 100_000, 100_000]]
    )
    def test_uneven_split(self, harness, committed, values) -> None:
        """Test uneven shares are refused."""
        tx = moving_funds_tx(harness, committed, values)
        with pytest.raises(ReconciliationError, match="not distributed evenly"):
            submit(harness, tx, committed)
        assert harness.state.wallets[WALLET_PKH].state == WalletState.MOVING_FUNDS

    def test_target_order_matters(self, harness, committed) -> None:
        """Test outputs must follow the committed order."""
        tx = moving_funds_tx(
            harness, committed, [100_001] * 3, targets=[TARGETS[1], TARGETS[0], TARGETS[2]]
        )
        with pytest.raises(ReconciliationError, match="commitment"):
            submit(harness, tx, committed)

    def test_missing_target(self, harness, committed) -> None:
        """Test every committed target must be paid."""
        tx = moving_funds_tx(harness, committed, [150_000] * 2)
        with pytest.raises(ReconciliationError, match="commitment"):
            submit(harness, tx, committed)

    def test_p2pkh_targets(self, harness, committed) -> None:
        """Test targets may be paid to P2PKH scripts."""
        outputs = [TxOutput(value=100_001, script=p2pkh_script(t)) for t in TARGETS]
        submit(harness, harness.outbound_tx(committed, outputs), committed)

    def test_script_hash_output(self, harness, committed) -> None:
        """Test script hash outputs are refused."""
        outputs = [TxOutput(value=100_001, script=p2wpkh_script(t)) for t in TARGETS[:2]]
        outputs.append(TxOutput(value=100_001, script=p2sh_script(TARGETS[2])))
        with pytest.raises(MalformedInputError, match="Output 2"):
            submit(harness, harness.outbound_tx(committed, outputs), committed)

    def test_fee_too_high(self, harness, committed) -> None:
        """Test the moving funds fee is capped."""
        tx = moving_funds_tx(harness, committed, [60_000] * 3)
        with pytest.raises(ReconciliationError, match="fee is too high"):
            submit(harness, tx, committed)

    def test_commitment_required(self, harness, main_utxo) -> None:
        """Test a proof needs a prior commitment."""
        tx = moving_funds_tx(harness, main_utxo, [100_001] * 3)
        with pytest.raises(ReconciliationError, match="commitment must be submitted"):
            submit(harness, tx, main_utxo)

    def test_mismatched_input(self, harness, committed) -> None:
        """Test the input must be the main UTXO."""
        tx = BitcoinTx.from_parts(
            [TxInput(prev_tx_hash=b"\x13" * 32, prev_output_index=0)],
            [TxOutput(value=100_001, script=p2wpkh_script(t)) for t in TARGETS],
        )
        with pytest.raises(ReconciliationError, match="main UTXO"):
            submit(harness, tx, committed)

    def test_replay_is_stale(self, harness, committed) -> None:
        """Test a moving funds proof is applied once."""
        tx = moving_funds_tx(harness, committed, [100_001] * 3)
        proof = harness.prove(tx)
        harness.bridge.submit_moving_funds_proof(tx, proof, committed, WALLET_PKH, now=NOW)
        with pytest.raises(StaleProofError):
            harness.bridge.submit_moving_funds_proof(tx, proof, committed, WALLET_PKH, now=NOW)


class TestLifecycleTimeouts:
    """Tests for moving funds timeouts and the closing period."""

    def test_moving_funds_timeout(self, harness, registry, main_utxo) -> None:
        """Test a wallet that never moves its funds is terminated."""
        with pytest.raises(ReconciliationError, match="not timed out"):
            harness.bridge.notify_moving_funds_timeout(WALLET_PKH, now=NOW + 7 * DAY)

        harness.bridge.notify_moving_funds_timeout(WALLET_PKH, now=NOW + 7 * DAY + 1)

        assert harness.state.wallets[WALLET_PKH].state == WalletState.TERMINATED
        assert registry.closed == [WALLET_PKH]
        assert isinstance(harness.bridge.events[-1], MovingFundsTimedOut)

    def test_moving_funds_timeout_requires_state(self, harness) -> None:
        """Test only a MovingFunds wallet times out."""
        with pytest.raises(WalletStateError):
            harness.bridge.notify_moving_funds_timeout(WALLET_PKH, now=NOW + 30 * DAY)

    def test_closing_period(self, harness, registry, committed) -> None:
        """Test a closing wallet closes once the period elapses."""
        submit(harness, moving_funds_tx(harness, committed, [100_001] * 3), committed)

        with pytest.raises(ReconciliationError, match="not elapsed"):
            harness.bridge.notify_wallet_closing_period_elapsed(WALLET_PKH, now=NOW + 40 * DAY)

        harness.bridge.notify_wallet_closing_period_elapsed(WALLET_PKH, now=NOW + 40 * DAY + 1)

        assert harness.state.wallets[WALLET_PKH].state == WalletState.CLOSED
        assert registry.closed == [WALLET_PKH]

    def test_empty_wallet_closes_directly(self, harness) -> None:
        """Test a wallet without a main UTXO goes straight to Closing."""
        wallet = harness.state.wallets[WALLET_PKH]
        move_to_moving_funds(harness.state, wallet, NOW)
        assert wallet.state == WalletState.CLOSING
        assert wallet.closing_started_at == NOW


class TestEndToEnd:
    """Tests spanning several operations."""

    def test_timed_out_redemption_leads_to_moving_funds(self, harness, bank, registry) -> None:
        """Test a timed out redemption drives the wallet through moving funds to Closed."""
        for target in TARGETS:
            harness.register_wallet(target)
        depositor = "0x934b98637ca318a4d6e7ca6ffd1690b8e77df637"
        redeemer_script = p2wpkh_script(b"\x55" * 20)

        main_utxo = harness.fund_wallet(305_000)
        harness.bridge.request_redemption(
            WALLET_PKH, main_utxo, depositor, redeemer_script, 100_000, now=NOW
        )
        harness.bridge.notify_redemption_timeout(WALLET_PKH, redeemer_script, now=NOW + 6 * DAY)
        assert harness.state.wallets[WALLET_PKH].state == WalletState.MOVING_FUNDS
        assert bank.balance_of(depositor) == 305_000 - 152

        harness.bridge.submit_moving_funds_commitment(WALLET_PKH, main_utxo, TARGETS)
        tx = moving_funds_tx(harness, main_utxo, [100_001] * 3)
        submit(harness, tx, main_utxo, now=NOW + 7 * DAY)
        harness.bridge.notify_wallet_closing_period_elapsed(WALLET_PKH, now=NOW + 48 * DAY)

        assert harness.state.wallets[WALLET_PKH].state == WalletState.CLOSED
        assert registry.closed == [WALLET_PKH]
        states = [e.state for e in harness.bridge.events if e.name == "WalletStateChanged"]
        assert states == ["moving_funds", "closing", "closed"]
