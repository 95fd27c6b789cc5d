"""
Tests for script templates, recognition and addresses.
"""

from __future__ import annotations

import pytest

from btccore.crypto import hash160, sha256
from btccore.models import NetworkType
from btccore.script import (
    ScriptType,
    address_to_script,
    build_deposit_script,
    classify_output_script,
    deposit_locking_script,
    extract_pubkey_hash,
    extract_script_hash,
    is_wallet_script,
    p2pkh_script,
    p2sh_script,
    p2wpkh_script,
    p2wsh_script,
    push_data,
    script_to_address,
)

PKH = bytes.fromhex("751e76e8199196d454941c45d1b3a323f1433bd6")

DEPOSITOR = bytes.fromhex("934b98637ca318a4d6e7ca6ffd1690b8e77df637")
BLINDING_FACTOR = bytes.fromhex("f9f0c90d00039523")
WALLET_PKH = bytes.fromhex("8db50eb52063ea9d98b3eac91489a90f738986f6")
REFUND_PKH = bytes.fromhex("28e081f285138ccbe389c1eb8985716230129f89")
REFUND_LOCKTIME = bytes.fromhex("60bcea61")


class TestTemplates:
    """Tests for standard output script builders."""

    def test_p2pkh(self) -> None:
        """Test the P2PKH template."""
        script = p2pkh_script(PKH)
        assert script == bytes.fromhex("76a914" + PKH.hex() + "88ac")
        assert classify_output_script(script) == (ScriptType.P2PKH, PKH)

    def test_p2wpkh(self) -> None:
        """Test the P2WPKH template."""
        script = p2wpkh_script(PKH)
        assert script.hex() == "0014751e76e8199196d454941c45d1b3a323f1433bd6"
        assert classify_output_script(script) == (ScriptType.P2WPKH, PKH)

    def test_p2sh(self) -> None:
        """Test the P2SH template."""
        script = p2sh_script(PKH)
        assert script == bytes.fromhex("a914" + PKH.hex() + "87")
        assert classify_output_script(script) == (ScriptType.P2SH, PKH)

    def test_p2wsh(self) -> None:
        """Test the P2WSH template."""
        script_hash = sha256(b"script")
        script = p2wsh_script(script_hash)
        assert classify_output_script(script) == (ScriptType.P2WSH, script_hash)

    def test_wrong_payload_length(self) -> None:
        """Test builders refuse payloads of the wrong size."""
        with pytest.raises(ValueError, match="20 bytes"):
            p2wpkh_script(b"\x00" * 19)
        with pytest.raises(ValueError, match="32 bytes"):
            p2wsh_script(b"\x00" * 20)


class TestRecognition:
    """Tests for output script classification."""

    @pytest.mark.parametrize(
        "script",
        [
            b"",
            b"\x6a\x04test",  # OP_RETURN
            bytes.fromhex("0014") + b"\x00" * 19,  # short witness program
            bytes.fromhex("76a914") + PKH + bytes.fromhex("88ad"),  # CHECKSIGVERIFY
            bytes.fromhex("5114") + PKH,  # witness v1 with 20 bytes
        ],
    )
    def test_non_standard(self, script) -> None:
        """Test non-standard scripts classify as nothing."""
        assert classify_output_script(script) == (None, b"")
        assert extract_script_hash(script) == b""
        assert extract_pubkey_hash(script) == b""

    def test_pubkey_hash_only_for_key_templates(self) -> None:
        """Test public key hashes come only from key templates."""
        assert extract_pubkey_hash(p2pkh_script(PKH)) == PKH
        assert extract_pubkey_hash(p2wpkh_script(PKH)) == PKH
        assert extract_pubkey_hash(p2sh_script(PKH)) == b""
        assert extract_script_hash(p2sh_script(PKH)) == PKH

    def test_is_wallet_script(self) -> None:
        """Test wallet scripts are the P2PKH and P2WPKH of its key hash."""
        assert is_wallet_script(p2pkh_script(PKH), PKH)
        assert is_wallet_script(p2wpkh_script(PKH), PKH)
        assert not is_wallet_script(p2sh_script(PKH), PKH)
        assert not is_wallet_script(p2wpkh_script(WALLET_PKH), PKH)


class TestPushData:
    """Tests for minimal data pushes."""

    def test_direct_push(self) -> None:
        """Test up to 75 bytes push directly."""
        assert push_data(b"\xaa" * 75) == b"\x4b" + b"\xaa" * 75

    def test_pushdata1(self) -> None:
        """Test 76 bytes use OP_PUSHDATA1."""
        assert push_data(b"\xaa" * 76)[:2] == b"\x4c\x4c"

    def test_pushdata2(self) -> None:
        """Test 256 bytes use OP_PUSHDATA2."""
        assert push_data(b"\xaa" * 256)[:3] == b"\x4d\x00\x01"


class TestDepositScript:
    """Tests for the deposit script."""

    def test_layout(self) -> None:
        """Test the deposit script byte layout."""
        script = build_deposit_script(
            DEPOSITOR, BLINDING_FACTOR, WALLET_PKH, REFUND_PKH, REFUND_LOCKTIME
        )
        expected = (
            "14" + DEPOSITOR.hex() + "75"
            "08" + BLINDING_FACTOR.hex() + "75"
            "76a914" + WALLET_PKH.hex() + "87"
            "63ac6776a914" + REFUND_PKH.hex() + "88"
            "04" + REFUND_LOCKTIME.hex() + "b175ac68"
        )
        assert script.hex() == expected
        assert len(script) == 92

    def test_blinding_factor_changes_hash(self) -> None:
        """Test the blinding factor makes deposit scripts distinct."""
        first = build_deposit_script(
            DEPOSITOR, BLINDING_FACTOR, WALLET_PKH, REFUND_PKH, REFUND_LOCKTIME
        )
        second = build_deposit_script(
            DEPOSITOR, b"\x00" * 8, WALLET_PKH, REFUND_PKH, REFUND_LOCKTIME
        )
        assert hash160(first) != hash160(second)

    def test_locking_scripts(self) -> None:
        """Test P2WSH and P2SH locking of a deposit script."""
        script = build_deposit_script(
            DEPOSITOR, BLINDING_FACTOR, WALLET_PKH, REFUND_PKH, REFUND_LOCKTIME
        )
        assert deposit_locking_script(script, witness=True) == p2wsh_script(sha256(script))
        assert deposit_locking_script(script, witness=False) == p2sh_script(hash160(script))

    def test_rejects_bad_field_sizes(self) -> None:
        """Test deposit fields must have their exact sizes."""
        with pytest.raises(ValueError, match="blinding factor"):
            build_deposit_script(DEPOSITOR, b"\x00" * 7, WALLET_PKH, REFUND_PKH, REFUND_LOCKTIME)
        with pytest.raises(ValueError, match="refund locktime"):
            build_deposit_script(DEPOSITOR, BLINDING_FACTOR, WALLET_PKH, REFUND_PKH, b"\x00" * 8)


class TestAddresses:
    """Tests for address encoding and decoding."""

    def test_bech32_vector(self) -> None:
        """Test the BIP173 P2WPKH vector."""
        assert (
            script_to_address(p2wpkh_script(PKH))
            == "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"
        )
        assert address_to_script("bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4") == p2wpkh_script(
            PKH
        )

    def test_base58_vector(self) -> None:
        """Test a mainnet P2PKH vector."""
        pkh = bytes.fromhex("010966776006953d5567439e5e39f86a0d273bee")
        assert script_to_address(p2pkh_script(pkh)) == "16UwLL9Risc3QfPqBUvKofHmBQ7wMtjvM"
        assert address_to_script("16UwLL9Risc3QfPqBUvKofHmBQ7wMtjvM") == p2pkh_script(pkh)

    def test_regtest_script_hash_addresses(self) -> None:
        """Test regtest script hash addresses decode back."""
        p2sh = p2sh_script(PKH)
        p2wsh = p2wsh_script(sha256(b"deposit"))

        p2sh_address = script_to_address(p2sh, NetworkType.REGTEST)
        p2wsh_address = script_to_address(p2wsh, NetworkType.REGTEST)

        assert p2sh_address.startswith("2")
        assert p2wsh_address.startswith("bcrt1q")
        assert address_to_script(p2sh_address) == p2sh
        assert address_to_script(p2wsh_address) == p2wsh

    def test_non_standard_has_no_address(self) -> None:
        """Test non-standard scripts have no address."""
        with pytest.raises(ValueError, match="Unsupported"):
            script_to_address(b"\x6a\x00")
