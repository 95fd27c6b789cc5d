"""
Script construction and recognition.

Builds the deposit locking script and the four standard output templates,
and classifies arbitrary output scripts so that only spendable, standard
destinations are accepted.
"""

from __future__ import annotations

from enum import Enum

import base58
import bech32

from btccore.constants import (
    OP_0,
    OP_CHECKLOCKTIMEVERIFY,
    OP_CHECKSIG,
    OP_DROP,
    OP_DUP,
    OP_ELSE,
    OP_ENDIF,
    OP_EQUAL,
    OP_EQUALVERIFY,
    OP_HASH160,
    OP_IF,
    OP_PUSHDATA1,
    OP_PUSHDATA2,
    OP_PUSHDATA4,
)
from btccore.crypto import hash160, sha256
from btccore.models import NetworkType


class ScriptType(str, Enum):
    P2PKH = "p2pkh"
    P2WPKH = "p2wpkh"
    P2SH = "p2sh"
    P2WSH = "p2wsh"


BECH32_HRP = {
    NetworkType.MAINNET: "bc",
    NetworkType.TESTNET: "tb",
    NetworkType.SIGNET: "tb",
    NetworkType.REGTEST: "bcrt",
}

# (P2PKH, P2SH) base58 version bytes
BASE58_VERSIONS = {
    NetworkType.MAINNET: (0x00, 0x05),
    NetworkType.TESTNET: (0x6F, 0xC4),
    NetworkType.SIGNET: (0x6F, 0xC4),
    NetworkType.REGTEST: (0x6F, 0xC4),
}


def push_data(data: bytes) -> bytes:
    """Minimal push of data onto the script stack."""
    length = len(data)
    if length < OP_PUSHDATA1:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([OP_PUSHDATA1, length]) + data
    if length <= 0xFFFF:
        return bytes([OP_PUSHDATA2]) + length.to_bytes(2, "little") + data
    return bytes([OP_PUSHDATA4]) + length.to_bytes(4, "little") + data


def p2pkh_script(pubkey_hash: bytes) -> bytes:
    """OP_DUP OP_HASH160 <20> OP_EQUALVERIFY OP_CHECKSIG"""
    _check_length(pubkey_hash, 20, "public key hash")
    return bytes([OP_DUP, OP_HASH160, 0x14]) + pubkey_hash + bytes([OP_EQUALVERIFY, OP_CHECKSIG])


def p2wpkh_script(pubkey_hash: bytes) -> bytes:
    """OP_0 <20>"""
    _check_length(pubkey_hash, 20, "public key hash")
    return bytes([OP_0, 0x14]) + pubkey_hash


def p2sh_script(script_hash: bytes) -> bytes:
    """OP_HASH160 <20> OP_EQUAL"""
    _check_length(script_hash, 20, "script hash")
    return bytes([OP_HASH160, 0x14]) + script_hash + bytes([OP_EQUAL])


def p2wsh_script(script_hash: bytes) -> bytes:
    """OP_0 <32>"""
    _check_length(script_hash, 32, "script hash")
    return bytes([OP_0, 0x20]) + script_hash


def _check_length(data: bytes, expected: int, what: str) -> None:
    if len(data) != expected:
        raise ValueError(f"{what} must be {expected} bytes, got {len(data)}")


def build_deposit_script(
    depositor: bytes,
    blinding_factor: bytes,
    wallet_pubkey_hash: bytes,
    refund_pubkey_hash: bytes,
    refund_locktime: bytes,
) -> bytes:
    """
    Build the deposit locking script.

    The funds are spendable by the wallet key, or by the refund key once the
    refund locktime passes:

        <depositor> DROP <blinding factor> DROP
        DUP HASH160 <wallet PKH> EQUAL
        IF
            CHECKSIG
        ELSE
            DUP HASH160 <refund PKH> EQUALVERIFY
            <locktime> CHECKLOCKTIMEVERIFY DROP
            CHECKSIG
        ENDIF

    Args:
        depositor: 20-byte account address credited after the sweep
        blinding_factor: 8 bytes making the script unique per deposit
        wallet_pubkey_hash: 20-byte HASH160 of the wallet's compressed key
        refund_pubkey_hash: 20-byte HASH160 of the depositor's refund key
        refund_locktime: 4-byte little-endian unix timestamp
    """
    _check_length(depositor, 20, "depositor")
    _check_length(blinding_factor, 8, "blinding factor")
    _check_length(wallet_pubkey_hash, 20, "wallet public key hash")
    _check_length(refund_pubkey_hash, 20, "refund public key hash")
    _check_length(refund_locktime, 4, "refund locktime")

    return (
        push_data(depositor)
        + bytes([OP_DROP])
        + push_data(blinding_factor)
        + bytes([OP_DROP, OP_DUP, OP_HASH160])
        + push_data(wallet_pubkey_hash)
        + bytes([OP_EQUAL, OP_IF, OP_CHECKSIG, OP_ELSE, OP_DUP, OP_HASH160])
        + push_data(refund_pubkey_hash)
        + bytes([OP_EQUALVERIFY])
        + push_data(refund_locktime)
        + bytes([OP_CHECKLOCKTIMEVERIFY, OP_DROP, OP_CHECKSIG, OP_ENDIF])
    )


def deposit_script_hash(script: bytes, witness: bool) -> bytes:
    """SHA256 for P2WSH, HASH160 for P2SH."""
    return sha256(script) if witness else hash160(script)


def deposit_locking_script(script: bytes, witness: bool = True) -> bytes:
    """Output script a depositor funds for the given deposit script."""
    script_hash = deposit_script_hash(script, witness)
    return p2wsh_script(script_hash) if witness else p2sh_script(script_hash)


def classify_output_script(script: bytes) -> tuple[ScriptType | None, bytes]:
    """
    Recognize a standard output script.

    Returns:
        (type, payload) where payload is the 20 or 32-byte hash, or
        (None, b"") for anything non-standard
    """
    length = len(script)
    if (
        length == 25
        and script[:3] == bytes([OP_DUP, OP_HASH160, 0x14])
        and script[23:] == bytes([OP_EQUALVERIFY, OP_CHECKSIG])
    ):
        return ScriptType.P2PKH, script[3:23]
    if length == 22 and script[:2] == bytes([OP_0, 0x14]):
        return ScriptType.P2WPKH, script[2:]
    if length == 23 and script[:2] == bytes([OP_HASH160, 0x14]) and script[22] == OP_EQUAL:
        return ScriptType.P2SH, script[2:22]
    if length == 34 and script[:2] == bytes([OP_0, 0x20]):
        return ScriptType.P2WSH, script[2:]
    return None, b""


def extract_script_hash(script: bytes) -> bytes:
    """Payload of a standard output script, empty when non-standard."""
    return classify_output_script(script)[1]


def extract_pubkey_hash(script: bytes) -> bytes:
    """Payload of a P2PKH or P2WPKH script, empty for any other type."""
    script_type, payload = classify_output_script(script)
    if script_type in (ScriptType.P2PKH, ScriptType.P2WPKH):
        return payload
    return b""


def is_wallet_script(script: bytes, wallet_pubkey_hash: bytes) -> bool:
    """True if script is the wallet's own P2PKH or P2WPKH script."""
    return script in (p2pkh_script(wallet_pubkey_hash), p2wpkh_script(wallet_pubkey_hash))


def script_to_address(script: bytes, network: NetworkType = NetworkType.MAINNET) -> str:
    """
    Convert a standard output script to an address.

    Raises:
        ValueError: If the script is not one of the standard types
    """
    script_type, payload = classify_output_script(script)
    if script_type in (ScriptType.P2WPKH, ScriptType.P2WSH):
        result = bech32.encode(BECH32_HRP[network], 0, payload)
        if result is None:
            raise ValueError(f"Failed to encode segwit address: {script.hex()}")
        return result

    pkh_version, sh_version = BASE58_VERSIONS[network]
    if script_type == ScriptType.P2PKH:
        return base58.b58encode_check(bytes([pkh_version]) + payload).decode()
    if script_type == ScriptType.P2SH:
        return base58.b58encode_check(bytes([sh_version]) + payload).decode()

    raise ValueError(f"Unsupported scriptPubKey: {script.hex()}")


def address_to_script(address: str) -> bytes:
    """
    Convert an address to its output script.

    Supports P2PKH, P2SH, P2WPKH and P2WSH on all networks.
    """
    if address.lower().startswith(("bc1", "tb1", "bcrt1")):
        hrp = "bcrt" if address.lower().startswith("bcrt") else address[:2].lower()
        witver, witprog = bech32.decode(hrp, address)
        if witver is None or witprog is None:
            raise ValueError(f"Invalid bech32 address: {address}")
        program = bytes(witprog)
        if witver == 0 and len(program) == 20:
            return p2wpkh_script(program)
        if witver == 0 and len(program) == 32:
            return p2wsh_script(program)
        raise ValueError(f"Unsupported witness program: version {witver}, {len(program)} bytes")

    decoded = base58.b58decode_check(address)
    version, payload = decoded[0], decoded[1:]
    if version in (0x00, 0x6F):
        return p2pkh_script(payload)
    if version in (0x05, 0xC4):
        return p2sh_script(payload)
    raise ValueError(f"Unknown address version: {version}")
