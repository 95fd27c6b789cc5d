"""
Hash primitives and public key helpers.
"""

from __future__ import annotations

import hashlib

from coincurve import PublicKey


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hash256(data: bytes) -> bytes:
    """SHA256(SHA256(data)), the Bitcoin transaction and header hash."""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


def is_compressed_public_key(pubkey: bytes) -> bool:
    """Check that pubkey is a 33-byte compressed secp256k1 point."""
    if len(pubkey) != 33 or pubkey[0] not in (0x02, 0x03):
        return False
    try:
        PublicKey(pubkey)
    except ValueError:
        return False
    return True


def compressed_pubkey_hash(pubkey: bytes) -> bytes:
    """
    HASH160 of a public key in compressed form.

    Uncompressed keys are accepted and compressed first, so the result always
    matches what a P2WPKH output for the same key would carry.
    """
    try:
        compressed = PublicKey(pubkey).format(compressed=True)
    except ValueError as e:
        raise ValueError(f"Invalid public key: {pubkey.hex()}") from e
    return hash160(compressed)
