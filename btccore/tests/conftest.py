"""
Pytest configuration and fixtures for btccore tests.
"""

from __future__ import annotations

import pytest

from btccore import spv

# Genesis block coinbase and header
GENESIS_TX = bytes.fromhex(
    "01000000010000000000000000000000000000000000000000000000000000000000000000ffffffff"
    "4d04ffff001d0104455468652054696d65732030332f4a616e2f32303039204368616e63656c6c6f72"
    "206f6e206272696e6b206f66207365636f6e64206261696c6f757420666f722062616e6b73ffffffff"
    "0100f2052a01000000434104678afdb0fe5548271967f1a67130b7105cd6a828e03909a67962e0ea1f"
    "61deb649f6bc3f4cef38c4f35504e51ec112de5c384df7ba0b8d578a4c702b6bf11d5fac00000000"
)
GENESIS_HEADER = bytes.fromhex(
    "0100000000000000000000000000000000000000000000000000000000000000000000003ba3edfd"
    "7a7b12b27ac72c3e67768f617fc81bc3888a51323a9fb8aa4b1e5e4a29ab5f49ffff001d1dac2b7c"
)


@pytest.fixture
def genesis_tx() -> bytes:
    """Raw genesis coinbase transaction."""
    return GENESIS_TX


@pytest.fixture
def genesis_header() -> bytes:
    """Raw 80-byte genesis block header."""
    return GENESIS_HEADER


@pytest.fixture
def easy_difficulty(monkeypatch: pytest.MonkeyPatch) -> int:
    """
    Rescale difficulty so regtest headers (bits 0x207fffff) weigh 2 instead of 0.

    Returns:
        Difficulty of a regtest header
    """
    monkeypatch.setattr(spv, "DIFF1_TARGET", 1 << 256)
    return 2
