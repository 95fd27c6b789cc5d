"""
Wallet registry interface.

Wallet creation, heartbeats and key generation happen outside the bridge.
The registry calls Bridge.on_new_wallet_created when a wallet is ready and
is told when the bridge is done with one.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class WalletRegistry(ABC):
    @abstractmethod
    def close_wallet(self, wallet_pubkey_hash: bytes) -> None:
        """Release the signing group behind the wallet"""


class InMemoryWalletRegistry(WalletRegistry):
    def __init__(self) -> None:
        self.closed: list[bytes] = []

    def close_wallet(self, wallet_pubkey_hash: bytes) -> None:
        self.closed.append(wallet_pubkey_hash)
