"""
bridge - BTC bridge bookkeeping

Reconciles SPV-proven Bitcoin transactions (deposit sweeps, redemptions and
moving funds) with deposit, redemption and wallet records.
"""

__version__ = "0.1.0"

from bridge.bank import Bank, InMemoryBank, InsufficientBalance
from bridge.bridge import Bridge
from bridge.config import BridgeConfig, BridgeSettings, get_settings
from bridge.errors import (
    BridgeError,
    MalformedInputError,
    ProofVerificationError,
    ReconciliationError,
    StaleProofError,
    WalletStateError,
)
from bridge.events import BridgeEvent, EventLog
from bridge.models import DepositRequest, RedemptionRequest, RevealInfo, Wallet, WalletState
from bridge.registry import InMemoryWalletRegistry, WalletRegistry
from bridge.state import BridgeState

__all__ = [
    "Bank",
    "Bridge",
    "BridgeConfig",
    "BridgeError",
    "BridgeEvent",
    "BridgeSettings",
    "BridgeState",
    "DepositRequest",
    "EventLog",
    "InMemoryBank",
    "InMemoryWalletRegistry",
    "InsufficientBalance",
    "MalformedInputError",
    "ProofVerificationError",
    "ReconciliationError",
    "RedemptionRequest",
    "RevealInfo",
    "StaleProofError",
    "Wallet",
    "WalletRegistry",
    "WalletState",
    "get_settings",
]
