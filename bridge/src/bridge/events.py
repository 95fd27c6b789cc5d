"""
Domain events and the ordered outbox off-chain indexers consume.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import ClassVar

from loguru import logger
from pydantic import BaseModel, Field


class BridgeEvent(BaseModel):
    name: ClassVar[str] = "BridgeEvent"

    wallet_pubkey_hash: bytes = Field(..., min_length=20, max_length=20)

    model_config = {"frozen": True}

    def to_dict(self) -> dict:
        """Flat representation with bytes as hex, for indexers."""
        data = {"event": self.name}
        for key, value in self.model_dump().items():
            if isinstance(value, bytes):
                value = value.hex()
            elif isinstance(value, list):
                value = [v.hex() if isinstance(v, bytes) else v for v in value]
            data[key] = value
        return data


class NewWalletRegistered(BridgeEvent):
    name: ClassVar[str] = "NewWalletRegistered"


class DepositRevealed(BridgeEvent):
    name: ClassVar[str] = "DepositRevealed"

    funding_tx_hash: bytes
    funding_output_index: int
    depositor: str
    amount: int
    blinding_factor: bytes
    refund_pubkey_hash: bytes
    refund_locktime: bytes
    vault: str | None = None


class DepositsSwept(BridgeEvent):
    name: ClassVar[str] = "DepositsSwept"

    sweep_tx_hash: bytes


class RedemptionRequested(BridgeEvent):
    name: ClassVar[str] = "RedemptionRequested"

    redeemer_output_script: bytes
    redeemer: str
    requested_amount: int
    treasury_fee: int
    tx_max_fee: int


class RedemptionsCompleted(BridgeEvent):
    name: ClassVar[str] = "RedemptionsCompleted"

    redemption_tx_hash: bytes


class RedemptionTimedOut(BridgeEvent):
    name: ClassVar[str] = "RedemptionTimedOut"

    redeemer_output_script: bytes


class MovingFundsCommitmentSubmitted(BridgeEvent):
    name: ClassVar[str] = "MovingFundsCommitmentSubmitted"

    target_wallets: list[bytes]


class MovingFundsCompleted(BridgeEvent):
    name: ClassVar[str] = "MovingFundsCompleted"

    moving_funds_tx_hash: bytes


class MovingFundsTimedOut(BridgeEvent):
    name: ClassVar[str] = "MovingFundsTimedOut"


class WalletStateChanged(BridgeEvent):
    name: ClassVar[str] = "WalletStateChanged"

    state: str


class EventLog:
    """
    Append-only, ordered outbox.

    Subscribers are called synchronously after each append; a failing
    subscriber is logged and does not affect the settled operation.
    """

    def __init__(self) -> None:
        self._events: list[BridgeEvent] = []
        self._subscribers: list[Callable[[int, BridgeEvent], None]] = []

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self):
        return iter(self._events)

    def __getitem__(self, index: int) -> BridgeEvent:
        return self._events[index]

    def append(self, event: BridgeEvent) -> int:
        self._events.append(event)
        position = len(self._events) - 1
        logger.debug(f"Event #{position} {event.name} for wallet {event.wallet_pubkey_hash.hex()}")
        for subscriber in list(self._subscribers):
            try:
                subscriber(position, event)
            except Exception as e:
                logger.error(f"Event subscriber failed on {event.name}: {e}")
        return position

    def subscribe(self, callback: Callable[[int, BridgeEvent], None]) -> None:
        self._subscribers.append(callback)

    def since(self, position: int) -> list[BridgeEvent]:
        return self._events[position:]

    def of_type(self, event_type: type[BridgeEvent]) -> list[BridgeEvent]:
        return [e for e in self._events if isinstance(e, event_type)]
