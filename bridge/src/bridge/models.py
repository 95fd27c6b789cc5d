"""
Bridge records: wallets, deposits and redemption requests.
"""

from __future__ import annotations

from enum import Enum

from btccore.crypto import is_compressed_public_key
from pydantic import BaseModel, Field, field_validator

from bridge.config import ADDRESS_PATTERN


def _hex_to_bytes(v: bytes | str) -> bytes:
    if isinstance(v, str):
        return bytes.fromhex(v[2:] if v.startswith("0x") else v)
    return v


class WalletState(str, Enum):
    UNKNOWN = "unknown"
    LIVE = "live"
    MOVING_FUNDS = "moving_funds"
    CLOSING = "closing"
    CLOSED = "closed"
    TERMINATED = "terminated"


class Wallet(BaseModel):
    pubkey_hash: bytes = Field(..., min_length=20, max_length=20)
    main_utxo_hash: bytes | None = None
    pending_redemptions_value: int = Field(default=0, ge=0)
    state: WalletState = WalletState.LIVE
    created_at: int = 0
    moving_funds_requested_at: int | None = None
    closing_started_at: int | None = None
    moving_funds_target_wallets_commitment_hash: bytes | None = None

    model_config = {"frozen": False, "validate_assignment": True}

    @property
    def has_main_utxo(self) -> bool:
        return self.main_utxo_hash is not None


class RevealInfo(BaseModel):
    """Deposit parameters published by the depositor."""

    funding_output_index: int = Field(..., ge=0, le=0xFFFFFFFF)
    depositor: str = Field(..., pattern=ADDRESS_PATTERN)
    blinding_factor: bytes = Field(..., min_length=8, max_length=8)
    wallet_pubkey_hash: bytes = Field(..., min_length=20, max_length=20)
    refund_pubkey: bytes = Field(..., min_length=33, max_length=33)
    refund_locktime: bytes = Field(..., min_length=4, max_length=4)
    vault: str | None = Field(default=None, pattern=ADDRESS_PATTERN)

    model_config = {"frozen": True}

    @field_validator(
        "blinding_factor", "wallet_pubkey_hash", "refund_pubkey", "refund_locktime", mode="before"
    )
    @classmethod
    def parse_hex(cls, v: bytes | str) -> bytes:
        return _hex_to_bytes(v)

    @field_validator("refund_pubkey")
    @classmethod
    def validate_refund_pubkey(cls, v: bytes) -> bytes:
        if not is_compressed_public_key(v):
            raise ValueError("Refund public key must be compressed")
        return v

    @property
    def depositor_bytes(self) -> bytes:
        return bytes.fromhex(self.depositor[2:])

    @property
    def refund_locktime_value(self) -> int:
        return int.from_bytes(self.refund_locktime, "little")


class DepositRequest(BaseModel):
    depositor: str
    amount: int = Field(..., ge=0)
    wallet_pubkey_hash: bytes
    vault: str | None = None
    treasury_fee: int = Field(default=0, ge=0)
    revealed_at: int
    swept_at: int | None = None

    model_config = {"frozen": False}

    @property
    def is_swept(self) -> bool:
        return self.swept_at is not None


class RedemptionRequest(BaseModel):
    redeemer: str
    requested_amount: int = Field(..., gt=0)
    treasury_fee: int = Field(..., ge=0)
    tx_max_fee: int = Field(..., ge=0)
    requested_at: int

    model_config = {"frozen": True}

    @property
    def redeemable_amount(self) -> int:
        return self.requested_amount - self.treasury_fee

    def accepts_output_value(self, value: int) -> bool:
        """redeemable - tx_max_fee <= value <= redeemable"""
        redeemable = self.redeemable_amount
        return redeemable - self.tx_max_fee <= value <= redeemable
