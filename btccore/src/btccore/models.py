"""
Shared data models using Pydantic for validation.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator

from btccore.constants import HASH_LENGTH


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"


class UTXO(BaseModel):
    """
    Reference to a Bitcoin transaction output.

    transaction_hash is kept in internal byte order (as produced by hash256),
    use `txid` for the reversed display form.
    """

    transaction_hash: bytes = Field(..., min_length=HASH_LENGTH, max_length=HASH_LENGTH)
    output_index: int = Field(..., ge=0, le=0xFFFFFFFF)
    value: int = Field(..., ge=0, le=0xFFFFFFFFFFFFFFFF)

    model_config = {"frozen": True}

    @field_validator("transaction_hash", mode="before")
    @classmethod
    def parse_hex_hash(cls, v: bytes | str) -> bytes:
        if isinstance(v, str):
            return bytes.fromhex(v)
        return v

    @property
    def txid(self) -> str:
        return self.transaction_hash[::-1].hex()

    @property
    def outpoint(self) -> tuple[bytes, int]:
        return self.transaction_hash, self.output_index

    def serialize(self) -> bytes:
        """tx hash || output index (LE32) || value (LE64)"""
        return (
            self.transaction_hash
            + self.output_index.to_bytes(4, "little")
            + self.value.to_bytes(8, "little")
        )
