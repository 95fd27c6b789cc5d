"""
Bridge configuration.

Runtime parameters are plain pydantic models so they can be built in code or
loaded from the environment through BridgeSettings.
"""

from __future__ import annotations

import re

from btccore.models import NetworkType
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ADDRESS_PATTERN = r"^0x[0-9a-fA-F]{40}$"
ZERO_ADDRESS = "0x" + "00" * 20


class DepositParameters(BaseModel):
    dust_threshold: int = Field(
        default=1_000_000, gt=0, description="Minimum deposit amount in satoshis"
    )
    treasury_fee_divisor: int = Field(
        default=2000, ge=0, description="amount // divisor goes to the treasury, 0 disables"
    )
    tx_max_fee: int = Field(
        default=100_000, ge=0, description="Maximum sweep tx fee share per deposit"
    )
    reveal_ahead_period: int = Field(
        default=15 * 24 * 60 * 60,
        ge=0,
        description="Deposits must be revealed this long before their refund locktime",
    )


class RedemptionParameters(BaseModel):
    dust_threshold: int = Field(
        default=1_000_000, gt=0, description="Minimum redemption amount in satoshis"
    )
    treasury_fee_divisor: int = Field(default=2000, ge=0)
    tx_max_fee: int = Field(
        default=100_000, ge=0, description="Maximum tx fee share a single redemption pays"
    )
    tx_max_total_fee: int = Field(
        default=1_000_000, ge=0, description="Maximum total fee of a redemption tx"
    )
    timeout: int = Field(default=5 * 24 * 60 * 60, gt=0, description="Seconds")

    @model_validator(mode="after")
    def validate_fees(self) -> RedemptionParameters:
        if self.tx_max_total_fee < self.tx_max_fee:
            raise ValueError("tx_max_total_fee must be >= tx_max_fee")
        return self


class MovingFundsParameters(BaseModel):
    tx_max_total_fee: int = Field(default=100_000, ge=0)
    timeout: int = Field(default=7 * 24 * 60 * 60, gt=0, description="Seconds")


class WalletParameters(BaseModel):
    max_btc_transfer: int = Field(
        default=1_000_000_000, gt=0, description="Maximum satoshis moved to a single target"
    )
    closing_period: int = Field(default=40 * 24 * 60 * 60, ge=0, description="Seconds")


class BridgeConfig(BaseModel):
    network: NetworkType = NetworkType.MAINNET

    bridge_address: str = Field(default="0x" + "b7" * 20, pattern=ADDRESS_PATTERN)
    treasury_address: str = Field(default="0x" + "7e" * 20, pattern=ADDRESS_PATTERN)
    trusted_vaults: list[str] = Field(default_factory=list)

    tx_proof_difficulty_factor: int = Field(default=6, ge=1)

    deposit: DepositParameters = Field(default_factory=DepositParameters)
    redemption: RedemptionParameters = Field(default_factory=RedemptionParameters)
    moving_funds: MovingFundsParameters = Field(default_factory=MovingFundsParameters)
    wallet: WalletParameters = Field(default_factory=WalletParameters)

    model_config = {"frozen": False}

    @model_validator(mode="after")
    def validate_config(self) -> BridgeConfig:
        if self.treasury_address.lower() == ZERO_ADDRESS:
            raise ValueError("treasury_address must not be the zero address")
        if self.treasury_address.lower() == self.bridge_address.lower():
            raise ValueError("treasury_address must differ from bridge_address")
        for vault in self.trusted_vaults:
            if not _is_address(vault):
                raise ValueError(f"Invalid trusted vault address: {vault}")
        self.trusted_vaults = [v.lower() for v in self.trusted_vaults]
        return self

    def is_vault_trusted(self, vault: str) -> bool:
        return vault.lower() in self.trusted_vaults


def _is_address(value: str) -> bool:
    return re.fullmatch(ADDRESS_PATTERN, value) is not None


class BridgeSettings(BaseSettings):
    """Environment driven settings (BRIDGE_* variables or .env)."""

    model_config = SettingsConfigDict(
        env_prefix="BRIDGE_", env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    network: NetworkType = NetworkType.MAINNET
    log_level: str = "INFO"

    treasury_address: str = "0x" + "7e" * 20
    tx_proof_difficulty_factor: int = 6

    deposit_dust_threshold: int = 1_000_000
    deposit_treasury_fee_divisor: int = 2000
    deposit_tx_max_fee: int = 100_000
    redemption_dust_threshold: int = 1_000_000
    redemption_treasury_fee_divisor: int = 2000
    redemption_tx_max_fee: int = 100_000
    redemption_timeout: int = 5 * 24 * 60 * 60

    def to_config(self) -> BridgeConfig:
        return BridgeConfig(
            network=self.network,
            treasury_address=self.treasury_address,
            tx_proof_difficulty_factor=self.tx_proof_difficulty_factor,
            deposit=DepositParameters(
                dust_threshold=self.deposit_dust_threshold,
                treasury_fee_divisor=self.deposit_treasury_fee_divisor,
                tx_max_fee=self.deposit_tx_max_fee,
            ),
            redemption=RedemptionParameters(
                dust_threshold=self.redemption_dust_threshold,
                treasury_fee_divisor=self.redemption_treasury_fee_divisor,
                tx_max_fee=self.redemption_tx_max_fee,
                timeout=self.redemption_timeout,
            ),
        )


def get_settings() -> BridgeSettings:
    return BridgeSettings()
