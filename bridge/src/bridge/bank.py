"""
Balance ledger interface.

The bridge never stores balances itself; it asks the bank to credit
depositors, escrow redemption amounts and burn redeemed value.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict

from loguru import logger


class InsufficientBalance(Exception):
    pass


class Bank(ABC):
    """
    Abstract balance service.
    Addresses are hex strings; implementations compare them case-insensitively.
    """

    @abstractmethod
    def balance_of(self, owner: str) -> int:
        """Current balance of owner"""

    @abstractmethod
    def increase_balance(self, recipient: str, amount: int) -> None:
        """Mint amount to recipient"""

    @abstractmethod
    def increase_balance_and_call(
        self, vault: str, depositors: list[str], amounts: list[int]
    ) -> None:
        """Mint the summed amounts to vault and notify it of each depositor's share"""

    @abstractmethod
    def transfer_balance(self, sender: str, recipient: str, amount: int) -> None:
        """Move amount from sender to recipient"""

    @abstractmethod
    def transfer_balance_from(self, owner: str, recipient: str, amount: int) -> None:
        """Move amount from owner to recipient on owner's prior approval"""

    @abstractmethod
    def decrease_balance(self, owner: str, amount: int) -> None:
        """Burn amount from owner"""

    def increase_balances(self, recipients: list[str], amounts: list[int]) -> None:
        if len(recipients) != len(amounts):
            raise ValueError("recipients and amounts must have the same length")
        for recipient, amount in zip(recipients, amounts):
            self.increase_balance(recipient, amount)


class InMemoryBank(Bank):
    """Dictionary-backed bank, approvals are not modelled."""

    def __init__(self) -> None:
        self.balances: dict[str, int] = defaultdict(int)
        self.vault_deposits: dict[str, list[tuple[str, int]]] = defaultdict(list)

    def balance_of(self, owner: str) -> int:
        return self.balances[owner.lower()]

    def increase_balance(self, recipient: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("amount must not be negative")
        self.balances[recipient.lower()] += amount

    def increase_balance_and_call(
        self, vault: str, depositors: list[str], amounts: list[int]
    ) -> None:
        if len(depositors) != len(amounts):
            raise ValueError("depositors and amounts must have the same length")
        self.increase_balance(vault, sum(amounts))
        self.vault_deposits[vault.lower()].extend(zip(depositors, amounts))

    def transfer_balance(self, sender: str, recipient: str, amount: int) -> None:
        self.decrease_balance(sender, amount)
        self.increase_balance(recipient, amount)

    def transfer_balance_from(self, owner: str, recipient: str, amount: int) -> None:
        self.transfer_balance(owner, recipient, amount)

    def decrease_balance(self, owner: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("amount must not be negative")
        owner = owner.lower()
        if self.balances[owner] < amount:
            raise InsufficientBalance(
                f"Balance of {owner} is {self.balances[owner]}, cannot take {amount}"
            )
        self.balances[owner] -= amount
        logger.debug(f"Balance of {owner} decreased by {amount}")
