"""
balance_store.py - In-Memory Per-Account Currency Balances

BalanceStore is the only object that mutates balances. Each account holds at
most one Balance per currency; credits either grow an existing entry or insert
a new one, debits never create entries and never drive a value below zero.
"""

from __future__ import annotations
from dataclasses import replace
from decimal import Decimal
from typing import Dict, List, Set

from .core import (
    Balance,
    InsufficientFunds, ValidationError,
    exact_add, exact_subtract, require_text,
)


class BalanceStore:
    """
    Mapping from account identifier to its currency balances.

    Thread Safety:
        Not thread-safe on its own. EscrowEngine serializes access under its lock.

    Example:
        store = BalanceStore()
        store.credit("rAlice", "RLUSD", Decimal("100"), "rIssuer")
        store.debit("rAlice", "RLUSD", Decimal("40"))
        store.get_balance("rAlice", "RLUSD")   # Decimal("60")
    """

    def __init__(self, name: str = "balances"):
        self.name = name
        # account -> currency -> Balance, insertion ordered
        self.balances: Dict[str, Dict[str, Balance]] = {}

    # ========================================================================
    # READS
    # ========================================================================

    def get_balances(self, account: str) -> List[Balance]:
        """
        Return the balances tracked for an account, in the order they were first credited.

        Unknown accounts yield an empty list; no default is synthesized here.
        """
        account = require_text(account, "account")
        return list(self.balances.get(account, {}).values())

    def get_balance(self, account: str, currency: str) -> Decimal:
        """Return the account's value for a currency (Decimal("0") if absent)."""
        account = require_text(account, "account")
        currency = require_text(currency, "currency")
        entry = self.balances.get(account, {}).get(currency)
        return entry.value if entry is not None else Decimal("0")

    def has_account(self, account: str) -> bool:
        return account in self.balances

    def list_accounts(self) -> Set[str]:
        return set(self.balances.keys())

    def total_supply(self, currency: str) -> Decimal:
        """
        Sum a currency across all accounts.

        Accounts are sorted before summation so accumulation order is deterministic.
        """
        return sum(
            (self.get_balance(account, currency) for account in sorted(self.balances)),
            Decimal("0"),
        )

    def snapshot(self) -> Dict[str, Dict[str, Decimal]]:
        """Plain-dict copy of all balances: {account: {currency: value}}."""
        return {
            account: {currency: bal.value for currency, bal in entries.items()}
            for account, entries in self.balances.items()
        }

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    def credit(self, account: str, currency: str, amount: Decimal, counterparty: str) -> Balance:
        """
        Add an amount to an account's currency balance.

        An existing entry keeps its original counterparty; a new entry records
        the supplied one.

        Returns:
            The updated Balance

        Raises:
            ValidationError: If account/currency are blank, amount is not a positive
                Decimal, or the new value cannot be represented exactly
        """
        account = require_text(account, "account")
        currency = require_text(currency, "currency")
        self._check_amount(amount)

        existing = self.balances.get(account, {}).get(currency)
        if existing is None:
            updated = Balance(currency=currency, value=amount, counterparty=counterparty)
        else:
            updated = replace(existing, value=exact_add(existing.value, amount))
        self.balances.setdefault(account, {})[currency] = updated
        return updated

    def debit(self, account: str, currency: str, amount: Decimal) -> Balance:
        """
        Remove an amount from an account's currency balance.

        Returns:
            The updated Balance (a zero balance stays tracked)

        Raises:
            InsufficientFunds: If the entry is absent or holds less than amount
            ValidationError: If account/currency are blank or amount is not a positive Decimal
        """
        account = require_text(account, "account")
        currency = require_text(currency, "currency")
        self._check_amount(amount)
        existing = self.balances.get(account, {}).get(currency)
        have = existing.value if existing is not None else Decimal("0")
        if existing is None or have < amount:
            raise InsufficientFunds(account, currency, have, amount)

        updated = replace(existing, value=exact_subtract(have, amount))
        self.balances[account][currency] = updated
        return updated

    def reset(self) -> None:
        """Discard every balance."""
        self.balances.clear()

    @staticmethod
    def _check_amount(amount: Decimal) -> None:
        if not isinstance(amount, Decimal):
            raise ValidationError(f"amount must be Decimal, got {type(amount)}", "amount")
        if amount.is_nan() or amount.is_infinite() or amount <= 0:
            raise ValidationError(f"amount must be a positive finite Decimal, got {amount}", "amount")
        exact_add(Decimal("0"), amount)

    def __repr__(self) -> str:
        return f"BalanceStore({self.name!r}, {len(self.balances)} accounts)"
