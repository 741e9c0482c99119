"""
escrow_engine.py - Issuance and Escrow Lifecycle

EscrowEngine orchestrates every state change of the ledger:

    issue          -> credit destination (tokens are minted, not transferred)
    create_escrow  -> check owner balance, debit owner, record escrow
    finish_escrow  -> credit destination, delete escrow (Created -> Finished)
    get_balances   -> store read with the configured empty-account policy

Each operation runs to completion under the engine lock, so the
check-debit-record and lookup-credit-delete sequences are never interleaved.
Failed operations leave balances and the escrow table untouched.
"""

from __future__ import annotations
from datetime import datetime, timezone
from decimal import Decimal
import random
import threading
from typing import Any, Dict, List, Optional

from .balance_store import BalanceStore
from .core import (
    # Types
    AccountDeriver, Balance, EscrowRecord,
    IssueResult, EscrowCreated, EscrowFinished, TransactionRecord,
    # Constants
    ISSUER_PLACEHOLDER, NATIVE_CURRENCY, NATIVE_COUNTERPARTY, DEFAULT_NATIVE_VALUE,
    EMPTY_POLICY_NATIVE_DEFAULT, EMPTY_POLICY_EMPTY, EMPTY_POLICIES,
    TX_TYPE_ISSUE, TX_TYPE_ESCROW_CREATE, TX_TYPE_ESCROW_FINISH,
    # Exceptions
    LedgerError, ValidationError, InsufficientFunds, EscrowNotFound, EscrowNotReady,
    # Helpers
    derive_account_from_seed, exact_add, format_amount, generate_tx_hash,
    parse_amount, parse_finish_after, require_text,
)
from .sequences import SequenceAllocator, RandomSequenceAllocator


class EscrowEngine:
    """
    Issuance and escrow state machine over a BalanceStore.

    Configuration:
        store: BalanceStore to operate on (a fresh one if not provided)
        name: Engine identifier used in diagnostics
        initial_time: Start of a logical clock moved with advance_time();
            None uses the wall clock (UTC)
        verbose: Print one status line per applied or rejected operation
        derive_account: Seed -> account strategy
        sequence_allocator: Escrow sequence strategy (random with retry by default)
        rng: Random source for sequences and transaction hashes
        enforce_finish_after: Reject finish_escrow before created_at + finish_after
        empty_account_policy: EMPTY_POLICY_NATIVE_DEFAULT or EMPTY_POLICY_EMPTY
        issuer_counterparty: Counterparty recorded on issued balances

    Example:
        engine = EscrowEngine(verbose=False)
        owner = engine.derive_account("sEdOwnerSeed")
        engine.issue("sEdIssuerSeed", owner, "RLUSD", "100")
        created = engine.create_escrow("sEdOwnerSeed", "rDest", "40", "RLUSD")
        engine.finish_escrow(created.sequence)
    """

    def __init__(
        self,
        store: Optional[BalanceStore] = None,
        *,
        name: str = "escrow",
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        derive_account: AccountDeriver = derive_account_from_seed,
        sequence_allocator: Optional[SequenceAllocator] = None,
        rng: Optional[random.Random] = None,
        enforce_finish_after: bool = False,
        empty_account_policy: str = EMPTY_POLICY_NATIVE_DEFAULT,
        issuer_counterparty: str = ISSUER_PLACEHOLDER,
    ):
        if empty_account_policy not in EMPTY_POLICIES:
            raise ValueError(
                f"Unknown empty_account_policy {empty_account_policy!r}; "
                f"expected one of {EMPTY_POLICIES}"
            )
        self.name = name
        self.store = store if store is not None else BalanceStore()
        self.escrows: Dict[int, EscrowRecord] = {}
        self.transaction_log: List[TransactionRecord] = []
        # Net amount minted per currency, the reference for conservation checks
        self.issued: Dict[str, Decimal] = {}
        self.verbose = verbose
        self.enforce_finish_after = enforce_finish_after
        self.empty_account_policy = empty_account_policy
        self.issuer_counterparty = issuer_counterparty
        self._derive_account = derive_account
        self._rng = rng or random.Random()
        self.sequence_allocator = sequence_allocator or RandomSequenceAllocator(self._rng)
        self._logical_time: Optional[datetime] = initial_time
        self._next_sequence_number: int = 0
        self._lock = threading.RLock()

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Logical time if the engine was given initial_time, otherwise now (UTC)."""
        if self._logical_time is not None:
            return self._logical_time
        return datetime.now(timezone.utc)

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the logical clock. Time can only move forward.

        Raises:
            LedgerError: If the engine runs on the wall clock
            ValueError: If new_time is before the current time
        """
        with self._lock:
            if self._logical_time is None:
                raise LedgerError("advance_time() requires an engine created with initial_time")
            if new_time < self._logical_time:
                raise ValueError(
                    f"Cannot move time backwards: {new_time} < {self._logical_time}"
                )
            self._logical_time = new_time

    # ========================================================================
    # ACCOUNTS AND BALANCES (read-only)
    # ========================================================================

    def derive_account(self, seed: str) -> str:
        """Account identifier for a seed, using the configured derivation strategy."""
        require_text(seed, "seed")
        return self._derive_account(seed)

    def get_balances(self, account: str) -> List[Balance]:
        """
        Balances for an account under the configured empty-account policy.

        With EMPTY_POLICY_NATIVE_DEFAULT an account with no tracked balances
        reports a synthetic XRP balance of 100 held from "Native". The synthetic
        balance is never written to the store.
        """
        account = require_text(account, "address")
        with self._lock:
            balances = self.store.get_balances(account)
        if not balances and self.empty_account_policy == EMPTY_POLICY_NATIVE_DEFAULT:
            return [Balance(NATIVE_CURRENCY, DEFAULT_NATIVE_VALUE, NATIVE_COUNTERPARTY)]
        return balances

    def get_escrow(self, sequence: int) -> EscrowRecord:
        with self._lock:
            if sequence not in self.escrows:
                raise EscrowNotFound(sequence)
            return self.escrows[sequence]

    def list_escrows(self, owner: Optional[str] = None) -> List[EscrowRecord]:
        """Live escrows ordered by sequence, optionally filtered by owner."""
        with self._lock:
            records = sorted(self.escrows.values(), key=lambda r: r.sequence)
        if owner is not None:
            records = [r for r in records if r.owner == owner]
        return records

    def locked_amount(self, currency: str) -> Decimal:
        """Total amount of a currency held in live escrows."""
        with self._lock:
            return sum(
                (r.amount for r in self.escrows.values() if r.currency == currency),
                Decimal("0"),
            )

    def total_supply(self, currency: str) -> Decimal:
        """Balances plus escrowed amounts for a currency."""
        with self._lock:
            return self.store.total_supply(currency) + self.locked_amount(currency)

    def verify_conservation(self, tolerance: Decimal = Decimal("0")) -> Dict[str, Any]:
        """
        Verify that every issued currency is fully accounted for.

        For each currency: sum(balances) + sum(escrowed) == sum(issued).

        Returns:
            Dict with keys:
            - 'valid': bool - True if all currencies balance
            - 'supplies': Dict[str, Decimal] - current total supply per currency
            - 'discrepancies': List[Dict] - unit, expected, actual, difference
        """
        with self._lock:
            currencies = set(self.issued)
            for entries in self.store.balances.values():
                currencies.update(entries)
            for record in self.escrows.values():
                currencies.add(record.currency)

            supplies = {}
            discrepancies = []
            for currency in sorted(currencies):
                actual = self.total_supply(currency)
                expected = self.issued.get(currency, Decimal("0"))
                supplies[currency] = actual
                difference = abs(actual - expected)
                if difference > tolerance:
                    discrepancies.append({
                        'currency': currency,
                        'expected': expected,
                        'actual': actual,
                        'difference': difference,
                    })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # OPERATIONS (Mutating)
    # ========================================================================

    def issue(self, issuer_seed: str, destination: str, currency: str, value: Any) -> IssueResult:
        """
        Mint tokens directly into a destination account.

        The issuer's balances are neither checked nor changed. New balance
        entries record issuer_counterparty as their counterparty.

        Raises:
            ValidationError: If any field is missing, value is not a positive decimal,
                or a resulting total cannot be represented exactly
        """
        require_text(issuer_seed, "seed")
        destination = require_text(destination, "destination")
        currency = require_text(currency, "currency")
        amount = parse_amount(value, "value")

        with self._lock:
            issued_total = exact_add(self.issued.get(currency, Decimal("0")), amount, "value")
            self.store.credit(destination, currency, amount, self.issuer_counterparty)
            self.issued[currency] = issued_total
            tx_hash = generate_tx_hash(self._rng)
            now = self.current_time
            self._record(tx_hash, TX_TYPE_ISSUE, now, {
                'destination': destination,
                'currency': currency,
                'value': format_amount(amount),
            })

        if self.verbose:
            print(f"✓ Issued {format_amount(amount)} {currency} to {destination} [{tx_hash}]")
        return IssueResult(
            destination=destination,
            currency=currency,
            value=amount,
            issuer=self.issuer_counterparty,
            tx_hash=tx_hash,
            timestamp=now,
        )

    def create_escrow(
        self,
        seed: str,
        destination: str,
        amount: Any,
        currency: str,
        finish_after: Any = None,
    ) -> EscrowCreated:
        """
        Lock an amount from the seed's derived account until the escrow is finished.

        Steps (atomic under the engine lock):
        1. Derive the owner account from seed
        2. Reject if the owner holds less than amount (missing balance counts as zero)
        3. Allocate a fresh sequence
        4. Debit the owner and record the escrow

        Raises:
            ValidationError: If a field is missing or malformed
            InsufficientFunds: If the owner's balance is below amount
            InternalFault: If no free sequence could be allocated
        """
        owner = self.derive_account(seed)
        destination = require_text(destination, "destination")
        currency = require_text(currency, "currency")
        parsed_amount = parse_amount(amount, "amount")
        delay = parse_finish_after(finish_after)

        with self._lock:
            have = self.store.get_balance(owner, currency)
            if have < parsed_amount:
                if self.verbose:
                    print(f"✗ REJECTED escrow: {owner} has {format_amount(have)} {currency}, "
                          f"needs {format_amount(parsed_amount)}")
                raise InsufficientFunds(owner, currency, have, parsed_amount)

            sequence = self.sequence_allocator.allocate(self.escrows)
            now = self.current_time
            record = EscrowRecord(
                sequence=sequence,
                owner=owner,
                destination=destination,
                amount=parsed_amount,
                currency=currency,
                created_at=now,
                finish_after=delay,
            )
            self.store.debit(owner, currency, parsed_amount)
            self.escrows[sequence] = record
            tx_hash = generate_tx_hash(self._rng)
            self._record(tx_hash, TX_TYPE_ESCROW_CREATE, now, {
                'sequence': sequence,
                'owner': owner,
                'destination': destination,
                'amount': format_amount(parsed_amount),
                'currency': currency,
            })

        if self.verbose:
            print(f"✓ Escrow {sequence} created - Locked {format_amount(parsed_amount)} {currency}")
        return EscrowCreated(
            sequence=sequence,
            owner=owner,
            destination=destination,
            amount=parsed_amount,
            currency=currency,
            finish_after=delay,
            tx_hash=tx_hash,
            timestamp=now,
        )

    def finish_escrow(self, sequence: int) -> EscrowFinished:
        """
        Release an escrow to its destination and delete the record.

        The caller is not checked against the owner. The finish_after delay is
        only enforced when the engine was built with enforce_finish_after=True.

        Raises:
            ValidationError: If sequence is not an integer
            EscrowNotFound: If no escrow exists for sequence (including one already finished)
            EscrowNotReady: In strict mode, if the delay has not elapsed
        """
        if not isinstance(sequence, int) or isinstance(sequence, bool):
            raise ValidationError(f"sequence must be an integer, got {sequence!r}", "offerSequence")

        with self._lock:
            record = self.escrows.get(sequence)
            if record is None:
                if self.verbose:
                    print(f"✗ REJECTED finish: escrow {sequence} not found")
                raise EscrowNotFound(sequence)

            now = self.current_time
            if self.enforce_finish_after and not record.is_ready(now):
                if self.verbose:
                    print(f"✗ REJECTED finish: escrow {sequence} locked until {record.ready_at}")
                raise EscrowNotReady(sequence, record.ready_at)

            self.store.credit(record.destination, record.currency, record.amount, record.owner)
            del self.escrows[sequence]
            tx_hash = generate_tx_hash(self._rng)
            self._record(tx_hash, TX_TYPE_ESCROW_FINISH, now, {
                'sequence': sequence,
                'destination': record.destination,
                'amount': format_amount(record.amount),
                'currency': record.currency,
            })

        if self.verbose:
            print(f"✓ Escrow {sequence} finished - Released {format_amount(record.amount)} "
                  f"{record.currency} to {record.destination}")
        return EscrowFinished(
            sequence=sequence,
            owner=record.owner,
            destination=record.destination,
            amount=record.amount,
            currency=record.currency,
            tx_hash=tx_hash,
            timestamp=now,
        )

    def reset(self) -> None:
        """Discard all balances, escrows and history. The clock is left as is."""
        with self._lock:
            self.store.reset()
            self.escrows.clear()
            self.transaction_log.clear()
            self.issued.clear()
            self._next_sequence_number = 0

    def _record(self, tx_hash: str, tx_type: str, timestamp: datetime, details: Dict[str, Any]) -> None:
        self.transaction_log.append(TransactionRecord(
            tx_hash=tx_hash,
            tx_type=tx_type,
            timestamp=timestamp,
            sequence_number=self._next_sequence_number,
            details=details,
        ))
        self._next_sequence_number += 1

    def __repr__(self) -> str:
        return (f"EscrowEngine({self.name!r}, {len(self.store.balances)} accounts, "
                f"{len(self.escrows)} escrows)")
