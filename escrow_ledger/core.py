"""
Core types and pure functions for the escrow ledger.

This module provides the foundational data structures for the ledger:
1. Constants: native asset, placeholder issuer, sequence space, empty-account policies
2. Exceptions: LedgerError and domain-specific error types
3. Immutable data structures: Balance, EscrowRecord, result records, TransactionRecord
4. Pure helpers: amount parsing/formatting, account derivation, synthetic tx hashes

Nothing in this module mutates ledger state.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, DecimalException, Inexact, InvalidOperation, ROUND_HALF_EVEN, getcontext
import random
from typing import Any, Callable, Dict, Optional


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Amounts are exact decimals. The global context is configured once at
# import time; no other code should modify it.
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN

# Ledger arithmetic must be exact: rounding or overflow raises instead of
# silently changing a balance.
_EXACT_CONTEXT = _LEDGER_DECIMAL_CONTEXT.copy()
_EXACT_CONTEXT.traps[Inexact] = True


# ============================================================================
# CONSTANTS
# ============================================================================

# Base asset reported for accounts with no tracked balances.
NATIVE_CURRENCY = "XRP"
NATIVE_COUNTERPARTY = "Native"
DEFAULT_NATIVE_VALUE = Decimal("100")

# Counterparty recorded on balances created by issuance.
ISSUER_PLACEHOLDER = "rIssuer123456789012345678901234567"

# Derived account layout: r<char-code-sum>xrpl<last 4 seed chars>
ACCOUNT_PREFIX = "r"
ACCOUNT_INFIX = "xrpl"
SEED_SUFFIX_LENGTH = 4

# Escrow sequences are drawn from [0, SEQUENCE_SPACE).
SEQUENCE_SPACE = 1_000_000

TX_HASH_PREFIX = "TX"
TX_HASH_LENGTH = 6
BASE36_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"

# Empty-account policies for balance queries.
EMPTY_POLICY_NATIVE_DEFAULT = "native_default"
EMPTY_POLICY_EMPTY = "empty"
EMPTY_POLICIES = (EMPTY_POLICY_NATIVE_DEFAULT, EMPTY_POLICY_EMPTY)

# Transaction types recorded in the audit trail (strings, not enum).
TX_TYPE_ISSUE = "ISSUE"
TX_TYPE_ESCROW_CREATE = "ESCROW_CREATE"
TX_TYPE_ESCROW_FINISH = "ESCROW_FINISH"


# ============================================================================
# TYPE ALIASES
# ============================================================================

AccountId = str

# Strategy turning a seed into an account identifier.
AccountDeriver = Callable[[str], AccountId]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class ValidationError(LedgerError, ValueError):
    """Raised when a required field is missing or malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class InsufficientFunds(LedgerError):
    """Raised when an account holds less of a currency than an operation needs."""

    def __init__(self, account: str, currency: str, have: Decimal, need: Decimal):
        super().__init__(
            f"Insufficient balance. Have {format_amount(have)} {currency}, "
            f"need {format_amount(need)}"
        )
        self.account = account
        self.currency = currency
        self.have = have
        self.need = need


class EscrowNotFound(LedgerError):
    """Raised when no escrow exists for a sequence."""

    def __init__(self, sequence: int):
        super().__init__(f"Escrow {sequence} not found")
        self.sequence = sequence


class EscrowNotReady(LedgerError):
    """Raised in strict mode when an escrow is finished before its finish_after delay."""

    def __init__(self, sequence: int, ready_at: datetime):
        super().__init__(
            f"Escrow {sequence} cannot be finished before {format_timestamp(ready_at)}"
        )
        self.sequence = sequence
        self.ready_at = ready_at


class InternalFault(LedgerError):
    """Raised for unexpected failures; the message never exposes internal state."""
    pass


# ============================================================================
# AMOUNTS AND TIMESTAMPS
# ============================================================================

def format_amount(d: Decimal) -> str:
    """
    Normalize a Decimal to a canonical string representation.

    Decimal("60.00") and Decimal("60") both become "60"; scientific notation
    is avoided.
    """
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def parse_amount(value: Any, field_name: str = "amount") -> Decimal:
    """
    Parse a transported amount into an exact, strictly positive Decimal.

    Accepts Decimal, int, float (via its string form) and decimal strings.

    Raises:
        ValidationError: If the value is missing, not numeric, not finite, or not positive.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field_name} is required", field_name)
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        if not value.strip():
            raise ValidationError(f"{field_name} is required", field_name)
        try:
            amount = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(f"{field_name} must be a decimal number, got {value!r}", field_name)
    else:
        raise ValidationError(f"{field_name} must be a decimal number, got {type(value).__name__}", field_name)

    if amount.is_nan() or amount.is_infinite():
        raise ValidationError(f"{field_name} must be finite, got {value!r}", field_name)
    if amount <= 0:
        raise ValidationError(f"{field_name} must be positive, got {value!r}", field_name)
    try:
        _EXACT_CONTEXT.plus(amount)
    except DecimalException:
        raise ValidationError(
            f"{field_name} cannot be represented exactly, got {value!r}", field_name
        ) from None
    return amount


def exact_add(a: Decimal, b: Decimal, field_name: str = "amount") -> Decimal:
    """
    a + b without rounding.

    Raises:
        ValidationError: If the sum needs more precision or range than the ledger context has.
    """
    try:
        return _EXACT_CONTEXT.add(a, b)
    except DecimalException:
        raise ValidationError(
            f"{field_name} would make a total that cannot be represented exactly", field_name
        ) from None


def exact_subtract(a: Decimal, b: Decimal, field_name: str = "amount") -> Decimal:
    """a - b without rounding (same errors as exact_add)."""
    try:
        return _EXACT_CONTEXT.subtract(a, b)
    except DecimalException:
        raise ValidationError(
            f"{field_name} would leave a balance that cannot be represented exactly", field_name
        ) from None


def require_text(value: Any, field_name: str) -> str:
    """
    Return value unchanged if it is a non-blank string, else raise ValidationError.

    Identifiers are used as given; "rAbc " and "rAbc" are different accounts.
    """
    if value is None or not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} is required", field_name)
    return value


def _parse_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer, got {value!r}", field_name)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValidationError(f"{field_name} must be an integer, got {value!r}", field_name)


def parse_sequence(value: Any, field_name: str = "offerSequence") -> int:
    """Parse an escrow sequence given as int or numeric string."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field_name} is required", field_name)
    sequence = _parse_int(value, field_name)
    if sequence < 0:
        raise ValidationError(f"{field_name} cannot be negative, got {value!r}", field_name)
    return sequence


def parse_finish_after(value: Any, field_name: str = "finishAfter") -> Optional[int]:
    """Parse an optional finish-after delay in whole seconds (None/"" means no delay)."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    seconds = _parse_int(value, field_name)
    if seconds < 0:
        raise ValidationError(f"{field_name} cannot be negative, got {value!r}", field_name)
    return seconds


def format_timestamp(dt: datetime) -> str:
    """ISO-8601 representation used on every result record."""
    return dt.isoformat()


# ============================================================================
# ACCOUNTS AND HASHES
# ============================================================================

def derive_account_from_seed(seed: str) -> AccountId:
    """
    Derive a deterministic account identifier from a seed.

    The mixing function is the sum of character codes, so two seeds with the
    same code sum and the same last four characters derive the same account.
    It is a demo identity, not a key derivation.
    """
    require_text(seed, "seed")
    code_sum = sum(ord(ch) for ch in seed)
    return f"{ACCOUNT_PREFIX}{code_sum}{ACCOUNT_INFIX}{seed[-SEED_SUFFIX_LENGTH:]}"


def generate_tx_hash(rng: random.Random) -> str:
    """Return an opaque synthetic transaction hash such as "TX4K9Q2Z"."""
    token = "".join(rng.choice(BASE36_ALPHABET) for _ in range(TX_HASH_LENGTH))
    return f"{TX_HASH_PREFIX}{token}"


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Balance:
    """
    Amount of one currency held by an account.

    Attributes:
        currency: Currency code (e.g., "XRP", "RLUSD").
        value: Exact amount held (never negative).
        counterparty: Issuer of the currency, the releasing escrow owner, or "Native".
    """
    currency: str
    value: Decimal
    counterparty: str

    def __post_init__(self):
        if not self.currency or not self.currency.strip():
            raise ValidationError("Balance currency cannot be empty", "currency")
        if not isinstance(self.value, Decimal):
            raise ValidationError(f"Balance value must be Decimal, got {type(self.value)}", "value")
        if self.value.is_nan() or self.value.is_infinite():
            raise ValidationError(f"Balance value must be finite, got {self.value}", "value")
        if self.value < 0:
            raise ValidationError(f"Balance value cannot be negative, got {self.value}", "value")

    def to_dict(self) -> Dict[str, str]:
        return {
            "currency": self.currency,
            "value": format_amount(self.value),
            "counterparty": self.counterparty,
        }

    def __repr__(self) -> str:
        return f"Balance({format_amount(self.value)} {self.currency} @ {self.counterparty})"


@dataclass(frozen=True, slots=True)
class EscrowRecord:
    """
    Value removed from an owner's balance, pending release to a destination.

    Attributes:
        sequence: Identifier of the escrow within its engine.
        owner: Account the amount was debited from.
        destination: Account credited when the escrow is finished.
        amount: Locked amount (strictly positive).
        currency: Currency of the locked amount.
        created_at: Engine time at creation.
        finish_after: Optional delay in seconds before the escrow may be finished.
    """
    sequence: int
    owner: str
    destination: str
    amount: Decimal
    currency: str
    created_at: datetime
    finish_after: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.sequence, int) or isinstance(self.sequence, bool):
            raise ValidationError(f"Escrow sequence must be int, got {type(self.sequence)}", "sequence")
        if not isinstance(self.amount, Decimal) or self.amount <= 0:
            raise ValidationError(f"Escrow amount must be a positive Decimal, got {self.amount!r}", "amount")
        if self.finish_after is not None and self.finish_after < 0:
            raise ValidationError(f"finishAfter cannot be negative, got {self.finish_after}", "finishAfter")

    @property
    def ready_at(self) -> datetime:
        """Earliest time the escrow may be finished when the time lock is enforced."""
        if self.finish_after is None:
            return self.created_at
        return self.created_at + timedelta(seconds=self.finish_after)

    def is_ready(self, now: datetime) -> bool:
        return now >= self.ready_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "owner": self.owner,
            "destination": self.destination,
            "amount": format_amount(self.amount),
            "currency": self.currency,
            "finishAfter": self.finish_after,
            "createdAt": format_timestamp(self.created_at),
        }

    def __repr__(self) -> str:
        return (f"Escrow({self.sequence}: {format_amount(self.amount)} {self.currency} "
                f"{self.owner}→{self.destination})")


@dataclass(frozen=True, slots=True)
class IssueResult:
    destination: str
    currency: str
    value: Decimal
    issuer: str
    tx_hash: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "destination": self.destination,
            "currency": self.currency,
            "value": format_amount(self.value),
            "issuer": self.issuer,
            "txHash": self.tx_hash,
            "timestamp": format_timestamp(self.timestamp),
        }


@dataclass(frozen=True, slots=True)
class EscrowCreated:
    sequence: int
    owner: str
    destination: str
    amount: Decimal
    currency: str
    finish_after: Optional[int]
    tx_hash: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "escrowSequence": self.sequence,
            "owner": self.owner,
            "destination": self.destination,
            "amount": format_amount(self.amount),
            "currency": self.currency,
            "finishAfter": self.finish_after,
            "txHash": self.tx_hash,
            "timestamp": format_timestamp(self.timestamp),
        }


@dataclass(frozen=True, slots=True)
class EscrowFinished:
    sequence: int
    owner: str
    destination: str
    amount: Decimal
    currency: str
    tx_hash: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "escrowSequence": self.sequence,
            "owner": self.owner,
            "destination": self.destination,
            "amount": format_amount(self.amount),
            "currency": self.currency,
            "txHash": self.tx_hash,
            "timestamp": format_timestamp(self.timestamp),
        }


@dataclass(frozen=True, slots=True)
class TransactionRecord:
    """
    Audit-trail entry for one applied mutation.

    Attributes:
        tx_hash: Synthetic hash returned to the caller
        tx_type: One of the TX_TYPE_* constants
        timestamp: Engine time when the mutation was applied
        sequence_number: Monotonic position within the engine's log
        details: Operation-specific fields (amounts as normalized strings)
    """
    tx_hash: str
    tx_type: str
    timestamp: datetime
    sequence_number: int
    details: Dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        return f"Tx#{self.sequence_number}({self.tx_type} {self.tx_hash} @ {format_timestamp(self.timestamp)})"
