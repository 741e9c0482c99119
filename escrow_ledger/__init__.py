"""
escrow_ledger - In-Memory Token Ledger with Time-Conditioned Escrow

Accounts hold currency balances, tokens are issued into accounts, and value
can be locked in an escrow before being released to a destination.

Usage:
    from escrow_ledger import EscrowEngine, LedgerService

    engine = EscrowEngine(verbose=False)
    owner = engine.derive_account("sEdOwnerSeed")

    engine.issue("sEdIssuerSeed", owner, "RLUSD", "100")
    created = engine.create_escrow("sEdOwnerSeed", "rDestination", "40", "RLUSD")
    engine.finish_escrow(created.sequence)

    # Or through the request/response contract
    service = LedgerService(engine)
    service.handle("getBalances", {"address": "rDestination"})
"""

# Core types
from .core import (
    Balance,
    EscrowRecord,
    IssueResult,
    EscrowCreated,
    EscrowFinished,
    TransactionRecord,
    AccountDeriver,
    LedgerError,
    ValidationError,
    InsufficientFunds,
    EscrowNotFound,
    EscrowNotReady,
    InternalFault,
    derive_account_from_seed,
    format_amount,
    parse_amount,
    NATIVE_CURRENCY,
    NATIVE_COUNTERPARTY,
    ISSUER_PLACEHOLDER,
    SEQUENCE_SPACE,
    EMPTY_POLICY_NATIVE_DEFAULT,
    EMPTY_POLICY_EMPTY,
    TX_TYPE_ISSUE,
    TX_TYPE_ESCROW_CREATE,
    TX_TYPE_ESCROW_FINISH,
)

# Store and engine
from .balance_store import BalanceStore
from .sequences import SequenceAllocator, RandomSequenceAllocator, MonotonicSequenceAllocator
from .escrow_engine import EscrowEngine

# Request/response contract
from .service import LedgerService, Response


__all__ = [
    # Core
    'Balance', 'EscrowRecord', 'IssueResult', 'EscrowCreated', 'EscrowFinished',
    'TransactionRecord', 'AccountDeriver',
    'LedgerError', 'ValidationError', 'InsufficientFunds', 'EscrowNotFound',
    'EscrowNotReady', 'InternalFault',
    'derive_account_from_seed', 'format_amount', 'parse_amount',
    'NATIVE_CURRENCY', 'NATIVE_COUNTERPARTY', 'ISSUER_PLACEHOLDER', 'SEQUENCE_SPACE',
    'EMPTY_POLICY_NATIVE_DEFAULT', 'EMPTY_POLICY_EMPTY',
    'TX_TYPE_ISSUE', 'TX_TYPE_ESCROW_CREATE', 'TX_TYPE_ESCROW_FINISH',
    # Store and engine
    'BalanceStore', 'EscrowEngine',
    'SequenceAllocator', 'RandomSequenceAllocator', 'MonotonicSequenceAllocator',
    # Service
    'LedgerService', 'Response',
]

__version__ = '1.0.0'
