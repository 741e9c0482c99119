"""
conftest.py - Shared pytest fixtures for escrow ledger tests

Provides common fixtures used across unit, functional and conformance tests:
- Stores and engines on a logical clock with a seeded random source
- A funded engine where the owner seed already holds 100 RLUSD
- A LedgerService wrapping the engine
- Balance helpers
"""

import random
import pytest
from datetime import datetime, timezone
from decimal import Decimal

from escrow_ledger import (
    BalanceStore, EscrowEngine, LedgerService,
    EMPTY_POLICY_EMPTY,
)


T0 = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)

OWNER_SEED = "sEdOwnerSeed1234"
ISSUER_SEED = "sEdIssuerSeed999"
DESTINATION = "rDestination"


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def make_engine(seed: int = 42, **kwargs) -> EscrowEngine:
    """Engine on a logical clock with a deterministic random source."""
    kwargs.setdefault("initial_time", T0)
    kwargs.setdefault("verbose", False)
    return EscrowEngine(rng=random.Random(seed), **kwargs)


def balance_of(engine: EscrowEngine, account: str, currency: str) -> Decimal:
    """Tracked balance, ignoring the empty-account presentation default."""
    return engine.store.get_balance(account, currency)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def store():
    """Empty balance store."""
    return BalanceStore("test")


@pytest.fixture
def engine():
    """Fresh engine reporting empty accounts with the native default."""
    return make_engine()


@pytest.fixture
def strict_engine():
    """Engine that enforces finish_after and reports empty accounts as []."""
    return make_engine(enforce_finish_after=True, empty_account_policy=EMPTY_POLICY_EMPTY)


@pytest.fixture
def owner(engine):
    """Account derived from OWNER_SEED."""
    return engine.derive_account(OWNER_SEED)


@pytest.fixture
def funded_engine(engine, owner):
    """Engine where the owner holds 100 RLUSD."""
    engine.issue(ISSUER_SEED, owner, "RLUSD", "100")
    return engine


@pytest.fixture
def service(engine):
    """Service facade over the fresh engine."""
    return LedgerService(engine)
