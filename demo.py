#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Escrow Ledger Step by Step

Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Foundation  - Accounts, default balances, issuing tokens
  4-6:  Escrow      - Locking funds, rejections, releasing funds
  7-8:  Contract    - The request/response service, time-locked escrows

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import random
import sys

from escrow_ledger import (
    EscrowEngine, LedgerService,
    InsufficientFunds, EscrowNotFound, EscrowNotReady,
    format_amount,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0, tzinfo=timezone.utc)
    rng_seed: int = 7

    issuer_seed: str = "sEdIssuerDemoSeed"
    alice_seed: str = "sEdAliceDemoSeed01"
    bob_account: str = "rBobDestination"

    currency: str = "RLUSD"
    alice_initial: Decimal = Decimal("100")
    escrow_amount: Decimal = Decimal("40")
    time_lock_seconds: int = 3600


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def show_balances(engine: EscrowEngine, account: str):
    for balance in engine.get_balances(account):
        print(f"  {account}: {format_amount(balance.value)} {balance.currency} "
              f"(counterparty {balance.counterparty})")


# ============================================================================
# PHASE 1: FOUNDATION
# ============================================================================

def step_01_accounts() -> EscrowEngine:
    step_header(1, "Accounts From Seeds",
        "Every seed maps to exactly one account identifier.")

    print(">>> engine = EscrowEngine(initial_time=..., verbose=True)")
    engine = EscrowEngine(
        name="tutorial",
        initial_time=CONFIG.start_time,
        rng=random.Random(CONFIG.rng_seed),
    )
    alice = engine.derive_account(CONFIG.alice_seed)
    issuer = engine.derive_account(CONFIG.issuer_seed)

    section_header("Derived Accounts")
    print(f"Alice's seed  {CONFIG.alice_seed!r:24} -> {alice}")
    print(f"Issuer's seed {CONFIG.issuer_seed!r:24} -> {issuer}")
    print(f"Derived again                        -> {engine.derive_account(CONFIG.alice_seed)}")
    return engine


def step_02_default_balance(engine: EscrowEngine) -> EscrowEngine:
    step_header(2, "The Default Native Balance",
        "An account with no tokens reports 100 XRP, which is never stored.")

    alice = engine.derive_account(CONFIG.alice_seed)
    print(f">>> engine.get_balances({alice!r})")
    show_balances(engine, alice)

    section_header("Key Insight")
    print(f"Accounts tracked by the store: {engine.store.list_accounts()}")
    print("The XRP line is synthesized on read, so it never counts toward supply.")
    return engine


def step_03_issue(engine: EscrowEngine) -> EscrowEngine:
    step_header(3, "Issuing Tokens",
        "Issuance mints tokens into an account without debiting the issuer.")

    alice = engine.derive_account(CONFIG.alice_seed)
    print(f">>> engine.issue(issuer_seed, {alice!r}, {CONFIG.currency!r}, {CONFIG.alice_initial})")
    result = engine.issue(CONFIG.issuer_seed, alice, CONFIG.currency, CONFIG.alice_initial)
    print(f"Transaction hash: {result.tx_hash}")
    show_balances(engine, alice)

    section_header("Conservation")
    check = engine.verify_conservation()
    supplies = {c: format_amount(v) for c, v in check["supplies"].items()}
    print(f"Supply per currency: {supplies}")
    print(f"Conserved:           {check['valid']}")
    return engine


# ============================================================================
# PHASE 2: ESCROW
# ============================================================================

def step_04_create_escrow(engine: EscrowEngine) -> int:
    step_header(4, "Locking Funds in Escrow",
        "create_escrow debits the owner and records the locked amount.")

    alice = engine.derive_account(CONFIG.alice_seed)
    created = engine.create_escrow(
        CONFIG.alice_seed, CONFIG.bob_account, CONFIG.escrow_amount, CONFIG.currency,
    )
    print(f"Escrow sequence: {created.sequence}")
    show_balances(engine, alice)
    print(f"Locked {CONFIG.currency}: {format_amount(engine.locked_amount(CONFIG.currency))}")
    print(f"Total supply:    {format_amount(engine.total_supply(CONFIG.currency))}")
    return created.sequence


def step_05_rejection(engine: EscrowEngine):
    step_header(5, "Rejected Escrow",
        "Locking more than the owner holds fails and changes nothing.")

    alice = engine.derive_account(CONFIG.alice_seed)
    try:
        engine.create_escrow(CONFIG.alice_seed, CONFIG.bob_account, "1000", CONFIG.currency)
    except InsufficientFunds as e:
        print(f"Rejected: {e}")
    show_balances(engine, alice)
    print(f"Live escrows: {len(engine.escrows)}")


def step_06_finish_escrow(engine: EscrowEngine, sequence: int):
    step_header(6, "Releasing Funds",
        "finish_escrow credits the destination and deletes the escrow.")

    engine.finish_escrow(sequence)
    show_balances(engine, CONFIG.bob_account)

    section_header("Finishing Twice")
    try:
        engine.finish_escrow(sequence)
    except EscrowNotFound as e:
        print(f"Rejected: {e}")
    print(f"Conserved: {engine.verify_conservation()['valid']}")


# ============================================================================
# PHASE 3: CONTRACT
# ============================================================================

def step_07_service(engine: EscrowEngine):
    step_header(7, "The Request/Response Service",
        "Every operation returns a status code and a JSON-ready body.")

    service = LedgerService(engine)
    print(f"Operations: {service.operations}")

    calls = [
        ("getBalances", {"address": CONFIG.bob_account}),
        ("createEscrow", {"seed": CONFIG.alice_seed, "destination": CONFIG.bob_account,
                          "amount": "10", "currency": CONFIG.currency}),
        ("createEscrow", {"seed": CONFIG.alice_seed, "destination": CONFIG.bob_account,
                          "amount": "999", "currency": CONFIG.currency}),
        ("finishEscrow", {"offerSequence": 1}),
        ("createDid", {"seed": CONFIG.alice_seed}),
        ("transfer", {}),
    ]
    for operation, payload in calls:
        response = service.handle(operation, payload)
        print(f"\n>>> {operation} -> {response.status}")
        print(f"    {response.body}")


def step_08_time_lock():
    step_header(8, "Time-Locked Escrow",
        "With enforce_finish_after, an escrow cannot finish before its delay.")

    engine = EscrowEngine(
        name="strict",
        initial_time=CONFIG.start_time,
        rng=random.Random(CONFIG.rng_seed),
        enforce_finish_after=True,
    )
    alice = engine.derive_account(CONFIG.alice_seed)
    engine.issue(CONFIG.issuer_seed, alice, CONFIG.currency, CONFIG.alice_initial)
    created = engine.create_escrow(
        CONFIG.alice_seed, CONFIG.bob_account, CONFIG.escrow_amount, CONFIG.currency,
        finish_after=CONFIG.time_lock_seconds,
    )

    try:
        engine.finish_escrow(created.sequence)
    except EscrowNotReady as e:
        print(f"Rejected: {e}")

    later = CONFIG.start_time + timedelta(seconds=CONFIG.time_lock_seconds)
    print(f"\n>>> engine.advance_time({later})")
    engine.advance_time(later)
    engine.finish_escrow(created.sequence)
    show_balances(engine, CONFIG.bob_account)


# ============================================================================
# MAIN
# ============================================================================

def main():
    print("=" * 70)
    print("       ESCROW LEDGER - INTERACTIVE TUTORIAL")
    print("=" * 70)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")

    wait_for_enter()

    engine = step_01_accounts()
    wait_for_enter()

    engine = step_02_default_balance(engine)
    wait_for_enter()

    engine = step_03_issue(engine)
    wait_for_enter()

    sequence = step_04_create_escrow(engine)
    wait_for_enter()

    step_05_rejection(engine)
    wait_for_enter()

    step_06_finish_escrow(engine, sequence)
    wait_for_enter()

    step_07_service(engine)
    wait_for_enter()

    step_08_time_lock()

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    You've learned:
      - Accounts are derived from seeds
      - Empty accounts report a default native balance
      - Escrow moves value from the owner into a lock, then to the destination
      - Balances plus escrowed amounts always equal what was issued

    Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
