"""
test_escrow_engine.py - Unit tests for EscrowEngine operations

Tests:
- Engine creation and configuration
- issue: minting, counterparty, validation
- create_escrow: debit, record, insufficient funds, validation
- finish_escrow: release, once-only, not found
- get_balances: empty-account policies
- Time management and the strict finish_after mode
- Audit trail, conservation report, reset
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from escrow_ledger import (
    EscrowEngine, BalanceStore, Balance, MonotonicSequenceAllocator,
    LedgerError, ValidationError, InsufficientFunds, EscrowNotFound, EscrowNotReady,
    ISSUER_PLACEHOLDER, NATIVE_CURRENCY, NATIVE_COUNTERPARTY,
    EMPTY_POLICY_EMPTY, SEQUENCE_SPACE,
    TX_TYPE_ISSUE, TX_TYPE_ESCROW_CREATE, TX_TYPE_ESCROW_FINISH,
)

from conftest import T0, OWNER_SEED, ISSUER_SEED, DESTINATION, make_engine, balance_of


class TestEngineCreation:
    """Tests for EscrowEngine initialization."""

    def test_create_minimal(self):
        engine = EscrowEngine(verbose=False)
        assert isinstance(engine.store, BalanceStore)
        assert engine.escrows == {}
        assert engine.transaction_log == []

    def test_injected_store_is_used(self):
        store = BalanceStore("shared")
        engine = EscrowEngine(store, verbose=False)
        assert engine.store is store

    def test_unknown_empty_policy_raises(self):
        with pytest.raises(ValueError, match="empty_account_policy"):
            EscrowEngine(verbose=False, empty_account_policy="sometimes")

    def test_wall_clock_by_default(self):
        engine = EscrowEngine(verbose=False)
        assert engine.current_time.tzinfo is not None

    def test_custom_derivation_strategy(self):
        engine = make_engine(derive_account=lambda seed: f"acct:{seed}")
        assert engine.derive_account("alice") == "acct:alice"


class TestIssue:
    """Tests for issue()."""

    def test_issue_credits_destination(self, engine):
        result = engine.issue(ISSUER_SEED, "rHolder", "RLUSD", "100")
        assert balance_of(engine, "rHolder", "RLUSD") == Decimal("100")
        assert result.destination == "rHolder"
        assert result.currency == "RLUSD"
        assert result.value == Decimal("100")
        assert result.timestamp == T0
        assert result.tx_hash.startswith("TX")

    def test_issue_records_placeholder_counterparty(self, engine):
        engine.issue(ISSUER_SEED, "rHolder", "RLUSD", "100")
        assert engine.get_balances("rHolder") == [Balance("RLUSD", Decimal("100"), ISSUER_PLACEHOLDER)]

    def test_issue_accumulates(self, engine):
        engine.issue(ISSUER_SEED, "rHolder", "RLUSD", "100")
        engine.issue(ISSUER_SEED, "rHolder", "RLUSD", "0.5")
        assert balance_of(engine, "rHolder", "RLUSD") == Decimal("100.5")

    def test_issue_does_not_touch_issuer(self, engine):
        issuer = engine.derive_account(ISSUER_SEED)
        engine.issue(ISSUER_SEED, "rHolder", "RLUSD", "100")
        assert engine.store.has_account(issuer) is False

    def test_issue_leaves_other_balances_unchanged(self, funded_engine, owner):
        before = funded_engine.store.snapshot()
        funded_engine.issue(ISSUER_SEED, "rHolder", "EUR", "5")
        after = funded_engine.store.snapshot()
        assert after[owner] == before[owner]

    @pytest.mark.parametrize("field,args", [
        ("seed", ("", "rHolder", "RLUSD", "1")),
        ("destination", (ISSUER_SEED, "", "RLUSD", "1")),
        ("currency", (ISSUER_SEED, "rHolder", None, "1")),
        ("value", (ISSUER_SEED, "rHolder", "RLUSD", "")),
    ])
    def test_issue_missing_field(self, engine, field, args):
        with pytest.raises(ValidationError) as exc_info:
            engine.issue(*args)
        assert exc_info.value.field == field
        assert engine.store.list_accounts() == set()
        assert engine.transaction_log == []

    def test_issue_custom_issuer_counterparty(self):
        engine = make_engine(issuer_counterparty="rMyIssuer")
        result = engine.issue(ISSUER_SEED, "rHolder", "RLUSD", "1")
        assert result.issuer == "rMyIssuer"
        assert engine.store.get_balances("rHolder")[0].counterparty == "rMyIssuer"


class TestCreateEscrow:
    """Tests for create_escrow()."""

    def test_create_debits_owner_and_records(self, funded_engine, owner):
        created = funded_engine.create_escrow(OWNER_SEED, DESTINATION, "40", "RLUSD")

        assert balance_of(funded_engine, owner, "RLUSD") == Decimal("60")
        assert created.owner == owner
        assert created.destination == DESTINATION
        assert created.amount == Decimal("40")
        assert 0 <= created.sequence < SEQUENCE_SPACE

        record = funded_engine.get_escrow(created.sequence)
        assert record.owner == owner
        assert record.amount == Decimal("40")
        assert record.created_at == T0
        assert record.finish_after is None

    def test_create_does_not_credit_destination(self, funded_engine):
        funded_engine.create_escrow(OWNER_SEED, DESTINATION, "40", "RLUSD")
        assert funded_engine.store.has_account(DESTINATION) is False

    def test_create_full_balance(self, funded_engine, owner):
        funded_engine.create_escrow(OWNER_SEED, DESTINATION, "100", "RLUSD")
        assert balance_of(funded_engine, owner, "RLUSD") == Decimal("0")

    def test_create_with_finish_after(self, funded_engine):
        created = funded_engine.create_escrow(OWNER_SEED, DESTINATION, "1", "RLUSD", finish_after="3600")
        assert created.finish_after == 3600
        assert funded_engine.get_escrow(created.sequence).ready_at == T0 + timedelta(hours=1)

    def test_insufficient_funds(self, funded_engine, owner):
        with pytest.raises(InsufficientFunds) as exc_info:
            funded_engine.create_escrow(OWNER_SEED, DESTINATION, "100.01", "RLUSD")
        assert exc_info.value.have == Decimal("100")
        assert exc_info.value.need == Decimal("100.01")
        assert exc_info.value.account == owner
        assert balance_of(funded_engine, owner, "RLUSD") == Decimal("100")
        assert funded_engine.escrows == {}

    def test_missing_balance_counts_as_zero(self, engine):
        with pytest.raises(InsufficientFunds) as exc_info:
            engine.create_escrow(OWNER_SEED, DESTINATION, "1", "RLUSD")
        assert exc_info.value.have == Decimal("0")
        assert engine.store.list_accounts() == set()

    def test_failed_create_is_not_logged(self, funded_engine):
        log_len = len(funded_engine.transaction_log)
        with pytest.raises(InsufficientFunds):
            funded_engine.create_escrow(OWNER_SEED, DESTINATION, "1000", "RLUSD")
        assert len(funded_engine.transaction_log) == log_len

    @pytest.mark.parametrize("kwargs,field", [
        (dict(seed=""), "seed"),
        (dict(destination=" "), "destination"),
        (dict(amount="0"), "amount"),
        (dict(amount="ten"), "amount"),
        (dict(currency=""), "currency"),
        (dict(finish_after="-1"), "finishAfter"),
    ])
    def test_validation(self, funded_engine, owner, kwargs, field):
        args = dict(seed=OWNER_SEED, destination=DESTINATION, amount="1", currency="RLUSD")
        args.update(kwargs)
        with pytest.raises(ValidationError) as exc_info:
            funded_engine.create_escrow(**args)
        assert exc_info.value.field == field
        assert balance_of(funded_engine, owner, "RLUSD") == Decimal("100")

    def test_sequences_are_distinct(self, funded_engine):
        sequences = {
            funded_engine.create_escrow(OWNER_SEED, DESTINATION, "1", "RLUSD").sequence
            for _ in range(20)
        }
        assert len(sequences) == 20
        assert len(funded_engine.escrows) == 20

    def test_monotonic_allocator(self, owner):
        engine = make_engine(sequence_allocator=MonotonicSequenceAllocator())
        engine.issue(ISSUER_SEED, owner, "RLUSD", "10")
        first = engine.create_escrow(OWNER_SEED, DESTINATION, "1", "RLUSD")
        second = engine.create_escrow(OWNER_SEED, DESTINATION, "1", "RLUSD")
        assert (first.sequence, second.sequence) == (1, 2)


class TestFinishEscrow:
    """Tests for finish_escrow()."""

    def test_finish_credits_destination(self, funded_engine, owner):
        created = funded_engine.create_escrow(OWNER_SEED, DESTINATION, "40", "RLUSD")
        finished = funded_engine.finish_escrow(created.sequence)

        assert balance_of(funded_engine, DESTINATION, "RLUSD") == Decimal("40")
        assert finished.sequence == created.sequence
        assert finished.owner == owner
        assert finished.destination == DESTINATION
        assert finished.amount == Decimal("40")
        assert finished.currency == "RLUSD"

    def test_new_destination_entry_records_owner_as_counterparty(self, funded_engine, owner):
        created = funded_engine.create_escrow(OWNER_SEED, DESTINATION, "40", "RLUSD")
        funded_engine.finish_escrow(created.sequence)
        assert funded_engine.store.get_balances(DESTINATION) == [Balance("RLUSD", Decimal("40"), owner)]

    def test_existing_destination_entry_is_incremented(self, funded_engine):
        funded_engine.issue(ISSUER_SEED, DESTINATION, "RLUSD", "5")
        created = funded_engine.create_escrow(OWNER_SEED, DESTINATION, "40", "RLUSD")
        funded_engine.finish_escrow(created.sequence)
        [bal] = funded_engine.store.get_balances(DESTINATION)
        assert bal.value == Decimal("45")
        assert bal.counterparty == ISSUER_PLACEHOLDER

    def test_finish_removes_record(self, funded_engine):
        created = funded_engine.create_escrow(OWNER_SEED, DESTINATION, "40", "RLUSD")
        funded_engine.finish_escrow(created.sequence)
        assert created.sequence not in funded_engine.escrows
        with pytest.raises(EscrowNotFound):
            funded_engine.get_escrow(created.sequence)

    def test_finish_twice_raises(self, funded_engine):
        created = funded_engine.create_escrow(OWNER_SEED, DESTINATION, "40", "RLUSD")
        funded_engine.finish_escrow(created.sequence)
        with pytest.raises(EscrowNotFound) as exc_info:
            funded_engine.finish_escrow(created.sequence)
        assert exc_info.value.sequence == created.sequence
        assert balance_of(funded_engine, DESTINATION, "RLUSD") == Decimal("40")

    def test_finish_unknown_mutates_nothing(self, funded_engine):
        before = funded_engine.store.snapshot()
        log_len = len(funded_engine.transaction_log)
        with pytest.raises(EscrowNotFound):
            funded_engine.finish_escrow(424242)
        assert funded_engine.store.snapshot() == before
        assert len(funded_engine.transaction_log) == log_len

    def test_finish_any_time_by_default(self, funded_engine):
        created = funded_engine.create_escrow(OWNER_SEED, DESTINATION, "40", "RLUSD", finish_after=86400)
        funded_engine.finish_escrow(created.sequence)
        assert balance_of(funded_engine, DESTINATION, "RLUSD") == Decimal("40")

    @pytest.mark.parametrize("sequence", ["12", 1.0, True, None])
    def test_sequence_must_be_int(self, engine, sequence):
        with pytest.raises(ValidationError):
            engine.finish_escrow(sequence)


class TestStrictFinishAfter:
    """Tests for enforce_finish_after=True."""

    def _fund(self, engine):
        owner = engine.derive_account(OWNER_SEED)
        engine.issue(ISSUER_SEED, owner, "RLUSD", "100")
        return owner

    def test_finish_before_delay_raises(self, strict_engine):
        owner = self._fund(strict_engine)
        created = strict_engine.create_escrow(OWNER_SEED, DESTINATION, "40", "RLUSD", finish_after=60)
        strict_engine.advance_time(T0 + timedelta(seconds=59))

        with pytest.raises(EscrowNotReady) as exc_info:
            strict_engine.finish_escrow(created.sequence)
        assert exc_info.value.ready_at == T0 + timedelta(seconds=60)
        assert created.sequence in strict_engine.escrows
        assert balance_of(strict_engine, owner, "RLUSD") == Decimal("60")
        assert strict_engine.store.has_account(DESTINATION) is False

    def test_finish_at_delay_succeeds(self, strict_engine):
        self._fund(strict_engine)
        created = strict_engine.create_escrow(OWNER_SEED, DESTINATION, "40", "RLUSD", finish_after=60)
        strict_engine.advance_time(T0 + timedelta(seconds=60))
        strict_engine.finish_escrow(created.sequence)
        assert balance_of(strict_engine, DESTINATION, "RLUSD") == Decimal("40")

    def test_no_delay_finishes_immediately(self, strict_engine):
        self._fund(strict_engine)
        created = strict_engine.create_escrow(OWNER_SEED, DESTINATION, "40", "RLUSD")
        strict_engine.finish_escrow(created.sequence)
        assert created.sequence not in strict_engine.escrows


class TestGetBalances:
    """Tests for get_balances() and the empty-account policy."""

    def test_native_default_for_empty_account(self, engine):
        assert engine.get_balances("rNobody") == [
            Balance(NATIVE_CURRENCY, Decimal("100"), NATIVE_COUNTERPARTY)
        ]

    def test_native_default_is_not_persisted(self, engine):
        engine.get_balances("rNobody")
        assert engine.store.has_account("rNobody") is False
        assert engine.verify_conservation()['valid']

    def test_tracked_balances_replace_default(self, engine):
        engine.issue(ISSUER_SEED, "rHolder", "RLUSD", "3")
        assert [b.currency for b in engine.get_balances("rHolder")] == ["RLUSD"]

    def test_empty_policy(self, strict_engine):
        assert strict_engine.get_balances("rNobody") == []

    def test_missing_address(self, engine):
        with pytest.raises(ValidationError) as exc_info:
            engine.get_balances("")
        assert exc_info.value.field == "address"


class TestTime:
    """Tests for time management."""

    def test_advance_time(self, engine):
        engine.advance_time(T0 + timedelta(days=1))
        assert engine.current_time == T0 + timedelta(days=1)

    def test_cannot_move_backwards(self, engine):
        with pytest.raises(ValueError, match="backwards"):
            engine.advance_time(T0 - timedelta(seconds=1))

    def test_wall_clock_engine_cannot_advance(self):
        engine = EscrowEngine(verbose=False)
        with pytest.raises(LedgerError, match="initial_time"):
            engine.advance_time(datetime.now(timezone.utc) + timedelta(days=1))

    def test_results_use_engine_time(self, funded_engine):
        later = T0 + timedelta(hours=2)
        funded_engine.advance_time(later)
        created = funded_engine.create_escrow(OWNER_SEED, DESTINATION, "1", "RLUSD")
        assert created.timestamp == later
        assert funded_engine.get_escrow(created.sequence).created_at == later


class TestQueries:
    """Tests for escrow queries, audit trail and conservation report."""

    def test_list_escrows_sorted_and_filtered(self, funded_engine, owner):
        funded_engine.issue(ISSUER_SEED, funded_engine.derive_account("sEdOtherSeed"), "RLUSD", "10")
        a = funded_engine.create_escrow(OWNER_SEED, DESTINATION, "1", "RLUSD")
        b = funded_engine.create_escrow(OWNER_SEED, DESTINATION, "2", "RLUSD")
        c = funded_engine.create_escrow("sEdOtherSeed", DESTINATION, "3", "RLUSD")

        all_sequences = [r.sequence for r in funded_engine.list_escrows()]
        assert all_sequences == sorted([a.sequence, b.sequence, c.sequence])
        assert {r.sequence for r in funded_engine.list_escrows(owner=owner)} == {a.sequence, b.sequence}

    def test_locked_amount_and_total_supply(self, funded_engine):
        funded_engine.create_escrow(OWNER_SEED, DESTINATION, "40", "RLUSD")
        funded_engine.create_escrow(OWNER_SEED, DESTINATION, "0.5", "RLUSD")
        assert funded_engine.locked_amount("RLUSD") == Decimal("40.5")
        assert funded_engine.total_supply("RLUSD") == Decimal("100")

    def test_transaction_log(self, funded_engine):
        created = funded_engine.create_escrow(OWNER_SEED, DESTINATION, "40", "RLUSD")
        finished = funded_engine.finish_escrow(created.sequence)

        log = funded_engine.transaction_log
        assert [tx.tx_type for tx in log] == [TX_TYPE_ISSUE, TX_TYPE_ESCROW_CREATE, TX_TYPE_ESCROW_FINISH]
        assert [tx.sequence_number for tx in log] == [0, 1, 2]
        assert log[1].tx_hash == created.tx_hash
        assert log[2].tx_hash == finished.tx_hash
        assert log[1].details['amount'] == "40"

    def test_verify_conservation_reports_supplies(self, funded_engine):
        funded_engine.create_escrow(OWNER_SEED, DESTINATION, "40", "RLUSD")
        report = funded_engine.verify_conservation()
        assert report['valid'] is True
        assert report['supplies'] == {"RLUSD": Decimal("100")}
        assert report['discrepancies'] == []

    def test_verify_conservation_detects_tampering(self, funded_engine, owner):
        funded_engine.store.credit(owner, "RLUSD", Decimal("1"), "rForger")
        report = funded_engine.verify_conservation()
        assert report['valid'] is False
        [issue] = report['discrepancies']
        assert issue['currency'] == "RLUSD"
        assert issue['difference'] == Decimal("1")

    def test_reset(self, funded_engine):
        funded_engine.create_escrow(OWNER_SEED, DESTINATION, "40", "RLUSD")
        funded_engine.reset()
        assert funded_engine.escrows == {}
        assert funded_engine.transaction_log == []
        assert funded_engine.store.list_accounts() == set()
        assert funded_engine.verify_conservation()['supplies'] == {}


class TestVerboseOutput:
    """Diagnostics printed when verbose=True."""

    def test_prints_status_lines(self, capsys, owner):
        engine = make_engine(verbose=True)
        engine.issue(ISSUER_SEED, owner, "RLUSD", "100")
        created = engine.create_escrow(OWNER_SEED, DESTINATION, "40", "RLUSD")
        engine.finish_escrow(created.sequence)
        out = capsys.readouterr().out
        assert f"Escrow {created.sequence} created - Locked 40 RLUSD" in out
        assert f"Escrow {created.sequence} finished - Released 40 RLUSD to {DESTINATION}" in out

    def test_silent_when_not_verbose(self, capsys, funded_engine):
        funded_engine.create_escrow(OWNER_SEED, DESTINATION, "40", "RLUSD")
        assert capsys.readouterr().out == ""


class TestAccountIdentifiers:
    """Derived accounts are used exactly as derived."""

    def test_padded_seed_issue_then_escrow(self, engine):
        seed = "sEdPadded  "
        owner = engine.derive_account(seed)
        assert owner.endswith("  ")

        engine.issue(ISSUER_SEED, owner, "RLUSD", "100")
        assert engine.store.list_accounts() == {owner}

        created = engine.create_escrow(seed, DESTINATION, "40", "RLUSD")
        assert created.owner == owner
        assert balance_of(engine, owner, "RLUSD") == Decimal("60")
        assert engine.get_balances(owner)[0].value == Decimal("60")

    def test_padded_destination_is_kept(self, funded_engine):
        created = funded_engine.create_escrow(OWNER_SEED, " rPadded ", "1", "RLUSD")
        funded_engine.finish_escrow(created.sequence)
        assert balance_of(funded_engine, " rPadded ", "RLUSD") == Decimal("1")
        assert funded_engine.store.has_account("rPadded") is False


class TestUnrepresentableAmounts:
    """Amounts outside the ledger's exact decimal range fail without side effects."""

    def _state(self, engine):
        return engine.store.snapshot(), dict(engine.issued), list(engine.transaction_log)

    def test_issue_huge_value_changes_nothing(self, engine):
        before = self._state(engine)
        with pytest.raises(ValidationError) as exc_info:
            engine.issue(ISSUER_SEED, "rHolder", "RLUSD", "1e999999999")
        assert exc_info.value.field == "value"
        assert self._state(engine) == before

    def test_issue_overflowing_total_changes_nothing(self, engine):
        engine.issue(ISSUER_SEED, "rHolder", "RLUSD", "9E+999999")
        before = self._state(engine)
        with pytest.raises(ValidationError):
            engine.issue(ISSUER_SEED, "rOther", "RLUSD", "9E+999999")
        assert self._state(engine) == before
        assert engine.verify_conservation()['valid']

    def test_issue_total_that_would_round_changes_nothing(self, engine):
        engine.issue(ISSUER_SEED, "rHolder", "RLUSD", "1E+40")
        before = self._state(engine)
        with pytest.raises(ValidationError):
            engine.issue(ISSUER_SEED, "rOther", "RLUSD", "0.00000000000000000001")
        assert self._state(engine) == before
        assert engine.verify_conservation()['valid']
