"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the escrow ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Value is never created or destroyed outside issuance
2. atomicity.py - Failed operations leave no trace
3. determinism.py - Reproducible behavior with seeded randomness
4. concurrency.py - Serialized critical sections under threads

These tests use hypothesis for property-based testing.
"""
