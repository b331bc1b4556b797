"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. atomicity.py - All-or-nothing transaction semantics
2. idempotency.py - Duplicate execution handling
3. determinism.py - Reproducible behavior
4. canonicalization.py - Content-addressable intent identity
5. temporal.py - Block ordering and historical reconstruction

These tests use hypothesis for property-based testing.
"""
