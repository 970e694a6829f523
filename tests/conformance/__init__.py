"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending engine.

The tests are organized by invariant:
1. conservation.py - Pool bounds and principal bookkeeping
2. atomicity.py - Rejected operations leave no trace
3. temporal.py - Accrual over time and clock ordering
4. concurrency.py - Per-pool serialization under contention

These tests use hypothesis for property-based testing.
"""
