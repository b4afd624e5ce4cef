"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the rewards engine.
Any compliant store or engine wiring MUST pass these tests.

The tests are organized by invariant:
1. test_pairing.py - Every balance change has exactly one ledger entry
2. test_append_only.py - Ledger history is never rewritten
3. test_atomicity.py - Transfers move both accounts or neither
4. test_price_impact.py - Market price moves and floors
5. test_history_window.py - Bounded price history
6. test_pin_cooldown.py - PIN change cooldown and fail-closed verification
7. test_candle_shapes.py - Candle derivation

These tests use hypothesis for property-based testing.
"""
