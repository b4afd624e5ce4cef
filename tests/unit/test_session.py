"""
test_session.py - Unit tests for the per-user operation boundary

Tests:
- Errors become OperationResults with user-facing messages
- One in-flight action per user
- Read helpers
- Injected collaborators are used as given, even when empty
"""

import pytest
from decimal import Decimal

from mcreward import (
    EngineConfig, InMemoryAccountStore, Outcome, Task, TaskCatalog, TransferState, WriteOutcomeUnknown,
)

from tests.fakes import Engine, ContendedMarketStore, BOB_PUBLIC_ID


class TestOutcomes:

    def test_applied(self, engine, alice):
        result = engine.session("alice").buy("2")
        assert result.ok
        assert result.outcome == Outcome.APPLIED
        assert result.message == "Bought 2.00 $ZPEXK for 2000 Coins."
        assert result.account.coin_balance == 8000

    def test_rejected(self, engine, bob):
        result = engine.session("bob").buy("2")
        assert result.outcome == Outcome.REJECTED
        assert result.message == "Insufficient Coins to complete purchase."
        assert result.account is None

    def test_store_failure(self, engine, alice):
        engine.store.fail_upserts = 1
        result = engine.session("alice").buy("1")
        assert result.outcome == Outcome.FAILED
        assert result.message == "Something went wrong. Please try again."

    def test_contention(self):
        engine = Engine(market_store=ContendedMarketStore(conflicts=10))
        engine.seed("alice", coins=10_000)
        result = engine.session("alice").buy("1")
        assert result.outcome == Outcome.FAILED
        assert result.message == "The market is busy. Please try again."

    def test_busy(self, engine, alice):
        session = engine.session("alice")
        other = engine.session("alice")
        assert other._lock is session._lock
        session._lock.acquire()
        try:
            result = other.buy("1")
        finally:
            session._lock.release()
        assert result.outcome == Outcome.BUSY
        assert result.message == "Another action is still in progress."
        assert engine.account("alice") == alice
        assert engine.session("alice").buy("1").ok

    def test_unknown_outcome(self, engine, alice, monkeypatch):
        def unconfirmed(account_id, units):
            raise WriteOutcomeUnknown("Store call did not complete within 0.2s")

        monkeypatch.setattr(engine.market, "buy", unconfirmed)
        result = engine.session("alice").buy("1")
        assert result.outcome == Outcome.UNKNOWN
        assert not result.ok
        assert result.message == (
            "We could not confirm this action. Check your history before trying again."
        )

    def test_lock_scoped_to_ledger(self, engine, alice):
        other = Engine()
        other.seed("alice", coins=10_000)
        session = engine.session("alice")
        assert other.session("alice")._lock is not session._lock
        session._lock.acquire()
        try:
            assert other.session("alice").buy("1").ok
        finally:
            session._lock.release()

    def test_other_users_not_blocked(self, engine, alice, bob):
        session = engine.session("alice")
        session._lock.acquire()
        try:
            assert engine.session("bob").buy("0.5").ok
        finally:
            session._lock.release()


class TestActions:

    def test_set_pin(self, engine, carol):
        session = engine.session("carol")
        assert session.set_pin("55").message == "PIN updated successfully!"
        result = session.set_pin("66")
        assert result.outcome == Outcome.REJECTED
        assert result.message.startswith("You can only update your PIN once every 8 hours.")

    def test_sell_flow(self, engine, alice):
        session = engine.session("alice")
        bill = session.sell_bill("2", "42")
        assert bill.message == "Gross 2000 Coins, tax 220 Coins, you receive 1780 Coins."
        result = session.sell("2", "42")
        assert result.message == "Sold 2.00 $ZPEXK for 1780 Coins after tax."
        assert result.account.coin_balance == 11_780

    def test_sell_bill_wrong_pin(self, engine, alice):
        result = engine.session("alice").sell_bill("2", "00")
        assert result.outcome == Outcome.REJECTED
        assert result.message == "Incorrect Security PIN."

    def test_transfer_flow(self, engine, alice, bob):
        session = engine.session("alice")
        composed = session.compose_transfer(BOB_PUBLIC_ID, "1")
        assert composed.message == f"Send 1.00 $ZPEXK to {BOB_PUBLIC_ID}"
        attempt = composed.data
        assert session.review_transfer(attempt).ok
        assert session.authorize_transfer(attempt, "42").message == "PIN verified."
        result = session.commit_transfer(attempt)
        assert result.message == f"Sent 1.00 $ZPEXK to {BOB_PUBLIC_ID}."
        assert result.account.asset_balance == Decimal("4")
        assert attempt.state == TransferState.COMMITTED

    def test_transfer_store_failure(self, engine, alice, bob):
        session = engine.session("alice")
        attempt = session.compose_transfer(BOB_PUBLIC_ID, "1").data
        session.review_transfer(attempt)
        session.authorize_transfer(attempt, "42")
        engine.store.fail_atomic = True
        result = session.commit_transfer(attempt)
        assert result.outcome == Outcome.FAILED
        assert result.message == "Transfer failed. Please try again."
        assert attempt.state == TransferState.REVIEW

    def test_scan_transfer_rejected(self, engine, alice):
        result = engine.session("alice").compose_scan_transfer("not a number", "1")
        assert result.message == "Scanned code is not a ZPEXK Number."

    def test_cancel_transfer(self, engine, alice):
        session = engine.session("alice")
        attempt = session.compose_transfer(BOB_PUBLIC_ID, "1").data
        assert session.cancel_transfer(attempt).message == "Transfer cancelled."

    def test_complete_task(self, engine, carol):
        catalog = TaskCatalog([Task("t1", "Survey", 40, "Pollfish")])
        session = engine.session("carol", catalog)
        assert session.complete_task("t1").message == "Task complete! 40 Coins added."
        assert session.complete_task("t1").outcome == Outcome.REJECTED

    def test_game_score(self, engine, carol):
        assert engine.session("carol").record_game_score(57).message == "You earned 5 Coins"

    def test_promo(self):
        engine = Engine(EngineConfig(store_timeout=None, promo_codes={"BOOST": ("Boost", 5000)}))
        engine.seed("alice")
        result = engine.session("alice").redeem_promo("BOOST")
        assert result.message == "ACCESS GRANTED! 5,000 coins added to your wallet."

    def test_google_play(self, engine, alice):
        result = engine.session("alice").redeem_google_play(20)
        assert result.message == (
            "Successfully redeemed 20rs Google Play Code! Check your wallet for the code."
        )
        assert result.account.coin_balance == 10_000 - 2400

    def test_minecraft(self, engine, alice):
        result = engine.session("alice").transfer_minecraft_coins("3", "Notch")
        assert result.message == (
            "Transfer of 3 Minecraft Coins to Notch initiated! It will be processed within 24 hours."
        )

    def test_login_backfills_public_id(self, engine):
        engine.store.upsert_account("legacy", {'username': "Old"}, expected_version=0)
        result = engine.session("legacy").login()
        assert result.message == "Welcome back, Old."
        assert result.account.public_id is not None


class TestReads:

    def test_chart(self, engine, alice):
        session = engine.session("alice")
        assert session.chart().candles == ()
        session.buy("1")
        session.buy("1")
        assert len(session.chart().candles) == 2

    def test_history(self, engine, alice):
        session = engine.session("alice")
        session.buy("1")
        session.redeem_google_play(10)
        recent = session.recent_transactions()
        assert [t.reward_type for t in recent] == ["10rs Google Play Code", "Bought 1.00 $ZPEXK"]
        assert session.total_spent() == 1000 + 1200

    def test_market_state(self, engine):
        assert engine.session("nobody").market_state().current_price == Decimal("1000")

    def test_leaderboard(self, engine, alice):
        session = engine.session("alice")
        session.record_game_score(120)
        assert session.leaderboard() == [("Alice", 120)]


class TestInjection:

    def test_empty_catalog_filled_later(self, engine, carol):
        catalog = TaskCatalog()
        session = engine.session("carol", catalog)
        assert session.catalog is catalog

        catalog.add(Task("t1", "Survey", 40, "Pollfish"))
        result = session.complete_task("t1")
        assert result.ok
        assert result.account.coin_balance == 540

    def test_empty_store_is_used(self):
        store = InMemoryAccountStore(test_mode=True)
        engine = Engine(account_store=store)
        assert engine.store is store
        engine.seed("alice", coins=5)
        assert len(store) == 1
