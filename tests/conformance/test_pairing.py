"""
Pairing Conformance Tests

INVARIANT: Every balance change is paired with exactly one ledger entry.

    ∀ committed action A on account X:
        balance(X) changes ⟹ exactly one entry E is appended to X
        Δcoin_balance(X) = E.coin_amount
        Δlifetime_coins(X) ≥ 0

    ∀ rejected action A:
        X is unchanged

Seeded balances aside, the Coin balance always equals the sum of the
coin_amount of the account's entries.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from decimal import Decimal

from mcreward import TransactionKind, build_update, Account, LedgerIntegrityError

from tests.fakes import Engine


SEED_COINS = 10_000
SEED_ASSET = Decimal("5")

units = st.decimals(min_value=Decimal("0.0001"), max_value=Decimal("6"), places=4)

actions = st.one_of(
    st.tuples(st.just("buy"), units),
    st.tuples(st.just("sell"), units),
    st.tuples(st.just("game"), st.integers(min_value=0, max_value=5000)),
    st.tuples(st.just("google"), st.sampled_from([10, 20, 30, 100])),
    st.tuples(st.just("minecraft"), st.integers(min_value=1, max_value=60)),
)


def _run(session, action, arg):
    if action == "buy":
        return session.buy(arg)
    if action == "sell":
        return session.sell(arg, "42")
    if action == "game":
        return session.record_game_score(arg)
    if action == "google":
        return session.redeem_google_play(arg)
    return session.transfer_minecraft_coins(arg, "Notch")


class TestPairingProperties:
    """Property-based pairing tests."""

    @given(st.lists(actions, max_size=12))
    @settings(max_examples=50, deadline=None)
    def test_each_balance_change_has_one_entry(self, script):
        """
        PROPERTY: A committed action appends one entry whose coin_amount is
        the Coin delta; a rejected action changes nothing.
        """
        engine = Engine()
        engine.seed("alice", coins=SEED_COINS, asset=SEED_ASSET, pin="42")
        session = engine.session("alice")

        for action, arg in script:
            before = engine.account("alice")
            result = _run(session, action, arg)
            after = engine.account("alice")

            if not result.ok:
                assert after == before
                continue

            coin_delta = after.coin_balance - before.coin_balance
            asset_delta = after.asset_balance - before.asset_balance
            new_entries = after.transactions[len(before.transactions):]
            balance_changed = coin_delta != 0 or asset_delta != 0 or after.lifetime_coins != before.lifetime_coins

            if balance_changed:
                assert len(new_entries) == 1
                assert new_entries[0].coin_amount == coin_delta
            else:
                assert new_entries == ()
            assert after.lifetime_coins >= before.lifetime_coins

    @given(st.lists(actions, max_size=12))
    @settings(max_examples=50, deadline=None)
    def test_coin_balance_is_sum_of_entries(self, script):
        """
        PROPERTY: coin_balance = seeded Coins + Σ entry.coin_amount.
        """
        engine = Engine()
        engine.seed("alice", coins=SEED_COINS, asset=SEED_ASSET, pin="42")
        session = engine.session("alice")

        for action, arg in script:
            _run(session, action, arg)

        account = engine.account("alice")
        assert account.coin_balance == SEED_COINS + sum(t.coin_amount for t in account.transactions)
        assert account.coin_balance >= 0
        assert account.asset_balance >= 0

    @given(st.lists(actions, max_size=12))
    @settings(max_examples=50, deadline=None)
    def test_lifetime_only_counts_earnings(self, script):
        """
        PROPERTY: lifetime_coins grows only through earnings; trades and
        redemptions leave it alone.
        """
        engine = Engine()
        engine.seed("alice", coins=SEED_COINS, asset=SEED_ASSET, pin="42")
        session = engine.session("alice")

        for action, arg in script:
            _run(session, action, arg)

        account = engine.account("alice")
        earned = sum(
            t.coin_amount for t in account.transactions
            if t.kind == TransactionKind.EARN and not t.id.startswith("zpexk_")
        )
        assert account.lifetime_coins == earned

    @given(st.integers(min_value=1, max_value=10_000))
    @settings(max_examples=50)
    def test_unpaired_change_rejected(self, coins):
        """
        PROPERTY: No update can change a balance without an entry.
        """
        with pytest.raises(LedgerIntegrityError):
            build_update(Account(id="u1"), coin_delta=coins)
        with pytest.raises(LedgerIntegrityError):
            build_update(Account(id="u1"), asset_delta=Decimal(coins))
