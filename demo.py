#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Rewards Engine Step by Step

Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Foundation - Stores, the ledger, provisioning accounts, earning Coins
  4-6:  Market     - Buying $ZPEXK, price impact, PIN-gated selling with tax
  7-8:  Transfers  - The compose/review/authorize/commit state machine
  9-10: Safety     - PIN cooldown and the candle chart

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import sys

from mcreward import (
    EngineConfig, InMemoryAccountStore, InMemoryMarketStore,
    RewardsLedger, PinGate, Market, TransferProtocol, Session,
    Task, TaskCatalog, provision_account, layout_chart, display_unit,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)
    promo_code: str = "LAUNCH"
    promo_bonus: int = 5000
    task_reward: int = 750
    game_score: int = 2480
    buy_units: str = "3"
    sell_units: str = "1"
    transfer_units: str = "0.75"


CONFIG = DemoConfig()
QUICK = "--quick" in sys.argv


class DemoClock:
    """A clock the tutorial can move forward."""

    def __init__(self, start: datetime):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta) -> None:
        self.current += delta


# ============================================================================
# HELPERS
# ============================================================================

def wait_for_enter():
    if not QUICK:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def show_account(session: Session):
    account = session.account()
    print(f"  Coins:          {account.coin_balance:,}")
    print(f"  Lifetime Coins: {account.lifetime_coins:,}")
    print(f"  $ZPEXK:         {account.asset_balance}")
    print(f"  Entries:        {len(account.transactions)}")


def show_result(result):
    mark = "✓" if result.ok else "✗"
    print(f"  {mark} [{result.outcome.value}] {result.message}")


# ============================================================================
# STEPS
# ============================================================================

def step_01_wiring(clock: DemoClock):
    step_header(1, "Wiring the Engine", "Connect the ledger to its stores")
    print(">>> ledger = RewardsLedger(InMemoryAccountStore(), clock, config)")
    config = EngineConfig(promo_codes={CONFIG.promo_code: ("Launch Week", CONFIG.promo_bonus)})
    ledger = RewardsLedger(InMemoryAccountStore(), clock, config, verbose=False)
    gate = PinGate(ledger, verbose=False)
    market = Market(ledger, InMemoryMarketStore(), gate, verbose=False)
    transfers = TransferProtocol(ledger, gate, verbose=False)
    print(f"Market price: {market.state().current_price} Coins per $ZPEXK")
    wait_for_enter()
    return ledger, gate, market, transfers


def step_02_accounts(ledger: RewardsLedger):
    step_header(2, "Provisioning Accounts", "Every account starts empty with a 10-digit public id")
    steve = provision_account(ledger, "steve", "Steve")
    alex = provision_account(ledger, "alex", "Alex")
    print(f"Steve: public id {steve.public_id}, referral code {steve.referral_code}")
    print(f"Alex:  public id {alex.public_id}, referral code {alex.referral_code}")
    wait_for_enter()
    return steve, alex


def step_03_earning(session: Session):
    step_header(3, "Earning Coins", "Each earn appends one EARN entry and raises lifetime Coins")
    show_result(session.complete_task("starter"))
    show_result(session.record_game_score(CONFIG.game_score))
    show_result(session.redeem_promo(CONFIG.promo_code))
    show_result(session.redeem_promo(CONFIG.promo_code))
    show_account(session)
    wait_for_enter()


def step_04_buying(session: Session):
    step_header(4, "Buying $ZPEXK", "Every unit bought moves the price up by 1%")
    before = session.market_state().current_price
    show_result(session.buy(CONFIG.buy_units))
    after = session.market_state().current_price
    print(f"  Price: {before} -> {after}")
    show_account(session)
    wait_for_enter()


def step_05_pin(session: Session):
    step_header(5, "Setting a Security PIN", "Sells and transfers are refused until a PIN exists")
    show_result(session.sell(CONFIG.sell_units, "00"))
    show_result(session.set_pin("27"))
    wait_for_enter()


def step_06_selling(session: Session):
    step_header(6, "Selling with Tax", "The bill shows gross, tax and net before anything is written")
    show_result(session.sell_bill(CONFIG.sell_units, "27"))
    show_result(session.sell(CONFIG.sell_units, "27"))
    show_account(session)
    wait_for_enter()


def step_07_transfer(session: Session, recipient_public_id: str):
    step_header(7, "Sending $ZPEXK", "COMPOSE -> REVIEW -> AUTHORIZED -> COMMITTED")
    composed = session.compose_transfer(recipient_public_id, CONFIG.transfer_units)
    show_result(composed)
    attempt = composed.data
    show_result(session.review_transfer(attempt))
    show_result(session.authorize_transfer(attempt, "11"))
    show_result(session.authorize_transfer(attempt, "27"))
    show_result(session.commit_transfer(attempt))
    print(f"  Attempt state: {attempt.state.value}")
    wait_for_enter()


def step_08_history(session: Session):
    step_header(8, "Reading the Ledger", "Newest first, with the unit each amount is shown in")
    for tx in session.recent_transactions():
        print(f"  {tx.coin_amount:+7d} Coins  {tx.amount} {display_unit(tx).value:7s} {tx.reward_type}")
    print(f"\n  Total spent: {session.total_spent():,} Coins")
    wait_for_enter()


def step_09_cooldown(session: Session, clock: DemoClock):
    step_header(9, "PIN Cooldown", "A PIN can change at most once every 8 hours")
    show_result(session.set_pin("55"))
    clock.advance(timedelta(hours=8))
    print("  ... 8 hours later ...")
    show_result(session.set_pin("55"))
    wait_for_enter()


def step_10_chart(session: Session):
    step_header(10, "The Candle Chart", "One candle per pair of consecutive prices")
    layout = layout_chart(session.market_state().price_history, 60, 10)
    print(f"  Price axis: {layout.min_price:.2f} to {layout.max_price:.2f}")
    for geometry in layout.candles:
        direction = "up  " if geometry.is_up else "down"
        print(f"  x={geometry.x:5.1f} {direction} body {geometry.body_height:.2f} {geometry.color}")
    wait_for_enter()


def main():
    clock = DemoClock(CONFIG.start_time)
    ledger, gate, market, transfers = step_01_wiring(clock)
    steve, alex = step_02_accounts(ledger)

    catalog = TaskCatalog([Task("starter", "Starter Offer", CONFIG.task_reward, "AdGate")])
    session = Session("steve", ledger, market, transfers, gate=gate, catalog=catalog, verbose=False)

    step_03_earning(session)
    step_04_buying(session)
    step_05_pin(session)
    step_06_selling(session)
    step_07_transfer(session, alex.public_id)
    step_08_history(session)
    step_09_cooldown(session, clock)
    step_10_chart(session)
    print("\nTutorial complete.")


if __name__ == "__main__":
    main()
