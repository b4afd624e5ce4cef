"""
market.py - $ZPEXK Market Engine

A constant-impact market maker shared by every user. Each trade of ``u``
units moves the price by ``u × impact_factor`` of itself: up on a buy, down
on a sell (never below the floor). Sells pay out net of a flat tax.

Pure functions (quote, compute_buy, compute_sell, sell_bill) compute the
next MarketState. The Market class reads state from the stores, commits the
account side through the RewardsLedger and writes the market side with a
versioned compare-and-swap, reverting it if the account write fails.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from enum import Enum
from typing import Any, Optional, Tuple

from .config import DEFAULT_CONFIG, EngineConfig
from .core import (
    Account, MarketState, MarketStore, Transaction, TransactionKind, TransactionStatus,
    DisplayUnit, MARKET_DESTINATION, PRICE_DECIMAL_PLACES,
    InsufficientFunds, MarketContention, RewardsError, StoreError, StoreTimeout, VersionConflict,
    WriteOutcomeUnknown,
    format_units, new_transaction_id, require_positive_quantity,
)
from .ledger import PendingUpdate, RewardsLedger, build_update
from .security import PinGate


INSUFFICIENT_COINS_MESSAGE = "Insufficient Coins to complete purchase."
INSUFFICIENT_ASSET_MESSAGE = "Insufficient $ZPEXK inventory."
CONTENTION_MESSAGE = "The market is busy. Please try again."

_PRICE_QUANTUM = Decimal(1).scaleb(-PRICE_DECIMAL_PLACES)


class TradeDirection(Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True, slots=True)
class SellBill:
    """
    Payout for a sell at the current price.

    Attributes:
        units: $ZPEXK sold.
        gross: floor(units × price).
        tax: floor(gross × sell_tax_rate).
        net: gross - tax, credited to the seller.
    """
    units: Decimal
    gross: int
    tax: int
    net: int


@dataclass(frozen=True)
class TradeReceipt:
    """Result of a committed trade."""
    direction: TradeDirection
    units: Decimal
    coin_amount: int
    account: Account
    market: MarketState
    bill: Optional[SellBill] = None


# ============================================================================
# PURE MARKET FUNCTIONS
# ============================================================================

def _floor_int(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def _quantize_price(price: Decimal) -> Decimal:
    return price.quantize(_PRICE_QUANTUM)


def _append_price(history: Tuple[Decimal, ...], price: Decimal, window: int) -> Tuple[Decimal, ...]:
    return (tuple(history) + (price,))[-window:]


def quote(state: MarketState, direction: TradeDirection, units: Any) -> int:
    """
    Coins exchanged for ``units`` at the current price, before tax.

    Both directions trade at the same price: floor(units × current_price).
    """
    units = require_positive_quantity(units)
    return _floor_int(units * state.current_price)


def compute_buy(
    state: MarketState,
    units: Any,
    config: Optional[EngineConfig] = None,
) -> Tuple[MarketState, int]:
    """
    Apply a buy of ``units`` to the market.

    Returns:
        (next_state, cost) where cost = floor(units × current_price)

    Raises:
        ValidationError: If units is not a positive quantity
    """
    config = config or DEFAULT_CONFIG
    units = require_positive_quantity(units)
    cost = _floor_int(units * state.current_price)
    price = _quantize_price(state.current_price + state.current_price * (units * config.impact_factor))
    next_state = MarketState(
        current_price=price,
        price_history=_append_price(state.price_history, price, config.history_window),
        total_bought=state.total_bought + units,
        version=state.version,
    )
    return next_state, cost


def sell_bill(state: MarketState, units: Any, config: Optional[EngineConfig] = None) -> SellBill:
    """The gross/tax/net split for selling ``units`` at the current price."""
    config = config or DEFAULT_CONFIG
    units = require_positive_quantity(units)
    gross = _floor_int(units * state.current_price)
    tax = _floor_int(gross * config.sell_tax_rate)
    return SellBill(units=units, gross=gross, tax=tax, net=gross - tax)


def compute_sell(
    state: MarketState,
    units: Any,
    config: Optional[EngineConfig] = None,
) -> Tuple[MarketState, SellBill]:
    """
    Apply a sell of ``units`` to the market.

    The price drops by units × impact_factor of itself but never below
    price_floor. Buy volume is unchanged.

    Returns:
        (next_state, bill)
    """
    config = config or DEFAULT_CONFIG
    bill = sell_bill(state, units, config)
    dropped = state.current_price - state.current_price * bill.units * config.impact_factor
    price = _quantize_price(max(config.price_floor, dropped))
    next_state = MarketState(
        current_price=price,
        price_history=_append_price(state.price_history, price, config.history_window),
        total_bought=state.total_bought,
        version=state.version,
    )
    return next_state, bill


def portfolio_value(account: Account, state: MarketState) -> int:
    """Coins the account's $ZPEXK is worth at the current price (pre-tax)."""
    return _floor_int(account.asset_balance * state.current_price)


def is_price_up(state: MarketState) -> bool:
    """True unless the last observation is below the one before it."""
    history = state.price_history
    if len(history) < 2:
        return True
    return history[-1] >= history[-2]


def _format_percent(rate: Decimal) -> str:
    text = f"{rate * 100:f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return f"{text}%"


# ============================================================================
# MARKET SERVICE
# ============================================================================

class Market:
    """
    Executes buys and sells against the shared market.

    Each trade reads the market, computes the next state, and writes it
    conditionally on the version it read. A lost race re-reads and
    recomputes, up to ``market_max_retries`` times. The account side is
    committed after the market write; if that fails, the market write is
    reverted unless another trade has moved the market since. A write that
    timed out unconfirmed is not reverted, since it may still land.

    Example:
        market = Market(ledger, InMemoryMarketStore(), gate)
        receipt = market.buy("u1", Decimal("0.5"))
        bill = market.sell_bill(Decimal("0.5"))
        market.sell("u1", Decimal("0.5"), pin="42")
    """

    def __init__(
        self,
        ledger: RewardsLedger,
        market_store: MarketStore,
        gate: Optional[PinGate] = None,
        config: Optional[EngineConfig] = None,
        verbose: bool = True,
    ):
        self.ledger = ledger
        self.market_store = market_store
        self.gate = gate or PinGate(ledger, config, verbose=verbose)
        self.config = config or ledger.config
        self.verbose = verbose

    # ------------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------------

    def state(self) -> MarketState:
        """
        Current market state, initializing the store on first use.
        """
        state = self.ledger.call(self.market_store.get_market_state)
        if state is not None:
            return state
        try:
            return self.ledger.call(
                self.market_store.put_market_state,
                MarketState.initial(self.config.initial_price),
                expected_version=0,
            )
        except VersionConflict:
            # Another caller initialized it first.
            return self.ledger.call(self.market_store.get_market_state)

    def quote(self, units: Any, direction: TradeDirection = TradeDirection.BUY) -> int:
        return quote(self.state(), direction, units)

    def sell_bill(self, units: Any) -> SellBill:
        return sell_bill(self.state(), units, self.config)

    def authorize_sell(self, account_id: str, units: Any, pin: str) -> SellBill:
        """
        Check inventory and PIN, then return the bill a sell would pay now.

        Writes nothing. The price may move before sell() commits.
        """
        units = require_positive_quantity(units)
        account = self.ledger.get_account(account_id)
        self.check_inventory(account, units)
        self.gate.verify(account, pin)
        return self.sell_bill(units)

    # ------------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------------

    def buy(self, account_id: str, units: Any) -> TradeReceipt:
        """
        Buy ``units`` $ZPEXK for Coins at the current price.

        Raises:
            ValidationError: If units is not positive
            InsufficientFunds: If the Coin balance does not cover the cost
            MarketContention: If the market kept changing underneath the trade
            StoreError: If a store call fails
            WriteOutcomeUnknown: If the account write timed out unconfirmed; the
                market keeps the trade's price impact
        """
        units = require_positive_quantity(units)

        for attempt in range(1, self.config.market_max_retries + 1):
            state = self.state()
            account = self.ledger.get_account(account_id)
            next_state, cost = compute_buy(state, units, self.config)
            if account.coin_balance < cost:
                if self.verbose:
                    print(f"✗ REJECTED: {account_id} buy {units}: cost {cost} > {account.coin_balance} Coins")
                raise InsufficientFunds(INSUFFICIENT_COINS_MESSAGE)

            now = self.ledger.now()
            entry = Transaction(
                id=new_transaction_id("zpexk_buy", now),
                amount=units,
                coin_amount=-cost,
                reward_type=f"Bought {format_units(units)} $ZPEXK",
                timestamp=now,
                status=TransactionStatus.SUCCESS,
                destination_id=MARKET_DESTINATION,
                kind=TransactionKind.SHOP,
                unit=DisplayUnit.ZPEXK,
            )
            update = build_update(account, coin_delta=-cost, asset_delta=units, entry=entry)

            stored_state = self._swap(state, next_state, attempt)
            if stored_state is None:
                continue
            stored_account = self._commit_or_revert(update, state, stored_state)
            return TradeReceipt(TradeDirection.BUY, units, -cost, stored_account, stored_state)

        raise MarketContention(CONTENTION_MESSAGE)

    def sell(self, account_id: str, units: Any, pin: str) -> TradeReceipt:
        """
        Sell ``units`` $ZPEXK for Coins, net of tax. Requires the account PIN.

        Raises:
            ValidationError: If units is not positive
            InsufficientFunds: If the $ZPEXK balance does not cover units
            PinNotSet, IncorrectPin, PinLocked: If PIN verification fails
            MarketContention: If the market kept changing underneath the trade
            StoreError: If a store call fails
            WriteOutcomeUnknown: If the account write timed out unconfirmed; the
                market keeps the trade's price impact
        """
        units = require_positive_quantity(units)
        account = self.ledger.get_account(account_id)
        self.check_inventory(account, units)
        self.gate.verify(account, pin)

        for attempt in range(1, self.config.market_max_retries + 1):
            state = self.state()
            account = self.ledger.get_account(account_id)
            self.check_inventory(account, units)
            next_state, bill = compute_sell(state, units, self.config)

            now = self.ledger.now()
            entry = Transaction(
                id=new_transaction_id("zpexk_sell", now),
                amount=units,
                coin_amount=bill.net,
                reward_type=(
                    f"Sold {format_units(units)} $ZPEXK "
                    f"({_format_percent(self.config.sell_tax_rate)} Tax Applied: {bill.tax} Coins)"
                ),
                timestamp=now,
                status=TransactionStatus.SUCCESS,
                destination_id=MARKET_DESTINATION,
                kind=TransactionKind.EARN,
                unit=DisplayUnit.ZPEXK,
            )
            # Sale proceeds are not new earnings: lifetime_coins stays put.
            update = build_update(account, coin_delta=bill.net, asset_delta=-units, entry=entry)

            stored_state = self._swap(state, next_state, attempt)
            if stored_state is None:
                continue
            stored_account = self._commit_or_revert(update, state, stored_state)
            return TradeReceipt(TradeDirection.SELL, units, bill.net, stored_account, stored_state, bill)

        raise MarketContention(CONTENTION_MESSAGE)

    # ------------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------------

    def check_inventory(self, account: Account, units: Decimal) -> None:
        if account.asset_balance < units:
            if self.verbose:
                print(f"✗ REJECTED: {account.id} sell {units}: holds {account.asset_balance} $ZPEXK")
            raise InsufficientFunds(INSUFFICIENT_ASSET_MESSAGE)

    def _swap(self, read: MarketState, next_state: MarketState, attempt: int) -> Optional[MarketState]:
        """Conditional market write. Returns None when another trade won the race."""
        try:
            return self.ledger.call(
                self.market_store.put_market_state, next_state, expected_version=read.version
            )
        except VersionConflict:
            if self.verbose:
                print(f"⚠️  MARKET MOVED: attempt {attempt}/{self.config.market_max_retries}, retrying")
            return None
        except StoreTimeout:
            current = self.ledger.call(self.market_store.get_market_state)
            if (current is not None and current.version == read.version + 1
                    and current.current_price == next_state.current_price
                    and current.price_history == next_state.price_history):
                if self.verbose:
                    print(f"⚠️  LATE MARKET WRITE CONFIRMED: price {current.current_price}")
                return current
            # No account was written, so balances are unchanged.
            raise

    def _commit_or_revert(self, update: PendingUpdate, previous: MarketState, written: MarketState) -> Account:
        try:
            return self.ledger.commit(update)
        except WriteOutcomeUnknown:
            # The account write may still land; its price impact must stay.
            if self.verbose:
                print(f"⚠️  MARKET KEPT: account write for {update.account_id} unconfirmed")
            raise
        except RewardsError:
            self._revert(previous, written)
            raise

    def _revert(self, previous: MarketState, written: MarketState) -> None:
        """Put back ``previous`` if the market is still exactly as we left it."""
        restore = MarketState(
            current_price=previous.current_price,
            price_history=previous.price_history,
            total_bought=previous.total_bought,
        )
        try:
            self.ledger.call(
                self.market_store.put_market_state, restore, expected_version=written.version
            )
        except StoreError as e:
            if self.verbose:
                print(f"⚠️  MARKET REVERT SKIPPED: {e}")
            return
        if self.verbose:
            print(f"⚠️  MARKET REVERTED: price back to {previous.current_price}")
