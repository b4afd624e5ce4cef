"""
session.py - Per-user operation boundary

A Session is the entry point for one authenticated user's actions. It:
    - allows one mutating action per user at a time (a second one gets BUSY)
    - calls into the market, transfer protocol, security gate and earn/redeem
      sources
    - turns every RewardsError into an OperationResult with a message the
      user can read

Nothing below the session catches errors for presentation purposes.
"""

from __future__ import annotations
from dataclasses import dataclass
import threading
import weakref
from typing import Any, Callable, Dict, List, Optional, Tuple

from .accounts import ensure_public_id
from .candles import ChartLayout, layout_chart
from .core import (
    Account, MarketState, Outcome, Transaction,
    MarketContention, RewardsError, StoreError, WriteOutcomeUnknown,
)
from .ledger import RewardsLedger
from .market import Market, TradeReceipt
from .redemption import GOOGLE_PLAY_TIERS, redeem_google_play, transfer_minecraft_coins
from .rewards import (
    TaskCatalog, complete_task, game_reward, leaderboard, record_game_score, redeem_promo,
)
from .security import PinGate
from .transfer import TransferAttempt, TransferProtocol


GENERIC_FAILURE_MESSAGE = "Something went wrong. Please try again."
TRANSFER_FAILURE_MESSAGE = "Transfer failed. Please try again."
BUSY_MESSAGE = "Another action is still in progress."
UNKNOWN_OUTCOME_MESSAGE = "We could not confirm this action. Check your history before trying again."
TRANSFER_UNKNOWN_MESSAGE = (
    "We could not confirm this transfer. Check your history; "
    "sending the same transfer again will not send it twice."
)


@dataclass(frozen=True)
class OperationResult:
    """
    What a user action produced.

    Attributes:
        outcome: APPLIED, REJECTED, FAILED, UNKNOWN or BUSY.
        message: Text to show the user.
        account: The user's account after the action, when it was applied.
        data: Action-specific payload (receipt, bill, transfer attempt...).
    """
    outcome: Outcome
    message: str = ""
    account: Optional[Account] = None
    data: Any = None

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.APPLIED


class Session:
    """
    One user's view of the rewards engine.

    Example:
        session = Session("u1", ledger, market, transfers)
        result = session.buy("0.5")
        if not result.ok:
            show(result.message)
    """

    # One lock per principal, per ledger. Dropped with the ledger.
    _inflight: weakref.WeakKeyDictionary[RewardsLedger, Dict[str, threading.Lock]] = weakref.WeakKeyDictionary()
    _inflight_guard = threading.Lock()

    def __init__(
        self,
        principal_id: str,
        ledger: RewardsLedger,
        market: Market,
        transfers: Optional[TransferProtocol] = None,
        gate: Optional[PinGate] = None,
        catalog: Optional[TaskCatalog] = None,
        verbose: bool = True,
    ):
        self.principal_id = principal_id
        self.ledger = ledger
        self.market = market
        self.gate = gate or market.gate
        self.transfers = transfers or TransferProtocol(ledger, self.gate, verbose=verbose)
        self.catalog = catalog if catalog is not None else TaskCatalog()
        self.verbose = verbose
        with Session._inflight_guard:
            locks = Session._inflight.setdefault(ledger, {})
            self._lock = locks.setdefault(principal_id, threading.Lock())

    # ------------------------------------------------------------------------
    # Boundary
    # ------------------------------------------------------------------------

    def _run(
        self,
        action: str,
        fn: Callable[[], Any],
        success: Callable[[Any], str],
        failure_message: str = GENERIC_FAILURE_MESSAGE,
        unknown_message: str = UNKNOWN_OUTCOME_MESSAGE,
    ) -> OperationResult:
        if not self._lock.acquire(blocking=False):
            if self.verbose:
                print(f"⚠️  BUSY: {self.principal_id} {action} while another action is in flight")
            return OperationResult(Outcome.BUSY, BUSY_MESSAGE)
        try:
            data = fn()
        except WriteOutcomeUnknown as e:
            if self.verbose:
                print(f"⚠️  UNKNOWN: {self.principal_id} {action}: {e}")
            return OperationResult(Outcome.UNKNOWN, unknown_message)
        except MarketContention as e:
            return OperationResult(Outcome.FAILED, str(e))
        except StoreError as e:
            if self.verbose:
                print(f"✗ FAILED: {self.principal_id} {action}: {e}")
            return OperationResult(Outcome.FAILED, failure_message)
        except RewardsError as e:
            return OperationResult(Outcome.REJECTED, str(e))
        finally:
            self._lock.release()
        return OperationResult(Outcome.APPLIED, success(data), self._account_of(data), data)

    def _account_of(self, data: Any) -> Optional[Account]:
        if isinstance(data, Account):
            return data
        if isinstance(data, TradeReceipt):
            return data.account
        if isinstance(data, tuple) and data and isinstance(data[0], Account):
            return data[0]
        return None

    # ------------------------------------------------------------------------
    # Reads (no lock)
    # ------------------------------------------------------------------------

    def account(self) -> Account:
        return self.ledger.get_account(self.principal_id)

    def market_state(self) -> MarketState:
        return self.market.state()

    def chart(self, width: int = 1000, height: int = 300) -> ChartLayout:
        return layout_chart(self.market.state().price_history, width, height)

    def recent_transactions(self, n: int = 5) -> List[Transaction]:
        return self.ledger.recent_transactions(self.principal_id, n)

    def total_spent(self) -> int:
        return self.ledger.total_spent(self.principal_id)

    def leaderboard(self) -> List[Tuple[str, int]]:
        return leaderboard(self.ledger)

    # ------------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------------

    def login(self) -> OperationResult:
        """Backfill the public id of a legacy account."""
        return self._run(
            "login",
            lambda: ensure_public_id(self.ledger, self.principal_id),
            lambda a: f"Welcome back, {a.username or a.id}.",
        )

    def set_pin(self, new_pin: str) -> OperationResult:
        return self._run(
            "set_pin",
            lambda: self.gate.set_or_update_pin(self.principal_id, new_pin),
            lambda _: "PIN updated successfully!",
        )

    # ------------------------------------------------------------------------
    # Market
    # ------------------------------------------------------------------------

    def buy(self, units: Any) -> OperationResult:
        return self._run(
            "buy",
            lambda: self.market.buy(self.principal_id, units),
            lambda r: f"Bought {r.units:.2f} $ZPEXK for {-r.coin_amount} Coins.",
        )

    def sell_bill(self, units: Any, pin: str) -> OperationResult:
        """
        Verify the PIN and show what a sell would pay. Writes nothing.
        """
        return self._run(
            "sell_bill",
            lambda: self.market.authorize_sell(self.principal_id, units, pin),
            lambda b: f"Gross {b.gross} Coins, tax {b.tax} Coins, you receive {b.net} Coins.",
        )

    def sell(self, units: Any, pin: str) -> OperationResult:
        return self._run(
            "sell",
            lambda: self.market.sell(self.principal_id, units, pin),
            lambda r: f"Sold {r.units:.2f} $ZPEXK for {r.coin_amount} Coins after tax.",
        )

    # ------------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------------

    def compose_transfer(self, destination: str, amount: Any) -> OperationResult:
        return self._run(
            "compose_transfer",
            lambda: self.transfers.compose(self.principal_id, destination, amount),
            self.transfers.summary,
        )

    def compose_scan_transfer(self, scanned: str, amount: Any) -> OperationResult:
        return self._run(
            "compose_scan_transfer",
            lambda: self.transfers.compose_from_scan(self.principal_id, scanned, amount),
            self.transfers.summary,
        )

    def review_transfer(self, attempt: TransferAttempt) -> OperationResult:
        return self._run("review_transfer", lambda: self.transfers.review(attempt), self.transfers.summary)

    def authorize_transfer(self, attempt: TransferAttempt, pin: str) -> OperationResult:
        return self._run(
            "authorize_transfer",
            lambda: self.transfers.authorize(attempt, pin),
            lambda _: "PIN verified.",
        )

    def commit_transfer(self, attempt: TransferAttempt) -> OperationResult:
        return self._run(
            "commit_transfer",
            lambda: self.transfers.commit(attempt),
            lambda _: f"Sent {attempt.amount:.2f} $ZPEXK to {attempt.destination}.",
            failure_message=TRANSFER_FAILURE_MESSAGE,
            unknown_message=TRANSFER_UNKNOWN_MESSAGE,
        )

    def cancel_transfer(self, attempt: TransferAttempt) -> OperationResult:
        return self._run("cancel_transfer", lambda: self.transfers.cancel(attempt), lambda _: "Transfer cancelled.")

    # ------------------------------------------------------------------------
    # Earn and redeem
    # ------------------------------------------------------------------------

    def complete_task(self, task_id: str) -> OperationResult:
        return self._run(
            "complete_task",
            lambda: complete_task(self.ledger, self.catalog, self.principal_id, task_id),
            lambda a: f"Task complete! {a.transactions[-1].coin_amount} Coins added.",
        )

    def record_game_score(self, score: int) -> OperationResult:
        return self._run(
            "record_game_score",
            lambda: record_game_score(self.ledger, self.principal_id, score),
            lambda _: f"You earned {game_reward(score)} Coins",
        )

    def redeem_promo(self, code: str) -> OperationResult:
        return self._run(
            "redeem_promo",
            lambda: redeem_promo(self.ledger, self.principal_id, code),
            lambda a: f"ACCESS GRANTED! {a.transactions[-1].coin_amount:,} coins added to your wallet.",
        )

    def redeem_google_play(self, value: int) -> OperationResult:
        def message(_: Account) -> str:
            return f"Successfully redeemed {GOOGLE_PLAY_TIERS[value].label} Google Play Code! Check your wallet for the code."
        return self._run(
            "redeem_google_play",
            lambda: redeem_google_play(self.ledger, self.principal_id, value),
            message,
        )

    def transfer_minecraft_coins(self, amount: Any, nametag: str) -> OperationResult:
        return self._run(
            "transfer_minecraft_coins",
            lambda: transfer_minecraft_coins(self.ledger, self.principal_id, amount, nametag),
            lambda _: (
                f"Transfer of {int(amount)} Minecraft Coins to {nametag.strip()} initiated! "
                f"It will be processed within 24 hours."
            ),
        )
