"""
rewards.py - Earn sources

Every earn credits Coins and raises lifetime_coins by the same amount,
recorded as one EARN ledger entry:
- complete_task(): a catalog task, at most once per account
- record_game_score(): the minigame, 1 Coin per 10 points, plus high score
- redeem_promo(): a configured promo code, at most once per account
- leaderboard(): top minigame high scores
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from .core import (
    Account, DisplayUnit, Transaction, TransactionKind, TransactionStatus,
    WALLET_DESTINATION, ValidationError, new_transaction_id,
)
from .ledger import RewardsLedger, build_update


GAME_POINTS_PER_COIN = 10
GAME_REWARD_LABEL = "Play MD Reward"
GAME_DESTINATION = "Play MD"
LEADERBOARD_SIZE = 5

PROMO_USED_MESSAGE = "This code already used"
PROMO_INVALID_MESSAGE = "Invalid code"


class TaskType(Enum):
    OFFER = "OFFER"
    AD = "AD"
    POLL = "POLL"


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    title: str
    reward: int
    provider: str
    type: TaskType = TaskType.OFFER
    description: str = ""
    url: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("Task id cannot be empty")
        if isinstance(self.reward, bool) or not isinstance(self.reward, int) or self.reward <= 0:
            raise ValueError(f"Task reward must be a positive int, got {self.reward!r}")


class TaskCatalog:
    """The tasks currently on offer. Empty unless tasks are supplied."""

    def __init__(self, tasks: Iterable[Task] = ()):
        self._tasks: Dict[str, Task] = {}
        for task in tasks:
            self.add(task)

    def add(self, task: Task) -> None:
        if task.id in self._tasks:
            raise ValueError(f"Duplicate task id: {task.id}")
        self._tasks[task.id] = task

    def get(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def available_for(self, account: Account) -> List[Task]:
        return [t for t in self._tasks.values() if t.id not in account.completed_task_ids]

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self):
        return iter(self._tasks.values())


def _earn_entry(ledger: RewardsLedger, prefix: str, coins: int, label: str, destination: str) -> Transaction:
    now = ledger.now()
    return Transaction(
        id=new_transaction_id(prefix, now),
        amount=Decimal(coins),
        coin_amount=coins,
        reward_type=label,
        timestamp=now,
        status=TransactionStatus.SUCCESS,
        destination_id=destination,
        kind=TransactionKind.EARN,
        unit=DisplayUnit.COINS,
    )


def complete_task(ledger: RewardsLedger, catalog: TaskCatalog, account_id: str, task_id: str) -> Account:
    """
    Credit a task's reward, once per account.

    Raises:
        ValidationError: If the task is unknown or already completed
    """
    task = catalog.get(task_id)
    if task is None:
        raise ValidationError(f"Unknown task: {task_id}")
    account = ledger.get_account(account_id)
    if task.id in account.completed_task_ids:
        raise ValidationError("Task already completed.")
    entry = _earn_entry(ledger, "tx", task.reward, task.title, task.provider)
    update = build_update(
        account,
        coin_delta=task.reward,
        lifetime_delta=task.reward,
        entry=entry,
        extra_fields={'completed_task_ids': account.completed_task_ids | {task.id}},
    )
    return ledger.commit(update)


def game_reward(score: int) -> int:
    return max(0, score) // GAME_POINTS_PER_COIN


def record_game_score(ledger: RewardsLedger, account_id: str, score: int) -> Account:
    """
    Record a finished minigame round.

    Raises the high score when beaten and credits floor(score / 10) Coins.
    A round worth no Coins writes no ledger entry.
    """
    if isinstance(score, bool) or not isinstance(score, int) or score < 0:
        raise ValidationError("Score must be a non-negative integer.")
    account = ledger.get_account(account_id)
    extra = {'high_score': score} if score > account.high_score else {}
    reward = game_reward(score)
    if reward == 0:
        if not extra:
            return account
        return ledger.commit(build_update(account, extra_fields=extra))
    entry = _earn_entry(ledger, "tx", reward, GAME_REWARD_LABEL, GAME_DESTINATION)
    update = build_update(
        account, coin_delta=reward, lifetime_delta=reward, entry=entry, extra_fields=extra
    )
    return ledger.commit(update)


def redeem_promo(ledger: RewardsLedger, account_id: str, code: str) -> Account:
    """
    Redeem a configured promo code, once per account.

    Raises:
        ValidationError: If the code is unknown or already used on this account
    """
    code = (code or "").strip()
    promo: Optional[Tuple[str, int]] = ledger.config.promo_codes.get(code)
    if promo is None:
        raise ValidationError(PROMO_INVALID_MESSAGE)
    account = ledger.get_account(account_id)
    if code in account.used_promo_codes:
        raise ValidationError(PROMO_USED_MESSAGE)
    label, bonus = promo
    entry = _earn_entry(ledger, "promo", bonus, f"PROMO: {label}", WALLET_DESTINATION)
    update = build_update(
        account,
        coin_delta=bonus,
        lifetime_delta=bonus,
        entry=entry,
        extra_fields={'used_promo_codes': account.used_promo_codes | {code}},
    )
    return ledger.commit(update)


def leaderboard(ledger: RewardsLedger, limit: int = LEADERBOARD_SIZE) -> List[Tuple[str, int]]:
    """(username, high_score) of the best players, best first."""
    top = ledger.call(ledger.store.top_high_scores, limit)
    return [(a.username or a.id, a.high_score) for a in top]
