"""
store.py - Reference stores, clocks and bounded store calls

Provides:
- SystemClock: UTC wall clock
- InMemoryAccountStore: AccountStore with merge writes, version checks,
  all-or-nothing multi-record updates and an append-only ledger guard
- InMemoryMarketStore: MarketStore with compare-and-swap on version
- call_with_timeout(): bound the wait on any store call

The in-memory stores are safe to share between sessions (one lock each).
Production deployments implement the same protocols against their hosted
document database.
"""

from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from .core import (
    Account, AccountFields, AtomicWrite, MarketState,
    LedgerIntegrityError, RewardsError, StoreError, StoreTimeout, VersionConflict,
    check_fields,
)


T = TypeVar("T")


class SystemClock:
    """Clock returning the current UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


# ============================================================================
# BOUNDED STORE CALLS
# ============================================================================

_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="mcreward-store")
        return _executor


def call_with_timeout(fn: Callable[..., T], *args: Any, timeout: Optional[float] = None, **kwargs: Any) -> T:
    """
    Run a store call, waiting at most ``timeout`` seconds for it.

    With ``timeout=None`` the call runs inline. Exceptions raised by the
    store are re-raised unchanged when they are RewardsErrors, and wrapped
    in StoreError otherwise.

    NOTE: A call that times out may still complete in the background.
    Callers that write must not treat StoreTimeout as "nothing changed";
    RewardsLedger re-reads the record to find out (see reconcile()).

    Raises:
        StoreTimeout: If the call did not finish in time
        StoreError: If the store raised a non-rewards exception
    """
    if timeout is None:
        try:
            return fn(*args, **kwargs)
        except RewardsError:
            raise
        except Exception as e:
            raise StoreError(f"Store call {getattr(fn, '__name__', fn)} failed: {e}") from e

    future = _get_executor().submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        raise StoreTimeout(
            f"Store call {getattr(fn, '__name__', fn)} did not complete within {timeout}s"
        )
    except RewardsError:
        raise
    except Exception as e:
        raise StoreError(f"Store call {getattr(fn, '__name__', fn)} failed: {e}") from e


# ============================================================================
# ACCOUNT STORE
# ============================================================================

class InMemoryAccountStore:
    """
    AccountStore kept in a dict.

    Every write bumps the record version. A write that would shorten the
    transaction log or change an existing entry is refused, so the ledger
    stays append-only no matter which caller writes.

    Example:
        store = InMemoryAccountStore()
        store.upsert_account("u1", {"public_id": "1234567890"}, expected_version=0)
        store.upsert_account("u1", {"coin_balance": 50}, expected_version=1)
    """

    def __init__(self, test_mode: bool = False):
        """
        Create an empty store.

        Args:
            test_mode: Enable set_balance() for seeding balances without ledger entries
        """
        self._accounts: Dict[str, Account] = {}
        self._lock = threading.RLock()
        self._test_mode = test_mode

    # ------------------------------------------------------------------------
    # AccountStore protocol
    # ------------------------------------------------------------------------

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._lock:
            return self._accounts.get(account_id)

    def find_account_by_public_id(self, public_id: str) -> Optional[Account]:
        with self._lock:
            for account in self._accounts.values():
                if account.public_id == public_id:
                    return account
            return None

    def upsert_account(
        self,
        account_id: str,
        fields: AccountFields,
        expected_version: Optional[int] = None,
    ) -> Account:
        with self._lock:
            updated = self._merge(account_id, fields, expected_version)
            self._accounts[account_id] = updated
            return updated

    def run_atomic_multi_update(self, writes: Sequence[AtomicWrite]) -> List[Account]:
        with self._lock:
            ids = [account_id for account_id, _, _ in writes]
            if len(set(ids)) != len(ids):
                raise StoreError("An atomic update cannot write the same account twice")
            # Stage every write first; nothing is stored unless all succeed.
            staged = [self._merge(account_id, fields, expected)
                      for account_id, fields, expected in writes]
            for account in staged:
                self._accounts[account.id] = account
            return staged

    def top_high_scores(self, limit: int) -> List[Account]:
        with self._lock:
            scored = [a for a in self._accounts.values() if a.high_score > 0]
        scored.sort(key=lambda a: (-a.high_score, a.id))
        return scored[:limit]

    # ------------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------------

    def set_balance(
        self,
        account_id: str,
        coins: Optional[int] = None,
        asset: Optional[Decimal] = None,
    ) -> Account:
        """
        Set balances directly, without a ledger entry.

        WARNING: This bypasses the pairing rule and is only available in
        test mode. Use RewardsLedger.commit() in production code.

        Raises:
            LedgerIntegrityError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerIntegrityError(
                "set_balance() is disabled in production mode. "
                "Commit a PendingUpdate through RewardsLedger instead. "
                "Set test_mode=True when creating the store for testing."
            )
        fields: AccountFields = {}
        if coins is not None:
            fields['coin_balance'] = coins
        if asset is not None:
            fields['asset_balance'] = Decimal(str(asset))
        return self.upsert_account(account_id, fields)

    def __len__(self) -> int:
        return len(self._accounts)

    # ------------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------------

    def _merge(self, account_id: str, fields: AccountFields, expected_version: Optional[int]) -> Account:
        check_fields(fields)
        current = self._accounts.get(account_id)
        current_version = current.version if current else 0
        if expected_version is not None and expected_version != current_version:
            raise VersionConflict(
                f"Account {account_id} is at version {current_version}, expected {expected_version}"
            )
        if current is None:
            current = Account(id=account_id)
        if 'transactions' in fields:
            self._check_append_only(account_id, current.transactions, tuple(fields['transactions']))
        if 'public_id' in fields and fields['public_id']:
            owner = self.find_account_by_public_id(fields['public_id'])
            if owner is not None and owner.id != account_id:
                raise StoreError(f"Public id {fields['public_id']} already assigned")
        return replace(current, **fields, version=current_version + 1)

    @staticmethod
    def _check_append_only(account_id: str, old: tuple, new: tuple) -> None:
        if len(new) < len(old) or new[:len(old)] != old:
            raise LedgerIntegrityError(
                f"Write to {account_id} would rewrite or drop existing ledger entries"
            )


# ============================================================================
# MARKET STORE
# ============================================================================

class InMemoryMarketStore:
    """MarketStore holding one MarketState, with compare-and-swap on version."""

    def __init__(self, state: Optional[MarketState] = None):
        self._state = state
        self._lock = threading.Lock()

    def get_market_state(self) -> Optional[MarketState]:
        with self._lock:
            return self._state

    def put_market_state(
        self,
        state: MarketState,
        expected_version: Optional[int] = None,
    ) -> MarketState:
        with self._lock:
            current_version = self._state.version if self._state else 0
            if expected_version is not None and expected_version != current_version:
                raise VersionConflict(
                    f"Market is at version {current_version}, expected {expected_version}"
                )
            self._state = replace(state, version=current_version + 1)
            return self._state
