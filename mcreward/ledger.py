"""
ledger.py - Ledger & Balance Model

The RewardsLedger is the only component that writes account records. Every
balance change reaches the store as a PendingUpdate that pairs the deltas
with the ledger entry describing them.

Key responsibilities:
    - build_update(): validate the pairing rule before anything is written
    - apply_update(): pure balance arithmetic, rejecting negative balances
    - RewardsLedger.commit(): single-account write, conditional on version
    - RewardsLedger.commit_atomic(): all-or-nothing multi-account write
    - RewardsLedger.reconcile(): settle a write that timed out by re-reading
    - Read helpers over the append-only transaction log
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple, TypeVar

from .config import DEFAULT_CONFIG, EngineConfig
from .core import (
    Account, AccountFields, AccountStore, Clock, Transaction, TransactionKind,
    AccountNotFound, InsufficientFunds, LedgerIntegrityError, RewardsError,
    StoreError, StoreTimeout, WriteOutcomeUnknown,
    account_fields, check_fields, to_decimal,
)
from .store import SystemClock, call_with_timeout


T = TypeVar("T")

# Fields only the ledger may change, and only through deltas.
BALANCE_FIELDS = frozenset({'coin_balance', 'lifetime_coins', 'asset_balance', 'transactions'})


# ============================================================================
# PURE LEDGER FUNCTIONS
# ============================================================================

def append_entry(transactions: Sequence[Transaction], entry: Transaction) -> Tuple[Transaction, ...]:
    """Return a new log with ``entry`` at the end. Existing entries are untouched."""
    if any(t.id == entry.id for t in transactions):
        raise LedgerIntegrityError(f"Duplicate ledger entry id: {entry.id}")
    return tuple(transactions) + (entry,)


@dataclass(frozen=True, slots=True)
class PendingUpdate:
    """
    One account's proposed mutation, not yet written.

    Attributes:
        account_id: Account to write.
        coin_delta: Signed change to coin_balance.
        lifetime_delta: Non-negative change to lifetime_coins.
        asset_delta: Signed change to asset_balance.
        entries: Ledger entries appended by this update (0 or 1).
        extra_fields: Non-balance fields to merge (pin, high_score, ...).
        expected_version: Record version the update was computed against.
    """
    account_id: str
    coin_delta: int = 0
    lifetime_delta: int = 0
    asset_delta: Decimal = Decimal("0")
    entries: Tuple[Transaction, ...] = ()
    extra_fields: Mapping[str, Any] = field(default_factory=dict)
    expected_version: Optional[int] = None

    @property
    def changes_balance(self) -> bool:
        return self.coin_delta != 0 or self.asset_delta != 0 or self.lifetime_delta != 0

    def is_empty(self) -> bool:
        return not self.changes_balance and not self.entries and not self.extra_fields


def build_update(
    account: Account,
    coin_delta: int = 0,
    lifetime_delta: int = 0,
    asset_delta: Any = Decimal("0"),
    entry: Optional[Transaction] = None,
    extra_fields: Optional[Mapping[str, Any]] = None,
) -> PendingUpdate:
    """
    Build a PendingUpdate for ``account``, enforcing the pairing rule.

    Pairing rule:
        - A balance change carries exactly one ledger entry, and an entry is
          only written alongside a balance change.
        - The entry's coin_amount equals the Coin delta.
        - lifetime_coins never decreases, and only EARN entries raise it, by
          at most the Coin delta.
        - Balance fields cannot be smuggled in through extra_fields.

    Raises:
        LedgerIntegrityError: If any pairing rule is violated
    """
    asset_delta = to_decimal(asset_delta)
    extra = dict(extra_fields or {})
    check_fields(extra)

    smuggled = BALANCE_FIELDS & set(extra)
    if smuggled:
        raise LedgerIntegrityError(
            f"Balance fields must change through deltas, not extra_fields: {sorted(smuggled)}"
        )
    if isinstance(coin_delta, bool) or not isinstance(coin_delta, int):
        raise LedgerIntegrityError(f"coin_delta must be int, got {type(coin_delta)}")
    if lifetime_delta < 0:
        raise LedgerIntegrityError("lifetime_coins cannot decrease")

    balance_changes = coin_delta != 0 or asset_delta != 0 or lifetime_delta != 0
    if balance_changes and entry is None:
        raise LedgerIntegrityError(
            f"Balance change on {account.id} has no ledger entry"
        )
    if entry is not None and not balance_changes:
        raise LedgerIntegrityError(
            f"Ledger entry {entry.id} does not change any balance"
        )
    if entry is not None:
        if entry.coin_amount != coin_delta:
            raise LedgerIntegrityError(
                f"Entry {entry.id} records {entry.coin_amount} Coins but the balance moves by {coin_delta}"
            )
        if lifetime_delta > 0 and entry.kind != TransactionKind.EARN:
            raise LedgerIntegrityError(
                f"Only EARN entries can raise lifetime_coins, got {entry.kind.value}"
            )
        if lifetime_delta > max(coin_delta, 0):
            raise LedgerIntegrityError(
                f"lifetime_coins cannot rise by more than the Coins earned ({coin_delta})"
            )

    return PendingUpdate(
        account_id=account.id,
        coin_delta=coin_delta,
        lifetime_delta=lifetime_delta,
        asset_delta=asset_delta,
        entries=(entry,) if entry is not None else (),
        extra_fields=extra,
        expected_version=account.version,
    )


def apply_update(account: Account, update: PendingUpdate) -> Account:
    """
    Apply ``update`` to ``account`` and return the resulting Account.

    Pure: the input is not modified and nothing is written.

    Raises:
        LedgerIntegrityError: If the update targets another account
        InsufficientFunds: If a Coin or $ZPEXK balance would go negative
    """
    if update.account_id != account.id:
        raise LedgerIntegrityError(
            f"Update for {update.account_id} applied to {account.id}"
        )
    coins = account.coin_balance + update.coin_delta
    asset = account.asset_balance + update.asset_delta
    if coins < 0:
        raise InsufficientFunds(
            f"Insufficient Coins: balance {account.coin_balance}, change {update.coin_delta}"
        )
    if asset < 0:
        raise InsufficientFunds(
            f"Insufficient $ZPEXK: balance {account.asset_balance}, change {update.asset_delta}"
        )
    transactions = account.transactions
    for entry in update.entries:
        transactions = append_entry(transactions, entry)
    return replace(
        account,
        coin_balance=coins,
        lifetime_coins=account.lifetime_coins + update.lifetime_delta,
        asset_balance=asset,
        transactions=transactions,
        **dict(update.extra_fields),
    )


def update_fields(after: Account, update: PendingUpdate) -> AccountFields:
    """Fields to merge into the store for an applied update."""
    fields: AccountFields = dict(update.extra_fields)
    if update.changes_balance or update.entries:
        fields['coin_balance'] = after.coin_balance
        fields['lifetime_coins'] = after.lifetime_coins
        fields['asset_balance'] = after.asset_balance
        fields['transactions'] = after.transactions
    return fields


def has_landed(account: Account, update: PendingUpdate) -> bool:
    """
    True if ``account`` already reflects ``update``.

    Entry ids are unique, so an update that appends entries has landed
    exactly when all of them are in the log. An update without entries has
    landed when the record moved past the expected version and carries the
    update's fields.
    """
    if update.entries:
        ids = {t.id for t in account.transactions}
        return all(entry.id in ids for entry in update.entries)
    if update.expected_version is not None and account.version <= update.expected_version:
        return False
    return all(getattr(account, name) == value for name, value in update.extra_fields.items())


def recent(transactions: Sequence[Transaction], n: int) -> List[Transaction]:
    """The ``n`` most recent entries, newest first."""
    if n <= 0:
        return []
    return list(reversed(transactions[-n:]))


def total_spent(transactions: Sequence[Transaction]) -> int:
    """Sum of Coins spent: the magnitude of every negative coin_amount."""
    return sum(-t.coin_amount for t in transactions if t.coin_amount < 0)


# ============================================================================
# STATEFUL LEDGER
# ============================================================================

class RewardsLedger:
    """
    Writes PendingUpdates to an AccountStore.

    Every write is conditional on the record version the update was built
    against, so a concurrent write to the same account is detected rather
    than overwritten.

    Example:
        ledger = RewardsLedger(InMemoryAccountStore())
        account = ledger.get_account("u1")
        update = build_update(account, coin_delta=50, lifetime_delta=50, entry=tx)
        ledger.commit(update)
    """

    def __init__(
        self,
        store: AccountStore,
        clock: Optional[Clock] = None,
        config: EngineConfig = DEFAULT_CONFIG,
        verbose: bool = True,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.config = config
        self.verbose = verbose

    def now(self) -> datetime:
        return self.clock.now()

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Invoke a store method within the configured timeout."""
        return call_with_timeout(fn, *args, timeout=self.config.store_timeout, **kwargs)

    # ------------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------------

    def get_account(self, account_id: str) -> Account:
        """
        Raises:
            AccountNotFound: If the store has no such account
        """
        account = self.call(self.store.get_account, account_id)
        if account is None:
            raise AccountNotFound(f"Account {account_id} not found")
        return account

    def find_by_public_id(self, public_id: str) -> Optional[Account]:
        return self.call(self.store.find_account_by_public_id, public_id)

    def history(self, account_id: str) -> Tuple[Transaction, ...]:
        return self.get_account(account_id).transactions

    def recent_transactions(self, account_id: str, n: int = 5) -> List[Transaction]:
        return recent(self.history(account_id), n)

    def total_spent(self, account_id: str) -> int:
        return total_spent(self.history(account_id))

    # ------------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------------

    def create_account(self, account: Account) -> Account:
        """
        Store a new account record.

        Raises:
            VersionConflict: If an account with this id already exists
        """
        fields = account_fields(account)
        stored = self.call(self.store.upsert_account, account.id, fields, expected_version=0)
        if self.verbose:
            print(f"✓ CREATED: {stored!r}")
        return stored

    def commit(self, update: PendingUpdate) -> Account:
        """
        Apply a PendingUpdate to its account and write it back.

        Returns:
            The stored Account after the write

        Raises:
            AccountNotFound: If the account does not exist
            InsufficientFunds: If a balance would go negative
            VersionConflict: If the account changed since the update was built
            StoreError: If the store write fails
            WriteOutcomeUnknown: If the write timed out and could not be confirmed
        """
        if update.is_empty():
            return self.get_account(update.account_id)
        try:
            before = self.get_account(update.account_id)
            after = apply_update(before, update)
            expected = update.expected_version if update.expected_version is not None else before.version
            try:
                stored = self.call(
                    self.store.upsert_account,
                    update.account_id,
                    update_fields(after, update),
                    expected_version=expected,
                )
            except StoreTimeout as e:
                stored = self.reconcile([replace(update, expected_version=expected)], e)[0]
        except RewardsError as e:
            if self.verbose:
                print(f"✗ REJECTED: {update.account_id}: {e}")
            raise
        if self.verbose:
            self._print_applied(update)
        return stored

    def commit_atomic(self, updates: Sequence[PendingUpdate]) -> List[Account]:
        """
        Write several accounts in one all-or-nothing store update.

        Each write is conditional on the version its update was built
        against. If any write is refused, no account changes.

        Raises:
            AccountNotFound: If any account does not exist
            InsufficientFunds: If any balance would go negative
            StoreError: If the atomic update fails (including VersionConflict)
            WriteOutcomeUnknown: If the update timed out and could not be confirmed
        """
        try:
            writes = []
            pinned = []
            for update in updates:
                before = self.get_account(update.account_id)
                after = apply_update(before, update)
                expected = update.expected_version if update.expected_version is not None else before.version
                writes.append((update.account_id, update_fields(after, update), expected))
                pinned.append(replace(update, expected_version=expected))
            try:
                stored = self.call(self.store.run_atomic_multi_update, writes)
            except StoreTimeout as e:
                stored = self.reconcile(pinned, e)
        except RewardsError as e:
            if self.verbose:
                ids = ", ".join(u.account_id for u in updates)
                print(f"✗ REJECTED: atomic update [{ids}]: {e}")
            raise
        if self.verbose:
            for update in updates:
                self._print_applied(update)
        return stored

    def reconcile(self, updates: Sequence[PendingUpdate], error: StoreTimeout) -> List[Account]:
        """
        Find out whether a write that timed out landed anyway.

        Re-reads every account. If all of them reflect their update, the
        write is treated as applied and the re-read accounts are returned.

        Raises:
            WriteOutcomeUnknown: If the re-read fails or does not show the
                write, which may still land later
        """
        try:
            current = [self.get_account(update.account_id) for update in updates]
        except StoreError as e:
            raise WriteOutcomeUnknown(f"{error}; re-read failed: {e}") from error
        if not all(has_landed(account, update) for account, update in zip(current, updates)):
            raise WriteOutcomeUnknown(f"{error}; the write is not visible yet") from error
        if self.verbose:
            ids = ", ".join(update.account_id for update in updates)
            print(f"⚠️  LATE WRITE CONFIRMED: [{ids}] landed after the timeout")
        return current

    def _print_applied(self, update: PendingUpdate) -> None:
        if update.entries:
            for entry in update.entries:
                print(f"✓ APPLIED: {update.account_id} {entry!r}")
        else:
            print(f"✓ APPLIED: {update.account_id} fields={sorted(update.extra_fields)}")


