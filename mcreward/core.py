"""
Core types and pure functions for the rewards ledger.

This module provides the foundational data structures and protocols:
1. Protocols: AccountStore, MarketStore and Clock for the external collaborators
2. Immutable data structures: Transaction, Account, MarketState
3. Exceptions: RewardsError and domain-specific error types
4. Enums: TransactionKind, TransactionStatus, DisplayUnit, Outcome
5. Helpers: identifier validation, Decimal conversion, transaction ids

All functions in this module are pure. Nothing here talks to a store.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_EVEN, getcontext
from enum import Enum
import secrets
from typing import (
    Any, Dict, FrozenSet, List, Mapping, Optional, Protocol, Sequence, Tuple,
    runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Prices and $ZPEXK quantities are Decimals. The context is configured once at
# module load time so every caller gets the same arithmetic.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
_REWARDS_DECIMAL_CONTEXT = getcontext()
_REWARDS_DECIMAL_CONTEXT.prec = 50
_REWARDS_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Market maker parameters.
INITIAL_PRICE = Decimal("1000")
IMPACT_FACTOR = Decimal("0.01")      # 1% price move per unit traded
PRICE_FLOOR = Decimal("10")
HISTORY_WINDOW = 40
SELL_TAX_RATE = Decimal("0.11")

# Prices are kept to 8 places, $ZPEXK quantities to 4.
PRICE_DECIMAL_PLACES = 8
ASSET_DECIMAL_PLACES = 4

# Security gate parameters.
PIN_LENGTH = 2
PIN_COOLDOWN = timedelta(hours=8)

# Public identifiers are 10-digit strings.
PUBLIC_ID_LENGTH = 10

# Destination sentinels written into ledger entries.
MARKET_DESTINATION = "ZPEXK_MARKET"
SYSTEM_DESTINATION = "SYSTEM"
WALLET_DESTINATION = "WALLET"

ASSET_SYMBOL = "$ZPEXK"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Partial record written to the Account Store (merge semantics).
AccountFields = Dict[str, Any]

# One entry of an atomic multi-record write: (account_id, fields, expected_version).
AtomicWrite = Tuple[str, AccountFields, Optional[int]]


# ============================================================================
# ENUMS
# ============================================================================

class TransactionKind(Enum):
    """
    Category of a balance-affecting event.

    EARN: Coins or $ZPEXK flowing in (tasks, minigame, promo, sells, received transfers).
    TRANSFER: $ZPEXK sent to another account.
    SHOP: Coins spent (market buys, redemptions).
    """
    EARN = "EARN"
    TRANSFER = "TRANSFER"
    SHOP = "SHOP"


class TransactionStatus(Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"


class DisplayUnit(Enum):
    """Unit in which a transaction's ``amount`` is expressed."""
    COINS = "Coins"
    TOKENS = "Tokens"
    ZPEXK = "$ZPEXK"


class Outcome(Enum):
    """
    Outcome of a user action at the session boundary.

    APPLIED: The action was committed.
    REJECTED: Validation, authorization or resolution failed; nothing changed.
    FAILED: The store could not complete the write; nothing changed.
    UNKNOWN: A write timed out and a re-read could not confirm it. It may
        still land, so the user should check their history before retrying.
    BUSY: Another action from the same user is still in flight.
    """
    APPLIED = "applied"
    REJECTED = "rejected"
    FAILED = "failed"
    UNKNOWN = "unknown"
    BUSY = "busy"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class RewardsError(Exception):
    """Base exception for all rewards-related errors."""
    pass


class ValidationError(RewardsError):
    """Raised when user input is rejected before any store interaction."""
    pass


class InsufficientFunds(ValidationError):
    """Raised when a mutation would take a Coin or $ZPEXK balance below zero."""
    pass


class LedgerIntegrityError(RewardsError):
    """Raised when a balance change is not paired with its ledger entry, or history would be rewritten."""
    pass


class InvalidTransition(RewardsError):
    """Raised when a transfer attempt is driven through an illegal state change."""
    pass


class AuthorizationError(RewardsError):
    """Base class for PIN gate failures."""
    pass


class PinNotSet(AuthorizationError):
    """Raised when a gated operation is attempted on an account without a PIN."""
    pass


class IncorrectPin(AuthorizationError):
    """Raised when the supplied PIN does not match the stored one."""
    pass


class AuthorizationExpired(AuthorizationError):
    """Raised when the PIN changed between authorizing and committing a transfer."""
    pass


class PinCooldownActive(AuthorizationError):
    """Raised when the PIN is changed again before the cooldown has elapsed."""

    def __init__(self, remaining: timedelta, cooldown: timedelta = PIN_COOLDOWN):
        self.remaining = remaining
        hours = int(cooldown.total_seconds() // 3600)
        super().__init__(
            f"You can only update your PIN once every {hours} hours. "
            f"Please wait {format_remaining(remaining)}."
        )


class PinLocked(AuthorizationError):
    """Raised when too many wrong PINs were entered in a row."""

    def __init__(self, remaining: timedelta):
        self.remaining = remaining
        super().__init__(
            f"Too many incorrect PIN attempts. Try again in {format_remaining(remaining)}."
        )


class ResolutionError(RewardsError):
    """Base class for lookups that found nothing."""
    pass


class AccountNotFound(ResolutionError):
    """Raised when an account id does not exist in the store."""
    pass


class RecipientNotFound(ResolutionError):
    """Raised when no account carries the destination public id."""
    pass


class StoreError(RewardsError):
    """Raised when a store read or write fails."""
    pass


class StoreTimeout(StoreError):
    """Raised when a store call does not complete within the configured bound."""
    pass


class WriteOutcomeUnknown(StoreTimeout):
    """
    Raised when a write timed out and re-reading the record did not show it.

    The write may still complete in the background. Unlike other store
    errors, balances are not known to be unchanged.
    """
    pass


class VersionConflict(StoreError):
    """Raised when a conditional write finds a different record version."""
    pass


class MarketContention(StoreError):
    """Raised when a trade keeps losing the market compare-and-swap race."""
    pass


def format_remaining(remaining: timedelta) -> str:
    """Format a wait as ``{hours}h {minutes}m`` (floored)."""
    total_seconds = max(0, int(remaining.total_seconds()))
    hours, rest = divmod(total_seconds, 3600)
    return f"{hours}h {rest // 60}m"


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An immutable record of one balance-affecting event.

    Attributes:
        id: Unique identifier (prefix + creation millis + random suffix).
        amount: Quantity in the event's native unit (see ``unit``).
        coin_amount: Signed Coin delta (positive for earn, negative for spend).
        reward_type: Human-readable category label.
        timestamp: When the event was committed.
        status: PENDING for externally fulfilled redemptions, else SUCCESS.
        destination_id: Counterparty or fulfilment destination.
        kind: EARN, TRANSFER or SHOP.
        unit: Display unit of ``amount``. None only on legacy records.
        redeem_code: Gift code for redemptions that produce one.
    """
    id: str
    amount: Decimal
    coin_amount: int
    reward_type: str
    timestamp: datetime
    status: TransactionStatus
    destination_id: str
    kind: TransactionKind
    unit: Optional[DisplayUnit] = None
    redeem_code: Optional[str] = None

    def __post_init__(self):
        if not self.id or not self.id.strip():
            raise ValueError("Transaction id cannot be empty")
        if not isinstance(self.amount, Decimal):
            raise ValueError(f"Transaction amount must be Decimal, got {type(self.amount)}")
        if not isinstance(self.coin_amount, int) or isinstance(self.coin_amount, bool):
            raise ValueError(f"Transaction coin_amount must be int, got {type(self.coin_amount)}")

    def __repr__(self) -> str:
        sign = "+" if self.coin_amount > 0 else ""
        return (f"Transaction({self.kind.value} {self.amount} "
                f"[{sign}{self.coin_amount} Coins] {self.reward_type!r} -> {self.destination_id})")


@dataclass(frozen=True, slots=True)
class Account:
    """
    Transient copy of one participant's persisted record.

    The Account Store owns the authoritative copy. The core reads an Account,
    proposes a mutation, and writes it back conditionally on ``version``.
    """
    id: str
    username: str = ""
    public_id: Optional[str] = None
    referral_code: str = ""
    referred_by: Optional[str] = None
    coin_balance: int = 0
    lifetime_coins: int = 0
    asset_balance: Decimal = Decimal("0")
    pin: Optional[str] = None
    last_pin_update: Optional[datetime] = None
    transactions: Tuple[Transaction, ...] = ()
    minecraft_username: str = ""
    completed_task_ids: FrozenSet[str] = frozenset()
    used_promo_codes: FrozenSet[str] = frozenset()
    high_score: int = 0
    version: int = 0

    def __post_init__(self):
        if not self.id or not self.id.strip():
            raise ValueError("Account id cannot be empty")
        if not isinstance(self.asset_balance, Decimal):
            object.__setattr__(self, 'asset_balance', to_decimal(self.asset_balance))
        if not isinstance(self.transactions, tuple):
            object.__setattr__(self, 'transactions', tuple(self.transactions))
        if not isinstance(self.completed_task_ids, frozenset):
            object.__setattr__(self, 'completed_task_ids', frozenset(self.completed_task_ids))
        if not isinstance(self.used_promo_codes, frozenset):
            object.__setattr__(self, 'used_promo_codes', frozenset(self.used_promo_codes))

    @property
    def has_pin(self) -> bool:
        return bool(self.pin)

    def __repr__(self) -> str:
        return (f"Account({self.id}, public_id={self.public_id}, coins={self.coin_balance}, "
                f"zpexk={self.asset_balance}, entries={len(self.transactions)}, v{self.version})")


@dataclass(frozen=True, slots=True)
class MarketState:
    """
    Process-wide state of the simulated $ZPEXK market.

    Attributes:
        current_price: Price of one $ZPEXK in Coins (never below PRICE_FLOOR).
        price_history: Most recent observations, oldest first, at most HISTORY_WINDOW.
        total_bought: Cumulative $ZPEXK bought across all users.
        version: Monotonic write counter used for compare-and-swap.
    """
    current_price: Decimal
    price_history: Tuple[Decimal, ...]
    total_bought: Decimal = Decimal("0")
    version: int = 0

    def __post_init__(self):
        if not isinstance(self.current_price, Decimal):
            raise ValueError(f"current_price must be Decimal, got {type(self.current_price)}")
        if self.current_price <= 0:
            raise ValueError(f"current_price must be positive, got {self.current_price}")
        if not isinstance(self.price_history, tuple):
            object.__setattr__(self, 'price_history', tuple(self.price_history))

    @classmethod
    def initial(cls, price: Decimal = INITIAL_PRICE) -> 'MarketState':
        """State used when the Market Store holds nothing yet."""
        return cls(current_price=price, price_history=(price,), total_bought=Decimal("0"))


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class Clock(Protocol):
    """Source of the current time for timestamps and cooldowns."""

    def now(self) -> datetime:
        ...


@runtime_checkable
class AccountStore(Protocol):
    """
    Remote owner of Account records.

    Writes take an optional ``expected_version``; when given, the write is
    refused with VersionConflict unless the stored record still has it.
    """

    def get_account(self, account_id: str) -> Optional[Account]:
        """Return the account, or None if it does not exist."""
        ...

    def find_account_by_public_id(self, public_id: str) -> Optional[Account]:
        """Return the account carrying ``public_id``, or None."""
        ...

    def upsert_account(
        self,
        account_id: str,
        fields: AccountFields,
        expected_version: Optional[int] = None,
    ) -> Account:
        """Merge ``fields`` into the record (creating it if needed) and return the result."""
        ...

    def run_atomic_multi_update(self, writes: Sequence[AtomicWrite]) -> List[Account]:
        """Apply every write or none of them."""
        ...

    def top_high_scores(self, limit: int) -> List[Account]:
        """Return up to ``limit`` accounts with a positive high score, best first."""
        ...


@runtime_checkable
class MarketStore(Protocol):
    """Remote owner of the single MarketState document."""

    def get_market_state(self) -> Optional[MarketState]:
        ...

    def put_market_state(
        self,
        state: MarketState,
        expected_version: Optional[int] = None,
    ) -> MarketState:
        """Overwrite the state and return it with its new version."""
        ...


# ============================================================================
# HELPERS
# ============================================================================

def to_decimal(value: Any) -> Decimal:
    """Convert ints, strings and floats to Decimal without binary float noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("Cannot convert bool to Decimal")
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def is_public_id(value: str) -> bool:
    """True for exactly PUBLIC_ID_LENGTH ASCII digits."""
    return (
        isinstance(value, str)
        and len(value) == PUBLIC_ID_LENGTH
        and value.isascii()
        and value.isdigit()
    )


def require_positive_quantity(value: Any, what: str = "amount") -> Decimal:
    """
    Normalize a user-entered $ZPEXK quantity.

    Raises:
        ValidationError: If the value is not a finite positive number with at
                         most ASSET_DECIMAL_PLACES decimal places.
    """
    try:
        quantity = to_decimal(value)
    except (ArithmeticError, ValueError, TypeError):
        raise ValidationError(f"Enter a valid {what}.")
    if not quantity.is_finite() or quantity <= 0:
        raise ValidationError(f"Enter a valid {what}.")
    if -quantity.as_tuple().exponent > ASSET_DECIMAL_PLACES:
        raise ValidationError(
            f"The {what} can have at most {ASSET_DECIMAL_PLACES} decimal places."
        )
    return quantity


def new_transaction_id(prefix: str, timestamp: datetime) -> str:
    """
    Generate a transaction id of the form ``{prefix}_{millis}_{suffix}``.

    The random suffix keeps ids unique when two entries share a millisecond
    (e.g. both sides of a transfer).
    """
    millis = int(timestamp.timestamp() * 1000)
    return f"{prefix}_{millis}_{secrets.token_hex(3)}"


def format_units(quantity: Decimal) -> str:
    """Format a $ZPEXK quantity with two decimals for labels."""
    return f"{quantity:.2f}"


def account_fields(account: Account) -> AccountFields:
    """All writable fields of an account (everything except id and version)."""
    return {
        'username': account.username,
        'public_id': account.public_id,
        'referral_code': account.referral_code,
        'referred_by': account.referred_by,
        'coin_balance': account.coin_balance,
        'lifetime_coins': account.lifetime_coins,
        'asset_balance': account.asset_balance,
        'pin': account.pin,
        'last_pin_update': account.last_pin_update,
        'transactions': account.transactions,
        'minecraft_username': account.minecraft_username,
        'completed_task_ids': account.completed_task_ids,
        'used_promo_codes': account.used_promo_codes,
        'high_score': account.high_score,
    }


WRITABLE_ACCOUNT_FIELDS: FrozenSet[str] = frozenset(
    f for f in Account.__dataclass_fields__ if f not in ('id', 'version')
)


def check_fields(fields: Mapping[str, Any]) -> None:
    """Reject writes naming fields an Account does not have."""
    unknown = set(fields) - WRITABLE_ACCOUNT_FIELDS
    if unknown:
        raise ValueError(f"Unknown account fields: {sorted(unknown)}")
