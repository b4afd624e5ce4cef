"""
mcreward - Rewards Ledger, $ZPEXK Market and Transfer Protocol

The core of a gamified rewards app: users earn Coins, trade them for $ZPEXK
on a simulated market, send $ZPEXK to each other behind a PIN, and redeem
Coins in a shop.

Usage:
    from mcreward import (
        InMemoryAccountStore, InMemoryMarketStore, RewardsLedger,
        PinGate, Market, TransferProtocol, Session, provision_account,
    )

    ledger = RewardsLedger(InMemoryAccountStore())
    gate = PinGate(ledger)
    market = Market(ledger, InMemoryMarketStore(), gate)
    alice = provision_account(ledger, "alice", "Alice")

    session = Session("alice", ledger, market, gate=gate)
    session.set_pin("42")
    result = session.buy("0.5")
    print(result.outcome, result.message)
"""

# Core types
from .core import (
    Transaction,
    Account,
    MarketState,
    TransactionKind,
    TransactionStatus,
    DisplayUnit,
    Outcome,
    AccountStore,
    MarketStore,
    Clock,
    RewardsError,
    ValidationError,
    InsufficientFunds,
    LedgerIntegrityError,
    InvalidTransition,
    AuthorizationError,
    AuthorizationExpired,
    PinNotSet,
    IncorrectPin,
    PinCooldownActive,
    PinLocked,
    ResolutionError,
    AccountNotFound,
    RecipientNotFound,
    StoreError,
    StoreTimeout,
    WriteOutcomeUnknown,
    VersionConflict,
    MarketContention,
    INITIAL_PRICE,
    IMPACT_FACTOR,
    PRICE_FLOOR,
    HISTORY_WINDOW,
    SELL_TAX_RATE,
    PIN_LENGTH,
    PIN_COOLDOWN,
    PUBLIC_ID_LENGTH,
    MARKET_DESTINATION,
    SYSTEM_DESTINATION,
    WALLET_DESTINATION,
    ASSET_SYMBOL,
    format_remaining,
    is_public_id,
    require_positive_quantity,
    to_decimal,
)

# Configuration
from .config import EngineConfig, DEFAULT_CONFIG

# Stores
from .store import (
    InMemoryAccountStore,
    InMemoryMarketStore,
    SystemClock,
    call_with_timeout,
)

# Ledger
from .ledger import (
    PendingUpdate,
    RewardsLedger,
    append_entry,
    apply_update,
    has_landed,
    build_update,
    recent,
    total_spent,
)

# Security gate
from .security import PinGate, validate_pin_format, cooldown_remaining

# Market engine
from .market import (
    Market,
    SellBill,
    TradeDirection,
    TradeReceipt,
    quote,
    compute_buy,
    compute_sell,
    sell_bill,
    portfolio_value,
    is_price_up,
)
from .candles import (
    Candle,
    CandleGeometry,
    ChartLayout,
    derive_candles,
    layout_chart,
)

# Transfers
from .transfer import (
    TransferAttempt,
    TransferProtocol,
    TransferSource,
    TransferState,
    parse_scanned_code,
)

# Accounts, earn and redeem
from .accounts import (
    display_unit,
    ensure_public_id,
    generate_public_id,
    generate_referral_code,
    new_account,
    provision_account,
)
from .rewards import (
    Task,
    TaskCatalog,
    TaskType,
    complete_task,
    game_reward,
    leaderboard,
    record_game_score,
    redeem_promo,
)
from .redemption import (
    GOOGLE_PLAY_TIERS,
    GooglePlayTier,
    generate_redeem_code,
    redeem_google_play,
    transfer_minecraft_coins,
)

# Session boundary
from .session import OperationResult, Session


__all__ = [
    # Core
    'Transaction', 'Account', 'MarketState',
    'TransactionKind', 'TransactionStatus', 'DisplayUnit', 'Outcome',
    'AccountStore', 'MarketStore', 'Clock',
    'RewardsError', 'ValidationError', 'InsufficientFunds', 'LedgerIntegrityError',
    'InvalidTransition', 'AuthorizationError', 'AuthorizationExpired', 'PinNotSet', 'IncorrectPin',
    'PinCooldownActive', 'PinLocked', 'ResolutionError', 'AccountNotFound',
    'RecipientNotFound', 'StoreError', 'StoreTimeout', 'WriteOutcomeUnknown',
    'VersionConflict', 'MarketContention',
    'INITIAL_PRICE', 'IMPACT_FACTOR', 'PRICE_FLOOR', 'HISTORY_WINDOW', 'SELL_TAX_RATE',
    'PIN_LENGTH', 'PIN_COOLDOWN', 'PUBLIC_ID_LENGTH',
    'MARKET_DESTINATION', 'SYSTEM_DESTINATION', 'WALLET_DESTINATION', 'ASSET_SYMBOL',
    'format_remaining', 'is_public_id', 'require_positive_quantity', 'to_decimal',
    # Config
    'EngineConfig', 'DEFAULT_CONFIG',
    # Stores
    'InMemoryAccountStore', 'InMemoryMarketStore', 'SystemClock', 'call_with_timeout',
    # Ledger
    'PendingUpdate', 'RewardsLedger', 'append_entry', 'apply_update', 'build_update',
    'has_landed', 'recent', 'total_spent',
    # Security
    'PinGate', 'validate_pin_format', 'cooldown_remaining',
    # Market
    'Market', 'SellBill', 'TradeDirection', 'TradeReceipt',
    'quote', 'compute_buy', 'compute_sell', 'sell_bill', 'portfolio_value', 'is_price_up',
    'Candle', 'CandleGeometry', 'ChartLayout', 'derive_candles', 'layout_chart',
    # Transfers
    'TransferAttempt', 'TransferProtocol', 'TransferSource', 'TransferState',
    'parse_scanned_code',
    # Accounts, earn, redeem
    'display_unit', 'ensure_public_id', 'generate_public_id', 'generate_referral_code',
    'new_account', 'provision_account',
    'Task', 'TaskCatalog', 'TaskType', 'complete_task', 'game_reward', 'leaderboard',
    'record_game_score', 'redeem_promo',
    'GOOGLE_PLAY_TIERS', 'GooglePlayTier', 'generate_redeem_code',
    'redeem_google_play', 'transfer_minecraft_coins',
    # Session
    'OperationResult', 'Session',
]

__version__ = '1.0.0'
