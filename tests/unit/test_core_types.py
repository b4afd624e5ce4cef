"""
test_core_types.py - Unit tests for core data types and helpers

Tests:
- Transaction, Account and MarketState construction and validation
- Exception messages that reach users
- Identifier and quantity validation helpers
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from mcreward import (
    Transaction, Account, MarketState,
    TransactionKind, TransactionStatus, DisplayUnit,
    ValidationError, PinCooldownActive, PinLocked,
    AccountStore, MarketStore, Clock,
    InMemoryAccountStore, InMemoryMarketStore, SystemClock,
    format_remaining, is_public_id, require_positive_quantity, to_decimal,
    INITIAL_PRICE,
)
from mcreward.core import new_transaction_id, format_units, check_fields, account_fields


NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _tx(**overrides) -> Transaction:
    fields = dict(
        id="tx_1",
        amount=Decimal("10"),
        coin_amount=10,
        reward_type="Play MD Reward",
        timestamp=NOW,
        status=TransactionStatus.SUCCESS,
        destination_id="Play MD",
        kind=TransactionKind.EARN,
    )
    fields.update(overrides)
    return Transaction(**fields)


class TestTransaction:
    """Tests for the immutable ledger entry."""

    def test_create_transaction(self):
        tx = _tx()
        assert tx.coin_amount == 10
        assert tx.unit is None
        assert tx.redeem_code is None

    def test_transaction_is_frozen(self):
        tx = _tx()
        with pytest.raises(AttributeError):
            tx.coin_amount = 99

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError, match="id cannot be empty"):
            _tx(id="  ")

    def test_float_amount_rejected(self):
        with pytest.raises(ValueError, match="Decimal"):
            _tx(amount=1.5)

    def test_bool_coin_amount_rejected(self):
        with pytest.raises(ValueError, match="coin_amount"):
            _tx(coin_amount=True)

    def test_repr_shows_signed_coins(self):
        assert "[+10 Coins]" in repr(_tx())
        assert "[-5 Coins]" in repr(_tx(coin_amount=-5, kind=TransactionKind.SHOP))


class TestAccount:
    """Tests for the account record."""

    def test_defaults(self):
        account = Account(id="u1")
        assert account.coin_balance == 0
        assert account.asset_balance == Decimal("0")
        assert account.transactions == ()
        assert account.version == 0
        assert not account.has_pin

    def test_coerces_collections(self):
        account = Account(
            id="u1",
            asset_balance=1.5,
            transactions=[_tx()],
            completed_task_ids=["a"],
            used_promo_codes={"X"},
        )
        assert account.asset_balance == Decimal("1.5")
        assert isinstance(account.transactions, tuple)
        assert account.completed_task_ids == frozenset({"a"})
        assert account.used_promo_codes == frozenset({"X"})

    def test_has_pin(self):
        assert Account(id="u1", pin="42").has_pin

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError):
            Account(id="")

    def test_account_fields_excludes_identity(self):
        fields = account_fields(Account(id="u1", coin_balance=5))
        assert 'id' not in fields
        assert 'version' not in fields
        assert fields['coin_balance'] == 5

    def test_check_fields_rejects_unknown(self):
        with pytest.raises(ValueError, match="Unknown account fields"):
            check_fields({'coins': 5})


class TestMarketState:
    """Tests for the shared market state."""

    def test_initial(self):
        state = MarketState.initial()
        assert state.current_price == INITIAL_PRICE
        assert state.price_history == (INITIAL_PRICE,)
        assert state.total_bought == Decimal("0")
        assert state.version == 0

    def test_price_must_be_positive(self):
        with pytest.raises(ValueError):
            MarketState(current_price=Decimal("0"), price_history=())

    def test_price_must_be_decimal(self):
        with pytest.raises(ValueError):
            MarketState(current_price=1000.0, price_history=())

    def test_history_coerced_to_tuple(self):
        state = MarketState(current_price=Decimal("5"), price_history=[Decimal("5")])
        assert state.price_history == (Decimal("5"),)


class TestErrors:
    """User-facing exception messages."""

    def test_cooldown_message(self):
        err = PinCooldownActive(timedelta(hours=7, minutes=59, seconds=30))
        assert str(err) == (
            "You can only update your PIN once every 8 hours. Please wait 7h 59m."
        )
        assert err.remaining == timedelta(hours=7, minutes=59, seconds=30)

    def test_lock_message(self):
        err = PinLocked(timedelta(minutes=4, seconds=10))
        assert "0h 4m" in str(err)

    def test_format_remaining_floors(self):
        assert format_remaining(timedelta(hours=1, minutes=30, seconds=59)) == "1h 30m"
        assert format_remaining(timedelta(seconds=-5)) == "0h 0m"


class TestHelpers:
    """Validation and conversion helpers."""

    @pytest.mark.parametrize("value,expected", [
        ("1234567890", True),
        ("123456789", False),
        ("12345678901", False),
        ("12345abcde", False),
        ("１２３４５６７８９０", False),
        ("", False),
    ])
    def test_is_public_id(self, value, expected):
        assert is_public_id(value) is expected

    def test_to_decimal_float_has_no_binary_noise(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_to_decimal_rejects_bool(self):
        with pytest.raises(ValueError):
            to_decimal(True)

    @pytest.mark.parametrize("value", [0, -1, "abc", "NaN", "Infinity", None])
    def test_require_positive_quantity_rejects(self, value):
        with pytest.raises(ValidationError, match="Enter a valid amount."):
            require_positive_quantity(value)

    def test_require_positive_quantity_limits_places(self):
        with pytest.raises(ValidationError, match="at most 4 decimal places"):
            require_positive_quantity("0.00001")

    def test_require_positive_quantity_accepts(self):
        assert require_positive_quantity("0.5") == Decimal("0.5")
        assert require_positive_quantity(2) == Decimal("2")

    def test_require_positive_quantity_names_what(self):
        with pytest.raises(ValidationError, match="Enter a valid amount to transfer."):
            require_positive_quantity(0, "amount to transfer")

    def test_transaction_ids_unique_within_millisecond(self):
        ids = {new_transaction_id("zpexk_buy", NOW) for _ in range(50)}
        assert len(ids) == 50
        assert all(i.startswith(f"zpexk_buy_{int(NOW.timestamp() * 1000)}_") for i in ids)

    def test_format_units(self):
        assert format_units(Decimal("2")) == "2.00"
        assert format_units(Decimal("0.125")) == "0.12"


class TestProtocols:
    """Reference implementations satisfy the runtime-checkable protocols."""

    def test_in_memory_stores_conform(self):
        assert isinstance(InMemoryAccountStore(), AccountStore)
        assert isinstance(InMemoryMarketStore(), MarketStore)
        assert isinstance(SystemClock(), Clock)

    def test_system_clock_is_utc(self):
        assert SystemClock().now().tzinfo is timezone.utc
