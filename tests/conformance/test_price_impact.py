"""
Price Impact Conformance Tests

INVARIANT: Every trade of u units moves the price by u × 1% of itself.

    buy(u)  at p:  cost = ⌊u·p⌋,  p' = p·(1 + 0.01·u)
    sell(u) at p:  gross = ⌊u·p⌋, tax = ⌊0.11·gross⌋, net = gross - tax,
                   p' = max(10, p·(1 - 0.01·u))

The price never falls below the floor, whatever the sequence of trades.
"""

from hypothesis import given, settings
from hypothesis import strategies as st
from decimal import Decimal, ROUND_FLOOR

from mcreward import MarketState, compute_buy, compute_sell, PRICE_FLOOR

from tests.fakes import Engine


units = st.decimals(min_value=Decimal("0.0001"), max_value=Decimal("50"), places=4)
prices = st.decimals(min_value=Decimal("10"), max_value=Decimal("100000"), places=2)

EIGHT_PLACES = Decimal("0.00000001")


def floor(x: Decimal) -> int:
    return int(x.to_integral_value(rounding=ROUND_FLOOR))


class TestPriceImpactProperties:
    """Property-based price impact tests."""

    @given(prices, units)
    @settings(max_examples=50)
    def test_buy(self, price, u):
        """
        PROPERTY: A buy costs ⌊u·p⌋ and raises the price by u%.
        """
        state, cost = compute_buy(MarketState.initial(price), u)
        assert cost == floor(u * price)
        assert state.current_price == (price * (1 + Decimal("0.01") * u)).quantize(EIGHT_PLACES)
        assert state.current_price >= price
        assert state.total_bought == u

    @given(prices, units)
    @settings(max_examples=50)
    def test_sell(self, price, u):
        """
        PROPERTY: A sell pays gross - ⌊11% of gross⌋ and lowers the price by
        u%, never below the floor.
        """
        state, bill = compute_sell(MarketState.initial(price), u)
        assert bill.gross == floor(u * price)
        assert bill.tax == floor(bill.gross * Decimal("0.11"))
        assert bill.net == bill.gross - bill.tax
        expected = max(PRICE_FLOOR, price * (1 - Decimal("0.01") * u))
        assert state.current_price == expected.quantize(EIGHT_PLACES)
        assert state.current_price <= price
        assert state.total_bought == 0

    @given(st.lists(st.tuples(st.booleans(), units), max_size=30))
    @settings(max_examples=50)
    def test_price_never_below_floor(self, trades):
        """
        PROPERTY: No sequence of trades takes the price below the floor.
        """
        state = MarketState.initial()
        for is_buy, u in trades:
            if is_buy:
                state, _ = compute_buy(state, u)
            else:
                state, _ = compute_sell(state, u)
            assert state.current_price >= PRICE_FLOOR

    @given(st.lists(st.tuples(st.booleans(), st.decimals(
        min_value=Decimal("0.0001"), max_value=Decimal("1"), places=4)), max_size=10))
    @settings(max_examples=30, deadline=None)
    def test_engine_matches_pure_functions(self, trades):
        """
        PROPERTY: Trades through the engine follow the same arithmetic as the
        pure functions.
        """
        engine = Engine()
        engine.seed("whale", coins=10_000_000, asset=Decimal("100"), pin="42")
        expected = MarketState.initial()
        for is_buy, u in trades:
            if is_buy:
                expected, cost = compute_buy(expected, u)
                receipt = engine.market.buy("whale", u)
                assert receipt.coin_amount == -cost
            else:
                expected, bill = compute_sell(expected, u)
                receipt = engine.market.sell("whale", u, "42")
                assert receipt.coin_amount == bill.net
            assert receipt.market.current_price == expected.current_price
            assert receipt.market.price_history == expected.price_history


class TestPriceImpactExamples:
    """Explicit price examples."""

    def test_sell_two_units_at_1000(self):
        state, bill = compute_sell(MarketState.initial(Decimal("1000")), Decimal("2.00"))
        assert (bill.gross, bill.tax, bill.net) == (2000, 220, 1780)
        assert state.current_price == Decimal("980")

    def test_large_sell_hits_floor(self):
        state, _ = compute_sell(MarketState.initial(Decimal("1000")), Decimal("150"))
        assert state.current_price == PRICE_FLOOR

    def test_buy_then_sell_same_units_loses(self):
        state, cost = compute_buy(MarketState.initial(), Decimal("10"))
        _, bill = compute_sell(state, Decimal("10"))
        assert cost == 10_000
        assert bill.gross == 11_000
        assert bill.net == 11_000 - 1_210
