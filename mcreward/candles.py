"""
candles.py - OHLC candles from the market price history

derive_candles() turns the price history into one candle per adjacent pair
of observations, in exact Decimal arithmetic. layout_chart() maps those
candles onto a fixed-size drawing surface with numpy, ready for whatever
renders the chart.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Sequence, Tuple

import numpy as np


CHART_WIDTH = 1000
CHART_HEIGHT = 300
AXIS_LOW_PADDING = 0.98
AXIS_HIGH_PADDING = 1.02
MIN_BODY_HEIGHT = 2.0     # smallest renderable body
BODY_WIDTH = 12.0
UP_COLOR = "#22c55e"
DOWN_COLOR = "#ef4444"

_HALF = Decimal("0.5")


@dataclass(frozen=True, slots=True)
class Candle:
    """
    One open/high/low/close bar.

    The wick extends half the body size beyond each end of the body.
    A flat candle (close == open) counts as up.
    """
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal

    @property
    def is_up(self) -> bool:
        return self.close >= self.open


def derive_candles(history: Sequence[Decimal]) -> List[Candle]:
    """
    Build candles from consecutive observations (open = previous, close = current).

    Fewer than two prices yields no candles.
    """
    candles = []
    for open_, close in zip(history, history[1:]):
        spread = abs(open_ - close) * _HALF
        candles.append(Candle(
            open=open_,
            high=max(open_, close) + spread,
            low=min(open_, close) - spread,
            close=close,
        ))
    return candles


@dataclass(frozen=True, slots=True)
class CandleGeometry:
    """Screen coordinates for one candle (y grows downward)."""
    x: float
    open_y: float
    close_y: float
    high_y: float
    low_y: float
    body_x: float
    body_y: float
    body_width: float
    body_height: float
    is_up: bool
    color: str


@dataclass(frozen=True)
class ChartLayout:
    width: int
    height: int
    min_price: float
    max_price: float
    candles: Tuple[CandleGeometry, ...]


def layout_chart(
    history: Sequence[Decimal],
    width: int = CHART_WIDTH,
    height: int = CHART_HEIGHT,
) -> ChartLayout:
    """
    Place the candles of ``history`` on a ``width`` × ``height`` surface.

    The price axis spans [min × 0.98, max × 1.02] of the history. Candle i
    (counting the first observation as 0) is centred at x = i × width / len(history).
    Bodies are at least MIN_BODY_HEIGHT tall so flat candles stay visible.
    """
    candles = derive_candles(history)
    if not candles:
        return ChartLayout(width, height, 0.0, 0.0, ())

    prices = np.array([float(p) for p in history], dtype=float)
    min_price = float(prices.min()) * AXIS_LOW_PADDING
    max_price = float(prices.max()) * AXIS_HIGH_PADDING
    span = max_price - min_price

    ohlc = np.array(
        [[float(c.open), float(c.high), float(c.low), float(c.close)] for c in candles],
        dtype=float,
    )
    ys = height - (ohlc - min_price) / span * height
    open_y, high_y, low_y, close_y = ys[:, 0], ys[:, 1], ys[:, 2], ys[:, 3]
    xs = np.arange(1, len(history)) * (width / len(history))
    body_y = np.minimum(open_y, close_y)
    body_height = np.maximum(MIN_BODY_HEIGHT, np.abs(open_y - close_y))

    geometry = tuple(
        CandleGeometry(
            x=float(xs[i]),
            open_y=float(open_y[i]),
            close_y=float(close_y[i]),
            high_y=float(high_y[i]),
            low_y=float(low_y[i]),
            body_x=float(xs[i]) - BODY_WIDTH / 2,
            body_y=float(body_y[i]),
            body_width=BODY_WIDTH,
            body_height=float(body_height[i]),
            is_up=candle.is_up,
            color=UP_COLOR if candle.is_up else DOWN_COLOR,
        )
        for i, candle in enumerate(candles)
    )
    return ChartLayout(width, height, min_price, max_price, geometry)
