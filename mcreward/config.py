"""
config.py - Engine configuration

EngineConfig bundles the tunable parameters of the market, the PIN gate and
the store boundary. Defaults come from the constants in core.py; a deployment
can override them in code or through MCREWARD_* environment variables.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
import os
from typing import Dict, Mapping, Optional, Tuple

from .core import (
    INITIAL_PRICE, IMPACT_FACTOR, PRICE_FLOOR, HISTORY_WINDOW, SELL_TAX_RATE,
    PIN_COOLDOWN,
)


DEFAULT_MAX_PIN_ATTEMPTS = 5
DEFAULT_PIN_LOCKOUT = timedelta(minutes=5)
DEFAULT_MARKET_MAX_RETRIES = 3
DEFAULT_STORE_TIMEOUT = 10.0


@dataclass(frozen=True)
class EngineConfig:
    """
    Tunable parameters for a rewards deployment.

    Attributes:
        initial_price: Price used when the market store holds no state yet.
        impact_factor: Fractional price move per unit traded.
        price_floor: Lowest price a sell can push the market to.
        history_window: Number of price observations retained.
        sell_tax_rate: Fraction of gross sell proceeds withheld.
        pin_cooldown: Minimum time between two PIN changes.
        max_pin_attempts: Consecutive wrong PINs before lockout (None = unlimited).
        pin_lockout: How long verification stays locked after max_pin_attempts.
        market_max_retries: Compare-and-swap attempts per trade.
        store_timeout: Seconds to wait for each store call (None = unbounded).
        promo_codes: Promo code -> (label, Coin bonus).
    """
    initial_price: Decimal = INITIAL_PRICE
    impact_factor: Decimal = IMPACT_FACTOR
    price_floor: Decimal = PRICE_FLOOR
    history_window: int = HISTORY_WINDOW
    sell_tax_rate: Decimal = SELL_TAX_RATE
    pin_cooldown: timedelta = PIN_COOLDOWN
    max_pin_attempts: Optional[int] = DEFAULT_MAX_PIN_ATTEMPTS
    pin_lockout: timedelta = DEFAULT_PIN_LOCKOUT
    market_max_retries: int = DEFAULT_MARKET_MAX_RETRIES
    store_timeout: Optional[float] = DEFAULT_STORE_TIMEOUT
    promo_codes: Mapping[str, Tuple[str, int]] = field(default_factory=dict)

    def __post_init__(self):
        if self.initial_price <= 0:
            raise ValueError(f"initial_price must be positive, got {self.initial_price}")
        if self.price_floor <= 0:
            raise ValueError(f"price_floor must be positive, got {self.price_floor}")
        if self.initial_price < self.price_floor:
            raise ValueError("initial_price cannot be below price_floor")
        if self.impact_factor <= 0:
            raise ValueError(f"impact_factor must be positive, got {self.impact_factor}")
        if self.history_window < 2:
            raise ValueError(f"history_window must be at least 2, got {self.history_window}")
        if not (Decimal("0") <= self.sell_tax_rate < Decimal("1")):
            raise ValueError(f"sell_tax_rate must be in [0, 1), got {self.sell_tax_rate}")
        if self.max_pin_attempts is not None and self.max_pin_attempts < 1:
            raise ValueError(f"max_pin_attempts must be at least 1, got {self.max_pin_attempts}")
        if self.market_max_retries < 1:
            raise ValueError(f"market_max_retries must be at least 1, got {self.market_max_retries}")
        if self.store_timeout is not None and self.store_timeout <= 0:
            raise ValueError(f"store_timeout must be positive, got {self.store_timeout}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'EngineConfig':
        """
        Build a config from MCREWARD_* environment variables.

        Unset variables keep their defaults. Recognized variables:
            MCREWARD_INITIAL_PRICE, MCREWARD_IMPACT_FACTOR, MCREWARD_PRICE_FLOOR,
            MCREWARD_HISTORY_WINDOW, MCREWARD_SELL_TAX_RATE,
            MCREWARD_PIN_COOLDOWN_HOURS, MCREWARD_MAX_PIN_ATTEMPTS (0 = unlimited),
            MCREWARD_PIN_LOCKOUT_MINUTES, MCREWARD_MARKET_MAX_RETRIES,
            MCREWARD_STORE_TIMEOUT (0 = unbounded)
        """
        env = os.environ if environ is None else environ
        overrides: Dict[str, object] = {}

        if "MCREWARD_INITIAL_PRICE" in env:
            overrides["initial_price"] = Decimal(env["MCREWARD_INITIAL_PRICE"])
        if "MCREWARD_IMPACT_FACTOR" in env:
            overrides["impact_factor"] = Decimal(env["MCREWARD_IMPACT_FACTOR"])
        if "MCREWARD_PRICE_FLOOR" in env:
            overrides["price_floor"] = Decimal(env["MCREWARD_PRICE_FLOOR"])
        if "MCREWARD_HISTORY_WINDOW" in env:
            overrides["history_window"] = int(env["MCREWARD_HISTORY_WINDOW"])
        if "MCREWARD_SELL_TAX_RATE" in env:
            overrides["sell_tax_rate"] = Decimal(env["MCREWARD_SELL_TAX_RATE"])
        if "MCREWARD_PIN_COOLDOWN_HOURS" in env:
            overrides["pin_cooldown"] = timedelta(hours=float(env["MCREWARD_PIN_COOLDOWN_HOURS"]))
        if "MCREWARD_MAX_PIN_ATTEMPTS" in env:
            attempts = int(env["MCREWARD_MAX_PIN_ATTEMPTS"])
            overrides["max_pin_attempts"] = attempts or None
        if "MCREWARD_PIN_LOCKOUT_MINUTES" in env:
            overrides["pin_lockout"] = timedelta(minutes=float(env["MCREWARD_PIN_LOCKOUT_MINUTES"]))
        if "MCREWARD_MARKET_MAX_RETRIES" in env:
            overrides["market_max_retries"] = int(env["MCREWARD_MARKET_MAX_RETRIES"])
        if "MCREWARD_STORE_TIMEOUT" in env:
            timeout = float(env["MCREWARD_STORE_TIMEOUT"])
            overrides["store_timeout"] = timeout or None

        return cls(**overrides)


DEFAULT_CONFIG = EngineConfig()
