"""
conftest.py - Shared pytest fixtures for rewards engine tests

Provides common fixtures used across unit and functional tests:
- A wired engine over in-memory stores and a fake clock
- Funded accounts with PINs (alice, bob) and without (carol)
"""

import pytest
from decimal import Decimal

from mcreward import Account, MarketState

from tests.fakes import (
    Engine, FakeClock,
    ALICE_PUBLIC_ID, BOB_PUBLIC_ID, CAROL_PUBLIC_ID,
)


# =============================================================================
# ENGINE FIXTURES
# =============================================================================

@pytest.fixture
def engine():
    """Fresh engine with no accounts and an uninitialized market."""
    return Engine()


@pytest.fixture
def clock(engine) -> FakeClock:
    return engine.clock


@pytest.fixture
def ledger(engine):
    return engine.ledger


@pytest.fixture
def gate(engine):
    return engine.gate


@pytest.fixture
def market(engine):
    return engine.market


@pytest.fixture
def transfers(engine):
    return engine.transfers


# =============================================================================
# ACCOUNT FIXTURES
# =============================================================================

@pytest.fixture
def alice(engine) -> Account:
    """Alice: 10,000 Coins, 5 $ZPEXK, PIN 42."""
    return engine.seed("alice", ALICE_PUBLIC_ID, coins=10_000, asset=Decimal("5"), pin="42")


@pytest.fixture
def bob(engine) -> Account:
    """Bob: 1,000 Coins, 2 $ZPEXK, PIN 17."""
    return engine.seed("bob", BOB_PUBLIC_ID, coins=1_000, asset=Decimal("2"), pin="17")


@pytest.fixture
def carol(engine) -> Account:
    """Carol: 500 Coins, 3 $ZPEXK, no PIN."""
    return engine.seed("carol", CAROL_PUBLIC_ID, coins=500, asset=Decimal("3"))


@pytest.fixture
def initial_market() -> MarketState:
    return MarketState.initial()
