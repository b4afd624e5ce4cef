"""
redemption.py - Coin redemption shop

Coins leave the system through two fulfilment channels, each recorded as a
SHOP ledger entry with a negative coin_amount:
- Google Play gift codes, issued immediately (SUCCESS)
- Minecraft Coin transfers, fulfilled out of band (PENDING)
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
import secrets
import string
from typing import Any, Dict

from .core import (
    Account, DisplayUnit, Transaction, TransactionKind, TransactionStatus,
    InsufficientFunds, ValidationError, new_transaction_id,
)
from .ledger import RewardsLedger, build_update


COINS_PER_GOOGLE_PLAY_UNIT = 120
COINS_PER_MINECRAFT_COIN = 100
SHOP_DESTINATION = "Shop"

INSUFFICIENT_COINS_MESSAGE = "Insufficient coins!"
NAMETAG_REQUIRED_MESSAGE = "Please enter a Minecraft nametag."
INVALID_AMOUNT_MESSAGE = "Please enter a valid amount."

_CODE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True, slots=True)
class GooglePlayTier:
    value: int
    label: str

    @property
    def cost(self) -> int:
        return self.value * COINS_PER_GOOGLE_PLAY_UNIT


GOOGLE_PLAY_TIERS: Dict[int, GooglePlayTier] = {
    value: GooglePlayTier(value, f"{value}rs") for value in (10, 20, 30, 100, 1000)
}


def generate_redeem_code() -> str:
    """A gift code of the form XXXXXXXX-XXXX."""
    def chunk(n: int) -> str:
        return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(n))
    return f"{chunk(8)}-{chunk(4)}"


def _spend(
    ledger: RewardsLedger,
    account: Account,
    cost: int,
    label: str,
    destination: str,
    status: TransactionStatus,
    **extra: Any,
) -> Account:
    if account.coin_balance < cost:
        if ledger.verbose:
            print(f"✗ REJECTED: {account.id} redeem {label!r}: cost {cost} > {account.coin_balance} Coins")
        raise InsufficientFunds(INSUFFICIENT_COINS_MESSAGE)
    redeem_code = extra.pop('redeem_code', None)
    now = ledger.now()
    entry = Transaction(
        id=new_transaction_id("tx", now),
        amount=Decimal(cost),
        coin_amount=-cost,
        reward_type=label,
        timestamp=now,
        status=status,
        destination_id=destination,
        kind=TransactionKind.SHOP,
        unit=DisplayUnit.COINS,
        redeem_code=redeem_code,
    )
    return ledger.commit(build_update(account, coin_delta=-cost, entry=entry, extra_fields=extra))


def redeem_google_play(ledger: RewardsLedger, account_id: str, value: int) -> Account:
    """
    Buy a Google Play code of the given face value.

    Raises:
        ValidationError: If ``value`` is not an offered tier
        InsufficientFunds: If the Coin balance does not cover the cost
    """
    tier = GOOGLE_PLAY_TIERS.get(value)
    if tier is None:
        raise ValidationError(f"No Google Play tier worth {value}.")
    account = ledger.get_account(account_id)
    return _spend(
        ledger, account, tier.cost,
        label=f"{tier.label} Google Play Code",
        destination=SHOP_DESTINATION,
        status=TransactionStatus.SUCCESS,
        redeem_code=generate_redeem_code(),
    )


def transfer_minecraft_coins(ledger: RewardsLedger, account_id: str, amount: Any, nametag: str) -> Account:
    """
    Request ``amount`` in-game Coins for ``nametag`` at 100 Coins each.

    The entry stays PENDING until fulfilled. The nametag is remembered on
    the account.

    Raises:
        ValidationError: If amount is not a positive integer or nametag is blank
        InsufficientFunds: If the Coin balance does not cover the cost
    """
    if isinstance(amount, bool):
        raise ValidationError(INVALID_AMOUNT_MESSAGE)
    try:
        amount = int(amount)
    except (TypeError, ValueError):
        raise ValidationError(INVALID_AMOUNT_MESSAGE)
    if amount <= 0:
        raise ValidationError(INVALID_AMOUNT_MESSAGE)
    nametag = (nametag or "").strip()
    if not nametag:
        raise ValidationError(NAMETAG_REQUIRED_MESSAGE)

    account = ledger.get_account(account_id)
    extra = {}
    if account.minecraft_username != nametag:
        extra['minecraft_username'] = nametag
    return _spend(
        ledger, account, amount * COINS_PER_MINECRAFT_COIN,
        label=f"Minecraft Transfer: {amount} Coins",
        destination=nametag,
        status=TransactionStatus.PENDING,
        **extra,
    )
