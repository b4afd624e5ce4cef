"""
accounts.py - Account provisioning and identifiers

Provides:
- generate_referral_code(): 'MC' followed by 6 uppercase alphanumerics
- generate_public_id(): random 10-digit public identifier
- new_account() / provision_account(): a fresh record with zero balances
- ensure_public_id(): backfill the public id of a legacy record on login
- display_unit(): the unit a transaction's amount is shown in
"""

from __future__ import annotations
import secrets
import string
from typing import Optional

from .core import (
    Account, DisplayUnit, Transaction, TransactionKind, StoreError,
)
from .ledger import RewardsLedger, build_update


REFERRAL_PREFIX = "MC"
REFERRAL_SUFFIX_LENGTH = 6
PUBLIC_ID_MIN = 1_000_000_000
PUBLIC_ID_MAX = 9_999_999_999
MAX_ID_ATTEMPTS = 10

_REFERRAL_ALPHABET = string.ascii_uppercase + string.digits


def generate_referral_code() -> str:
    suffix = "".join(secrets.choice(_REFERRAL_ALPHABET) for _ in range(REFERRAL_SUFFIX_LENGTH))
    return REFERRAL_PREFIX + suffix


def generate_public_id() -> str:
    return str(PUBLIC_ID_MIN + secrets.randbelow(PUBLIC_ID_MAX - PUBLIC_ID_MIN + 1))


def new_account(
    account_id: str,
    username: str = "",
    public_id: Optional[str] = None,
    referred_by: Optional[str] = None,
) -> Account:
    """A fresh, unsaved account with zero balances and an empty ledger."""
    return Account(
        id=account_id,
        username=username.strip(),
        public_id=public_id or generate_public_id(),
        referral_code=generate_referral_code(),
        referred_by=(referred_by or "").strip() or None,
    )


def _unused_public_id(ledger: RewardsLedger) -> str:
    for _ in range(MAX_ID_ATTEMPTS):
        candidate = generate_public_id()
        if ledger.find_by_public_id(candidate) is None:
            return candidate
    raise StoreError("Could not allocate an unused public id")


def provision_account(
    ledger: RewardsLedger,
    account_id: str,
    username: str = "",
    referred_by: Optional[str] = None,
) -> Account:
    """
    Create and store a new account with an unused public id.

    Raises:
        VersionConflict: If the account already exists
        StoreError: If no unused public id could be found
    """
    account = new_account(
        account_id, username, public_id=_unused_public_id(ledger), referred_by=referred_by
    )
    return ledger.create_account(account)


def ensure_public_id(ledger: RewardsLedger, account_id: str) -> Account:
    """
    Give a legacy account a public id if it has none. No-op otherwise.
    """
    account = ledger.get_account(account_id)
    if account.public_id:
        return account
    update = build_update(account, extra_fields={'public_id': _unused_public_id(ledger)})
    return ledger.commit(update)


def display_unit(tx: Transaction) -> DisplayUnit:
    """
    The unit ``tx.amount`` is expressed in.

    Entries carry their unit explicitly. Older entries without one fall back
    to the label: anything mentioning zpexk is $ZPEXK, EARN entries that do
    not mention tokens are Coins, and the rest are Tokens.
    """
    if tx.unit is not None:
        return tx.unit
    label = tx.reward_type.lower()
    if "zpexk" in label:
        return DisplayUnit.ZPEXK
    if tx.kind == TransactionKind.EARN and "token" not in label:
        return DisplayUnit.COINS
    return DisplayUnit.TOKENS
